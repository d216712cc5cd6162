from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

from host_init.config.choices import build_choices, load_choices_from_json, read_key_file, read_password_file
from host_init.config.defaults import load_defaults, load_or_create_defaults, write_defaults
from host_init.config.settings import Settings
from host_init.core.enums import BackoffStrategy
from host_init.core.errors import ConfigError, PreconditionError
from host_init.core.models import HostDefaults, HostPaths, RunSummary
from host_init.utils.logging_config import configure_logging
from host_init.workflows.plan import list_available_profiles, profile_families, profile_step_names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Host Init: first-boot provisioning for Debian and Ubuntu hosts")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Provision this host.")
    run_parser.add_argument("--profile", choices=list_available_profiles(), default="init", help="Provisioning profile.")
    run_parser.add_argument("--defaults-file", help="Path to the JSON defaults file.")
    run_parser.add_argument("--error-log", help="Path of the per-step error log.")
    run_parser.add_argument("--choices-file", help="JSON file with pre-answered provisioning choices.")
    run_parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; unanswered choices fall back to their defaults.",
    )
    run_parser.add_argument("--dry-run", action="store_true", help="Log commands instead of running them.")
    run_parser.add_argument("--max-retries", type=int, default=None, help="Retries for network failures [0..20].")
    run_parser.add_argument(
        "--backoff",
        choices=[item.value for item in BackoffStrategy],
        default=BackoffStrategy.EXPONENTIAL.value,
        help="Wait growth between retries.",
    )
    run_parser.add_argument("--stop-on-error", action="store_true", help="Halt after the first failed step.")
    run_parser.add_argument(
        "--critical",
        dest="critical_steps",
        action="append",
        default=None,
        help="Step whose failure halts the run (can be repeated).",
    )

    choice_group = run_parser.add_argument_group("choices")
    choice_group.add_argument("--timezone-mode", choices=["keep", "detected", "manual"], help="Timezone handling.")
    choice_group.add_argument("--timezone", help="Timezone name for manual mode.")
    choice_group.add_argument("--mirror", help="APT mirror key (ustc, tuna, aliyun).")
    choice_group.add_argument("--remove-snap", action="store_true", default=None, help="Remove snap (Ubuntu).")
    choice_group.add_argument("--create-user", metavar="USERNAME", help="Create a sudo user with this name.")
    choice_group.add_argument("--ssh-key-file", help="Public key file to authorize for the new user.")
    choice_group.add_argument("--password-file", help="File holding the new user's password.")
    choice_group.add_argument("--ssh-port", type=int, help="SSH port for the hardened sshd configuration.")
    choice_group.add_argument("--install-docker", action="store_true", default=None, help="Install Docker.")
    choice_group.add_argument(
        "--reinstall-docker",
        action="store_true",
        default=None,
        help="Reinstall Docker when it is already present.",
    )
    choice_group.add_argument("--install-git", action="store_true", default=None, help="Install or upgrade Git.")

    steps_parser = subparsers.add_parser("steps", help="Inspect provisioning steps.")
    steps_sub = steps_parser.add_subparsers(dest="steps_command", required=True)
    steps_list = steps_sub.add_parser("list", help="List the steps of a profile in run order.")
    steps_list.add_argument("--profile", choices=list_available_profiles(), default="init", help="Provisioning profile.")

    defaults_parser = subparsers.add_parser("defaults", help="Manage the defaults file.")
    defaults_sub = defaults_parser.add_subparsers(dest="defaults_command", required=True)
    defaults_init = defaults_sub.add_parser("init", help="Write a defaults file.")
    defaults_init.add_argument("--path", help="Target path.")
    defaults_init.add_argument("--force", action="store_true", help="Overwrite an existing file.")
    defaults_show = defaults_sub.add_parser("show", help="Print the effective defaults.")
    defaults_show.add_argument("--path", help="Defaults file path.")
    return parser


def main(argv: list[str] | None = None) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_dir)
    logger = logging.getLogger("host_init")

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "steps":
        for index, name in enumerate(profile_step_names(args.profile), start=1):
            print(f"{index:2d}. {name}")
        return 0

    if args.command == "defaults":
        return _handle_defaults(args, settings, logger)

    if args.command == "run":
        return _handle_run(args, settings, logger)

    parser.print_help()
    return 0


def _handle_defaults(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    path = args.path or settings.defaults_file
    if args.defaults_command == "init":
        if not args.force and Path(path).exists():
            logger.error("Defaults file %s already exists; use --force to overwrite.", path)
            return 2
        written = write_defaults(path)
        print(f"Defaults written to {written}")
        return 0

    try:
        defaults = load_defaults(path) if Path(path).exists() else HostDefaults()
    except ConfigError as exc:
        logger.error(str(exc))
        return 2
    print(json.dumps(defaults.model_dump(mode="json"), indent=2))
    return 0


def _handle_run(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    from host_init.services.host_facts import check_preconditions, security_warnings
    from host_init.services.prompts import DEFAULT_SSH_PORT, ChoicePrompter
    from host_init.services.runner import ProvisioningRunner, resolve_retry_policy

    try:
        defaults = load_or_create_defaults(args.defaults_file or settings.defaults_file)
    except (ConfigError, OSError) as exc:
        logger.error("Failed to load defaults: %s", exc)
        return 2
    logging.getLogger().setLevel(defaults.log_level)

    paths = HostPaths()
    try:
        facts = check_preconditions(
            paths=paths,
            allowed_families=profile_families(args.profile),
            euid_fn=(lambda: 0) if args.dry_run else os.geteuid,
        )
    except PreconditionError as exc:
        logger.error("[ERROR] %s", exc)
        return 1

    for warning in security_warnings(paths):
        logger.warning("[SECURITY] %s", warning)

    try:
        preset = load_choices_from_json(args.choices_file) if args.choices_file else {}
        preset.update(_choices_from_args(args))
        if args.non_interactive:
            choices = build_choices(preset, default_ssh_port=DEFAULT_SSH_PORT)
        else:
            choices = ChoicePrompter(facts=facts, defaults=defaults).collect(preset)
    except ConfigError as exc:
        logger.error(str(exc))
        return 2
    except ValueError as exc:
        logger.error("Invalid provisioning choices: %s", exc)
        return 2

    try:
        retry_policy = resolve_retry_policy(
            settings=settings,
            defaults=defaults,
            max_retries=None if args.max_retries is None else max(0, min(20, args.max_retries)),
            backoff=args.backoff,
        )
        runner = ProvisioningRunner(settings)
        summary = runner.run(
            profile=args.profile,
            facts=facts,
            choices=choices,
            defaults=defaults,
            retry_policy=retry_policy,
            dry_run=args.dry_run,
            stop_on_error=args.stop_on_error,
            critical_steps=args.critical_steps,
            error_log=args.error_log,
            interactive=not args.non_interactive,
        )
    except ValueError as exc:
        logger.error(str(exc))
        return 2

    logger.info("Run completed: %s", summary.to_dict())
    _print_summary(summary)
    return summary.exit_code


def _choices_from_args(args: argparse.Namespace) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key in ("timezone_mode", "timezone", "mirror", "remove_snap", "ssh_port", "install_docker", "install_git"):
        value = getattr(args, key)
        if value is not None:
            values[key] = value
    if args.reinstall_docker:
        values["reinstall_docker"] = True
        values.setdefault("install_docker", True)
    if args.timezone and "timezone_mode" not in values:
        values["timezone_mode"] = "manual"
    if args.create_user:
        values["create_user"] = True
        values["username"] = args.create_user
    if args.ssh_key_file:
        values["ssh_public_key"] = read_key_file(args.ssh_key_file)
    if args.password_file:
        values["password"] = read_password_file(args.password_file)
    return values


def _print_summary(summary: RunSummary) -> None:
    if summary.failed_steps:
        print("The following steps failed:")
        for name in summary.failed_steps:
            print(f"  - {name}")
        print(f"Please check {summary.log_file} for detailed error messages")
    else:
        print("No errors occurred during initialization")

    derived = _derived_from(summary)
    if derived.get("created_user"):
        port = derived.get("ssh_port", 22)
        print(f"Please use SSH port {port} and username {derived['created_user']} to login")


def _derived_from(summary: RunSummary) -> dict[str, Any]:
    derived: dict[str, Any] = {}
    for result in summary.results:
        derived.update(result.updates)
    return derived


if __name__ == "__main__":
    raise SystemExit(main())
