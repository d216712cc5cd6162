from __future__ import annotations

import json
from pathlib import Path

import pytest

from host_init.app import _choices_from_args, build_parser, main
from host_init.core.enums import DistroFamily, StepStatus
from host_init.core.errors import PreconditionError
from host_init.core.models import HostFacts, RunSummary, StepExecutionResult


@pytest.fixture()
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("HOST_INIT_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("HOST_INIT_DEFAULTS_FILE", str(tmp_path / "host-init.json"))
    monkeypatch.setenv("HOST_INIT_ERROR_LOG", str(tmp_path / "error.log"))
    return tmp_path


def test_parser_supports_run_options() -> None:
    parser = build_parser()
    args = parser.parse_args(
        [
            "run",
            "--profile",
            "debian",
            "--dry-run",
            "--max-retries",
            "5",
            "--backoff",
            "linear",
            "--critical",
            "system_update",
            "--critical",
            "install_docker",
        ]
    )
    assert args.command == "run"
    assert args.profile == "debian"
    assert args.dry_run
    assert args.max_retries == 5
    assert args.backoff == "linear"
    assert args.critical_steps == ["system_update", "install_docker"]


def test_parser_rejects_unknown_profile() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["run", "--profile", "gentoo"])


def test_choices_from_args() -> None:
    args = build_parser().parse_args(
        ["run", "--create-user", "alice", "--ssh-port", "2222", "--timezone", "Asia/Shanghai", "--reinstall-docker"]
    )
    values = _choices_from_args(args)

    assert values == {
        "create_user": True,
        "username": "alice",
        "ssh_port": 2222,
        "timezone": "Asia/Shanghai",
        "timezone_mode": "manual",
        "reinstall_docker": True,
        "install_docker": True,
    }


def test_unset_flags_leave_choices_open() -> None:
    assert _choices_from_args(build_parser().parse_args(["run"])) == {}


def test_steps_list(isolated_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["steps", "list", "--profile", "ubuntu"]) == 0
    output = capsys.readouterr().out
    assert " 1. set_timezone" in output
    assert "remove_snap" in output


def test_defaults_init_and_show(isolated_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = isolated_env / "host-init.json"
    assert main(["defaults", "init"]) == 0
    assert path.exists()
    assert main(["defaults", "init"]) == 2
    assert main(["defaults", "init", "--force"]) == 0
    capsys.readouterr()

    assert main(["defaults", "show"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["max_retries"] == 3
    assert shown["default_timezone"] == "UTC"


def test_defaults_show_reports_invalid_file(isolated_env: Path) -> None:
    (isolated_env / "host-init.json").write_text("[]", encoding="utf-8")
    assert main(["defaults", "show"]) == 2


DEBIAN = HostFacts(os_name="Debian GNU/Linux", family=DistroFamily.DEBIAN, version_id="12", version_codename="bookworm")


class FakeProvisioningRunner:
    summary = RunSummary(failed_steps=[], log_file="error.log", log_persisted=False, halted_early=False)

    def __init__(self, settings, **kwargs) -> None:
        self.settings = settings

    def run(self, **kwargs) -> RunSummary:
        FakeProvisioningRunner.received = kwargs
        return self.summary


@pytest.fixture()
def fake_host(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("host_init.services.host_facts.check_preconditions", lambda **kwargs: DEBIAN)
    monkeypatch.setattr("host_init.services.host_facts.security_warnings", lambda paths: [])
    monkeypatch.setattr("host_init.services.runner.ProvisioningRunner", FakeProvisioningRunner)


def test_run_exits_1_when_preconditions_fail(isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def not_root(**kwargs):
        raise PreconditionError("Please run this script with root privileges")

    monkeypatch.setattr("host_init.services.host_facts.check_preconditions", not_root)

    assert main(["run", "--non-interactive"]) == 1


def test_run_prints_failed_steps_and_log_path(
    isolated_env: Path, fake_host: None, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    log_file = str(isolated_env / "error.log")
    summary = RunSummary(
        failed_steps=["system_update"],
        log_file=log_file,
        log_persisted=True,
        halted_early=False,
        results=[StepExecutionResult(step_name="system_update", status=StepStatus.FAILED, error_code=101)],
    )
    monkeypatch.setattr(FakeProvisioningRunner, "summary", summary)

    assert main(["run", "--non-interactive", "--dry-run"]) == 1

    output = capsys.readouterr().out
    assert "The following steps failed:" in output
    assert "  - system_update" in output
    assert f"Please check {log_file} for detailed error messages" in output
    assert FakeProvisioningRunner.received["interactive"] is False


def test_run_prints_login_hint_for_created_user(
    isolated_env: Path, fake_host: None, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    password_file = isolated_env / "password"
    password_file.write_text("s3cret\n", encoding="utf-8")
    summary = RunSummary(
        failed_steps=[],
        log_file=str(isolated_env / "error.log"),
        log_persisted=False,
        halted_early=False,
        results=[
            StepExecutionResult(
                step_name="create_user", status=StepStatus.SUCCEEDED, updates={"created_user": "alice"}
            ),
            StepExecutionResult(step_name="configure_ssh", status=StepStatus.SUCCEEDED, updates={"ssh_port": 2222}),
        ],
    )
    monkeypatch.setattr(FakeProvisioningRunner, "summary", summary)

    exit_code = main(
        [
            "run",
            "--non-interactive",
            "--create-user",
            "alice",
            "--password-file",
            str(password_file),
            "--ssh-port",
            "2222",
        ]
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "No errors occurred during initialization" in output
    assert "Please use SSH port 2222 and username alice to login" in output
    choices = FakeProvisioningRunner.received["choices"]
    assert choices.password.get_secret_value() == "s3cret"
