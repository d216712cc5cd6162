from __future__ import annotations

from pathlib import Path

import pytest

from host_init.core.enums import DistroFamily
from host_init.core.errors import PreconditionError
from host_init.core.models import HostPaths
from host_init.services.host_facts import check_preconditions, detect_host_facts, parse_os_release, security_warnings


DEBIAN_RELEASE = """\
PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"
NAME="Debian GNU/Linux"
VERSION_ID="12"
VERSION_CODENAME=bookworm
ID=debian
"""


def _paths(tmp_path: Path, release: str | None = DEBIAN_RELEASE) -> HostPaths:
    os_release = tmp_path / "os-release"
    if release is not None:
        os_release.write_text(release, encoding="utf-8")
    return HostPaths(
        os_release=os_release,
        sshd_config=tmp_path / "sshd_config",
        pam_common_password=tmp_path / "common-password",
    )


def test_parse_os_release_handles_quotes_and_comments() -> None:
    values = parse_os_release('# comment\nNAME="Ubuntu"\nVERSION_ID="22.04"\nbroken line\n')
    assert values == {"NAME": "Ubuntu", "VERSION_ID": "22.04"}


def test_detect_host_facts_debian(tmp_path: Path) -> None:
    facts = detect_host_facts(_paths(tmp_path).os_release, machine="aarch64")

    assert facts.family == DistroFamily.DEBIAN
    assert facts.version_codename == "bookworm"
    assert facts.architecture == "arm64"


def test_missing_os_release_is_a_precondition_failure(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="Cannot determine OS type"):
        detect_host_facts(_paths(tmp_path, release=None).os_release)


def test_preconditions_require_root(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="root privileges"):
        check_preconditions(paths=_paths(tmp_path), euid_fn=lambda: 1000, which_fn=lambda name: "/usr/bin/apt")


def test_preconditions_reject_wrong_family(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="only for Ubuntu systems"):
        check_preconditions(
            paths=_paths(tmp_path),
            allowed_families=[DistroFamily.UBUNTU],
            euid_fn=lambda: 0,
            which_fn=lambda name: "/usr/bin/apt",
        )


def test_preconditions_require_apt(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="package manager"):
        check_preconditions(paths=_paths(tmp_path), euid_fn=lambda: 0, which_fn=lambda name: None)


def test_preconditions_return_facts(tmp_path: Path) -> None:
    facts = check_preconditions(paths=_paths(tmp_path), euid_fn=lambda: 0, which_fn=lambda name: "/usr/bin/apt")
    assert facts.os_name == "Debian GNU/Linux"


def test_security_warnings(tmp_path: Path) -> None:
    paths = _paths(tmp_path)
    paths.pam_common_password.write_text("password requisite pam_unix.so\n", encoding="utf-8")
    paths.sshd_config.write_text("Port 22\nPermitRootLogin yes\n", encoding="utf-8")

    warnings = security_warnings(paths)

    assert "Password complexity requirements not configured" in warnings
    assert "Root login is currently permitted via SSH" in warnings
