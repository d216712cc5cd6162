from __future__ import annotations

import sys
from pathlib import Path

import pytest

from host_init.connectors.shell import CommandRunner, StepShell
from host_init.core.engine import ProvisioningEngine
from host_init.core.errors import CommandFailedError
from host_init.core.ledger import StepLedger


def test_runner_captures_output() -> None:
    result = CommandRunner().run([sys.executable, "-c", "print('hello')"])
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_runner_raises_with_exit_code_and_command() -> None:
    script = "import sys; sys.stderr.write('bad mirror\\n'); sys.exit(3)"
    with pytest.raises(CommandFailedError) as excinfo:
        CommandRunner().run([sys.executable, "-c", script])

    assert excinfo.value.code == 3
    assert excinfo.value.message == "Command failed: bad mirror"
    assert sys.executable in excinfo.value.command


def test_runner_without_check_returns_failure() -> None:
    result = CommandRunner().run([sys.executable, "-c", "import sys; sys.exit(2)"], check=False)
    assert result.returncode == 2


def test_missing_command_maps_to_127() -> None:
    with pytest.raises(CommandFailedError) as excinfo:
        CommandRunner().run(["definitely-not-a-real-command-xyz"])
    assert excinfo.value.code == 127


def test_network_timeout_maps_to_retryable_code() -> None:
    runner = CommandRunner()
    with pytest.raises(CommandFailedError) as excinfo:
        runner.run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2, network=True)
    assert excinfo.value.code == 100

    with pytest.raises(CommandFailedError) as excinfo:
        runner.run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
    assert excinfo.value.code == 124


def test_dry_run_does_not_execute(tmp_path: Path) -> None:
    marker = tmp_path / "marker"
    result = CommandRunner(dry_run=True).run(["touch", str(marker)])

    assert result.returncode == 0
    assert result.command == f"touch {marker}"
    assert not marker.exists()


def test_step_shell_outside_step_propagates_errors(tmp_path: Path) -> None:
    engine = ProvisioningEngine(ledger=StepLedger(tmp_path / "error.log"))
    shell = StepShell(CommandRunner(), engine.runtime)

    with pytest.raises(CommandFailedError):
        shell.run([sys.executable, "-c", "import sys; sys.exit(1)"])
