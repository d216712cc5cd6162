from __future__ import annotations

import logging
from typing import Any

from host_init.connectors.shell import StepShell
from host_init.core.errors import StepError
from host_init.core.models import HostContext, HostPaths
from host_init.services.files import backup_file, restore_backup, write_managed_file


SSHD_CONFIG_TEMPLATE = """\
Port {port}
Protocol 2
HostKey /etc/ssh/ssh_host_rsa_key
HostKey /etc/ssh/ssh_host_ecdsa_key
HostKey /etc/ssh/ssh_host_ed25519_key

SyslogFacility AUTH
LogLevel INFO

PermitRootLogin no
StrictModes yes
MaxAuthTries 3

PubkeyAuthentication yes
PasswordAuthentication no
PermitEmptyPasswords no
ChallengeResponseAuthentication no

UsePAM yes
X11Forwarding no
PrintMotd no

AcceptEnv LANG LC_*
Subsystem sftp /usr/lib/openssh/sftp-server

AllowUsers {username}
"""


def render_sshd_config(*, port: int, username: str) -> str:
    return SSHD_CONFIG_TEMPLATE.format(port=port, username=username)


class SshdService:
    def __init__(self, shell: StepShell, paths: HostPaths, logger: logging.Logger | None = None) -> None:
        self._shell = shell
        self._paths = paths
        self._logger = logger or logging.getLogger(__name__)

    def configure(self, context: HostContext) -> dict[str, Any]:
        choices = context.choices
        defaults = context.defaults
        port = choices.ssh_port
        if port is None:
            raise StepError("SSH port not set")
        if port != 22 and not defaults.ssh_port_min <= port <= defaults.ssh_port_max:
            raise StepError(
                f"SSH port {port} outside allowed range {defaults.ssh_port_min}-{defaults.ssh_port_max}",
            )
        username = context.derived.get("created_user") or choices.username
        if not username:
            raise StepError("No login user to allow in sshd_config")

        sshd_config = self._paths.sshd_config
        backup = None if self._shell.dry_run else backup_file(sshd_config)
        if backup is not None:
            self._logger.info("Backed up %s to %s", sshd_config, backup)

        write_managed_file(
            sshd_config,
            render_sshd_config(port=port, username=username),
            dry_run=self._shell.dry_run,
            mode=0o600,
            logger=self._logger,
        )

        validation = self._shell.run(["sshd", "-t", "-f", str(sshd_config)], check=False)
        if validation.returncode != 0:
            if backup is not None:
                restore_backup(backup, sshd_config)
                self._logger.warning("sshd rejected the new configuration; restored %s", backup)
            raise StepError(
                f"sshd configuration validation failed: {validation.stderr.strip() or 'unknown error'}",
                command=f"sshd -t -f {sshd_config}",
            )

        self._shell.run(["systemctl", "restart", "ssh"])
        self._logger.info("[SUCCEED] SSH service restarted successfully")
        return {"ssh_port": port, "sshd_backup": str(backup) if backup else None}
