"""Systemd user unit for the passbridge server.

The unit runs ``passbridge serve`` and maps ``systemctl --user reload``
onto SIGUSR1, so a git hook or pass extension can refresh the bridge
after the store changes.

Usage:
    from passbridge.systemd import install_unit
    install_unit()               # writes the unit + daemon-reload
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger("passbridge.systemd")

SERVICE_NAME = "passbridge.service"
SYSTEMD_USER_DIR = Path.home() / ".config" / "systemd" / "user"


def _systemctl(*args: str) -> subprocess.CompletedProcess:
    """Run a systemctl --user command and capture output."""
    return subprocess.run(
        ["systemctl", "--user", *args],
        capture_output=True, text=True, timeout=30, check=False,
    )


def systemd_available() -> bool:
    """Check if a systemd user session is available."""
    try:
        return _systemctl("--version").returncode == 0
    except (OSError, subprocess.SubprocessError):
        return False


def generate_unit_file(
    exec_path: Optional[str] = None,
    extra_env: Optional[dict] = None,
) -> str:
    """Generate the systemd unit file as a string.

    Args:
        exec_path: Override the passbridge executable path.
        extra_env: Additional environment variables.

    Returns:
        str: Complete unit file content.
    """
    exec_cmd = exec_path or "passbridge"
    env_lines = ""
    if extra_env:
        for k, v in extra_env.items():
            env_lines += f"Environment={k}={v}\n"

    return f"""[Unit]
Description=passbridge read-only password store bridge
After=gpg-agent.socket

[Service]
Type=simple
ExecStart={exec_cmd} serve
ExecReload=/bin/kill -USR1 $MAINPID
Restart=on-failure
RestartSec=10

NoNewPrivileges=true
ProtectSystem=strict
ProtectHome=read-only
ReadWritePaths=%h/.passbridge %h/.gnupg
PrivateTmp=true
ProtectKernelTunables=true
ProtectControlGroups=true

Environment=PYTHONUNBUFFERED=1
{env_lines}
[Install]
WantedBy=default.target
"""


def install_unit(
    unit_dir: Optional[Path] = None,
    exec_path: Optional[str] = None,
    enable: bool = False,
) -> Path:
    """Write the unit file and reload systemd.

    Args:
        unit_dir: Target directory for the unit file.
        exec_path: Executable used in ExecStart.
        enable: Also enable and start the service.

    Returns:
        Path to the written unit file.
    """
    target = unit_dir or SYSTEMD_USER_DIR
    target.mkdir(parents=True, exist_ok=True)
    unit_path = target / SERVICE_NAME
    unit_path.write_text(generate_unit_file(exec_path), encoding="utf-8")
    logger.info("Installed %s", unit_path)

    _systemctl("daemon-reload")
    if enable:
        r = _systemctl("enable", "--now", SERVICE_NAME)
        if r.returncode != 0:
            logger.error("Failed to enable %s: %s", SERVICE_NAME, r.stderr.strip())
    return unit_path
