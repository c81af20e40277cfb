from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import InstallError

logger = logging.getLogger(__name__)

PROFILE_DIR = Path("/etc/profile.d")
SCRIPT_NAME = "dynmotd.sh"

LOGIN_SCRIPT = """#!/bin/sh
# This script is auto-generated by 'dynmotd install'.
# It prints the dynmotd banner on login.
if [ -x "$(command -v dynmotd)" ]; then
    dynmotd
fi
"""


@dataclass(frozen=True)
class InstallStatus:
    script_path: Path
    installed: bool


def script_path(profile_dir: Path = PROFILE_DIR) -> Path:
    return Path(profile_dir) / SCRIPT_NAME


def install(profile_dir: Path = PROFILE_DIR) -> Path:
    """Write the login script into ``profile_dir`` and make it executable.

    Raises:
        InstallError: If the directory is missing or the script cannot be written
    """
    profile_dir = Path(profile_dir)
    if not profile_dir.is_dir():
        raise InstallError(f"Directory '{profile_dir}' not found, cannot install system-wide script.")
    target = script_path(profile_dir)
    try:
        target.write_text(LOGIN_SCRIPT)
        target.chmod(0o755)
    except OSError as exc:
        raise InstallError(f"Cannot write {target}: {exc.strerror or exc}") from exc
    logger.debug("Installed login script at %s", target)
    return target


def uninstall(profile_dir: Path = PROFILE_DIR) -> bool:
    """Remove the login script; return whether a script was removed."""
    target = script_path(profile_dir)
    if not target.exists():
        return False
    try:
        target.unlink()
    except OSError as exc:
        raise InstallError(f"Cannot remove {target}: {exc.strerror or exc}") from exc
    logger.debug("Removed login script %s", target)
    return True


def status(profile_dir: Path = PROFILE_DIR) -> InstallStatus:
    target = script_path(profile_dir)
    return InstallStatus(script_path=target, installed=target.exists())
