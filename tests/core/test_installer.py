from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from dynmotd.core import installer
from dynmotd.core.errors import InstallError


def test_install_writes_executable_script(tmp_path: Path) -> None:
    target = installer.install(tmp_path)

    assert target == tmp_path / "dynmotd.sh"
    assert target.read_text() == installer.LOGIN_SCRIPT
    assert target.read_text().startswith("#!/bin/sh\n")
    assert stat.S_IMODE(target.stat().st_mode) == 0o755
    assert installer.status(tmp_path) == installer.InstallStatus(script_path=target, installed=True)


def test_install_overwrites_existing_script(tmp_path: Path) -> None:
    (tmp_path / "dynmotd.sh").write_text("old")

    installer.install(tmp_path)

    assert (tmp_path / "dynmotd.sh").read_text() == installer.LOGIN_SCRIPT


def test_install_requires_profile_dir(tmp_path: Path) -> None:
    with pytest.raises(InstallError, match="not found"):
        installer.install(tmp_path / "missing")


@pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores directory permissions")
def test_install_into_read_only_dir(tmp_path: Path) -> None:
    tmp_path.chmod(0o555)
    try:
        with pytest.raises(InstallError, match="Cannot write"):
            installer.install(tmp_path)
    finally:
        tmp_path.chmod(0o755)


def test_uninstall(tmp_path: Path) -> None:
    assert installer.uninstall(tmp_path) is False

    installer.install(tmp_path)

    assert installer.uninstall(tmp_path) is True
    assert not (tmp_path / "dynmotd.sh").exists()
    assert installer.status(tmp_path).installed is False
