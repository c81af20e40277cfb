"""Shared fixtures: a fake Linux root and a reader pointed at it."""
from __future__ import annotations

import errno
import os
import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Dict

import pytest

from dynmotd.core import config as cfg
from dynmotd.core.facts import assemble_facts
from dynmotd.providers.linux_base import LinuxSourceReader

UTMP_FORMAT = "<h2xi32s4s32s256shhiii4i20s"
GIB = 1024 ** 3

X86_CPUINFO = """\
processor\t: 0
vendor_id\t: GenuineIntel
model name\t: Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz
cpu MHz\t\t: 2400.000
flags\t\t: fpu vme de pse hypervisor

processor\t: 1
vendor_id\t: GenuineIntel
model name\t: Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz
cpu MHz\t\t: 2399.998
flags\t\t: fpu vme de pse hypervisor

"""

MEMINFO = """\
MemTotal:       16384000 kB
MemFree:         1024000 kB
MemAvailable:    8192000 kB
Buffers:          204800 kB
SwapTotal:       2097152 kB
SwapFree:        1048576 kB
HugePages_Total:       0
"""

MOUNTS = """\
/dev/sda1 / ext4 rw,relatime 0 0
proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0
tmpfs /run tmpfs rw,nosuid,nodev 0 0
/dev/sdb1 /mnt/data\\040disk xfs rw,relatime 0 0
server:/export /srv/nfs nfs4 rw,relatime 0 0
"""

STATVFS: Dict[str, SimpleNamespace] = {
    "/": SimpleNamespace(f_frsize=4096, f_blocks=13107200, f_bfree=9830400),
    "/mnt/data disk": SimpleNamespace(f_frsize=4096, f_blocks=26214400, f_bfree=26214400),
    "/srv/nfs": SimpleNamespace(f_frsize=1024, f_blocks=0, f_bfree=0),
}


def pack_utmp(ut_type: int, user: str = "", line: str = "", host: str = "", pid: int = 100) -> bytes:
    return struct.pack(
        UTMP_FORMAT,
        ut_type,
        pid,
        line.encode(),
        b"",
        user.encode(),
        host.encode(),
        0, 0, 0, 0, 0,
        0, 0, 0, 0,
        b"",
    )


def fake_statvfs(path: str) -> SimpleNamespace:
    try:
        return STATVFS[path]
    except KeyError:
        raise OSError(errno.ENOENT, "No such file or directory", path) from None


def _write(root: Path, relative: str, content: str | bytes) -> None:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content)


@pytest.fixture
def fake_root(tmp_path: Path) -> Path:
    """A fake ``/`` with the pseudo-files of a small x86 QEMU guest."""
    root = tmp_path / "root"
    files: Dict[str, str | bytes] = {
        "proc/uptime": "93784.52 180000.11\n",
        "etc/os-release": 'NAME="Ubuntu"\nVERSION_ID="22.04"\nVERSION_CODENAME=jammy\nID=ubuntu\n',
        "proc/sys/kernel/osrelease": "5.15.0-91-generic\n",
        "proc/sys/kernel/hostname": "web-01\n",
        "proc/cpuinfo": X86_CPUINFO,
        "proc/meminfo": MEMINFO,
        "proc/mounts": MOUNTS,
        "proc/1/cgroup": "0::/init.scope\n",
        "sys/class/dmi/id/sys_vendor": "QEMU\n",
        "sys/class/dmi/id/product_name": "Standard PC (Q35 + ICH9, 2009)\n",
        "run/utmp": b"".join([
            pack_utmp(2, user="reboot", line="~"),
            pack_utmp(7, user="alice", line="pts/0", host="203.0.113.7", pid=2001),
            pack_utmp(7, user="bob", line="tty1", pid=2002),
            pack_utmp(6, user="LOGIN", line="tty2", pid=2003),
            pack_utmp(8, line="pts/3", pid=2004),
        ]),
    }
    for relative, content in files.items():
        _write(root, relative, content)
    return root


@pytest.fixture
def make_reader() -> Callable[..., LinuxSourceReader]:
    """Factory building a reader over a root with fake system calls."""

    def _make(root: Path, **overrides) -> LinuxSourceReader:
        kwargs = {
            "uname": lambda: SimpleNamespace(release="6.1.0-uname", machine="x86_64"),
            "gethostname": lambda: "fallback-host",
            "statvfs": fake_statvfs,
            "environ": {"USER": "alice", "SSH_CONNECTION": "198.51.100.23 52144 10.0.0.5 22"},
            "ttyname": lambda: "/dev/pts/0",
        }
        kwargs.update(overrides)
        return LinuxSourceReader(root, **kwargs)

    return _make


@pytest.fixture
def write_file() -> Callable[[Path, str, str | bytes], None]:
    return _write


@pytest.fixture
def cli_host(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_root: Path, make_reader):
    """Run the CLI against the fake root with isolated configuration."""
    monkeypatch.setattr(cfg, "SYSTEM_CONFIG_DIR", tmp_path / "etc-dynmotd")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("DYNMOTD_CONFIG_DIR", str(tmp_path / "shared"))
    for key in [key for key in os.environ if key.startswith("DYNMOTD__")]:
        monkeypatch.delenv(key)

    now = datetime(2024, 12, 27, 17, 36, 25, tzinfo=timezone(timedelta(hours=8)))
    monkeypatch.setattr("dynmotd.cli.LinuxSourceReader", lambda: make_reader(fake_root))
    monkeypatch.setattr(
        "dynmotd.cli.assemble_facts",
        lambda reader, **kwargs: assemble_facts(reader, now=lambda: now, **kwargs),
    )
    return fake_root
