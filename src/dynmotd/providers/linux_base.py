from __future__ import annotations

import os
import pwd
import shlex
import socket
import struct
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Tuple

from dynmotd.core.models import LoginRecord, Reading, SourceUnavailable

_UTMP_FORMAT = "<h2xi32s4s32s256shhiii4i20s"
_UTMP_RECORD_SIZE = struct.calcsize(_UTMP_FORMAT)
_USER_PROCESS = 7

_DMI_FIELDS = ("sys_vendor", "product_name", "bios_vendor", "board_vendor")


def _unavailable(path: Path | str, err: Exception | str) -> SourceUnavailable:
    reason = err if isinstance(err, str) else (getattr(err, "strerror", None) or str(err))
    return SourceUnavailable(source=str(path), reason=str(reason))


def _decode_mount_field(value: str) -> str:
    """Decode the octal escapes (``\\040`` etc.) used in ``/proc/mounts``."""
    if "\\" not in value:
        return value
    out: list[str] = []
    index = 0
    while index < len(value):
        chunk = value[index:index + 4]
        if len(chunk) == 4 and chunk[0] == "\\" and chunk[1:].isdigit():
            out.append(chr(int(chunk[1:], 8)))
            index += 4
        else:
            out.append(value[index])
            index += 1
    return "".join(out)


def _parse_key_values(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines with shell quoting (os-release format)."""
    data: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw_value = line.partition("=")
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip("\"'")]
        data[key.strip()] = " ".join(parts)
    return data


def _cstr(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


class LinuxSourceReader:
    """Read-only access to Linux pseudo-files and system calls.

    Every accessor returns parsed but untyped data, or a
    :class:`SourceUnavailable` marker when the source is missing or
    unreadable. Accessors never raise for a single bad source.

    Paths are resolved under ``root`` and system calls are injectable so the
    reader can be pointed at a fake tree in tests.
    """

    def __init__(
        self,
        root: Path | str = Path("/"),
        *,
        uname: Callable[[], Any] = os.uname,
        gethostname: Callable[[], str] = socket.gethostname,
        statvfs: Callable[[str], Any] = os.statvfs,
        environ: Mapping[str, str] | None = None,
        ttyname: Callable[[], str] | None = None,
    ) -> None:
        self.root = Path(root)
        self._uname = uname
        self._gethostname = gethostname
        self._statvfs = statvfs
        self._environ = os.environ if environ is None else environ
        self._ttyname = ttyname or (lambda: os.ttyname(0))

    def _path(self, relative: str) -> Path:
        return self.root / relative.lstrip("/")

    def _read_text(self, relative: str) -> Reading[str]:
        path = self._path(relative)
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as err:
            return _unavailable(path, err)

    def _read_first_line(self, relative: str) -> Reading[str]:
        text = self._read_text(relative)
        if isinstance(text, SourceUnavailable):
            return text
        line = text.strip().splitlines()[0].strip() if text.strip() else ""
        if not line:
            return _unavailable(self._path(relative), "empty")
        return line

    def uptime_seconds(self) -> Reading[float]:
        """Return seconds since boot from ``/proc/uptime``."""
        text = self._read_text("/proc/uptime")
        if isinstance(text, SourceUnavailable):
            return text
        fields = text.split()
        try:
            return float(fields[0])
        except (IndexError, ValueError):
            return _unavailable(self._path("/proc/uptime"), "unparseable")

    def os_release(self) -> Reading[Dict[str, str]]:
        """Return release metadata as os-release style keys.

        ``/etc/redhat-release`` wins when present, then ``/etc/os-release``
        and ``/usr/lib/os-release``.
        """
        redhat = self._read_first_line("/etc/redhat-release")
        if not isinstance(redhat, SourceUnavailable):
            name, sep, version = redhat.partition(" release ")
            if sep:
                return {"NAME": name.strip(), "VERSION_ID": version.strip()}

        last: SourceUnavailable | None = None
        for candidate in ("/etc/os-release", "/usr/lib/os-release"):
            text = self._read_text(candidate)
            if isinstance(text, SourceUnavailable):
                last = text
                continue
            data = _parse_key_values(text)
            if data:
                return data
            last = _unavailable(self._path(candidate), "empty")
        return last or _unavailable("/etc/os-release", "missing")

    def kernel_release(self) -> Reading[str]:
        release = self._read_first_line("/proc/sys/kernel/osrelease")
        if not isinstance(release, SourceUnavailable):
            return release
        try:
            return str(self._uname().release)
        except (AttributeError, OSError) as err:
            return _unavailable("uname", err)

    def hostname(self) -> Reading[str]:
        name = self._read_first_line("/proc/sys/kernel/hostname")
        if not isinstance(name, SourceUnavailable):
            return name
        try:
            value = self._gethostname().strip()
        except OSError as err:
            return _unavailable("gethostname", err)
        return value or _unavailable("gethostname", "empty")

    def machine(self) -> Reading[str]:
        try:
            return str(self._uname().machine)
        except (AttributeError, OSError) as err:
            return _unavailable("uname", err)

    def cpuinfo(self) -> Reading[List[Dict[str, str]]]:
        """Return ``/proc/cpuinfo`` as a list of blank-line separated blocks."""
        text = self._read_text("/proc/cpuinfo")
        if isinstance(text, SourceUnavailable):
            return text
        blocks: list[dict[str, str]] = []
        current: dict[str, str] = {}
        for line in text.splitlines():
            if not line.strip():
                if current:
                    blocks.append(current)
                    current = {}
                continue
            key, sep, value = line.partition(":")
            if not sep:
                continue
            current[key.strip()] = value.strip()
        if current:
            blocks.append(current)
        if not blocks:
            return _unavailable(self._path("/proc/cpuinfo"), "empty")
        return blocks

    def meminfo(self) -> Reading[Dict[str, int]]:
        """Return ``/proc/meminfo`` counters converted to bytes."""
        text = self._read_text("/proc/meminfo")
        if isinstance(text, SourceUnavailable):
            return text
        data: dict[str, int] = {}
        for line in text.splitlines():
            key, _, raw_value = line.partition(":")
            value = raw_value.strip().split()
            if not value:
                continue
            try:
                amount = int(value[0])
            except ValueError:
                continue
            if len(value) > 1 and value[1].lower() == "kb":
                amount *= 1024
            data[key.strip()] = amount
        if not data:
            return _unavailable(self._path("/proc/meminfo"), "empty")
        return data

    def mounts(self) -> Reading[List[Tuple[str, str, str]]]:
        """Return ``(device, mount_point, fs_type)`` in mount-table order."""
        text = self._read_text("/proc/mounts")
        if isinstance(text, SourceUnavailable):
            return text
        entries: list[tuple[str, str, str]] = []
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 3:
                continue
            entries.append((
                _decode_mount_field(fields[0]),
                _decode_mount_field(fields[1]),
                fields[2],
            ))
        return entries

    def filesystem_usage(self, mount_point: str) -> Reading[Tuple[int, int]]:
        """Return ``(used_bytes, total_bytes)`` for a mount point."""
        try:
            stat = self._statvfs(mount_point)
        except OSError as err:
            return _unavailable(mount_point, err)
        block_size = int(stat.f_frsize)
        total = block_size * int(stat.f_blocks)
        used = block_size * max(int(stat.f_blocks) - int(stat.f_bfree), 0)
        return used, total

    def login_records(self) -> Reading[List[LoginRecord]]:
        """Decode active login records from the binary utmp file."""
        last: SourceUnavailable | None = None
        for candidate in ("/run/utmp", "/var/run/utmp"):
            path = self._path(candidate)
            try:
                payload = path.read_bytes()
            except OSError as err:
                last = _unavailable(path, err)
                continue
            records: list[LoginRecord] = []
            usable = len(payload) - len(payload) % _UTMP_RECORD_SIZE
            for (ut_type, ut_pid, line, _id, user, host, *_rest) in struct.iter_unpack(
                _UTMP_FORMAT, payload[:usable]
            ):
                if ut_type != _USER_PROCESS:
                    continue
                name = _cstr(user)
                if not name:
                    continue
                records.append(LoginRecord(user=name, line=_cstr(line), host=_cstr(host), pid=ut_pid))
            return records
        return last or _unavailable("/run/utmp", "missing")

    def session_user(self) -> Reading[str]:
        for key in ("USER", "LOGNAME"):
            value = self._environ.get(key, "").strip()
            if value:
                return value
        try:
            return pwd.getpwuid(os.getuid()).pw_name
        except (KeyError, OSError) as err:
            return _unavailable("passwd", err)

    def ssh_origin(self) -> Reading[str]:
        for key in ("SSH_CONNECTION", "SSH_CLIENT"):
            fields = self._environ.get(key, "").split()
            if fields:
                return fields[0]
        return _unavailable("SSH_CONNECTION", "not set")

    def controlling_tty(self) -> Reading[str]:
        try:
            name = self._ttyname()
        except OSError as err:
            return _unavailable("ttyname", err)
        return name[len("/dev/"):] if name.startswith("/dev/") else name

    def dmi_strings(self) -> Reading[Tuple[str, ...]]:
        values: list[str] = []
        for name in _DMI_FIELDS:
            value = self._read_first_line(f"/sys/class/dmi/id/{name}")
            if not isinstance(value, SourceUnavailable):
                values.append(value)
        if not values:
            return _unavailable("/sys/class/dmi/id", "missing")
        return tuple(values)

    def hypervisor_type(self) -> Reading[str]:
        return self._read_first_line("/sys/hypervisor/type")

    def container_hints(self) -> Reading[Tuple[str, ...]]:
        """Collect markers that reveal a container runtime.

        An empty tuple means the markers were checked and none was found;
        :class:`SourceUnavailable` means ``/proc/1/cgroup`` itself could not be
        read and nothing else was found either.
        """
        hints: list[str] = []
        if self._path("/.dockerenv").exists():
            hints.append("docker")
        if self._path("/run/.containerenv").exists():
            hints.append("containerenv")
        marker = self._read_first_line("/run/systemd/container")
        if not isinstance(marker, SourceUnavailable):
            hints.append(marker)
        env_marker = self._environ.get("container", "").strip()
        if env_marker:
            hints.append(env_marker)
        cgroup = self._read_text("/proc/1/cgroup")
        if isinstance(cgroup, SourceUnavailable):
            return tuple(hints) if hints else cgroup
        for needle in ("docker", "lxc", "libpod", "kubepods"):
            if needle in cgroup:
                hints.append("podman" if needle == "libpod" else needle)
        return tuple(hints)
