from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Sequence

from . import arm_catalog
from .config import MotdSettings
from .errors import FatalAssemblyError
from .models import (
    LOCAL_ORIGIN,
    UNKNOWN,
    CoreInfo,
    CpuInfo,
    DiskUsage,
    FactSet,
    LoginRecord,
    OsIdentity,
    SourceUnavailable,
    UsageFigure,
    UserSession,
    Virtualization,
)
from .virtualization import VirtSignals, classify

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[str], None]

_ARM_MACHINES = ("aarch64", "arm64", "arm")


def _is_unavailable(value: Any, fact: str) -> bool:
    """Log and report whether a reading is a :class:`SourceUnavailable`."""
    if isinstance(value, SourceUnavailable):
        logger.debug("%s unavailable (%s: %s); using sentinel", fact, value.source, value.reason)
        return True
    return False


def _clamped_usage(total: int, free: int) -> UsageFigure:
    total = max(total, 0)
    used = min(max(total - free, 0), total)
    return UsageFigure(used_bytes=used, total_bytes=total)


def memory_usage(meminfo: Dict[str, int]) -> UsageFigure:
    """Used memory is ``MemTotal - MemAvailable``.

    ``MemFree`` is used only on kernels that do not publish ``MemAvailable``.
    """
    total = meminfo.get("MemTotal", 0)
    available = meminfo.get("MemAvailable")
    if available is None:
        available = meminfo.get("MemFree", 0)
    return _clamped_usage(total, available)


def swap_usage(meminfo: Dict[str, int]) -> UsageFigure:
    return _clamped_usage(meminfo.get("SwapTotal", 0), meminfo.get("SwapFree", 0))


def os_identity(release: Dict[str, str]) -> OsIdentity:
    name = release.get("NAME") or release.get("ID") or UNKNOWN
    version = release.get("VERSION_ID") or release.get("VERSION") or ""
    codename = release.get("VERSION_CODENAME") or ""
    return OsIdentity(name=name, version=version, codename=codename)


def _is_arm(machine: str) -> bool:
    return machine.lower().startswith(_ARM_MACHINES)


def _parse_mhz(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def cpu_info(blocks: List[Dict[str, str]], machine: str) -> CpuInfo:
    """Normalize cpuinfo blocks into a :class:`CpuInfo`.

    On ARM machines the model is resolved from ``CPU implementer`` and
    ``CPU part`` through the ARM catalog. Elsewhere the first ``model name``
    is used.
    """
    processors = [block for block in blocks if "processor" in block]
    merged: Dict[str, str] = {}
    for block in blocks:
        for key, value in block.items():
            merged.setdefault(key, value)

    arm_label: str | None = None
    if _is_arm(machine):
        implementer = arm_catalog.parse_code(merged.get("CPU implementer"))
        part = arm_catalog.parse_code(merged.get("CPU part"))
        if implementer is not None and part is not None:
            arm_label = arm_catalog.describe(implementer, part)

    model_name = arm_label or merged.get("model name") or merged.get("Processor") or merged.get("cpu model") or UNKNOWN

    cores: list[CoreInfo] = []
    for position, block in enumerate(processors):
        try:
            index = int(block["processor"])
        except ValueError:
            index = position
        core_model = block.get("model name") or model_name
        if _is_arm(machine):
            implementer = arm_catalog.parse_code(block.get("CPU implementer"))
            part = arm_catalog.parse_code(block.get("CPU part"))
            if implementer is not None and part is not None:
                core_model = arm_catalog.describe(implementer, part)
        cores.append(CoreInfo(index=index, model_name=core_model, mhz=_parse_mhz(block.get("cpu MHz"))))

    return CpuInfo(
        model_name=model_name,
        core_count=len(processors),
        architecture=machine or UNKNOWN,
        cores=tuple(cores),
    )


def _origin_from_records(records: Sequence[LoginRecord], tty: str) -> str | None:
    for record in records:
        if record.line == tty and record.host:
            return record.host
    return None


class _Assembly:
    """Mutable scratch state for one assembly pass; frozen into a FactSet."""

    def __init__(self, reader: Any, settings: MotdSettings, now: Callable[[], datetime]) -> None:
        self.reader = reader
        self.settings = settings
        self.now = now
        self.values: Dict[str, Any] = {}
        self.cpu_blocks: List[Dict[str, str]] = []
        self.kernel_release = ""

    def time(self) -> None:
        self.values["timestamp"] = self.now()

    def uptime(self) -> None:
        seconds = self.reader.uptime_seconds()
        if _is_unavailable(seconds, "uptime"):
            return
        self.values["uptime"] = timedelta(seconds=max(int(seconds), 0))

    def os_identity(self) -> None:
        release = self.reader.os_release()
        if _is_unavailable(release, "os release"):
            return
        self.values["os_identity"] = os_identity(release)

    def kernel(self) -> None:
        release = self.reader.kernel_release()
        if _is_unavailable(release, "kernel release"):
            return
        self.kernel_release = release
        self.values["kernel_version"] = release

    def hostname(self) -> None:
        name = self.reader.hostname()
        if isinstance(name, SourceUnavailable):
            raise FatalAssemblyError(f"cannot determine host name ({name.source}: {name.reason})")
        self.values["hostname"] = name

    def cpu(self) -> None:
        machine = self.reader.machine()
        if _is_unavailable(machine, "machine"):
            machine = ""
        blocks = self.reader.cpuinfo()
        if _is_unavailable(blocks, "cpuinfo"):
            self.values["cpu"] = CpuInfo(architecture=machine or UNKNOWN)
            return
        self.cpu_blocks = blocks
        self.values["cpu"] = cpu_info(blocks, machine)

    def virtualization(self) -> None:
        readings = {
            "dmi": self.reader.dmi_strings(),
            "hypervisor": self.reader.hypervisor_type(),
            "containers": self.reader.container_hints(),
        }
        available = {
            name: value for name, value in readings.items()
            if not _is_unavailable(value, f"virtualization {name}")
        }
        if not available and not self.cpu_blocks and not self.kernel_release:
            self.values["virtualization"] = Virtualization.UNKNOWN
            return
        first = self.cpu_blocks[0] if self.cpu_blocks else {}
        signals = VirtSignals(
            cpu_vendor=first.get("vendor_id", ""),
            cpu_flags=frozenset((first.get("flags") or first.get("Features") or "").split()),
            dmi=tuple(available.get("dmi", ())),
            hypervisor_type=available.get("hypervisor", ""),
            container_hints=tuple(available.get("containers", ())),
            kernel_release=self.kernel_release,
        )
        self.values["virtualization"] = classify(signals)

    def memory_and_swap(self) -> None:
        meminfo = self.reader.meminfo()
        if _is_unavailable(meminfo, "meminfo"):
            return
        self.values["memory"] = memory_usage(meminfo)
        self.values["swap"] = swap_usage(meminfo)

    def user_session(self) -> None:
        user = self.reader.session_user()
        if _is_unavailable(user, "session user"):
            user = UNKNOWN

        records = self.reader.login_records()
        if _is_unavailable(records, "login records"):
            records = []
        else:
            self.values["login_count"] = len(records)

        origin = self.reader.ssh_origin()
        if isinstance(origin, SourceUnavailable):
            origin = LOCAL_ORIGIN
            tty = self.reader.controlling_tty()
            if not isinstance(tty, SourceUnavailable):
                origin = _origin_from_records(records, tty) or LOCAL_ORIGIN
        self.values["current_user"] = UserSession(name=user, origin=origin)

    def disks(self) -> None:
        mounts = self.reader.mounts()
        if _is_unavailable(mounts, "mount table"):
            return
        disks: list[DiskUsage] = []
        for _device, mount_point, fs_type in mounts:
            if not self.settings.reports_filesystem(fs_type):
                continue
            usage = self.reader.filesystem_usage(mount_point)
            if _is_unavailable(usage, f"usage of {mount_point}"):
                continue
            used, total = usage
            disks.append(
                DiskUsage(
                    used_bytes=min(used, total),
                    total_bytes=total,
                    mount_point=mount_point,
                    filesystem_type=fs_type,
                )
            )
        self.values["disks"] = tuple(disks)


def assemble_facts(
    reader: Any,
    *,
    settings: MotdSettings | None = None,
    now: Callable[[], datetime] | None = None,
    progress: ProgressReporter | None = None,
) -> FactSet:
    """Collect every fact category in a fixed order and freeze the result.

    Order: time, uptime, OS identity, kernel, hostname, CPU, virtualization,
    memory and swap, user/session, disks. A category whose source is
    unavailable keeps its sentinel value and assembly continues.

    Args:
        reader: Source reader (see ``LinuxSourceReader``)
        settings: Resolved settings; only the disk filters are consulted
        now: Clock returning an aware local datetime
        progress: Optional callback receiving one message per step

    Returns:
        The assembled :class:`FactSet`

    Raises:
        FatalAssemblyError: If the host name cannot be determined by any means
    """
    state = _Assembly(
        reader,
        settings or MotdSettings(),
        now or (lambda: datetime.now().astimezone()),
    )
    steps = (
        ("Reading clock", state.time),
        ("Reading uptime", state.uptime),
        ("Reading OS release", state.os_identity),
        ("Reading kernel version", state.kernel),
        ("Reading host name", state.hostname),
        ("Reading CPU description", state.cpu),
        ("Detecting virtualization", state.virtualization),
        ("Reading memory counters", state.memory_and_swap),
        ("Reading login sessions", state.user_session),
        ("Measuring disk usage", state.disks),
    )
    for message, step in steps:
        if progress:
            progress(message)
        step()
    return FactSet(**state.values)
