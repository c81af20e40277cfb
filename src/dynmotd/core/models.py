from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Tuple, TypeVar, Union


class Virtualization(str, Enum):
    """Virtualization labels reported for the host."""
    BARE_METAL = "bare-metal"
    KVM = "kvm"
    QEMU = "qemu"
    VMWARE = "vmware"
    VIRTUALBOX = "virtualbox"
    HYPERV = "hyper-v"
    XEN = "xen"
    PARALLELS = "parallels"
    BHYVE = "bhyve"
    DOCKER = "docker"
    PODMAN = "podman"
    LXC = "lxc"
    WSL = "wsl"
    VIRTUALIZED = "virtualized"
    UNKNOWN = "unknown"


UNKNOWN = "unknown"
LOCAL_ORIGIN = "local"


@dataclass(frozen=True)
class SourceUnavailable:
    """Marker returned by a reader when one fact source cannot be read.

    Attributes:
        source: Name of the source (usually the pseudo-file path)
        reason: Short human-readable reason (missing, permission denied, ...)
    """
    source: str
    reason: str


T = TypeVar("T")
Reading = Union[T, SourceUnavailable]


@dataclass(frozen=True)
class LoginRecord:
    user: str
    line: str
    host: str
    pid: int


@dataclass(frozen=True)
class OsIdentity:
    name: str = UNKNOWN
    version: str = ""
    codename: str = ""

    @property
    def label(self) -> str:
        return " ".join(part for part in (self.name, self.version) if part)


@dataclass(frozen=True)
class CoreInfo:
    index: int
    model_name: str
    mhz: float | None = None


@dataclass(frozen=True)
class CpuInfo:
    """CPU description.

    Attributes:
        model_name: Marketing name, or the ARM catalog label on ARM hosts
        core_count: Number of logical processors listed by the kernel
        architecture: Machine name from uname (x86_64, aarch64, ...)
        cores: Per-processor detail, used by verbose rendering
    """
    model_name: str = UNKNOWN
    core_count: int = 0
    architecture: str = UNKNOWN
    cores: Tuple[CoreInfo, ...] = ()


@dataclass(frozen=True)
class UsageFigure:
    used_bytes: int = 0
    total_bytes: int = 0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100


@dataclass(frozen=True)
class DiskUsage(UsageFigure):
    mount_point: str = ""
    filesystem_type: str = ""


@dataclass(frozen=True)
class UserSession:
    name: str = UNKNOWN
    origin: str = LOCAL_ORIGIN

    @property
    def is_remote(self) -> bool:
        return self.origin != LOCAL_ORIGIN


@dataclass(frozen=True)
class FactSet:
    """Immutable snapshot of the host facts collected for one banner."""
    timestamp: datetime
    hostname: str
    uptime: timedelta | None = None
    os_identity: OsIdentity = field(default_factory=OsIdentity)
    kernel_version: str = UNKNOWN
    cpu: CpuInfo = field(default_factory=CpuInfo)
    virtualization: Virtualization = Virtualization.UNKNOWN
    memory: UsageFigure = field(default_factory=UsageFigure)
    swap: UsageFigure = field(default_factory=UsageFigure)
    current_user: UserSession = field(default_factory=UserSession)
    login_count: int = 0
    disks: Tuple[DiskUsage, ...] = ()
