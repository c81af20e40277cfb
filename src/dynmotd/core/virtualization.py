"""Rule-based virtualization detection.

Rules are evaluated in order and the first match wins: container runtimes,
then named hypervisors, then the generic ``virtualized`` catch-all. A host
matching nothing is reported as bare metal, so :func:`classify` always
returns exactly one label.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Sequence, Tuple

from .models import Virtualization


@dataclass(frozen=True)
class VirtSignals:
    """Signals consulted by the classifier; every field may be empty.

    Attributes:
        cpu_vendor: ``vendor_id`` from cpuinfo (e.g. ``GenuineIntel``, ``KVMKVMKVM``)
        cpu_flags: CPU feature flags; ``hypervisor`` marks a guest
        dmi: DMI strings (system/board/BIOS vendor, product name)
        hypervisor_type: content of ``/sys/hypervisor/type``
        container_hints: container markers found on the host
        kernel_release: kernel release string
    """
    cpu_vendor: str = ""
    cpu_flags: FrozenSet[str] = field(default_factory=frozenset)
    dmi: Tuple[str, ...] = ()
    hypervisor_type: str = ""
    container_hints: Tuple[str, ...] = ()
    kernel_release: str = ""

    def dmi_contains(self, *needles: str) -> bool:
        haystack = " ".join(self.dmi).lower()
        return any(needle in haystack for needle in needles)

    def has_hint(self, *needles: str) -> bool:
        haystack = " ".join(self.container_hints).lower()
        return any(needle in haystack for needle in needles)


Rule = Tuple[Virtualization, Callable[[VirtSignals], bool]]


RULES: Sequence[Rule] = (
    (Virtualization.DOCKER, lambda s: s.has_hint("docker")),
    (Virtualization.PODMAN, lambda s: s.has_hint("podman", "containerenv")),
    (Virtualization.LXC, lambda s: s.has_hint("lxc")),
    (Virtualization.WSL, lambda s: "microsoft" in s.kernel_release.lower()),
    (Virtualization.VMWARE, lambda s: s.cpu_vendor == "VMwareVMware" or s.dmi_contains("vmware")),
    (Virtualization.VIRTUALBOX, lambda s: s.cpu_vendor == "VBoxVBoxVBox" or s.dmi_contains("virtualbox", "innotek")),
    (Virtualization.HYPERV, lambda s: s.cpu_vendor == "Microsoft Hv" or s.dmi_contains("microsoft corporation")),
    (Virtualization.PARALLELS, lambda s: s.cpu_vendor.startswith("prl hyperv") or s.dmi_contains("parallels")),
    (Virtualization.BHYVE, lambda s: s.cpu_vendor == "bhyve bhyve" or s.dmi_contains("bhyve")),
    (Virtualization.XEN, lambda s: s.cpu_vendor.startswith("XenVMM") or s.hypervisor_type.lower() == "xen" or s.dmi_contains("xen")),
    (Virtualization.KVM, lambda s: s.cpu_vendor.startswith("KVMKVMKVM") or s.dmi_contains("kvm", "amazon ec2", "google compute engine")),
    (Virtualization.QEMU, lambda s: s.cpu_vendor.startswith("TCGTCGTCG") or s.dmi_contains("qemu")),
    (Virtualization.VIRTUALIZED, lambda s: "hypervisor" in s.cpu_flags),
)


def classify(signals: VirtSignals, rules: Sequence[Rule] = RULES) -> Virtualization:
    """Return the first matching virtualization label, or bare metal."""
    for label, predicate in rules:
        if predicate(signals):
            return label
    return Virtualization.BARE_METAL
