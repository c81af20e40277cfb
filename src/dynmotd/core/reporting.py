from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Sequence, Tuple

from rich.console import Console
from rich.text import Text

from .models import UNKNOWN, FactSet, UsageFigure

GIB = 1024 ** 3

_UNITS: Tuple[Tuple[int, str], ...] = (
    (1024 ** 5, "PB"),
    (1024 ** 4, "TB"),
    (1024 ** 3, "GB"),
    (1024 ** 2, "MB"),
    (1024, "KB"),
    (1, "B"),
)

HEADING_STYLE = "bold cyan"
LABEL_STYLE = "bright_white"
VALUE_STYLE = "bright_yellow"
KERNEL_STYLE = "bright_green"
CPU_STYLE = "bright_magenta"
USER_STYLE = "bright_cyan"
DEFAULT_FAREWELL = "Have a nice day!"
TAB_SIZE = 8


@dataclass(frozen=True)
class RenderOptions:
    """Formatting switches for :func:`render_motd`.

    Attributes:
        color: Emit ANSI color sequences
        verbose: Append architecture, virtualization and per-core lines
        ascii_art: Optional art printed above the welcome line
        farewell: Closing line; blank falls back to the default
    """
    color: bool = False
    verbose: bool = False
    ascii_art: str | None = None
    farewell: str = DEFAULT_FAREWELL


def fixed2(value: float) -> str:
    """Format with two decimals, rounding half up."""
    return str(Decimal(repr(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_timestamp(moment: datetime) -> str:
    """Return ``YYYY-MM-DD HH:MM:SS +HH:MM``."""
    offset = moment.utcoffset() or timedelta(0)
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, mins = divmod(abs(minutes), 60)
    return f"{moment:%Y-%m-%d %H:%M:%S} {sign}{hours:02d}:{mins:02d}"


def format_uptime(uptime: timedelta | None) -> str:
    if uptime is None:
        return UNKNOWN
    secs = max(int(uptime.total_seconds()), 0)
    days, secs = divmod(secs, 86400)
    hours, secs = divmod(secs, 3600)
    minutes, secs = divmod(secs, 60)
    clock = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    if days == 1:
        return f"1 day, {clock}"
    if days:
        return f"{days} days, {clock}"
    return clock


def format_memory(usage: UsageFigure) -> str:
    """Render used/total in GB with the usage percentage."""
    return (
        f"{fixed2(usage.used_bytes / GIB)}/{fixed2(usage.total_bytes / GIB)} GB "
        f"({fixed2(usage.percent)}%)"
    )


def best_unit(size: int) -> Tuple[int, str]:
    for scale, suffix in _UNITS:
        if size >= scale:
            return scale, suffix
    return 1, "B"


def format_disk(usage: UsageFigure) -> str:
    """Render used/total scaled to the unit of the larger figure."""
    scale, suffix = best_unit(max(usage.used_bytes, usage.total_bytes))
    return (
        f"{fixed2(usage.used_bytes / scale)} {suffix}/{fixed2(usage.total_bytes / scale)} {suffix} "
        f"({fixed2(usage.percent)}%)"
    )


def _styled(*parts: Tuple[str, str | None]) -> Text:
    text = Text()
    for content, style in parts:
        text.append(content, style=style)
    return text


def _items(facts: FactSet, verbose: bool) -> List[Tuple[str, Text]]:
    user = facts.current_user
    where = f"from {user.origin}" if user.is_remote else user.origin
    cpu = facts.cpu
    items: List[Tuple[str, Text]] = [
        ("Current time (TZ):", Text(format_timestamp(facts.timestamp), style=VALUE_STYLE)),
        ("System uptime:", Text(format_uptime(facts.uptime), style=VALUE_STYLE)),
        ("Operating system:", Text(facts.os_identity.label or UNKNOWN, style=VALUE_STYLE)),
        ("Kernel version:", Text(facts.kernel_version, style=KERNEL_STYLE)),
        ("Host name:", Text(facts.hostname, style=VALUE_STYLE)),
        ("CPU:", _styled(
            (cpu.model_name, CPU_STYLE),
            (" (", None),
            (str(cpu.core_count), CPU_STYLE),
            (" cores)", None),
        )),
        ("Memory used/total:", Text(format_memory(facts.memory))),
        ("Swap used/total:", Text(format_memory(facts.swap))),
        ("Current user:", _styled((user.name, USER_STYLE), (" (", None), (where, USER_STYLE), (")", None))),
        ("Login user count:", Text(str(facts.login_count), style=USER_STYLE)),
    ]
    for disk in facts.disks:
        items.append((
            f"Disk usage ({disk.filesystem_type}):",
            _styled((disk.mount_point, VALUE_STYLE), (" => ", None), (format_disk(disk), None)),
        ))
    if verbose:
        items.append(("Architecture:", Text(cpu.architecture, style=CPU_STYLE)))
        items.append(("Virtualization:", Text(facts.virtualization.value, style=VALUE_STYLE)))
        if facts.os_identity.codename:
            items.append(("OS codename:", Text(facts.os_identity.codename, style=VALUE_STYLE)))
        for core in cpu.cores:
            detail = core.model_name if core.mhz is None else f"{core.model_name} @ {fixed2(core.mhz)} MHz"
            items.append((f"Core {core.index}:", Text(detail, style=CPU_STYLE)))
    return items


def _aligned(items: Sequence[Tuple[str, Text]]) -> List[Text]:
    width = max((len(label) for label, _ in items), default=0)
    lines: List[Text] = []
    for label, value in items:
        line = Text(label.ljust(width), style=LABEL_STYLE)
        line.append(" ")
        line.append_text(value)
        lines.append(line)
    return lines


def build_lines(facts: FactSet, welcome_text: str, *, options: RenderOptions) -> List[Text]:
    """Return the banner as styled lines, in output order."""
    lines: List[Text] = []
    if options.ascii_art:
        lines.append(Text())
        lines.extend(Text(row) for row in options.ascii_art.rstrip("\n").splitlines())
        lines.append(Text())
    lines.append(Text(welcome_text, style=HEADING_STYLE))
    lines.append(Text())
    lines.extend(_aligned(_items(facts, options.verbose)))
    lines.append(Text())
    farewell = options.farewell if options.farewell and options.farewell.strip() else DEFAULT_FAREWELL
    lines.append(Text(farewell, style=HEADING_STYLE))
    for line in lines:
        line.expand_tabs(TAB_SIZE)
    return lines


def _to_ansi(line: Text) -> str:
    console = Console(
        force_terminal=True,
        color_system="standard",
        no_color=False,
        highlight=False,
        soft_wrap=True,
        tab_size=TAB_SIZE,
        width=max(len(line.plain), 80),
    )
    with console.capture() as capture:
        console.print(line, end="")
    return capture.get()


def render_motd(facts: FactSet, welcome_text: str, *, options: RenderOptions) -> str:
    """Render the banner as text.

    The color and plain renders come from the same styled lines, so removing
    the ANSI sequences from a colored render gives the plain render.
    """
    lines = build_lines(facts, welcome_text, options=options)
    if options.color:
        return "\n".join(_to_ansi(line) for line in lines)
    return "\n".join(line.plain for line in lines)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return str(value)


def to_json(facts: FactSet) -> str:
    """Serialize a fact set for ``dynmotd facts --format json``."""
    payload = asdict(facts)
    payload["virtualization"] = facts.virtualization.value
    return json.dumps(payload, indent=2, default=_json_default)
