from __future__ import annotations
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence
import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.pretty import Pretty
from rich.table import Table

from .core import config as cfg
from .core import installer
from .core.errors import ConfigError, FatalAssemblyError, InstallError
from .core.facts import assemble_facts
from .core.models import FactSet
from .core.reporting import RenderOptions, render_motd, to_json
from .core.welcome import resolve_welcome_text
from .providers.linux_base import LinuxSourceReader

app = typer.Typer(
    help="dynmotd – Dynamic message of the day with live host facts.",
    invoke_without_command=True,
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("dynmotd")


@dataclass
class _Options:
    config_files: List[Path] = field(default_factory=list)
    set_kv: List[str] = field(default_factory=list)
    color: Optional[bool] = None


def _configure_logging(debug: bool) -> None:
    """Route the package loggers to stderr through rich."""
    logger.handlers = [RichHandler(console=err_console, show_time=False, show_path=False)]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


def _fail(message: str, code: int) -> typer.Exit:
    err_console.print(message, style="red", markup=False, highlight=False)
    return typer.Exit(code=code)


def _load_settings(options: _Options) -> cfg.MotdSettings:
    try:
        return cfg.load_settings(options.config_files or None, set_kv=options.set_kv, env=os.environ)
    except ConfigError as exc:
        raise _fail(f"Configuration error: {exc}", 2) from exc


def _collect(settings: cfg.MotdSettings) -> FactSet:
    reader = LinuxSourceReader()
    try:
        return assemble_facts(reader, settings=settings, progress=logger.debug)
    except FatalAssemblyError as exc:
        raise _fail(f"dynmotd: {exc}", 1) from exc


def _use_color(flag: Optional[bool], settings: cfg.MotdSettings) -> bool:
    if flag is not None:
        return flag
    if settings.color is not None:
        return settings.color
    return sys.stdout.isatty()


def _summarize_fact_value(value: Any) -> Any:
    """Summarize a fact value for display in tables.

    Sequences of mappings show a count and sample labels; everything else is
    returned as-is.
    """
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        seq = list(value)
        if not seq:
            return "0 object(s)"
        if all(isinstance(item, Mapping) for item in seq):
            labels = [_extract_label(item) for item in seq]
            labels = [label for label in labels if label]
            summary = f"{len(seq)} object(s)"
            if labels:
                sample = ", ".join(labels[:3])
                if len(labels) > 3:
                    sample += "…"
                summary += f" (sample: {sample})"
            return summary
    return value


def _extract_label(item: Mapping[str, Any]) -> str:
    for key in ("mount_point", "model_name", "name", "index"):
        value = item.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def _flatten(prefix: str, value: Any, out: Dict[str, Any]) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            _flatten(f"{prefix}.{key}" if prefix else str(key), item, out)
        return
    if isinstance(value, Enum):
        value = value.value
    elif isinstance(value, datetime):
        value = value.isoformat()
    elif isinstance(value, timedelta):
        value = str(value)
    out[prefix] = value


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show architecture, virtualization and per-core detail"),
    color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Force colors on or off (default: auto)"),
    config_files: List[Path] = typer.Option(
        [],
        "--config",
        help="Configuration file(s) to load after the defaults (can be passed multiple times)",
    ),
    set_kv: List[str] = typer.Option([], "--set", help="Override key=val"),
    debug: bool = typer.Option(False, "--debug", help="Log fact collection details to stderr"),
) -> None:
    """Print the banner when no subcommand is given."""
    _configure_logging(debug)
    options = _Options(config_files=list(config_files), set_kv=list(set_kv), color=color)
    ctx.obj = options
    if ctx.invoked_subcommand is not None:
        return

    settings = _load_settings(options)
    facts = _collect(settings)
    welcome = resolve_welcome_text(
        settings.welcome_url,
        timeout=settings.fetch_timeout,
        default=settings.welcome_text,
    )
    use_color = _use_color(color, settings)
    report = render_motd(
        facts,
        welcome,
        options=RenderOptions(
            color=use_color,
            verbose=verbose,
            ascii_art=settings.ascii_art,
            farewell=settings.farewell,
        ),
    )
    typer.echo(report, color=use_color)


@app.command()
def facts(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", help="Output format: table|json"),
    output: Optional[Path] = typer.Option(None, help="Write facts to file instead of STDOUT"),
):
    """Collect and display the raw fact set."""
    options: _Options = ctx.obj or _Options()
    fmt = format.lower().strip()
    if fmt not in {"table", "json"}:
        raise typer.BadParameter("--format must be one of: table, json", param_hint="--format")

    settings = _load_settings(options)
    fact_set = _collect(settings)

    if fmt == "json":
        text = to_json(fact_set)
        if output:
            output.write_text(text)
            console.print(f"Wrote facts to {output}")
        else:
            typer.echo(text)
        return

    use_color = _use_color(options.color, settings)
    display_console = Console(force_terminal=use_color, no_color=not use_color)
    table = Table(
        title="dynmotd Facts",
        title_style="bold cyan" if use_color else "",
        show_lines=True,
        box=box.SQUARE,
        expand=False,
        pad_edge=False,
    )
    table.add_column("Fact", style="cyan", overflow="fold", max_width=32)
    table.add_column("Value", overflow="fold", ratio=1)

    flat: Dict[str, Any] = {}
    _flatten("", asdict(fact_set), flat)
    for key, value in flat.items():
        display_value = _summarize_fact_value(value)
        if isinstance(display_value, (str, int, float)):
            table.add_row(key, str(display_value))
        else:
            table.add_row(key, Pretty(display_value))

    if output:
        recorder = Console(record=True, width=120)
        recorder.print(table)
        output.write_text(recorder.export_text())
        console.print(f"Wrote facts to {output}")
        return
    display_console.print(table)


@app.command()
def install(
    profile_dir: Path = typer.Option(installer.PROFILE_DIR, "--profile-dir", help="Login profile directory"),
):
    """Install dynmotd so that it prints on login."""
    try:
        installer.install(profile_dir)
    except InstallError as exc:
        raise _fail(f"Install failed: {exc}", 1) from exc
    typer.echo("Install successful!")


@app.command()
def uninstall(
    profile_dir: Path = typer.Option(installer.PROFILE_DIR, "--profile-dir", help="Login profile directory"),
):
    """Remove the login script so dynmotd no longer prints on login."""
    try:
        installer.uninstall(profile_dir)
    except InstallError as exc:
        raise _fail(f"Uninstall failed: {exc}", 1) from exc
    typer.echo("Uninstall successful!")


@app.command()
def status(
    profile_dir: Path = typer.Option(installer.PROFILE_DIR, "--profile-dir", help="Login profile directory"),
):
    """Report whether the login script is installed."""
    state = installer.status(profile_dir)
    if state.installed:
        typer.echo(f"The system IS installed with dynmotd script at {state.script_path}")
    else:
        typer.echo(f"The system is NOT installed with dynmotd (no {state.script_path}).")


if __name__ == "__main__":
    app()
