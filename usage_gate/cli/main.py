"""
CLI interface for the usage gate.

Hook entry points for the coding assistant (prompt-submit tracking,
pre-dispatch gating, status line) plus human-facing inspection commands.
"""

import json
import logging
import sys
import time
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config.loader import EnforcementMode, GateSettings, load_settings
from ..core.enforcement import EXIT_CODE_ALLOW, EXIT_CODE_BLOCK, enforce_payload
from ..core.gate import format_percent, select_fallback
from ..core.refresher import refresh_if_stale
from ..core.status import (
    format_prompt_notice,
    render,
    run_chain_command,
    severity_for,
)
from ..storage.cache import UsageCacheStore

app = typer.Typer()
console = Console()


def _configure_logging(settings: GateSettings) -> None:
    """Send logs to a file when one is configured; hooks stay silent otherwise."""
    if not settings.log_file:
        return
    logger = logging.getLogger("usage_gate")
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return
    try:
        handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    except OSError:
        return
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level, logging.WARNING))


def _read_stdin() -> str:
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    try:
        return sys.stdin.read()
    except (OSError, ValueError):
        return ""


def _parse_payload(raw: str) -> Any:
    try:
        return json.loads(raw) if raw.strip() else None
    except json.JSONDecodeError:
        return None


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Usage gate CLI."""
    settings = load_settings()
    _configure_logging(settings)
    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        console.print("Usage Gate - Use --help to see available commands")


@app.command()
def track(ctx: typer.Context):
    """Prompt-submit hook: refresh the usage cache if stale and print a notice."""
    settings: GateSettings = ctx.obj
    snapshot = refresh_if_stale(settings)
    notice = format_prompt_notice(snapshot, settings.limits)
    if notice:
        typer.echo(notice, err=True)
    sys.exit(EXIT_CODE_ALLOW)


@app.command()
def gate(
    ctx: typer.Context,
    mode: Optional[EnforcementMode] = typer.Option(
        None,
        "--mode",
        "-m",
        case_sensitive=False,
        help="Override the configured enforcement mode"
    ),
):
    """
    Pre-dispatch hook: gate a task dispatch on current usage.

    Reads the hook payload from stdin. In transparent mode, prints a
    rewrite payload and always exits 0. In block mode, exits 2 with a
    retry instruction on stderr when a usage limit is reached.
    """
    settings: GateSettings = ctx.obj
    payload = _parse_payload(_read_stdin())
    outcome = enforce_payload(payload, settings, mode=mode)

    if outcome.stdout:
        typer.echo(outcome.stdout)
    if outcome.stderr:
        typer.echo(outcome.stderr, err=True)
    sys.exit(outcome.exit_code)


@app.command()
def statusline(
    ctx: typer.Context,
    plain: bool = typer.Option(
        False,
        "--plain",
        help="Print without colours"
    ),
):
    """Status line: chained command output first, then the gate line."""
    settings: GateSettings = ctx.obj
    stdin_text = _read_stdin()
    snapshot = UsageCacheStore(settings.cache_file).read()
    gate_line = render(snapshot, settings.limits, color=not plain)

    chain_output = run_chain_command(settings.chain_command, stdin_text)
    if chain_output:
        typer.echo(chain_output)
    typer.echo(gate_line)


@app.command()
def status(ctx: typer.Context):
    """Show cached usage, limits and gate configuration."""
    settings: GateSettings = ctx.obj
    _display_status(settings, UsageCacheStore(settings.cache_file).read())


@app.command()
def refresh(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Fetch even if the cache is still fresh"
    ),
):
    """Refresh the usage cache now."""
    settings: GateSettings = ctx.obj
    snapshot = refresh_if_stale(settings, force=force)
    _display_status(settings, snapshot)
    sys.exit(EXIT_CODE_ALLOW)


def _format_age(seconds: float) -> str:
    """Format a cache age as ``42s`` / ``3m 05s``."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    return f"{seconds // 60}m {seconds % 60:02d}s"


def _display_status(settings: GateSettings, snapshot):
    limits = settings.limits
    console.print("\n[bold]Usage Gate Status[/bold]")
    console.print("-" * 40)
    console.print(f"Gate: {'[green]enabled[/]' if limits.enabled else '[dim]disabled[/]'}")
    console.print(f"Mode: {settings.mode.value}")
    console.print(f"Cache: {settings.cache_file}")

    if snapshot is None:
        console.print("\n[bold yellow]No usage data cached[/]")
        console.print("Run `usage-gate refresh` once an access token is available.\n")
        return

    age = snapshot.age(time.time())
    freshness = "[yellow]stale[/]" if snapshot.is_stale(settings.cache_ttl) else "[green]fresh[/]"
    console.print(f"Cache age: {_format_age(age)} ({freshness}, TTL {settings.cache_ttl}s)")

    table = Table()
    table.add_column("Window")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Severity")
    table.add_column("Fallback")
    for label, window, limit, fallback in (
        ("5h", snapshot.five_hour, limits.five_hour_limit, limits.fallback_5h),
        ("7d", snapshot.seven_day, limits.seven_day_limit, limits.fallback_7d),
    ):
        table.add_row(
            label,
            format_percent(window.utilization),
            f"{limit}%",
            severity_for(window.utilization, limit).value,
            fallback,
        )
    console.print(table)

    selected = select_fallback(snapshot, limits) if limits.enabled else None
    if selected:
        console.print(f"[bold]Sub-agent model:[/bold] {selected}\n")
    else:
        console.print("[bold]Sub-agent model:[/bold] unchanged\n")


if __name__ == "__main__":
    app()
