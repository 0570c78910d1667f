"""
Status line rendering.

Turns a cached snapshot and the configured limits into a one-line status,
independent of the enforcement mode. Optionally runs another status line
command first so the gate line can be chained after it.
"""

import logging
import shlex
import subprocess
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.text import Text

from ..config.loader import GateLimits
from ..storage.models import UsageSnapshot
from .gate import format_percent, select_fallback

logger = logging.getLogger(__name__)

WARNING_RATIO = 0.8
NOTICE_MARGIN = 15
CHAIN_TIMEOUT = 5.0

LABEL = "[Usage Gate]"
SEPARATOR = "│"
ARROW = "→"


class Severity(Enum):
    """Three-tier severity of a window relative to its limit."""
    NOMINAL = "nominal"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_STYLES = {
    Severity.NOMINAL: "color(151)",
    Severity.WARNING: "color(222)",
    Severity.CRITICAL: "color(210)",
}

STYLE_LABEL = "color(249)"
STYLE_DIM = "dim"
STYLE_SEPARATOR = "color(242)"
STYLE_FALLBACK = "color(216)"


def severity_for(utilization: float, limit: float) -> Severity:
    """Classify a utilization against its limit."""
    if utilization >= limit:
        return Severity.CRITICAL
    if utilization >= limit * WARNING_RATIO:
        return Severity.WARNING
    return Severity.NOMINAL


def short_model_name(model: str) -> str:
    """Single-letter tag for the well-known model families."""
    m = (model or "").lower()
    for family in ("sonnet", "haiku", "opus"):
        if family in m:
            return family[0].upper()
    return m[:1].upper()


def _window_segment(label: str, utilization: float, limit: int, fallback: str) -> Text:
    severity = severity_for(utilization, limit)
    segment = Text()
    segment.append(f"{label} ", style=STYLE_LABEL)
    segment.append(format_percent(utilization), style=SEVERITY_STYLES[severity])
    segment.append(f"/{limit}%", style=STYLE_DIM)
    if severity == Severity.CRITICAL:
        segment.append(" ")
        segment.append(f"{ARROW}{short_model_name(fallback)}", style=STYLE_FALLBACK)
    return segment


def _join(parts) -> Text:
    line = Text()
    for index, part in enumerate(parts):
        if index:
            line.append(" ")
            line.append(SEPARATOR, style=STYLE_SEPARATOR)
            line.append(" ")
        line.append_text(part)
    return line


def build_status_text(snapshot: Optional[UsageSnapshot], limits: GateLimits) -> Text:
    """Build the styled status line.

    - Gate disabled: a dim ``Gate OFF`` banner with raw percentages, no
      severity colouring and no fallback arrows
    - No data: a dim ``no data`` marker
    - Otherwise: gate state, then one ``used/limit`` segment per window,
      with an arrow to the fallback on windows at or over their limit
    """
    if not limits.enabled:
        parts = [Text("Gate OFF", style=STYLE_DIM)]
        if snapshot is None:
            parts.append(Text("no data", style=STYLE_DIM))
        else:
            parts.append(Text(f"5h {format_percent(snapshot.five_hour.utilization)}", style=STYLE_DIM))
            parts.append(Text(f"7d {format_percent(snapshot.seven_day.utilization)}", style=STYLE_DIM))
        return _join(parts)

    if snapshot is None:
        return Text(f"{LABEL} no data", style=STYLE_DIM)

    gate = Text()
    if select_fallback(snapshot, limits) is not None:
        gate.append("Gate", style=STYLE_FALLBACK)
        gate.append(" ")
        gate.append("ACTIVE", style=SEVERITY_STYLES[Severity.CRITICAL])
    else:
        gate.append("Gate", style=SEVERITY_STYLES[Severity.NOMINAL])
        gate.append(" ")
        gate.append("standby", style=STYLE_DIM)

    return _join([
        gate,
        _window_segment("5h", snapshot.five_hour.utilization, limits.five_hour_limit, limits.fallback_5h),
        _window_segment("7d", snapshot.seven_day.utilization, limits.seven_day_limit, limits.fallback_7d),
    ])


def render(snapshot: Optional[UsageSnapshot], limits: GateLimits, color: bool = True) -> str:
    """Render the status line as a single string (ANSI-coloured by default)."""
    text = build_status_text(snapshot, limits)
    if not color:
        return text.plain

    console = Console(force_terminal=True, color_system="256", width=10_000, highlight=False)
    with console.capture() as capture:
        console.print(text, end="", soft_wrap=True)
    return capture.get()


def run_chain_command(command: Optional[str], stdin_text: str = "", timeout: float = CHAIN_TIMEOUT) -> Optional[str]:
    """Run a chained status line command and return its trimmed output.

    Returns None when no command is configured, or it fails, times out,
    or prints nothing.
    """
    if not command:
        return None
    try:
        args = shlex.split(command)
        result = subprocess.run(
            args,
            input=stdin_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except (ValueError, OSError, subprocess.SubprocessError) as e:
        logger.debug("Chained status command %r failed: %s", command, e)
        return None
    output = result.stdout.strip()
    return output or None


def format_prompt_notice(snapshot: Optional[UsageSnapshot], limits: GateLimits) -> Optional[str]:
    """Advisory notice shown when a prompt is submitted, or None."""
    if not limits.enabled or snapshot is None:
        return None

    u5h = snapshot.five_hour.utilization
    u7d = snapshot.seven_day.utilization
    usage = f"5h:{format_percent(u5h)} 7d:{format_percent(u7d)}"

    fallback = select_fallback(snapshot, limits)
    if fallback is not None:
        return f"{LABEL} {usage} | Sub-agent: {fallback} auto-applied"

    if u5h >= limits.five_hour_limit - NOTICE_MARGIN:
        return f"{LABEL} {usage} | Approaching threshold ({limits.five_hour_limit}%)"
    if u7d >= limits.seven_day_limit - NOTICE_MARGIN:
        return f"{LABEL} {usage} | Approaching threshold ({limits.seven_day_limit}%)"
    return None
