"""
Usage gate policy.

Pure decision function from (cached usage, configured limits, pending task
dispatch) to a Decision.

Decision Order:
1. Gate disabled or no usage data - allow
2. Request already pinned to a fallback model - allow (never re-gated)
3. Neither window at its limit - allow
4. Otherwise downgrade; the 7-day fallback wins when both windows are breached
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional

from ..config.loader import GateLimits
from ..storage.models import UsageSnapshot


class GateAction(Enum):
    """Possible gate outcomes in order of severity."""
    ALLOW = auto()      # Dispatch unchanged
    DOWNGRADE = auto()  # Dispatch with the fallback model
    BLOCK = auto()      # Reject; caller must retry with the fallback model


@dataclass(frozen=True)
class Decision:
    """Outcome of one gate evaluation."""
    action: GateAction
    model: Optional[str] = None
    reason: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(GateAction.ALLOW)

    @classmethod
    def downgrade(cls, model: str, reason: str) -> "Decision":
        return cls(GateAction.DOWNGRADE, model=model, reason=reason)

    @classmethod
    def block(cls, model: str, reason: str) -> "Decision":
        return cls(GateAction.BLOCK, model=model, reason=reason)

    @property
    def is_allow(self) -> bool:
        return self.action == GateAction.ALLOW


@dataclass(frozen=True)
class PendingRequest:
    """A task dispatch the host is about to perform."""
    tool_input: Dict[str, Any] = field(default_factory=dict)
    tool_name: Optional[str] = None

    @property
    def model(self) -> Optional[str]:
        """Explicit model override, lower-cased, or None."""
        value = self.tool_input.get("model")
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip().lower()

    @classmethod
    def from_hook_payload(cls, payload: Any) -> "PendingRequest":
        """Extract the request from a pre-dispatch hook payload."""
        if not isinstance(payload, dict):
            return cls()
        tool_input = payload.get("tool_input")
        tool_name = payload.get("tool_name")
        return cls(
            tool_input=dict(tool_input) if isinstance(tool_input, dict) else {},
            tool_name=tool_name if isinstance(tool_name, str) else None,
        )

    def with_model(self, model: str) -> "PendingRequest":
        updated = dict(self.tool_input)
        updated["model"] = model
        return PendingRequest(tool_input=updated, tool_name=self.tool_name)


def format_percent(value: float) -> str:
    """Render a utilization without a trailing ``.0``."""
    if float(value).is_integer():
        return f"{int(value)}%"
    return f"{value:.1f}%"


def usage_reason(snapshot: UsageSnapshot, limits: GateLimits) -> str:
    """Human-readable summary of both windows against their limits."""
    return (
        f"5h:{format_percent(snapshot.five_hour.utilization)}/{limits.five_hour_limit}% "
        f"7d:{format_percent(snapshot.seven_day.utilization)}/{limits.seven_day_limit}%"
    )


def select_fallback(snapshot: UsageSnapshot, limits: GateLimits) -> Optional[str]:
    """Fallback model for the breached window(s), or None if none is breached.

    When both windows are breached the 7-day fallback wins regardless of
    which percentage is higher.
    """
    exceeded_5h = snapshot.five_hour.utilization >= limits.five_hour_limit
    exceeded_7d = snapshot.seven_day.utilization >= limits.seven_day_limit

    if exceeded_7d:
        return limits.fallback_7d
    if exceeded_5h:
        return limits.fallback_5h
    return None


def decide(
    snapshot: Optional[UsageSnapshot],
    limits: GateLimits,
    request: PendingRequest,
) -> Decision:
    """
    Decide whether a pending dispatch may run on the requested model.

    The policy is mode-agnostic: a breach always yields a DOWNGRADE naming
    the fallback model. Enforcers turn it into a rewrite or a rejection.

    Args:
        snapshot: Cached usage, or None when there is no data
        limits: Configured thresholds and fallbacks
        request: The pending dispatch

    Returns:
        Decision: ALLOW, or DOWNGRADE with the selected fallback and reason
    """
    if not limits.enabled or snapshot is None:
        return Decision.allow()

    if request.model is not None and request.model in limits.cheap_models:
        return Decision.allow()

    fallback = select_fallback(snapshot, limits)
    if fallback is None:
        return Decision.allow()

    return Decision.downgrade(fallback, usage_reason(snapshot, limits))
