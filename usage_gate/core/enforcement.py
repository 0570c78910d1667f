"""
Enforcement adapters.

Apply a gate Decision to the host's pre-dispatch hook protocol:

- Transparent: rewrite the request's model and allow (exit 0, JSON on stdout)
- Blocking: reject with an instruction to retry on the fallback (exit 2,
  message on stderr); the retry carries the fallback model explicitly and
  passes the gate's idempotence check

Any failure while evaluating the gate is treated as ALLOW.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..config.loader import DEFAULT_LOCALE, EnforcementMode, GateSettings
from ..storage.cache import UsageCacheStore
from .gate import Decision, GateAction, PendingRequest, decide

logger = logging.getLogger(__name__)

EXIT_CODE_ALLOW = 0
EXIT_CODE_BLOCK = 2

HOOK_EVENT_NAME = "PreToolUse"
MESSAGE_PREFIX = "[Usage Gate]"

BLOCK_MESSAGES = {
    "en": (
        "{prefix} Usage limit reached ({reason}). "
        "Retry this task with model: \"{model}\"."
    ),
    "ko": (
        "{prefix} 사용량 한도에 도달했습니다 ({reason}). "
        "model: \"{model}\" 을(를) 지정하여 다시 실행하세요."
    ),
}


@dataclass(frozen=True)
class EnforcementOutcome:
    """What the hook process should emit and how it should exit."""
    exit_code: int
    decision: Decision
    stdout: Optional[str] = None
    stderr: Optional[str] = None


class TransparentEnforcer:
    """Silently rewrites the request onto the fallback model."""

    mode = EnforcementMode.TRANSPARENT

    def apply(self, decision: Decision, request: PendingRequest) -> EnforcementOutcome:
        if decision.action != GateAction.DOWNGRADE or not decision.model:
            return EnforcementOutcome(exit_code=EXIT_CODE_ALLOW, decision=decision)

        updated = request.with_model(decision.model)
        payload = {
            "hookSpecificOutput": {
                "hookEventName": HOOK_EVENT_NAME,
                "permissionDecision": "allow",
                "permissionDecisionReason": (
                    f"{MESSAGE_PREFIX} {decision.reason} → auto-switched to {decision.model}"
                ),
                "updatedInput": updated.tool_input,
            }
        }
        return EnforcementOutcome(
            exit_code=EXIT_CODE_ALLOW,
            decision=decision,
            stdout=json.dumps(payload, ensure_ascii=False),
        )


class BlockingEnforcer:
    """Rejects the dispatch and tells the caller which model to retry with."""

    mode = EnforcementMode.BLOCK

    def __init__(self, locale: str = DEFAULT_LOCALE):
        self.locale = locale if locale in BLOCK_MESSAGES else DEFAULT_LOCALE

    def message_for(self, decision: Decision) -> str:
        return BLOCK_MESSAGES[self.locale].format(
            prefix=MESSAGE_PREFIX,
            reason=decision.reason,
            model=decision.model,
        )

    def apply(self, decision: Decision, request: PendingRequest) -> EnforcementOutcome:
        if decision.action == GateAction.ALLOW or not decision.model:
            return EnforcementOutcome(exit_code=EXIT_CODE_ALLOW, decision=decision)

        blocked = Decision.block(decision.model, decision.reason)
        return EnforcementOutcome(
            exit_code=EXIT_CODE_BLOCK,
            decision=blocked,
            stderr=self.message_for(blocked),
        )


def get_enforcer(mode: EnforcementMode, locale: str = DEFAULT_LOCALE):
    """Return the enforcer for the configured mode."""
    if mode == EnforcementMode.BLOCK:
        return BlockingEnforcer(locale)
    return TransparentEnforcer()


def enforce_payload(
    payload: Any,
    settings: GateSettings,
    store: Optional[UsageCacheStore] = None,
    mode: Optional[EnforcementMode] = None,
) -> EnforcementOutcome:
    """Evaluate the gate for one hook payload and apply the configured mode.

    Args:
        payload: Parsed hook payload (``tool_name``, ``tool_input``)
        settings: Gate settings
        store: Cache store override
        mode: Enforcement mode override

    Returns:
        EnforcementOutcome; ALLOW if anything goes wrong during evaluation
    """
    request = PendingRequest.from_hook_payload(payload)
    try:
        store = store or UsageCacheStore(settings.cache_file)
        decision = decide(store.read(), settings.limits, request)
    except Exception as e:
        logger.warning("Gate evaluation failed, allowing dispatch: %s: %s", type(e).__name__, e)
        decision = Decision.allow()

    enforcer = get_enforcer(mode or settings.mode, settings.locale)
    return enforcer.apply(decision, request)
