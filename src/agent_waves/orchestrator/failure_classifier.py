"""Deterministic classification of terminals that did not complete."""

from __future__ import annotations

import signal
from dataclasses import dataclass

from agent_waves.orchestrator.models import (
    TIMEOUT_EXIT_CODE,
    FailureClass,
    HandoffStatus,
)

FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "not logged in",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "try again later",
)

_STDERR_RULES: tuple[tuple[FailureClass, tuple[str, ...]], ...] = (
    (FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
    (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
    (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
    (FailureClass.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
)


@dataclass(slots=True)
class TerminalFailure:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_terminal_failure(  # noqa: PLR0911
    *,
    provider: str,
    exit_code: int | None,
    status: HandoffStatus,
    handoff_found: bool,
    stdout: str,
    stderr: str,
) -> TerminalFailure | None:
    """Explain why a terminal is not ``complete``; ``None`` when it is.

    Timeouts and signals are decided from the exit code alone. Other
    non-zero exits are matched against known provider error texts before
    falling back to a generic non-zero classification.
    """

    if status is HandoffStatus.COMPLETE and exit_code == 0:
        return None

    if exit_code == TIMEOUT_EXIT_CODE:
        return TerminalFailure(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{provider}_timeout",
            matched_rule="timeout_exit_code",
        )
    if exit_code is not None and exit_code < 0:
        return TerminalFailure(
            failure_class=FailureClass.KILLED_BY_SIGNAL,
            reason_code=f"{provider}_killed_by_{_signal_name(-exit_code).lower()}",
            matched_rule="negative_exit_code",
        )

    if exit_code != 0:
        haystack = f"{stderr}\n{stdout}".lower()
        for failure_class, patterns in _STDERR_RULES:
            pattern = _first_match(haystack, patterns)
            if pattern is not None:
                return TerminalFailure(
                    failure_class=failure_class,
                    reason_code=f"{provider}_{failure_class.value}",
                    matched_rule=failure_class.value,
                    matched_pattern=pattern,
                )
        return TerminalFailure(
            failure_class=FailureClass.NON_ZERO_EXIT,
            reason_code=f"{provider}_exit_{exit_code}",
            matched_rule="fallback_non_zero_exit",
        )

    if not handoff_found:
        return TerminalFailure(
            failure_class=FailureClass.MISSING_HANDOFF,
            reason_code=f"{provider}_missing_handoff",
            matched_rule="missing_handoff_block",
        )
    return TerminalFailure(
        failure_class=FailureClass.REPORTED_BY_AGENT,
        reason_code=f"{provider}_reported_{status.value}",
        matched_rule="handoff_status",
    )


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal_{signum}"


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
