from __future__ import annotations

import allure
import pytest

from agent_waves.orchestrator.failure_classifier import (
    FAILURE_CLASSIFIER_VERSION,
    classify_terminal_failure,
)
from agent_waves.orchestrator.models import TIMEOUT_EXIT_CODE, FailureClass, HandoffStatus

pytestmark = [
    allure.epic("Diagnostics"),
    allure.feature("Failure classification"),
]


def _classify(
    *,
    exit_code: int | None,
    status: HandoffStatus = HandoffStatus.ERROR,
    handoff_found: bool = False,
    stderr: str = "",
):
    return classify_terminal_failure(
        provider="claude",
        exit_code=exit_code,
        status=status,
        handoff_found=handoff_found,
        stdout="",
        stderr=stderr,
    )


def test_complete_terminal_has_no_failure() -> None:
    assert (
        _classify(exit_code=0, status=HandoffStatus.COMPLETE, handoff_found=True) is None
    )


def test_timeout_is_decided_by_sentinel() -> None:
    failure = _classify(exit_code=TIMEOUT_EXIT_CODE, stderr="quota exceeded")

    assert failure.failure_class is FailureClass.TIMEOUT
    assert failure.reason_code == "claude_timeout"


def test_signal_death_names_the_signal() -> None:
    failure = _classify(exit_code=-9)

    assert failure.failure_class is FailureClass.KILLED_BY_SIGNAL
    assert failure.reason_code == "claude_killed_by_sigkill"


@pytest.mark.parametrize(
    ("stderr", "failure_class", "pattern"),
    [
        ("RESOURCE_EXHAUSTED", FailureClass.BILLING_OR_QUOTA, "resource_exhausted"),
        ("401 Unauthorized", FailureClass.ACCESS_OR_AUTH, "unauthorized"),
        ("unknown model 'opus-9'", FailureClass.MODEL_NOT_AVAILABLE, "unknown model"),
        ("HTTP 429 Too Many Requests", FailureClass.RATE_LIMITED, "too many requests"),
    ],
)
def test_stderr_patterns(stderr: str, failure_class: FailureClass, pattern: str) -> None:
    failure = _classify(exit_code=1, stderr=stderr)

    assert failure.failure_class is failure_class
    assert failure.matched_pattern == pattern


def test_unmatched_non_zero_exit_falls_back() -> None:
    failure = _classify(exit_code=3, stderr="segmentation fault")

    assert failure.to_dict() == {
        "classifier_version": FAILURE_CLASSIFIER_VERSION,
        "failure_class": "non_zero_exit",
        "reason_code": "claude_exit_3",
        "matched_rule": "fallback_non_zero_exit",
        "matched_pattern": None,
    }


def test_clean_exit_without_block_is_missing_handoff() -> None:
    failure = _classify(exit_code=0, status=HandoffStatus.PARTIAL)

    assert failure.failure_class is FailureClass.MISSING_HANDOFF


def test_agent_reported_status() -> None:
    failure = _classify(exit_code=0, status=HandoffStatus.NEEDS_INPUT, handoff_found=True)

    assert failure.failure_class is FailureClass.REPORTED_BY_AGENT
    assert failure.reason_code == "claude_reported_needs_input"
