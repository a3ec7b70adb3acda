"""Deterministic job failure classification for worker retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from qagen.generation.errors import JobErrorKind, JobProcessingError

JOB_FAILURE_CLASSIFIER_VERSION = 1


class FailureAction(str, Enum):
    """What the worker does with a job after a failure."""

    TERMINAL_DELETE = "terminal_delete"
    QUOTA_PAUSE = "quota_pause"
    GENERIC_RETRY = "generic_retry"


_ACTION_BY_KIND: dict[JobErrorKind, FailureAction] = {
    JobErrorKind.MALFORMED_INPUT: FailureAction.TERMINAL_DELETE,
    JobErrorKind.QUOTA_EXHAUSTED: FailureAction.QUOTA_PAUSE,
    JobErrorKind.TRANSPORT: FailureAction.GENERIC_RETRY,
    JobErrorKind.FORWARDING: FailureAction.GENERIC_RETRY,
}

_missing_kinds = set(JobErrorKind) - set(_ACTION_BY_KIND)
if _missing_kinds:  # pragma: no cover - guards enum growth
    raise RuntimeError(f"Failure kinds without retry policy: {sorted(_missing_kinds)}")


@dataclass(slots=True)
class FailureDecision:
    """Normalized failure classification result."""

    action: FailureAction
    error_kind: JobErrorKind | None
    reason_code: str
    matched_rule: str

    def to_log_details(self, *, job_id: str, user_id: str) -> dict[str, object]:
        """Serialize classifier diagnostics for operator logs."""

        return {
            "classifier_version": JOB_FAILURE_CLASSIFIER_VERSION,
            "job_id": job_id,
            "user_id": user_id,
            "action": self.action.value,
            "error_kind": self.error_kind.value if self.error_kind is not None else None,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
        }


def classify_failure(error: BaseException) -> FailureDecision:
    """Map a caught failure to exactly one worker action by its kind tag."""

    if not isinstance(error, JobProcessingError):
        return FailureDecision(
            action=FailureAction.GENERIC_RETRY,
            error_kind=None,
            reason_code=f"unexpected_{type(error).__name__.lower()}",
            matched_rule="fallback_generic_retry",
        )

    action = _ACTION_BY_KIND[error.kind]
    reason_code = error.kind.value
    if error.status_code is not None:
        reason_code = f"{reason_code}_http_{error.status_code}"
    return FailureDecision(
        action=action,
        error_kind=error.kind,
        reason_code=reason_code,
        matched_rule=error.kind.value,
    )
