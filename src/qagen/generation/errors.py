"""Structured failures raised while processing one backlog job."""

from __future__ import annotations

from enum import Enum


class JobErrorKind(str, Enum):
    """Failure tags consumed by the retry policy."""

    MALFORMED_INPUT = "malformed_input"
    QUOTA_EXHAUSTED = "quota_exhausted"
    TRANSPORT = "transport"
    FORWARDING = "forwarding"


class JobProcessingError(RuntimeError):
    """Failure carrying a structured kind and optional HTTP-like payload."""

    kind: JobErrorKind = JobErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        kind: JobErrorKind | None = None,
        status_code: int | None = None,
        body: object | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.status_code = status_code
        self.body = body


class MalformedInputError(JobProcessingError):
    """Job content cannot be turned into a valid model request."""

    kind = JobErrorKind.MALFORMED_INPUT


class QuotaExhaustedError(JobProcessingError):
    """Owning account has no balance or quota left."""

    kind = JobErrorKind.QUOTA_EXHAUSTED


class ModelTransportError(JobProcessingError):
    """Network, timeout, non-2xx or unreadable model response."""

    kind = JobErrorKind.TRANSPORT


class ForwardingError(JobProcessingError):
    """Downstream indexing push failed."""

    kind = JobErrorKind.FORWARDING
