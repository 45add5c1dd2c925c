"""Backend error classification.

The convergence driver never inspects backend errors itself. It asks a
BackendErrorClassifier for the failure kind, so richer policies can be
swapped in through configuration without touching the reconciler.

The default policy treats every insert failure as transient: network and
backend hiccups dominate, and the insert is an idempotent overwrite, so
retrying is always safe.
"""

from __future__ import annotations

from typing import Protocol

from .config import BackendErrorPolicy, Config
from .errors import BackendError, FailureKind

# 4xx answers that still deserve a retry
RETRYABLE_CLIENT_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429})

HTTP_NOT_FOUND = 404


class BackendErrorClassifier(Protocol):
    """Maps a backend error from a rule insert to a failure kind."""

    def classify(self, error: BackendError) -> FailureKind: ...


class AlwaysRetryClassifier:
    """Every backend error is transient."""

    def classify(self, error: BackendError) -> FailureKind:
        return FailureKind.BACKEND_TRANSIENT


class StatusCodeClassifier:
    """Classify by HTTP status code.

    Transport errors, 5xx and the 4xx codes in RETRYABLE_CLIENT_STATUS_CODES
    are transient. Any other 4xx means the backend rejected the request and
    will keep rejecting it until the spec changes.
    """

    def classify(self, error: BackendError) -> FailureKind:
        code = error.status_code
        if code is None or code >= 500 or code in RETRYABLE_CLIENT_STATUS_CODES:
            return FailureKind.BACKEND_TRANSIENT
        if 400 <= code < 500:
            return FailureKind.BACKEND_REJECTED
        return FailureKind.BACKEND_TRANSIENT


def classifier_for(config: Config) -> BackendErrorClassifier:
    """Select the classifier configured by BACKEND_ERROR_POLICY."""
    match config.backend_error_policy:
        case BackendErrorPolicy.STATUS_CODE:
            return StatusCodeClassifier()
        case _:
            return AlwaysRetryClassifier()


def should_retry_finalize(error: Exception) -> bool:
    """Decide whether a failed backend delete should block finalization.

    A rule that is already gone (404) is as good as deleted. Other client
    errors will not go away by retrying, so deletion is abandoned and the
    finalizer released. Everything else keeps the finalizer in place.
    """
    if not isinstance(error, BackendError):
        return True
    code = error.status_code
    if code is None:
        return True
    if code == HTTP_NOT_FOUND:
        return False
    if 400 <= code < 500 and code not in RETRYABLE_CLIENT_STATUS_CODES:
        return False
    return True
