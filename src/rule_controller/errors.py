"""Failure taxonomy for rule reconciliation.

Every failure the controller can observe maps to exactly one FailureKind.
The kind, not the call site, decides what happens next:

- retryable failures are handed back to the host runtime, which re-invokes
  the reconciler with its own backoff
- terminal failures are recorded in the Rule status together with the
  generation that caused them, so the same spec is not retried
- held failures are recorded in the status without the generation, so a
  change event from a dependency re-invokes the reconciler and heals it
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    """Closed set of failure kinds seen during reconciliation."""

    NOT_FOUND = "NotFound"
    MALFORMED_SPEC = "MalformedSpec"
    UNADDRESSABLE = "Unaddressable"
    CREDENTIAL_UNAVAILABLE = "CredentialUnavailable"
    BACKEND_TRANSIENT = "BackendTransient"
    BACKEND_REJECTED = "BackendRejected"
    PERSISTENCE_CONFLICT = "PersistenceConflict"


@dataclass(frozen=True)
class FailurePolicy:
    """What the convergence driver does with a failure of a given kind."""

    retryable: bool
    record_generation: bool


FAILURE_POLICIES: dict[FailureKind, FailurePolicy] = {
    FailureKind.NOT_FOUND: FailurePolicy(retryable=False, record_generation=False),
    FailureKind.MALFORMED_SPEC: FailurePolicy(retryable=False, record_generation=True),
    FailureKind.UNADDRESSABLE: FailurePolicy(retryable=False, record_generation=False),
    FailureKind.CREDENTIAL_UNAVAILABLE: FailurePolicy(retryable=True, record_generation=False),
    FailureKind.BACKEND_TRANSIENT: FailurePolicy(retryable=True, record_generation=False),
    FailureKind.BACKEND_REJECTED: FailurePolicy(retryable=False, record_generation=True),
    FailureKind.PERSISTENCE_CONFLICT: FailurePolicy(retryable=True, record_generation=False),
}


def policy_for(kind: FailureKind) -> FailurePolicy:
    """Look up the policy for a failure kind."""
    return FAILURE_POLICIES[kind]


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    kind: FailureKind = FailureKind.BACKEND_TRANSIENT

    @property
    def policy(self) -> FailurePolicy:
        return policy_for(self.kind)

    @property
    def retryable(self) -> bool:
        return self.policy.retryable


class MalformedNameError(ReconcileError):
    """Raised when a qualified trigger or action name cannot be parsed."""

    kind = FailureKind.MALFORMED_SPEC


class UnaddressableError(ReconcileError):
    """Raised when an indirect action reference cannot be resolved to an address."""

    kind = FailureKind.UNADDRESSABLE


class CredentialsUnavailableError(ReconcileError):
    """Raised when backend credentials cannot be loaded."""

    kind = FailureKind.CREDENTIAL_UNAVAILABLE


class BackendError(ReconcileError):
    """Raised when a backend call fails.

    Transport failures carry no status code. The kind defaults to transient;
    a BackendErrorClassifier may reclassify the error before it reaches the
    convergence driver.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        kind: FailureKind = FailureKind.BACKEND_TRANSIENT,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind

    def with_kind(self, kind: FailureKind) -> BackendError:
        """Return a copy of this error carrying a different kind."""
        error = BackendError(str(self), status_code=self.status_code, kind=kind)
        error.__cause__ = self.__cause__
        return error


class StoreError(ReconcileError):
    """Raised when a read or write against the object store fails."""

    kind = FailureKind.PERSISTENCE_CONFLICT


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    kind = FailureKind.NOT_FOUND


class ConflictError(StoreError):
    """Raised when an optimistic-concurrency write loses against a newer version."""

    kind = FailureKind.PERSISTENCE_CONFLICT


class InvalidObjectError(StoreError):
    """Raised when a stored object does not validate against its model."""

    kind = FailureKind.MALFORMED_SPEC
