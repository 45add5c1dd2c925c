"""Rule reconciliation.

This module implements the Kubernetes-style reconciliation pattern for Rules:
1. Fetch the Rule named by the change notification
2. Deleting? Remove the backend rule, then release the finalizer
3. Otherwise skip if the current generation is already applied
4. Install the finalizer before touching the backend
5. Stage a Pending status, then insert-or-replace the backend rule
6. Record Online on success, Failed on a terminal failure

ARCHITECTURE:
The reconciler is re-invoked by the host runtime on every relevant change and
keeps no state between invocations. Each invocation reads one immutable Rule
snapshot; every transition (finalizer added, status staged, status settled)
is persisted as one write of an updated copy.

Failures are classified by FailureKind (see errors.py). Retryable failures are
returned in ReconcileResult.error and the host re-invokes with backoff.
Terminal failures are recorded in the Rule status and absorbed.
"""

from __future__ import annotations

import functools
import logging
from contextlib import closing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .backend import new_whisk_client
from .classify import BackendErrorClassifier, classifier_for, should_retry_finalize
from .config import Config
from .context import ClientFactory, FinalizeRetryPredicate, ReconcileContext
from .errors import (
    BackendError,
    CredentialsUnavailableError,
    MalformedNameError,
    NotFoundError,
    ReconcileError,
    StoreError,
)
from .models import NamespacedName, ResourceState, Rule, WhiskRule, parse_qualified_name
from .resolver import AddressableResolver, AddressResolver, resolve_action_name
from .store import RuleStore

logger = logging.getLogger(__name__)

PENDING_MESSAGE = "deploying"

# Same layout as Go's time.RFC850, always in UTC
COMPLETION_TIMESTAMP_FORMAT = "%A, %d-%b-%y %H:%M:%S UTC"


class ReconcileOutcome(str, Enum):
    """How a single reconciliation ended."""

    GONE = "Gone"  # Rule no longer exists, or nothing is owed on deletion
    UP_TO_DATE = "UpToDate"  # Current generation already applied
    ONLINE = "Online"  # Backend rule installed
    FAILED = "Failed"  # Terminal failure recorded for this generation
    HELD = "Held"  # Failure recorded; waits for a dependency to change
    FINALIZED = "Finalized"  # Backend rule removed and finalizer released
    REQUEUE = "Requeue"  # Retryable failure; host must re-invoke


@dataclass
class ReconcileResult:
    """Result of a single reconciliation."""

    request: NamespacedName
    outcome: ReconcileOutcome = ReconcileOutcome.REQUEUE
    error: Exception | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def requeue(self) -> bool:
        """Whether the host runtime must invoke the reconciler again."""
        return self.error is not None


class RuleReconciler:
    """Converges the function backend to the desired state of Rules.

    The reconciler does not lock: the host runtime must not run two
    reconciliations for the same Rule concurrently. Reconciliations for
    different Rules share nothing but the collaborators given here.
    """

    def __init__(
        self,
        store: RuleStore,
        config: Config,
        *,
        client_factory: ClientFactory | None = None,
        resolver: AddressResolver | None = None,
        classifier: BackendErrorClassifier | None = None,
        finalize_retry_predicate: FinalizeRetryPredicate = should_retry_finalize,
    ) -> None:
        """Initialize reconciler with its collaborators.

        Args:
            store: Object store holding Rules, Functions and secrets.
            config: Validated controller configuration.
            client_factory: Builds backend clients. Defaults to HTTP clients
                configured from the credentials secret.
            resolver: Resolves indirect action references. Defaults to
                reading status.address from the referenced object.
            classifier: Classifies backend insert errors. Defaults to the
                policy selected by BACKEND_ERROR_POLICY.
            finalize_retry_predicate: Decides whether a failed backend delete
                keeps the finalizer.
        """
        self._store = store
        self._config = config
        self._client_factory = client_factory or functools.partial(
            new_whisk_client, store, config
        )
        self._resolver = resolver or AddressableResolver(store)
        self._classifier = classifier or classifier_for(config)
        self._finalize_retry_predicate = finalize_retry_predicate

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    def reconcile(self, request: NamespacedName) -> ReconcileResult:
        """Reconcile the Rule named by a change notification.

        Returns:
            ReconcileResult. result.requeue is True when the host runtime
            must invoke the reconciler again for this Rule.
        """
        ctx = ReconcileContext(
            request=request,
            store=self._store,
            config=self._config,
            client_factory=self._client_factory,
            resolver=self._resolver,
            classifier=self._classifier,
            should_retry_finalize=self._finalize_retry_predicate,
        )
        result = ReconcileResult(request=request)

        try:
            rule = self._store.get_rule(request)
        except NotFoundError:
            # Deleted objects are garbage collected by the store; nothing is owed
            result.outcome = ReconcileOutcome.GONE
        except StoreError as e:
            if e.retryable:
                ctx.log.warning("Failed to read rule (retrying)", extra={"error": str(e)})
                result.outcome, result.error = ReconcileOutcome.REQUEUE, e
            else:
                # No valid snapshot means no status to write it to
                ctx.log.error("Rule cannot be read", extra={"error": str(e)})
                result.outcome = ReconcileOutcome.FAILED
        else:
            try:
                if rule.is_deleting:
                    result.outcome, result.error = self._finalize(ctx, rule)
                else:
                    result.outcome, result.error = self._converge(ctx, rule)
            except Exception as e:
                ctx.log.exception("Unexpected error during reconciliation")
                result.outcome, result.error = ReconcileOutcome.REQUEUE, e

        result.end_time = datetime.now(UTC)
        self._log_result(ctx, result)
        return result

    # -------------------------------------------------------------------------
    # Convergence
    # -------------------------------------------------------------------------

    def _converge(
        self, ctx: ReconcileContext, rule: Rule
    ) -> tuple[ReconcileOutcome, Exception | None]:
        """Bring a non-deleting Rule up to date."""
        if rule.is_converged():
            ctx.log.info(
                "Rule up-to-date",
                extra={
                    "generation": rule.generation,
                    "status_generation": rule.status.generation,
                },
            )
            return ReconcileOutcome.UP_TO_DATE, None

        finalizer = self._config.finalizer
        if not rule.has_finalizer(finalizer):
            try:
                rule = self._store.update_rule(rule.with_finalizer(finalizer))
            except StoreError as e:
                ctx.log.info("Setting finalizer failed (retrying)", extra={"error": str(e)})
                return ReconcileOutcome.REQUEUE, e

        # A recorded failure stays visible until the next attempt settles it
        staged = rule.with_status(ResourceState.PENDING, PENDING_MESSAGE)
        if rule.status.state != ResourceState.FAILED and staged.status != rule.status:
            try:
                rule = self._store.update_rule_status(staged)
            except StoreError as e:
                ctx.log.info("Setting pending status failed (retrying)", extra={"error": str(e)})
                return ReconcileOutcome.REQUEUE, e

        error = self._sync_rule(ctx, rule)
        if error is None:
            return ReconcileOutcome.ONLINE, None

        policy = error.policy
        if policy.retryable:
            ctx.log.error(
                "Deployment failed (retrying)",
                extra={"error": str(error), "failure_kind": error.kind.value},
            )
            return ReconcileOutcome.REQUEUE, error

        ctx.log.error(
            "Deployment failed",
            extra={"error": str(error), "failure_kind": error.kind.value},
        )
        recorded_generation = rule.generation if policy.record_generation else None
        failed = rule.with_status(ResourceState.FAILED, str(error), generation=recorded_generation)
        if failed.status == rule.status:
            ctx.log.debug("Failure status already recorded")
        else:
            try:
                self._store.update_rule_status(failed)
            except StoreError as e:
                # The failure is already terminal for this attempt; retrying a
                # status write we cannot make would loop forever.
                ctx.log.warning("Failed to record failure status", extra={"error": str(e)})

        if policy.record_generation:
            return ReconcileOutcome.FAILED, None
        return ReconcileOutcome.HELD, None

    def _sync_rule(self, ctx: ReconcileContext, rule: Rule) -> ReconcileError | None:
        """Install the backend rule for a Rule and record Online status.

        Returns:
            None on success, otherwise the classified failure.
        """
        ctx.log.info("Deploying rule", extra={"backend_name": rule.backend_name})

        try:
            trigger = parse_qualified_name(rule.spec.trigger)
        except MalformedNameError as e:
            error = MalformedNameError(f"Malformed trigger name: {rule.spec.trigger}")
            error.__cause__ = e
            return error

        try:
            action = resolve_action_name(ctx, rule)
        except MalformedNameError as e:
            error = MalformedNameError(f"Malformed rule action name: {rule.spec.function}")
            error.__cause__ = e
            return error
        except ReconcileError as e:
            return e

        ctx.log.info("Acquiring backend credentials")
        try:
            client = ctx.client_factory(rule.namespace, rule.spec.context_from)
        except CredentialsUnavailableError as e:
            return e

        whisk_rule = WhiskRule(
            name=rule.backend_name,
            trigger=str(trigger),
            action=action,
            publish=False,
        )

        ctx.log.info(
            "Calling backend rule update",
            extra={"trigger": whisk_rule.trigger, "action": action},
        )
        with closing(client):
            try:
                client.insert_rule(whisk_rule, overwrite=True)
            except BackendError as e:
                kind = ctx.classifier.classify(e)
                ctx.log.info(
                    "Backend rule update failed",
                    extra={
                        "error": str(e),
                        "status_code": e.status_code,
                        "failure_kind": kind.value,
                    },
                )
                return e if kind == e.kind else e.with_kind(kind)

        ctx.log.info("Deployment done")

        online = rule.with_status(
            ResourceState.ONLINE,
            datetime.now(UTC).strftime(COMPLETION_TIMESTAMP_FORMAT),
            generation=rule.generation,
        )
        try:
            self._store.update_rule_status(online)
        except StoreError as e:
            # Retrying is safe: the insert overwrites whatever is there
            error = StoreError(f"Failed to record online status: {e}")
            error.__cause__ = e
            return error
        return None

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def _finalize(
        self, ctx: ReconcileContext, rule: Rule
    ) -> tuple[ReconcileOutcome, Exception | None]:
        """Delete the backend rule, then release the finalizer."""
        if not rule.has_finalizer(self._config.finalizer):
            ctx.log.debug("Finalizer not present, nothing to clean up")
            return ReconcileOutcome.GONE, None

        try:
            client = ctx.client_factory(rule.namespace, rule.spec.context_from)
        except CredentialsUnavailableError as e:
            # Without credentials the backend rule cannot be reached. Blocking
            # deletion on credentials that may never come back would wedge the
            # Rule forever, so the finalizer is released.
            ctx.log.warning(
                "Credentials unavailable, releasing finalizer without backend delete",
                extra={"error": str(e), "backend_name": rule.backend_name},
            )
            return self._release_finalizer(ctx, rule)

        with closing(client):
            try:
                client.delete_rule(rule.backend_name)
            except BackendError as e:
                if ctx.should_retry_finalize(e):
                    ctx.log.info(
                        "Backend rule delete failed (retrying)",
                        extra={"error": str(e), "status_code": e.status_code},
                    )
                    return ReconcileOutcome.REQUEUE, e
                ctx.log.warning(
                    "Backend rule delete failed, abandoning",
                    extra={"error": str(e), "status_code": e.status_code},
                )

        return self._release_finalizer(ctx, rule)

    def _release_finalizer(
        self, ctx: ReconcileContext, rule: Rule
    ) -> tuple[ReconcileOutcome, Exception | None]:
        try:
            self._store.update_rule(rule.without_finalizer(self._config.finalizer))
        except StoreError as e:
            ctx.log.info("Removing finalizer failed (retrying)", extra={"error": str(e)})
            return ReconcileOutcome.REQUEUE, e
        return ReconcileOutcome.FINALIZED, None

    def _log_result(self, ctx: ReconcileContext, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "outcome": result.outcome.value,
            "duration_seconds": result.duration_seconds,
            "requeue": result.requeue,
        }
        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            ctx.log.warning("Reconciliation requires retry", extra=extra)
        elif result.outcome in (ReconcileOutcome.FAILED, ReconcileOutcome.HELD):
            ctx.log.warning("Reconciliation settled with failure", extra=extra)
        else:
            ctx.log.info("Reconciliation result", extra=extra)
