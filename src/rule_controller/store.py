"""Object store contract consumed by the reconciler.

The store holds Rule and Function objects and the secrets that carry backend
credentials. Writes use optimistic concurrency: an update carries the
resourceVersion of the snapshot it was derived from and fails with
ConflictError when the stored object has moved on.

Implementations:
- rule_controller.kube_store.KubernetesStore (custom objects API)
- tests/fake_cluster.FakeStore (in-memory, for tests)
"""

from __future__ import annotations

from typing import Any, Protocol

from .models import Function, NamespacedName, ObjectReference, Rule


class RuleStore(Protocol):
    """Read/write access to the declarative object store.

    Every method raises NotFoundError when the object does not exist,
    ConflictError on a stale write and StoreError for any other failure.
    Writes return the stored object with its new resourceVersion.
    """

    def get_rule(self, key: NamespacedName) -> Rule: ...

    def update_rule(self, rule: Rule) -> Rule:
        """Persist metadata and spec changes (finalizers)."""
        ...

    def update_rule_status(self, rule: Rule) -> Rule:
        """Persist the status subresource only."""
        ...

    def get_function(self, key: NamespacedName) -> Function: ...

    def create_function(self, function: Function) -> Function: ...

    def update_function(self, function: Function) -> Function: ...

    def get_secret(self, key: NamespacedName) -> dict[str, str]:
        """Return the decoded string data of a secret."""
        ...

    def get_object(self, namespace: str, ref: ObjectReference) -> dict[str, Any]:
        """Return an arbitrary referenced object as a raw manifest."""
        ...
