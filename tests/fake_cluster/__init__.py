"""In-memory cluster and backend fakes for reconciliation tests.

This package provides fake implementations of the reconciler's collaborators
so the full reconciliation flow can be exercised without a cluster or a
function backend.

Key Features:
- Object store with resourceVersion checks (optimistic concurrency)
- Journal of every store call for asserting "no writes happened"
- Finalizer-driven garbage collection of deleting objects
- Error injection for every store, backend and resolver operation

Usage:
    from fake_cluster import FakeResolver, FakeStore, FakeWhiskBackend

    store = FakeStore()
    backend = FakeWhiskBackend()
    reconciler = RuleReconciler(
        store, config, client_factory=backend.client_for, resolver=FakeResolver()
    )
    store.put_rule(rule)
    result = reconciler.reconcile(key)

    assert backend.rules["hello-rule"].action == "/_/pkg/action"
"""

from .backend import FakeWhiskBackend, FakeWhiskClient
from .resolver import FakeResolver
from .store import FakeStore, StoreCall

__all__ = [
    "FakeResolver",
    "FakeStore",
    "FakeWhiskBackend",
    "FakeWhiskClient",
    "StoreCall",
]
