"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for fake_cluster imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from fake_cluster import FakeResolver, FakeStore, FakeWhiskBackend  # noqa: E402

from rule_controller.config import Config  # noqa: E402
from rule_controller.models import (  # noqa: E402
    ObjectMeta,
    ObjectReference,
    Rule,
    RuleSpec,
    RuleStatus,
    SecretReference,
)
from rule_controller.reconciler import RuleReconciler  # noqa: E402

FINALIZER = "functions.ibmcloud.ibm.com"


def make_rule(
    name: str = "hello-rule",
    namespace: str = "default",
    *,
    generation: int = 1,
    trigger: str = "/_/image-uploaded",
    function: str | None = "/_/resize",
    ref: ObjectReference | None = None,
    backend_name: str | None = None,
    context_from: str | None = None,
    finalizers: tuple[str, ...] = (),
    deleting: bool = False,
    status: RuleStatus | None = None,
) -> Rule:
    """Build a Rule snapshot for tests."""
    return Rule(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            uid=f"uid-{name}",
            generation=generation,
            finalizers=finalizers,
            deletionTimestamp="2024-05-01T12:00:00Z" if deleting else None,
        ),
        spec=RuleSpec(
            name=backend_name,
            trigger=trigger,
            function=None if ref is not None else function,
            ref=ref,
            contextFrom=SecretReference(name=context_from) if context_from else None,
        ),
        status=status or RuleStatus(),
    )


@pytest.fixture
def config() -> Config:
    return Config(finalizer=FINALIZER)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def backend() -> FakeWhiskBackend:
    return FakeWhiskBackend()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def reconciler(
    store: FakeStore, config: Config, backend: FakeWhiskBackend, resolver: FakeResolver
) -> RuleReconciler:
    return RuleReconciler(
        store,
        config,
        client_factory=backend.client_for,
        resolver=resolver,
    )
