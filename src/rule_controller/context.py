"""Per-invocation execution context.

Each reconciliation gets its own ReconcileContext carrying the store handle,
the request being served and a logger bound to that request. Nothing is
shared between invocations except the collaborators passed in explicitly.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from .backend import WhiskClient
from .classify import BackendErrorClassifier
from .config import Config
from .models import NamespacedName, SecretReference
from .resolver import AddressResolver
from .store import RuleStore

# Builds a backend client for (namespace, contextFrom)
ClientFactory = Callable[[str, SecretReference | None], WhiskClient]

# Decides whether a failed backend delete keeps the finalizer
FinalizeRetryPredicate = Callable[[Exception], bool]


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges request fields into every record's extra."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def new_request_id() -> str:
    return secrets.token_hex(8)


@dataclass(frozen=True)
class ReconcileContext:
    """Everything one reconciliation needs, passed explicitly."""

    request: NamespacedName
    store: RuleStore
    config: Config
    client_factory: ClientFactory
    resolver: AddressResolver
    classifier: BackendErrorClassifier
    should_retry_finalize: FinalizeRetryPredicate
    request_id: str = field(default_factory=new_request_id)
    log: ContextLogger = field(init=False)

    def __post_init__(self) -> None:
        log = ContextLogger(
            logging.getLogger("rule_controller.reconciler"),
            {
                "rule_namespace": self.request.namespace,
                "rule_name": self.request.name,
                "request_id": self.request_id,
            },
        )
        # Frozen dataclass: assign the derived logger once
        object.__setattr__(self, "log", log)
