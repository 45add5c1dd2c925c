"""Fake object store.

Holds Rules, Functions, secrets and arbitrary referenced objects in memory.
Mimics the API server behaviors the reconciler relies on:
- every write bumps metadata.resourceVersion
- a write carrying a stale resourceVersion fails with ConflictError
- a status write only changes status, a main write never changes status
- an object with a deletionTimestamp disappears once its last finalizer is gone
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rule_controller.errors import ConflictError, NotFoundError
from rule_controller.models import Function, NamespacedName, ObjectReference, Rule

WRITE_OPERATIONS = frozenset(
    {"update_rule", "update_rule_status", "create_function", "update_function"}
)


@dataclass(frozen=True)
class StoreCall:
    """One recorded store call."""

    operation: str
    key: str


class FakeStore:
    """In-memory RuleStore."""

    def __init__(self) -> None:
        self._rules: dict[NamespacedName, Rule] = {}
        self._functions: dict[NamespacedName, Function] = {}
        self._secrets: dict[NamespacedName, dict[str, str]] = {}
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._version = 0
        self._failures: dict[str, list[Exception]] = {}
        self.calls: list[StoreCall] = []

    # -- seeding and inspection -------------------------------------------------

    def put_rule(self, rule: Rule) -> Rule:
        """Seed a Rule, assigning it a fresh resourceVersion."""
        stored = self._versioned(rule)
        self._rules[_key(rule)] = stored
        return stored

    def put_function(self, function: Function) -> Function:
        stored = self._versioned(function)
        self._functions[_key(function)] = stored
        return stored

    def put_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        self._secrets[NamespacedName(namespace=namespace, name=name)] = dict(data)

    def put_object(self, namespace: str, kind: str, name: str, obj: dict[str, Any]) -> None:
        self._objects[(namespace, kind, name)] = obj

    def rule(self, namespace: str, name: str) -> Rule | None:
        return self._rules.get(NamespacedName(namespace=namespace, name=name))

    def function(self, namespace: str, name: str) -> Function | None:
        return self._functions.get(NamespacedName(namespace=namespace, name=name))

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of an operation raise error."""
        self._failures.setdefault(operation, []).append(error)

    def calls_to(self, operation: str) -> list[StoreCall]:
        return [c for c in self.calls if c.operation == operation]

    @property
    def writes(self) -> list[StoreCall]:
        return [c for c in self.calls if c.operation in WRITE_OPERATIONS]

    # -- RuleStore --------------------------------------------------------------

    def get_rule(self, key: NamespacedName) -> Rule:
        self._record("get_rule", key)
        try:
            return self._rules[key]
        except KeyError:
            raise NotFoundError(f"Rule {key} not found") from None

    def update_rule(self, rule: Rule) -> Rule:
        key = _key(rule)
        self._record("update_rule", key)
        current = self._current_rule(key, rule)
        # Main writes never touch status
        stored = self._versioned(rule.model_copy(update={"status": current.status}))
        if stored.is_deleting and not stored.metadata.finalizers:
            del self._rules[key]
            return stored
        self._rules[key] = stored
        return stored

    def update_rule_status(self, rule: Rule) -> Rule:
        key = _key(rule)
        self._record("update_rule_status", key)
        current = self._current_rule(key, rule)
        stored = self._versioned(current.model_copy(update={"status": rule.status}))
        self._rules[key] = stored
        return stored

    def get_function(self, key: NamespacedName) -> Function:
        self._record("get_function", key)
        try:
            return self._functions[key]
        except KeyError:
            raise NotFoundError(f"Function {key} not found") from None

    def create_function(self, function: Function) -> Function:
        key = _key(function)
        self._record("create_function", key)
        if key in self._functions:
            raise ConflictError(f"Function {key} already exists")
        stored = self._versioned(function)
        self._functions[key] = stored
        return stored

    def update_function(self, function: Function) -> Function:
        key = _key(function)
        self._record("update_function", key)
        current = self._functions.get(key)
        if current is None:
            raise NotFoundError(f"Function {key} not found")
        if function.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(f"Function {key} was modified concurrently")
        stored = self._versioned(function)
        self._functions[key] = stored
        return stored

    def get_secret(self, key: NamespacedName) -> dict[str, str]:
        self._record("get_secret", key)
        try:
            return dict(self._secrets[key])
        except KeyError:
            raise NotFoundError(f"Secret {key} not found") from None

    def get_object(self, namespace: str, ref: ObjectReference) -> dict[str, Any]:
        self._record("get_object", NamespacedName(namespace=namespace, name=ref.name))
        try:
            return self._objects[(namespace, ref.kind, ref.name)]
        except KeyError:
            raise NotFoundError(f"{ref.kind} {namespace}/{ref.name} not found") from None

    # -- helpers ----------------------------------------------------------------

    def _record(self, operation: str, key: NamespacedName) -> None:
        self.calls.append(StoreCall(operation=operation, key=str(key)))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _current_rule(self, key: NamespacedName, rule: Rule) -> Rule:
        current = self._rules.get(key)
        if current is None:
            raise NotFoundError(f"Rule {key} not found")
        if rule.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(f"Rule {key} was modified concurrently")
        return current

    def _versioned(self, obj: Any) -> Any:
        self._version += 1
        metadata = obj.metadata.model_copy(update={"resource_version": str(self._version)})
        return obj.model_copy(update={"metadata": metadata})


def _key(obj: Rule | Function) -> NamespacedName:
    return NamespacedName(namespace=obj.metadata.namespace, name=obj.metadata.name)
