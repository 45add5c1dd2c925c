"""Pydantic models for Rule and Function resources.

These models provide:
1. Type-safe parsing of custom-object manifests (camelCase aliases)
2. Validation at the boundary (fail fast, fail loudly)
3. Immutable snapshots: every mutation returns an updated copy

A Rule is read once at the start of an invocation. Each logical transition
(finalizer added, status staged, status settled) produces a new copy that is
persisted exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import MalformedNameError

DEFAULT_NAMESPACE = "_"

# Kubernetes object names are DNS subdomains
MAX_OBJECT_NAME_LENGTH = 253
REDIRECT_SUFFIX = "-redirect"


class ResourceState(str, Enum):
    """Lifecycle states reported in Rule status."""

    PENDING = "Pending"
    ONLINE = "Online"
    FAILED = "Failed"


@dataclass(frozen=True)
class NamespacedName:
    """Identity of a namespaced object, as delivered by change notifications."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class QualifiedName:
    """A backend entity name split into namespace and entity parts."""

    namespace: str
    entity_name: str

    def __str__(self) -> str:
        return f"/{self.namespace}/{self.entity_name}"


def parse_qualified_name(name: str, default_namespace: str = DEFAULT_NAMESPACE) -> QualifiedName:
    """Parse a qualified backend name into namespace and entity.

    Accepted forms (leading slash optional):
        namespace/entity
        namespace/package/entity

    An empty namespace segment, or the placeholder "_", selects
    default_namespace. Bare entity names are rejected: a rule must say
    which namespace its trigger and action live in.

    Raises:
        MalformedNameError: If the name does not have the required form.
    """
    if not name:
        raise MalformedNameError("A valid qualified name was not detected: empty name")

    parts = name[1:].split("/") if name.startswith("/") else name.split("/")

    if len(parts) < 2 or len(parts) > 3:
        raise MalformedNameError(f"A valid qualified name was not detected: {name}")

    for part in parts[1:]:
        if not part or part == ".":
            raise MalformedNameError(f"A valid qualified name was not detected: {name}")

    namespace = parts[0] if parts[0] and parts[0] != DEFAULT_NAMESPACE else default_namespace
    return QualifiedName(namespace=namespace, entity_name="/".join(parts[1:]))


# =============================================================================
# Common metadata
# =============================================================================


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class OwnerReference(_Frozen):
    """Link from a derived object to the object that owns it."""

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str = ""
    controller: bool = True
    block_owner_deletion: bool = Field(True, alias="blockOwnerDeletion")


class ObjectMeta(_Frozen):
    """Subset of object metadata the controller reads and writes."""

    name: str = Field(min_length=1, max_length=MAX_OBJECT_NAME_LENGTH)
    namespace: str = "default"
    uid: str = ""
    generation: int = Field(0, ge=0)
    resource_version: str | None = Field(None, alias="resourceVersion")
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    finalizers: tuple[str, ...] = ()
    owner_references: tuple[OwnerReference, ...] = Field((), alias="ownerReferences")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ObjectReference(_Frozen):
    """Reference to an addressable object that resolves to a URL."""

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str = Field(min_length=1)
    namespace: str | None = None


class SecretReference(_Frozen):
    """Reference to the secret holding backend credentials."""

    name: str = Field(min_length=1)


# =============================================================================
# Rule
# =============================================================================


class RuleSpec(_Frozen):
    """Desired state of a Rule."""

    name: str | None = None
    trigger: str
    function: str | None = None
    ref: ObjectReference | None = None
    context_from: SecretReference | None = Field(None, alias="contextFrom")

    @model_validator(mode="after")
    def validate_action_target(self) -> RuleSpec:
        if self.function is None and self.ref is None:
            raise ValueError("one of function or ref is required")
        if self.function is not None and self.ref is not None:
            raise ValueError("function and ref are mutually exclusive")
        return self


class RuleStatus(_Frozen):
    """Observed state of a Rule."""

    generation: int = Field(0, ge=0)
    state: ResourceState | None = None
    message: str = ""


class Rule(_Frozen):
    """A Rule binds a trigger to an action in the function backend."""

    api_version: str = Field("ibmcloud.ibm.com/v1alpha1", alias="apiVersion")
    kind: str = "Rule"
    metadata: ObjectMeta
    spec: RuleSpec
    status: RuleStatus = Field(default_factory=RuleStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def generation(self) -> int:
        return self.metadata.generation

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def backend_name(self) -> str:
        """Name of the rule on the backend side."""
        return self.spec.name or self.metadata.name

    def is_converged(self) -> bool:
        """Check whether the current generation has already been applied."""
        return self.generation != 0 and self.status.generation >= self.generation

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def with_finalizer(self, finalizer: str) -> Rule:
        if self.has_finalizer(finalizer):
            return self
        metadata = self.metadata.model_copy(
            update={"finalizers": (*self.metadata.finalizers, finalizer)}
        )
        return self.model_copy(update={"metadata": metadata})

    def without_finalizer(self, finalizer: str) -> Rule:
        finalizers = tuple(f for f in self.metadata.finalizers if f != finalizer)
        metadata = self.metadata.model_copy(update={"finalizers": finalizers})
        return self.model_copy(update={"metadata": metadata})

    def with_status(
        self,
        state: ResourceState,
        message: str,
        *,
        generation: int | None = None,
    ) -> Rule:
        """Return a copy with an updated status.

        The status generation is only ever raised, never lowered.
        """
        status_generation = self.status.generation
        if generation is not None:
            status_generation = max(status_generation, generation)
        status = RuleStatus(generation=status_generation, state=state, message=message)
        return self.model_copy(update={"status": status})

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to a custom-object manifest."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Function (derived redirect)
# =============================================================================


class KeyValue(_Frozen):
    """A named parameter or annotation."""

    name: str
    value: Any = None


class FunctionSpec(_Frozen):
    """Desired state of a Function."""

    name: str | None = None
    runtime: str = "nodejs:default"
    code: str | None = None
    parameters: tuple[KeyValue, ...] = ()
    annotations: tuple[KeyValue, ...] = ()
    context_from: SecretReference | None = Field(None, alias="contextFrom")


class Function(_Frozen):
    """A Function deploys an action to the function backend."""

    api_version: str = Field("ibmcloud.ibm.com/v1alpha1", alias="apiVersion")
    kind: str = "Function"
    metadata: ObjectMeta
    spec: FunctionSpec

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def with_spec(self, spec: FunctionSpec) -> Function:
        return self.model_copy(update={"spec": spec})

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to a custom-object manifest."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Backend payload
# =============================================================================


class WhiskRule(_Frozen):
    """Rule entity as accepted by the backend REST API."""

    name: str
    trigger: str
    action: str
    publish: bool = False
    namespace: str | None = None
    status: str | None = None
