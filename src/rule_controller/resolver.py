"""Action target resolution.

A Rule names its action either directly, as a qualified backend name, or
indirectly, as a reference to an addressable object (anything exposing
status.address.url). Indirect targets cannot be invoked by the backend
directly, so the controller materializes a redirect Function that forwards
trigger events to the resolved URL and points the rule at that function.

The redirect Function:
- has a deterministic name derived from the Rule, so every reconciliation
  finds the same object
- is owned by the Rule, so the store deletes it together with the Rule
- is only rewritten when its spec actually differs from the desired one
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from .errors import NotFoundError, StoreError, UnaddressableError
from .models import (
    MAX_OBJECT_NAME_LENGTH,
    REDIRECT_SUFFIX,
    Function,
    FunctionSpec,
    KeyValue,
    NamespacedName,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
    Rule,
    parse_qualified_name,
)
from .store import RuleStore

if TYPE_CHECKING:
    from .context import ReconcileContext

logger = logging.getLogger(__name__)

REDIRECT_RUNTIME = "nodejs:default"

# Forwards the trigger payload to params.url and returns the downstream answer
REDIRECT_CODE = """\
const { URL } = require('url');

function main(params) {
  const target = new URL(params.url);
  const transport = require(target.protocol === 'https:' ? 'https' : 'http');
  const payload = Object.assign({}, params);
  delete payload.url;
  const body = JSON.stringify(payload);
  return new Promise((resolve, reject) => {
    const req = transport.request(target, {
      method: 'POST',
      headers: { 'Content-Type': 'application/json', 'Content-Length': Buffer.byteLength(body) },
    }, (res) => {
      let data = '';
      res.on('data', (chunk) => { data += chunk; });
      res.on('end', () => resolve({ statusCode: res.statusCode, body: data }));
    });
    req.on('error', reject);
    req.write(body);
    req.end();
  });
}
"""


class AddressResolver(Protocol):
    """Resolves an object reference to a URL."""

    def resolve(self, namespace: str, ref: ObjectReference) -> str:
        """Return the URL of the referenced object.

        Raises:
            UnaddressableError: If the object is missing or exposes no address.
        """
        ...


class AddressableResolver:
    """Resolve references through the duck-typed status.address field."""

    def __init__(self, store: RuleStore) -> None:
        self._store = store

    def resolve(self, namespace: str, ref: ObjectReference) -> str:
        target_namespace = ref.namespace or namespace
        try:
            obj = self._store.get_object(target_namespace, ref)
        except StoreError as e:
            raise UnaddressableError(
                f"Object is not addressable: {target_namespace}/{ref.name}: {e}"
            ) from e

        url = _address_of(obj)
        if not url:
            raise UnaddressableError(
                f"Object is not addressable: {target_namespace}/{ref.name}: no status.address"
            )
        return url


def _address_of(obj: dict[str, Any]) -> str | None:
    status = obj.get("status") or {}
    if not isinstance(status, dict):
        return None
    address = status.get("address") or {}
    if not isinstance(address, dict):
        return None
    url = address.get("url")
    if url:
        return str(url)
    hostname = address.get("hostname")
    if hostname:
        return f"http://{hostname}"
    return None


def redirect_function_name(rule: Rule) -> str:
    """Deterministic name of the redirect Function for a Rule."""
    max_prefix = MAX_OBJECT_NAME_LENGTH - len(REDIRECT_SUFFIX)
    return f"{rule.name[:max_prefix]}{REDIRECT_SUFFIX}"


def new_redirect_function(rule: Rule, url: str) -> Function:
    """Build the desired redirect Function for a Rule and a resolved URL."""
    name = redirect_function_name(rule)
    return Function(
        apiVersion=rule.api_version,
        metadata=ObjectMeta(
            name=name,
            namespace=rule.namespace,
            ownerReferences=(
                OwnerReference(
                    apiVersion=rule.api_version,
                    kind=rule.kind,
                    name=rule.name,
                    uid=rule.metadata.uid,
                ),
            ),
        ),
        spec=FunctionSpec(
            name=name,
            runtime=REDIRECT_RUNTIME,
            code=REDIRECT_CODE,
            parameters=(KeyValue(name="url", value=url),),
            contextFrom=rule.spec.context_from,
        ),
    )


def resolve_action_name(ctx: ReconcileContext, rule: Rule) -> str:
    """Turn a Rule's action target into a backend action name.

    Raises:
        MalformedNameError: If a direct action name cannot be parsed.
        UnaddressableError: If an indirect reference cannot be resolved.
        StoreError: If the redirect Function cannot be read or written.
    """
    if rule.spec.ref is None:
        # Validated by RuleSpec: exactly one of function/ref is set
        action = parse_qualified_name(rule.spec.function or "")
        return str(action)

    ref = rule.spec.ref
    try:
        url = ctx.resolver.resolve(rule.namespace, ref)
    except UnaddressableError:
        ctx.log.info(
            "Action reference is not addressable",
            extra={"ref_kind": ref.kind, "ref_name": ref.name},
        )
        raise

    desired = new_redirect_function(rule, url)
    ensure_redirect_function(ctx.store, desired, ctx.log)
    return desired.name


def ensure_redirect_function(
    store: RuleStore,
    desired: Function,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> Function:
    """Create the redirect Function, or update it when its spec differs.

    Returns:
        The stored Function.

    Raises:
        StoreError: On any store failure other than a missing Function.
    """
    key = NamespacedName(namespace=desired.namespace, name=desired.name)
    try:
        existing = store.get_function(key)
    except NotFoundError:
        log.info("Creating redirect function", extra={"function": desired.name})
        return store.create_function(desired)

    if existing.spec == desired.spec:
        return existing

    log.info("Updating redirect function", extra={"function": desired.name})
    return store.update_function(existing.with_spec(desired.spec))
