"""RuleStore backed by the Kubernetes API.

Rules and Functions are namespaced custom objects. Writes replace the whole
object and carry metadata.resourceVersion, so the API server rejects them
with 409 when the object changed since it was read.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from kubernetes import client as k8s
from kubernetes.client.rest import ApiException
from pydantic import BaseModel, ValidationError

from .config import Config
from .errors import ConflictError, InvalidObjectError, NotFoundError, StoreError
from .models import Function, NamespacedName, ObjectReference, Rule

logger = logging.getLogger(__name__)

RULE_PLURAL = "rules"
FUNCTION_PLURAL = "functions"

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    from kubernetes import config as kube_config

    try:
        kube_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except kube_config.ConfigException:
        kube_config.load_kube_config()
        logger.info("Using local kubeconfig")


def _translate(e: ApiException, what: str) -> StoreError:
    if e.status == HTTP_NOT_FOUND:
        return NotFoundError(f"{what} not found")
    if e.status == HTTP_CONFLICT:
        return ConflictError(f"{what} was modified concurrently: {e.reason}")
    return StoreError(f"{what}: API error {e.status}: {e.reason}")


def _plural_for(kind: str) -> str:
    lowered = kind.lower()
    if lowered.endswith("s"):
        return f"{lowered}es"
    if lowered.endswith("y") and lowered[-2:-1] not in ("a", "e", "i", "o", "u"):
        return f"{lowered[:-1]}ies"
    return f"{lowered}s"


class KubernetesStore:
    """RuleStore over CustomObjectsApi and CoreV1Api."""

    def __init__(
        self,
        config: Config,
        *,
        custom_api: k8s.CustomObjectsApi | None = None,
        core_api: k8s.CoreV1Api | None = None,
    ) -> None:
        self._config = config
        self._custom = custom_api or k8s.CustomObjectsApi()
        self._core = core_api or k8s.CoreV1Api()

    # -- Rules ----------------------------------------------------------------

    def get_rule(self, key: NamespacedName) -> Rule:
        obj = self._get_custom(RULE_PLURAL, key, f"Rule {key}")
        return self._parse(Rule, obj, f"Rule {key}")

    def update_rule(self, rule: Rule) -> Rule:
        key = NamespacedName(namespace=rule.namespace, name=rule.name)
        try:
            obj = self._custom.replace_namespaced_custom_object(
                self._config.api_group,
                self._config.api_version,
                rule.namespace,
                RULE_PLURAL,
                rule.name,
                rule.to_manifest(),
            )
        except ApiException as e:
            raise _translate(e, f"Rule {key}") from e
        return self._parse(Rule, obj, f"Rule {key}")

    def update_rule_status(self, rule: Rule) -> Rule:
        key = NamespacedName(namespace=rule.namespace, name=rule.name)
        try:
            obj = self._custom.replace_namespaced_custom_object_status(
                self._config.api_group,
                self._config.api_version,
                rule.namespace,
                RULE_PLURAL,
                rule.name,
                rule.to_manifest(),
            )
        except ApiException as e:
            raise _translate(e, f"Rule {key} status") from e
        return self._parse(Rule, obj, f"Rule {key}")

    # -- Functions ------------------------------------------------------------

    def get_function(self, key: NamespacedName) -> Function:
        obj = self._get_custom(FUNCTION_PLURAL, key, f"Function {key}")
        return self._parse(Function, obj, f"Function {key}")

    def create_function(self, function: Function) -> Function:
        key = NamespacedName(namespace=function.namespace, name=function.name)
        try:
            obj = self._custom.create_namespaced_custom_object(
                self._config.api_group,
                self._config.api_version,
                function.namespace,
                FUNCTION_PLURAL,
                function.to_manifest(),
            )
        except ApiException as e:
            raise _translate(e, f"Function {key}") from e
        return self._parse(Function, obj, f"Function {key}")

    def update_function(self, function: Function) -> Function:
        key = NamespacedName(namespace=function.namespace, name=function.name)
        try:
            obj = self._custom.replace_namespaced_custom_object(
                self._config.api_group,
                self._config.api_version,
                function.namespace,
                FUNCTION_PLURAL,
                function.name,
                function.to_manifest(),
            )
        except ApiException as e:
            raise _translate(e, f"Function {key}") from e
        return self._parse(Function, obj, f"Function {key}")

    # -- Secrets and references -----------------------------------------------

    def get_secret(self, key: NamespacedName) -> dict[str, str]:
        try:
            secret = self._core.read_namespaced_secret(key.name, key.namespace)
        except ApiException as e:
            raise _translate(e, f"Secret {key}") from e

        data: dict[str, str] = {}
        for field_name, encoded in (secret.data or {}).items():
            try:
                data[field_name] = base64.b64decode(encoded, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise InvalidObjectError(
                    f"Secret {key} field {field_name} is not valid base64 text"
                ) from e
        return data

    def get_object(self, namespace: str, ref: ObjectReference) -> dict[str, Any]:
        group, _, version = ref.api_version.rpartition("/")
        what = f"{ref.kind} {namespace}/{ref.name}"
        if not group:
            raise InvalidObjectError(f"{what}: core API objects are not addressable")
        try:
            return self._custom.get_namespaced_custom_object(
                group, version, namespace, _plural_for(ref.kind), ref.name
            )
        except ApiException as e:
            raise _translate(e, what) from e

    # -- helpers --------------------------------------------------------------

    def _get_custom(self, plural: str, key: NamespacedName, what: str) -> dict[str, Any]:
        try:
            return self._custom.get_namespaced_custom_object(
                self._config.api_group,
                self._config.api_version,
                key.namespace,
                plural,
                key.name,
            )
        except ApiException as e:
            raise _translate(e, what) from e

    @staticmethod
    def _parse(model: type[BaseModel], obj: Any, what: str) -> Any:
        try:
            return model.model_validate(obj)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise InvalidObjectError(f"{what} is invalid: {'; '.join(errors)}") from e
