"""Tests for the Kubernetes-backed store."""

import base64
from unittest.mock import MagicMock

import pytest
from conftest import make_rule
from kubernetes.client.rest import ApiException

from rule_controller.config import Config
from rule_controller.errors import ConflictError, InvalidObjectError, NotFoundError, StoreError
from rule_controller.kube_store import KubernetesStore, _plural_for
from rule_controller.models import NamespacedName, ObjectReference, ResourceState
from rule_controller.resolver import new_redirect_function

KEY = NamespacedName(namespace="default", name="hello-rule")


def encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


@pytest.fixture
def custom_api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def core_api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def kube_store(custom_api: MagicMock, core_api: MagicMock) -> KubernetesStore:
    return KubernetesStore(Config(), custom_api=custom_api, core_api=core_api)


class TestRules:
    """Tests for Rule reads and writes."""

    def test_get_rule(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        custom_api.get_namespaced_custom_object.return_value = make_rule().to_manifest()

        rule = kube_store.get_rule(KEY)

        assert rule.name == "hello-rule"
        custom_api.get_namespaced_custom_object.assert_called_once_with(
            "ibmcloud.ibm.com", "v1alpha1", "default", "rules", "hello-rule"
        )

    def test_get_rule_not_found(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404)

        with pytest.raises(NotFoundError):
            kube_store.get_rule(KEY)

    def test_get_rule_invalid(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        manifest = make_rule().to_manifest()
        del manifest["spec"]["trigger"]
        custom_api.get_namespaced_custom_object.return_value = manifest

        with pytest.raises(InvalidObjectError) as exc_info:
            kube_store.get_rule(KEY)

        assert "spec.trigger" in str(exc_info.value)

    def test_update_rule_conflict(
        self, kube_store: KubernetesStore, custom_api: MagicMock
    ) -> None:
        custom_api.replace_namespaced_custom_object.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(ConflictError):
            kube_store.update_rule(make_rule())

    def test_update_rule_status(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        rule = make_rule().with_status(ResourceState.PENDING, "deploying")
        custom_api.replace_namespaced_custom_object_status.return_value = rule.to_manifest()

        stored = kube_store.update_rule_status(rule)

        assert stored.status.state == ResourceState.PENDING
        args = custom_api.replace_namespaced_custom_object_status.call_args.args
        assert args[:5] == ("ibmcloud.ibm.com", "v1alpha1", "default", "rules", "hello-rule")
        assert args[5]["status"]["message"] == "deploying"

    def test_server_error(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        custom_api.replace_namespaced_custom_object_status.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(StoreError) as exc_info:
            kube_store.update_rule_status(make_rule())

        assert exc_info.value.retryable is True


class TestFunctions:
    """Tests for Function writes."""

    def test_create_function(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        function = new_redirect_function(make_rule(), "http://a")
        custom_api.create_namespaced_custom_object.return_value = function.to_manifest()

        kube_store.create_function(function)

        args = custom_api.create_namespaced_custom_object.call_args.args
        assert args[:4] == ("ibmcloud.ibm.com", "v1alpha1", "default", "functions")
        assert args[4]["metadata"]["name"] == "hello-rule-redirect"


class TestSecretsAndObjects:
    """Tests for secret and referenced object reads."""

    def test_get_secret_decodes(self, kube_store: KubernetesStore, core_api: MagicMock) -> None:
        core_api.read_namespaced_secret.return_value = MagicMock(
            data={"apihost": encode("ow.example.com"), "auth": encode("user:key")}
        )

        data = kube_store.get_secret(NamespacedName(namespace="default", name="owprops"))

        assert data == {"apihost": "ow.example.com", "auth": "user:key"}
        core_api.read_namespaced_secret.assert_called_once_with("owprops", "default")

    def test_get_secret_bad_encoding(
        self, kube_store: KubernetesStore, core_api: MagicMock
    ) -> None:
        core_api.read_namespaced_secret.return_value = MagicMock(data={"auth": "%%%"})

        with pytest.raises(InvalidObjectError):
            kube_store.get_secret(NamespacedName(namespace="default", name="owprops"))

    def test_get_object(self, kube_store: KubernetesStore, custom_api: MagicMock) -> None:
        ref = ObjectReference(apiVersion="serving.knative.dev/v1", kind="Service", name="web")
        custom_api.get_namespaced_custom_object.return_value = {"status": {}}

        assert kube_store.get_object("default", ref) == {"status": {}}
        custom_api.get_namespaced_custom_object.assert_called_once_with(
            "serving.knative.dev", "v1", "default", "services", "web"
        )

    def test_core_object_rejected(self, kube_store: KubernetesStore) -> None:
        ref = ObjectReference(apiVersion="v1", kind="Service", name="web")

        with pytest.raises(InvalidObjectError):
            kube_store.get_object("default", ref)

    @pytest.mark.parametrize(
        "kind,plural",
        [
            ("Service", "services"),
            ("Broker", "brokers"),
            ("Gateway", "gateways"),
            ("Proxy", "proxies"),
            ("Ingress", "ingresses"),
        ],
    )
    def test_plural_for(self, kind: str, plural: str) -> None:
        assert _plural_for(kind) == plural
