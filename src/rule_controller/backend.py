"""Function backend client.

Talks to the OpenWhisk-compatible REST API:

    PUT    /api/v1/namespaces/{namespace}/rules/{name}?overwrite=true
    DELETE /api/v1/namespaces/{namespace}/rules/{name}

Every failure, transport or HTTP, is raised as BackendError. The error
carries the HTTP status code when the backend answered; classification into
retryable or terminal happens in rule_controller.classify, not here.

SECURITY: Timeouts are enforced on every request so a hung backend cannot
block a worker forever.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import Config
from .credentials import WhiskCredentials, load_credentials
from .errors import BackendError
from .models import SecretReference, WhiskRule
from .store import RuleStore

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
USER_AGENT = "rule-controller"


class WhiskClient(Protocol):
    """Operations the reconciler needs from the backend."""

    def insert_rule(
        self, rule: WhiskRule, overwrite: bool = True
    ) -> tuple[WhiskRule, httpx.Response | None]:
        """Create or replace a rule. Returns the stored rule and the raw response."""
        ...

    def delete_rule(self, name: str) -> httpx.Response | None: ...

    def close(self) -> None: ...


class HttpWhiskClient:
    """WhiskClient over httpx."""

    def __init__(
        self,
        credentials: WhiskCredentials,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._namespace = credentials.namespace
        self._client = httpx.Client(
            base_url=credentials.base_url,
            auth=credentials.basic_auth,
            timeout=timeout_seconds,
            verify=not credentials.insecure,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    @property
    def namespace(self) -> str:
        return self._namespace

    def _rule_path(self, name: str) -> str:
        return (
            f"{API_PREFIX}/namespaces/{quote(self._namespace, safe='')}"
            f"/rules/{quote(name, safe='')}"
        )

    def insert_rule(
        self, rule: WhiskRule, overwrite: bool = True
    ) -> tuple[WhiskRule, httpx.Response | None]:
        body = rule.model_dump(exclude_none=True)
        response = self._request(
            "PUT",
            self._rule_path(rule.name),
            params={"overwrite": "true" if overwrite else "false"},
            json=body,
        )
        try:
            stored = WhiskRule.model_validate(response.json())
        except (ValueError, ValidationError):
            # Some backends answer with an empty or partial body
            stored = rule
        return stored, response

    def delete_rule(self, name: str) -> httpx.Response | None:
        return self._request("DELETE", self._rule_path(name))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpWhiskClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendError(f"{method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise BackendError(
                f"{method} {path} returned {response.status_code}: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response


def _error_text(response: httpx.Response) -> str:
    """Extract the backend's error message from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return response.text or response.reason_phrase


def new_whisk_client(
    store: RuleStore,
    config: Config,
    namespace: str,
    context_from: SecretReference | None,
) -> HttpWhiskClient:
    """Build a backend client scoped to the credentials an object declares.

    Raises:
        CredentialsUnavailableError: If the credentials cannot be loaded.
    """
    credentials = load_credentials(
        store,
        namespace,
        context_from,
        default_secret=config.default_credentials_secret,
    )
    return HttpWhiskClient(credentials, timeout_seconds=config.request_timeout_seconds)
