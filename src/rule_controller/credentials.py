"""Backend credential lookup.

Credentials live in a secret in the Rule's namespace. A Rule names the
secret in spec.contextFrom; otherwise the controller-wide default secret is
used. The secret carries:

    apihost    backend host, with or without scheme (required)
    auth       "<uuid>:<key>" basic-auth pair (required)
    namespace  backend namespace (optional, default "_")
    insecure   "true" to skip TLS verification (optional)

SECURITY: The auth key is never logged.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import CredentialsUnavailableError, StoreError
from .models import DEFAULT_NAMESPACE, NamespacedName, SecretReference
from .store import RuleStore

logger = logging.getLogger(__name__)


class WhiskCredentials(BaseModel):
    """Connection settings for the function backend."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    apihost: str = Field(min_length=1)
    auth: str = Field(min_length=3)
    namespace: str = DEFAULT_NAMESPACE
    insecure: bool = False

    @field_validator("auth")
    @classmethod
    def validate_auth(cls, v: str) -> str:
        user, sep, key = v.partition(":")
        if not sep or not user or not key:
            raise ValueError("auth must have the form <uuid>:<key>")
        return v

    @property
    def base_url(self) -> str:
        """API host with an https scheme when none is given."""
        host = self.apihost.rstrip("/")
        if host.startswith(("http://", "https://")):
            return host
        return f"https://{host}"

    @property
    def basic_auth(self) -> tuple[str, str]:
        user, _, key = self.auth.partition(":")
        return user, key


def load_credentials(
    store: RuleStore,
    namespace: str,
    context_from: SecretReference | None,
    default_secret: str,
) -> WhiskCredentials:
    """Load backend credentials for an object in the given namespace.

    Raises:
        CredentialsUnavailableError: If the secret is missing, unreadable or
            incomplete. Callers decide whether that is retryable.
    """
    secret_name = context_from.name if context_from else default_secret
    key = NamespacedName(namespace=namespace, name=secret_name)

    try:
        data = store.get_secret(key)
    except StoreError as e:
        raise CredentialsUnavailableError(
            f"Credentials secret {key} is not available: {e}"
        ) from e

    try:
        credentials = WhiskCredentials.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(x) for x in err["loc"]) for err in e.errors())
        raise CredentialsUnavailableError(
            f"Credentials secret {key} is incomplete: {fields}"
        ) from e

    logger.debug(
        "Loaded backend credentials",
        extra={"secret": str(key), "apihost": credentials.apihost},
    )
    return credentials
