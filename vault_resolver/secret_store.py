"""
Raw Key Vault operations: fetch a secret by reference, list secret properties,
and write a new secret version. Every SDK exception is translated into the
resolver error taxonomy so that callers never see azure-core exception types.
"""
import logging

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceRequestTimeoutError,
    ServiceResponseError,
    ServiceResponseTimeoutError,
)
from azure.keyvault.secrets import SecretClient

from .errors import NotFound, RequestRejected, Timeout, Unauthorized, Unavailable
from .models import SecretMetadata, SecretReference, SecretValue

logger = logging.getLogger(__name__)


def translate_error(exc, name=None):
    """Map an azure-core exception onto NotFound/Unauthorized/Timeout/Unavailable."""
    if isinstance(exc, ResourceNotFoundError):
        return NotFound(f"Secret {name!r} not found", name=name)
    if isinstance(exc, ClientAuthenticationError):
        return Unauthorized(f"Not authorized for secret {name!r}: {exc.message}", name=name)
    if isinstance(exc, (ServiceRequestTimeoutError, ServiceResponseTimeoutError)):
        return Timeout(f"Key Vault call for {name!r} timed out: {exc.message}", name=name)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return Unavailable(f"Key Vault unreachable: {exc.message}", name=name)
    if isinstance(exc, HttpResponseError):
        status = exc.status_code
        if status == 404:
            return NotFound(f"Secret {name!r} not found", name=name)
        if status in (401, 403):
            return Unauthorized(f"Not authorized for secret {name!r}: {exc.message}", name=name)
        if status == 408:
            return Timeout(f"Key Vault call for {name!r} timed out", name=name)
        if status == 429 or status is None or status >= 500:
            return Unavailable(f"Key Vault returned {status}: {exc.message}", name=name)
        return RequestRejected(f"Key Vault rejected the request ({status}): {exc.message}",
                               name=name, status_code=status)
    return None


def _to_secret_value(secret):
    props = secret.properties
    return SecretValue(
        name=secret.name,
        value=secret.value,
        version=props.version,
        content_type=props.content_type,
        expires_at=props.expires_on,
        tags=props.tags or {},
    )


class SecretStoreClient:
    """Thin wrapper around SecretClient with per-call timeouts and error translation."""

    def __init__(self, vault_url, credential, per_call_timeout=10.0, client=None):
        self.vault_url = vault_url
        self.per_call_timeout = per_call_timeout

        if client is None:
            # Retries are owned by the resolver, so the SDK pipeline must not retry
            client = SecretClient(
                vault_url=vault_url,
                credential=credential,
                retry_total=0,
                connection_timeout=per_call_timeout,
                read_timeout=per_call_timeout,
            )
        self._client = client

    @classmethod
    def from_config(cls, config, credential):
        return cls(config.provider_endpoint, credential, per_call_timeout=config.per_call_timeout)

    def _call_options(self):
        return {
            "connection_timeout": self.per_call_timeout,
            "read_timeout": self.per_call_timeout,
        }

    def fetch(self, ref):
        """Fetch the value of a secret, the current version unless ref pins one."""
        if isinstance(ref, str):
            ref = SecretReference(ref)

        version = None if ref.is_latest else ref.version
        try:
            secret = self._client.get_secret(ref.name, version, **self._call_options())
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            raise translate_error(e, ref.name) from e

        value = _to_secret_value(secret)
        logger.debug("Fetched secret %s version %s", ref.name, value.version)
        return value

    def list(self):
        """Yield metadata for every secret in the vault, without values."""
        try:
            # ItemPaged requests the next page only when iteration reaches it
            for prop in self._client.list_properties_of_secrets(**self._call_options()):
                yield SecretMetadata(
                    name=prop.name,
                    enabled=prop.enabled,
                    tags=prop.tags or {},
                    expires_at=prop.expires_on,
                    content_type=prop.content_type,
                    updated_at=prop.updated_on,
                )
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            raise translate_error(e) from e

    def put(self, name, value, content_type=None, tags=None, expires_at=None):
        """Write a new version of a secret. Earlier versions are left intact."""
        if isinstance(value, bytes):
            # Key Vault stores secret values as text
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError as e:
                raise RequestRejected(
                    f"Secret {name!r} value must be UTF-8 text: {e.reason}", name=name
                ) from e

        try:
            secret = self._client.set_secret(
                name,
                value,
                content_type=content_type,
                tags=tags,
                expires_on=expires_at,
                **self._call_options()
            )
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            raise translate_error(e, name) from e

        logger.info("Created version %s of secret %s", secret.properties.version, name)
        return _to_secret_value(secret)

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
