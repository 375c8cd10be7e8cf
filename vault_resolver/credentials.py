"""
Credential chain that tries identity providers in a fixed priority order.

Each provider wraps one azure.identity credential. The chain returns the first
token a provider produces and caches it until it is close to expiry. It also
implements the azure.core TokenCredential protocol, so it can be handed
directly to SDK clients such as SecretClient.
"""
import logging
import threading
import time

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import (
    AzureCliCredential,
    ClientSecretCredential,
    EnvironmentCredential,
    ManagedIdentityCredential,
)

from .config import KEY_VAULT_SCOPE
from .errors import NoCredentialAvailable, ProviderUnavailable
from .models import CredentialToken

logger = logging.getLogger(__name__)


class CredentialProvider:
    """One named source of bearer tokens."""

    def __init__(self, name, credential):
        self.name = name
        self.credential = credential

    def get_token(self, *scopes, **kwargs):
        try:
            access = self.credential.get_token(*scopes, **kwargs)
        except ClientAuthenticationError as e:
            # CredentialUnavailableError is a subclass: the provider is not
            # configured here, or it is configured but could not authenticate
            raise ProviderUnavailable(self.name, e.message or str(e)) from e
        return CredentialToken(access.token, access.expires_on, provider=self.name)

    def close(self):
        close = getattr(self.credential, "close", None)
        if close is not None:
            close()

    def __repr__(self):
        return f"CredentialProvider({self.name!r})"


class CredentialChain:
    """Resolve a token from the first provider that can supply one."""

    def __init__(self, providers, refresh_margin=300.0, default_scope=KEY_VAULT_SCOPE, clock=time.time):
        self.providers = list(providers)
        self.refresh_margin = refresh_margin
        self.default_scope = default_scope
        self._clock = clock
        self._tokens = {}
        self._lock = threading.Lock()

    def resolve(self, *scopes, tenant_id=None, **kwargs):
        """Return a cached token or acquire a new one from the providers."""
        scopes = scopes or (self.default_scope,)
        key = (scopes, tenant_id)

        with self._lock:
            cached = self._tokens.get(key)
            if cached is not None and not cached.expires_within(self.refresh_margin, self._clock()):
                return cached

            if tenant_id is not None:
                kwargs["tenant_id"] = tenant_id
            token = self._acquire(scopes, kwargs)
            self._tokens[key] = token
            return token

    def _acquire(self, scopes, kwargs):
        failures = []
        for provider in self.providers:
            try:
                token = provider.get_token(*scopes, **kwargs)
            except ProviderUnavailable as e:
                logger.debug("Credential provider %s unavailable: %s", provider.name, e.reason)
                failures.append(e)
                continue
            logger.info("Acquired token from %s", provider.name)
            return token

        raise NoCredentialAvailable(failures)

    def get_token(self, *scopes, claims=None, tenant_id=None, **kwargs):
        """TokenCredential protocol used by the azure-core bearer token policy."""
        if claims:
            # A claims challenge means the cached token was rejected
            with self._lock:
                self._tokens.pop((scopes or (self.default_scope,), tenant_id), None)
            kwargs["claims"] = claims
        return self.resolve(*scopes, tenant_id=tenant_id, **kwargs).to_access_token()

    def clear(self):
        with self._lock:
            self._tokens.clear()

    def close(self):
        for provider in self.providers:
            provider.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def build_default_chain(config):
    """Build the standard chain: environment, managed identity, developer login, client secret."""
    providers = [
        CredentialProvider("environment", EnvironmentCredential()),
        CredentialProvider("managed_identity", ManagedIdentityCredential()),
        CredentialProvider("azure_cli", AzureCliCredential(process_timeout=int(config.per_call_timeout))),
    ]

    if config.has_client_secret:
        providers.append(
            CredentialProvider(
                "client_secret",
                ClientSecretCredential(config.tenant_id, config.client_id, config.client_secret),
            )
        )

    return CredentialChain(
        providers,
        refresh_margin=config.token_refresh_margin,
        default_scope=config.scope,
    )
