"""
Client-side secret resolution for Azure Key Vault: credential chain,
store client, and a caching resolver with single-flight fetches and retries.
"""
from .config import ResolverConfig
from .credentials import CredentialChain, CredentialProvider, build_default_chain
from .errors import (
    NoCredentialAvailable,
    NotFound,
    ProviderUnavailable,
    RequestRejected,
    SecretResolutionError,
    Timeout,
    Unauthorized,
    Unavailable,
    is_transient,
)
from .models import CacheEntry, CredentialToken, SecretMetadata, SecretReference, SecretValue
from .resolver import CachingResolver
from .retry import RetryPolicy
from .secret_store import SecretStoreClient

__all__ = [
    "CacheEntry",
    "CachingResolver",
    "CredentialChain",
    "CredentialProvider",
    "CredentialToken",
    "NoCredentialAvailable",
    "NotFound",
    "ProviderUnavailable",
    "RequestRejected",
    "ResolverConfig",
    "RetryPolicy",
    "SecretMetadata",
    "SecretReference",
    "SecretResolutionError",
    "SecretStoreClient",
    "SecretValue",
    "Timeout",
    "Unauthorized",
    "Unavailable",
    "build_default_chain",
    "is_transient",
]
