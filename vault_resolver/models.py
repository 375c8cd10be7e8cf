"""
Value types shared by the credential chain, the store client and the resolver.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional, Union

from azure.core.credentials import AccessToken

LATEST = "latest"


@dataclass(frozen=True)
class SecretReference:
    """Identifies a secret by name and optional version."""

    name: str
    version: Optional[str] = LATEST

    def __post_init__(self):
        if not self.name:
            raise ValueError("Secret name must not be empty")
        # None and "" both mean the store's current version
        if not self.version:
            object.__setattr__(self, "version", LATEST)

    @property
    def is_latest(self):
        return self.version == LATEST

    def __str__(self):
        return self.name if self.is_latest else f"{self.name}/{self.version}"


@dataclass(frozen=True)
class SecretValue:
    """A resolved secret. A rotation produces a new instance, never a mutation."""

    name: str
    value: Union[str, bytes] = field(repr=False)
    version: str
    content_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags or {})))

    def masked(self, visible=20):
        """Return the value shortened for display."""
        text = self.value.decode("utf-8", "replace") if isinstance(self.value, bytes) else self.value
        return text[:visible] + "..." if len(text) > visible else text


@dataclass(frozen=True)
class SecretMetadata:
    """Secret properties as returned by a listing, without the value."""

    name: str
    enabled: Optional[bool] = None
    tags: Mapping[str, str] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    content_type: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags or {})))


@dataclass(frozen=True)
class CredentialToken:
    """Bearer token with its expiry in epoch seconds."""

    token: str = field(repr=False)
    expires_on: int
    provider: str = ""

    def expires_within(self, margin, now):
        return self.expires_on - now <= margin

    def to_access_token(self):
        return AccessToken(self.token, self.expires_on)


@dataclass(frozen=True)
class CacheEntry:
    """A cached SecretValue and the monotonic deadline it may be served until."""

    value: SecretValue
    fetched_at: float
    fresh_until: float

    @classmethod
    def create(cls, value, fetched_at, ttl, now_utc):
        lifetime = ttl
        expires_at = value.expires_at
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            lifetime = min(lifetime, (expires_at - now_utc).total_seconds())
        return cls(value, fetched_at, fetched_at + max(lifetime, 0.0))

    def is_fresh(self, now):
        return now < self.fresh_until
