"""
Resolver configuration loaded from environment variables (and a .env file when present).
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

KEY_VAULT_SCOPE = "https://vault.azure.net/.default"


def _env_number(name, default, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"{name} environment variable must be a number, got {raw!r}"
        ) from None


@dataclass
class ResolverConfig:
    """Options recognised by the store client, the credential chain and the resolver."""

    provider_endpoint: str
    default_ttl: float = 30.0
    max_retries: int = 3
    base_backoff: float = 0.5
    max_backoff: float = 8.0
    jitter: float = 0.1
    per_call_timeout: float = 10.0
    retry_deadline: float = 30.0
    token_refresh_margin: float = 300.0
    max_workers: int = 8
    scope: str = KEY_VAULT_SCOPE
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides):
        """Build a config from the process environment."""
        load_dotenv(find_dotenv(usecwd=True))

        vault_url = os.environ.get("KEY_VAULT_URL")
        if not vault_url:
            raise ValueError(
                "KEY_VAULT_URL environment variable must be set"
            )

        values = {
            "provider_endpoint": vault_url,
            "default_ttl": _env_number("SECRET_CACHE_TTL", cls.default_ttl),
            "max_retries": _env_number("SECRET_MAX_RETRIES", cls.max_retries, int),
            "base_backoff": _env_number("SECRET_BASE_BACKOFF", cls.base_backoff),
            "max_backoff": _env_number("SECRET_MAX_BACKOFF", cls.max_backoff),
            "jitter": _env_number("SECRET_BACKOFF_JITTER", cls.jitter),
            "per_call_timeout": _env_number("SECRET_CALL_TIMEOUT", cls.per_call_timeout),
            "retry_deadline": _env_number("SECRET_RETRY_DEADLINE", cls.retry_deadline),
            "token_refresh_margin": _env_number("TOKEN_REFRESH_MARGIN", cls.token_refresh_margin),
            "max_workers": _env_number("SECRET_FETCH_WORKERS", cls.max_workers, int),
            "tenant_id": os.environ.get("AZURE_TENANT_ID"),
            "client_id": os.environ.get("AZURE_CLIENT_ID"),
            "client_secret": os.environ.get("AZURE_CLIENT_SECRET"),
        }
        values.update(overrides)

        config = cls(**values)
        config.validate()
        return config

    @property
    def has_client_secret(self):
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def validate(self):
        """Raise ValueError when an option is out of range."""
        if not self.provider_endpoint:
            raise ValueError("provider_endpoint must be set")
        if self.default_ttl < 0:
            raise ValueError("default_ttl must not be negative")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.base_backoff <= 0 or self.max_backoff < self.base_backoff:
            raise ValueError("backoff must satisfy 0 < base_backoff <= max_backoff")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        if self.per_call_timeout <= 0 or self.retry_deadline <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        return self
