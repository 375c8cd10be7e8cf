"""Tests for configuration loading."""

import os

import pytest

from vault_resolver.config import ResolverConfig

ENV_VARS = (
    "KEY_VAULT_URL", "SECRET_CACHE_TTL", "SECRET_MAX_RETRIES", "SECRET_BASE_BACKOFF",
    "SECRET_MAX_BACKOFF", "SECRET_BACKOFF_JITTER", "SECRET_CALL_TIMEOUT",
    "SECRET_RETRY_DEADLINE", "TOKEN_REFRESH_MARGIN", "SECRET_FETCH_WORKERS",
    "AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep load_dotenv() away from any developer .env file
    monkeypatch.chdir(tmp_path)
    yield
    # load_dotenv writes to os.environ directly
    for name in ENV_VARS:
        os.environ.pop(name, None)


def test_requires_vault_url():
    with pytest.raises(ValueError, match="KEY_VAULT_URL"):
        ResolverConfig.from_env()


def test_defaults(monkeypatch):
    monkeypatch.setenv("KEY_VAULT_URL", "https://kv.vault.azure.net/")

    config = ResolverConfig.from_env()

    assert config.provider_endpoint == "https://kv.vault.azure.net/"
    assert config.default_ttl == 30.0
    assert config.max_retries == 3
    assert config.per_call_timeout == 10.0
    assert not config.has_client_secret


def test_reads_overrides_from_environment(monkeypatch):
    monkeypatch.setenv("KEY_VAULT_URL", "https://kv.vault.azure.net/")
    monkeypatch.setenv("SECRET_CACHE_TTL", "5")
    monkeypatch.setenv("SECRET_MAX_RETRIES", "6")
    monkeypatch.setenv("SECRET_CALL_TIMEOUT", "2.5")
    monkeypatch.setenv("AZURE_TENANT_ID", "tenant")
    monkeypatch.setenv("AZURE_CLIENT_ID", "client")
    monkeypatch.setenv("AZURE_CLIENT_SECRET", "secret")

    config = ResolverConfig.from_env(max_workers=2)

    assert config.default_ttl == 5.0
    assert config.max_retries == 6
    assert config.per_call_timeout == 2.5
    assert config.max_workers == 2
    assert config.has_client_secret


def test_dotenv_file_is_loaded(tmp_path):
    (tmp_path / ".env").write_text("KEY_VAULT_URL=https://dotenv.vault.azure.net/\n")

    assert ResolverConfig.from_env().provider_endpoint == "https://dotenv.vault.azure.net/"


def test_invalid_number_names_the_variable(monkeypatch):
    monkeypatch.setenv("KEY_VAULT_URL", "https://kv.vault.azure.net/")
    monkeypatch.setenv("SECRET_MAX_RETRIES", "three")

    with pytest.raises(ValueError, match="SECRET_MAX_RETRIES"):
        ResolverConfig.from_env()


@pytest.mark.parametrize("overrides", [
    {"default_ttl": -1},
    {"max_retries": -1},
    {"base_backoff": 0},
    {"base_backoff": 10, "max_backoff": 1},
    {"jitter": 2},
    {"per_call_timeout": 0},
    {"max_workers": 0},
])
def test_validate_rejects_out_of_range(overrides):
    config = ResolverConfig(provider_endpoint="https://kv.vault.azure.net/", **overrides)

    with pytest.raises(ValueError):
        config.validate()
