"""Pytest configuration and fixtures."""

import threading
import uuid
from types import SimpleNamespace

import pytest
from azure.core.exceptions import ResourceNotFoundError

from vault_resolver.errors import NotFound
from vault_resolver.models import SecretValue
from vault_resolver.resolver import CachingResolver
from vault_resolver.retry import RetryPolicy


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingSleep:
    """Records requested delays and advances the fake clock instead of sleeping."""

    def __init__(self, clock):
        self.clock = clock
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)
        self.clock.advance(seconds)


class FakeStore:
    """In-memory stand-in for SecretStoreClient with scripted failures."""

    def __init__(self):
        self.secrets = {}
        self.failures = []
        self.fetch_calls = 0
        self.gate = None
        self.closed = False
        self._lock = threading.Lock()

    def rotate(self, name, value, expires_at=None):
        version = f"v{len(self.secrets.get(name, [])) + 1}"
        secret = SecretValue(name=name, value=value, version=version, expires_at=expires_at)
        self.secrets.setdefault(name, []).append(secret)
        return secret

    def fetch(self, ref):
        with self._lock:
            self.fetch_calls += 1
            failure = self.failures.pop(0) if self.failures else None
        if self.gate is not None:
            self.gate.wait(5)
        if failure is not None:
            raise failure

        versions = self.secrets.get(ref.name)
        if not versions:
            raise NotFound(f"Secret {ref.name!r} not found", name=ref.name)
        if ref.is_latest:
            return versions[-1]
        for secret in versions:
            if secret.version == ref.version:
                return secret
        raise NotFound(f"Secret {ref} not found", name=ref.name)

    def list(self):
        for name, versions in self.secrets.items():
            yield SimpleNamespace(
                name=name, enabled=True, content_type=None,
                expires_at=None, updated_at=None, tags={},
            )

    def put(self, name, value, content_type=None, tags=None, expires_at=None):
        return self.rotate(name, value, expires_at=expires_at)

    def close(self):
        self.closed = True


def _make_properties(version, content_type=None, tags=None, expires_on=None, name=None):
    return SimpleNamespace(
        name=name,
        version=version,
        content_type=content_type,
        tags=tags,
        expires_on=expires_on,
        enabled=True,
        updated_on=None,
    )


class FakeSecretClient:
    """Mimics the parts of azure.keyvault.secrets.SecretClient the store client uses."""

    def __init__(self, page_size=2):
        self.versions = {}
        self.page_size = page_size
        self.pages_served = 0
        self.calls = []
        self.error = None
        self.closed = False

    def get_secret(self, name, version=None, **kwargs):
        self.calls.append(("get_secret", name, version, kwargs))
        if self.error is not None:
            raise self.error
        history = self.versions.get(name)
        if not history:
            raise ResourceNotFoundError(f"A secret with (name/id) {name} was not found in this key vault.")
        if version is None:
            return history[-1]
        for secret in history:
            if secret.properties.version == version:
                return secret
        raise ResourceNotFoundError(f"A secret with (name/id) {name}/{version} was not found in this key vault.")

    def set_secret(self, name, value, **kwargs):
        self.calls.append(("set_secret", name, None, kwargs))
        if self.error is not None:
            raise self.error
        props = _make_properties(
            uuid.uuid4().hex,
            content_type=kwargs.get("content_type"),
            tags=kwargs.get("tags"),
            expires_on=kwargs.get("expires_on"),
            name=name,
        )
        secret = SimpleNamespace(name=name, value=value, properties=props)
        self.versions.setdefault(name, []).append(secret)
        return secret

    def list_properties_of_secrets(self, **kwargs):
        self.calls.append(("list_properties_of_secrets", None, None, kwargs))
        names = sorted(self.versions)

        def pages():
            for start in range(0, len(names), self.page_size):
                self.pages_served += 1
                if self.error is not None:
                    raise self.error
                for name in names[start:start + self.page_size]:
                    latest = self.versions[name][-1].properties
                    yield _make_properties(
                        None, latest.content_type, latest.tags, latest.expires_on, name=name
                    )

        return pages()

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def fake_client():
    return FakeSecretClient()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_retries=3, base_backoff=0.5, max_backoff=60.0, jitter=0.0, deadline=600.0)


@pytest.fixture
def resolver(store, clock, sleep, retry_policy):
    resolver = CachingResolver(store, ttl=5.0, retry_policy=retry_policy, clock=clock, sleep=sleep)
    yield resolver
    resolver.close()
