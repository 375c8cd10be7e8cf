"""
Caching secret resolver: the entry point applications use to read secrets.

Values are served from an in-memory cache until their freshness deadline,
which is the configured TTL or the secret's own expiry, whichever comes
first. Misses are fetched through the store client on a small thread pool.
Concurrent requests for the same reference share one in-flight fetch, and
transient failures are retried by the retry policy before surfacing.
"""
import concurrent.futures
import logging
import threading
import time
from datetime import datetime, timezone

from opentelemetry import trace
from opentelemetry.trace import StatusCode

from .credentials import build_default_chain
from .errors import RequestRejected, Timeout
from .models import CacheEntry, SecretReference
from .retry import RetryPolicy
from .secret_store import SecretStoreClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("vault-resolver")


def _utcnow():
    return datetime.now(timezone.utc)


class _Flight:
    """A fetch in progress and the number of callers waiting on it."""

    def __init__(self, future, prior=None):
        self.future = future
        self.prior = prior
        self.waiters = 0


class CachingResolver:
    """Serve secrets from cache, fetching at most once per reference at a time."""

    def __init__(self, store, ttl=30.0, retry_policy=None, max_workers=8,
                 clock=time.monotonic, wall_clock=_utcnow, sleep=time.sleep):
        self.store = store
        self.ttl = ttl
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="secret-fetch"
        )

        # Reentrant because Future.cancel() runs done callbacks on the calling thread
        self._lock = threading.RLock()
        self._cache = {}
        self._inflight = {}
        # Latest fetch started per key, including ones superseded by invalidation
        self._running = {}
        self._generations = {}
        self._closed = False
        self._epoch = 0
        self._counters = {"hits": 0, "misses": 0, "fetches": 0, "failures": 0}

    @classmethod
    def from_config(cls, config, credential=None, **kwargs):
        """Build a resolver, store client and credential chain from a ResolverConfig."""
        if credential is None:
            credential = build_default_chain(config)
        store = SecretStoreClient.from_config(config, credential)
        return cls(
            store,
            ttl=config.default_ttl,
            retry_policy=RetryPolicy.from_config(config),
            max_workers=config.max_workers,
            **kwargs
        )

    def get(self, ref, timeout=None):
        """Return the secret for ``ref``, from cache when still fresh.

        ``timeout`` bounds how long this caller waits for an in-flight fetch.
        When it elapses the caller gets Timeout; the fetch keeps running for
        any other waiters.
        """
        if isinstance(ref, str):
            ref = SecretReference(ref)
        key = (ref.name, ref.version)

        with self._lock:
            if self._closed:
                raise RequestRejected(f"Resolver is closed, cannot get {ref}", name=ref.name)
            entry = self._cache.get(key)
            if entry is not None:
                if entry.is_fresh(self._clock()):
                    self._counters["hits"] += 1
                    return entry.value
                # Expired entries are dropped, not served stale
                del self._cache[key]
                logger.debug("Cache entry for %s expired", ref)

            self._counters["misses"] += 1
            flight = self._inflight.get(key)
            if flight is None:
                flight = self._start_fetch(key, ref)
            flight.waiters += 1

        try:
            return flight.future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            raise Timeout(
                f"Gave up waiting {timeout}s for secret {ref}", name=ref.name
            ) from None
        finally:
            with self._lock:
                flight.waiters -= 1
                if flight.waiters == 0 and not flight.future.done():
                    # Only succeeds if the fetch has not started running yet
                    if flight.future.cancel():
                        logger.debug("Cancelled unattended fetch for %s", ref)

    def _generation(self, key):
        return (self._epoch, self._generations.get(key, 0))

    def _start_fetch(self, key, ref):
        generation = self._generation(key)
        prior = self._running.get(key)
        future = self._executor.submit(self._fetch, key, ref, generation, prior)
        self._running[key] = future
        flight = _Flight(future, prior)
        # Registered before the callback so a fetch that is already done still unregisters
        self._inflight[key] = flight
        future.add_done_callback(lambda f: self._finish(key, flight))
        return flight

    def _finish(self, key, flight):
        with self._lock:
            if self._inflight.get(key) is flight:
                del self._inflight[key]
            if self._running.get(key) is flight.future:
                if flight.prior is not None and not flight.prior.done():
                    # Cancelled before running while the fetch it waited on still runs
                    self._running[key] = flight.prior
                else:
                    del self._running[key]
                    self._generations.pop(key, None)

    def _fetch(self, key, ref, generation, prior):
        if prior is not None:
            # A fetch superseded by invalidation may still be running for this key
            concurrent.futures.wait([prior])

        with tracer.start_as_current_span("secret.fetch") as span:
            span.set_attribute("secret.name", ref.name)
            span.set_attribute("secret.version", ref.version)
            attempts = 0

            def attempt():
                nonlocal attempts
                attempts += 1
                with self._lock:
                    self._counters["fetches"] += 1
                return self.store.fetch(ref)

            def on_retry(error, delay):
                span.add_event("retry", {
                    "error.type": type(error).__name__,
                    "retry.delay_s": round(delay, 3),
                })

            try:
                value = self.retry_policy.run(
                    attempt, clock=self._clock, sleep=self._sleep, on_retry=on_retry
                )
            except Exception as e:
                with self._lock:
                    self._counters["failures"] += 1
                span.set_attribute("secret.attempts", attempts)
                span.record_exception(e)
                span.set_status(StatusCode.ERROR, str(e))
                raise

            span.set_attribute("secret.attempts", attempts)
            span.set_attribute("secret.resolved_version", value.version or "")

            with self._lock:
                if self._generation(key) == generation:
                    self._cache[key] = CacheEntry.create(
                        value, self._clock(), self.ttl, self._wall_clock()
                    )
                    span.set_attribute("secret.cache", "stored")
                else:
                    span.set_attribute("secret.cache", "discarded")
                    logger.info("Secret %s was invalidated during fetch, not caching", ref)

            span.set_status(StatusCode.OK)
            return value

    def invalidate(self, ref):
        """Drop the cached entry for ``ref`` so the next get fetches again."""
        if isinstance(ref, str):
            ref = SecretReference(ref)
        key = (ref.name, ref.version)

        with self._lock:
            self._drop(key)

    def invalidate_name(self, name):
        """Drop every cached version of a secret, e.g. after it was rotated."""
        with self._lock:
            keys = {k for k in self._cache if k[0] == name}
            keys.update(k for k in self._running if k[0] == name)
            for key in keys:
                self._drop(key)

    def invalidate_all(self):
        """Clear the whole cache."""
        with self._lock:
            self._epoch += 1
            self._cache.clear()
            self._inflight.clear()
            self._generations.clear()
        logger.info("Secret cache cleared")

    def _drop(self, key):
        self._cache.pop(key, None)
        # A fetch already running for this key must not repopulate the cache
        if key in self._running:
            self._generations[key] = self._generations.get(key, 0) + 1
        self._inflight.pop(key, None)

    def put(self, name, value, content_type=None, tags=None, expires_at=None):
        """Write a new secret version and drop cached copies of the old one."""
        secret = self.store.put(
            name, value, content_type=content_type, tags=tags, expires_at=expires_at
        )
        self.invalidate_name(name)
        return secret

    def list(self):
        return self.store.list()

    def stats(self):
        """Return cache counters, e.g. to show how many store calls were saved."""
        with self._lock:
            stats = dict(self._counters)
            stats["cached"] = len(self._cache)
            stats["in_flight"] = len(self._inflight)
        stats["ttl_seconds"] = self.ttl
        return stats

    def close(self):
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
