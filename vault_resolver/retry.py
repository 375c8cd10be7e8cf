"""
Exponential backoff for transient store failures.
"""
import logging
import random
import time

from .errors import is_transient

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Retry an operation on transient errors with capped, jittered exponential backoff."""

    def __init__(self, max_retries=3, base_backoff=0.5, max_backoff=8.0, jitter=0.1,
                 deadline=30.0, rng=None):
        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.jitter = jitter
        self.deadline = deadline
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config, rng=None):
        return cls(
            max_retries=config.max_retries,
            base_backoff=config.base_backoff,
            max_backoff=config.max_backoff,
            jitter=config.jitter,
            deadline=config.retry_deadline,
            rng=rng,
        )

    def delay_for(self, attempt):
        """Pre-jitter delay before retry number ``attempt`` (0-based)."""
        return min(self.max_backoff, self.base_backoff * (2 ** attempt))

    def jittered(self, delay):
        return delay + self._rng.uniform(0, delay * self.jitter)

    def run(self, operation, clock=time.monotonic, sleep=time.sleep, on_retry=None):
        """Call ``operation`` until it succeeds or a retry would not help.

        Permanent errors propagate on the first attempt. When retries or the
        overall deadline run out, the last transient error is raised with its
        ``attempts`` and ``elapsed`` attributes filled in.
        """
        started = clock()
        attempt = 0

        while True:
            try:
                return operation()
            except Exception as e:
                if not is_transient(e):
                    raise

                elapsed = clock() - started
                e.attempts = attempt + 1
                e.elapsed = elapsed

                if attempt >= self.max_retries:
                    logger.warning("Giving up after %d attempt(s) in %.2fs: %s", e.attempts, elapsed, e)
                    raise

                delay = self.jittered(self.delay_for(attempt))
                if elapsed + delay > self.deadline:
                    logger.warning("Retry deadline of %.1fs reached after %d attempt(s): %s",
                                   self.deadline, e.attempts, e)
                    raise

                logger.info("Attempt %d failed (%s), retrying in %.2fs", e.attempts, e, delay)
                if on_retry is not None:
                    on_retry(e, delay)
                sleep(delay)
                attempt += 1
