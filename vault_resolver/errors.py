"""
Error taxonomy for secret resolution.
Transient errors are retried by the resolver, everything else surfaces immediately.
"""


class SecretResolutionError(Exception):
    """Base class for every error raised by the resolver stack."""

    transient = False

    def __init__(self, message, name=None):
        super().__init__(message)
        self.name = name
        # Filled in by the retry policy once it gives up on the error
        self.attempts = 1
        self.elapsed = 0.0


class NotFound(SecretResolutionError):
    """The secret name or version does not exist in the store."""


class Unauthorized(SecretResolutionError):
    """The token was rejected or lacks permission for the operation."""


class RequestRejected(SecretResolutionError):
    """The store rejected the request for a reason retrying will not fix."""

    def __init__(self, message, name=None, status_code=None):
        super().__init__(message, name=name)
        self.status_code = status_code


class Unavailable(SecretResolutionError):
    """Transport failure or a throttled/failing service."""

    transient = True


class Timeout(SecretResolutionError):
    """A call did not complete within its time budget."""

    transient = True


class ProviderUnavailable(SecretResolutionError):
    """A single credential provider could not produce a token."""

    def __init__(self, provider, reason):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class NoCredentialAvailable(SecretResolutionError):
    """Every provider in the credential chain failed."""

    def __init__(self, failures):
        self.failures = list(failures)
        if self.failures:
            details = "; ".join(str(f) for f in self.failures)
        else:
            details = "no credential providers configured"
        super().__init__(f"No credential available ({details})")


def is_transient(exc):
    """Return True when retrying the failed operation may succeed."""
    return isinstance(exc, SecretResolutionError) and exc.transient
