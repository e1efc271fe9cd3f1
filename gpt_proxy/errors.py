"""Error taxonomy for the proxy core. Carried inside Failure, never raised across the core boundary."""


class ProxyError(Exception):
    """Base class for proxy errors."""

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(ProxyError):
    """A required request field is missing or empty. Never retried."""


class ProviderError(ProxyError):
    """The completion API call failed (network, timeout, non-2xx, empty response)."""


class StoreError(ProxyError):
    """A conversation store read or delete failed."""
