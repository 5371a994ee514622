"""
Exception types shared across the trading cycle.
"""


class FourcastError(Exception):
    """Base class for all fourcast errors."""


class ProviderError(FourcastError):
    """A decision provider failed to produce a usable response."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderTimeoutError(ProviderError):
    """A decision provider did not answer within the call budget."""

    def __init__(self, provider: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(provider, f"timed out after {timeout_seconds:.0f}s")


class IntelligenceError(FourcastError):
    """A market intelligence source could not be read."""


class LedgerError(FourcastError):
    """The ledger store is unreachable or rejected a write."""


class InvariantViolation(FourcastError):
    """A bookkeeping invariant was broken. Never retried."""
