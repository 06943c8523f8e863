"""
Error taxonomy for the oauth_sessions bounded context.

Why: Callers must tell an expected "not found" (plain `None` results) apart
from infrastructure or provider failures. Only the latter are raised.
"""
from __future__ import annotations


class StoreUnavailableError(Exception):
    """Raised when the key-value backend cannot serve a request."""


class ProviderError(Exception):
    """Raised when the OAuth provider or the client configuration fails."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class CallbackError(Exception):
    """Raised when an authorization callback cannot be matched to a sign-in."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


__all__ = ["StoreUnavailableError", "ProviderError", "CallbackError"]
