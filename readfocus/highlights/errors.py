from __future__ import annotations

from typing import Optional


class HighlightsError(Exception):
    """Base class for errors raised by the highlights subsystem."""


class CredentialUnavailable(HighlightsError):
    """No credential source produced a usable cookie."""


class SessionExpired(HighlightsError):
    """Upstream rejected the credential; the user has to sign in again."""


class UpstreamError(HighlightsError):
    """Network, timeout or malformed-response failure talking to upstream."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecryptionFailure(HighlightsError):
    """Encrypted credential blob could not be decrypted or decoded."""


class StorageQuotaExceeded(HighlightsError):
    """A key-value write would exceed the configured storage quota."""
