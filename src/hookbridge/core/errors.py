"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base class for all hookbridge errors."""


class DatastoreError(BridgeError):
    """Raised by storage adapters when the datastore rejects or fails a call."""


class ConfigLoadError(BridgeError):
    """The settings row is missing or malformed, or the datastore is unreachable."""


class CredentialStoreError(BridgeError):
    """Loading or persisting session credentials failed."""


class WebhookError(BridgeError):
    """A webhook dispatch timed out, failed, or returned a non-success status."""

    def __init__(self, status_code: Optional[int], detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
