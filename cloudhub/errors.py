"""
Error types raised by the aggregation layer.

Every error carries the HTTP status the web layer answers with.
"""

from typing import Optional


class CloudHubError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(CloudHubError):
    status_code = 400


class AccountNotConnectedError(CloudHubError):
    """The user has no linked account for the requested provider."""
    status_code = 400

    def __init__(self, provider: str):
        super().__init__(f"Cloud service not connected: {provider}")
        self.provider = provider


class NoConnectedAccountsError(CloudHubError):
    status_code = 400

    def __init__(self):
        super().__init__("No cloud service connected")


class InsufficientStorageError(CloudHubError):
    """No linked account has enough free space for the upload."""
    status_code = 507


class ProviderError(CloudHubError):
    """A provider SDK or HTTP call failed."""
    status_code = 502

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
