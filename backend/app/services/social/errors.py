"""Exceptions raised by provider adapters"""
from typing import Optional


class ProviderError(Exception):
    """A provider API call failed

    Carries the provider's error code (when one could be parsed) so callers can
    classify it, e.g. as requiring reauthorization.
    """

    def __init__(self, network: str, message: str, error_code: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.network = network
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    def __str__(self):
        if self.error_code:
            return f"{self.network}: {self.message} (code {self.error_code})"
        return f"{self.network}: {self.message}"


class PublishError(ProviderError):
    """Publishing could not complete (bad input or a failed provider pipeline)"""


class PkceRequiredError(ValueError):
    """Authorization URL requested without a code challenge for a PKCE network"""

    def __init__(self, network: str):
        super().__init__(f"{network} requires PKCE but no code challenge was supplied")
        self.network = network


class UnsupportedNetworkError(KeyError):
    """No adapter is registered for the requested network"""

    def __init__(self, network: str):
        super().__init__(network)
        self.network = network

    def __str__(self):
        return f"No provider adapter registered for network '{self.network}'"
