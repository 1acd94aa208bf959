"""Errors raised by the issuance pipeline and the Anchor contract client."""
from typing import Optional


class ConfigurationError(Exception):
    """Required configuration is missing or invalid at startup."""


class IssuanceError(Exception):
    """Base exception for credential issuance and anchoring failures."""


class InvalidHolderAddress(IssuanceError):
    """Holder address is not a well-formed account address."""

    def __init__(self, address):
        self.address = address
        super().__init__(f"Invalid Ethereum address provided: {address!r}")


class IssuerConfigurationError(IssuanceError):
    """Issuer signing key is absent or malformed."""


class PinningServiceError(IssuanceError):
    """The pinning service rejected the upload or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message
        detail = f"HTTP {status_code}: {message}" if status_code is not None else message
        super().__init__(f"Pinning service error ({detail})")


class AnchoringError(IssuanceError):
    """
    Ledger submission failed: RPC unreachable, revert, insufficient funds
    or confirmation timeout.

    ``content`` holds the ContentRecord pinned before the failure, if any.
    """

    def __init__(self, message: str, content=None):
        self.content = content
        super().__init__(message)


class ContractDecodeError(IssuanceError):
    """A contract call returned a value that does not match the expected shape."""


class OrphanedPinWarning(UserWarning):
    """Content was pinned but its digest was never anchored."""
