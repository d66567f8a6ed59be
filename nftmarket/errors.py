"""
nftmarket/errors.py

Error taxonomy shared by the store, the ledger reader and the reconciliation engine.

- ValidationError: malformed address / token id, raised before any I/O
- NotFoundError: asset or contract not resolvable on the ledger
- ExternalServiceError: ledger or metadata transport failure (timeouts included)
- StoreError: persistence I/O failure

Ownership mismatch is a business outcome, not an exception: it only exists as
ErrorCode.OWNERSHIP_MISMATCH on a result.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_CONTRACT_ADDRESS = "INVALID_CONTRACT_ADDRESS"
    INVALID_TOKEN_ID = "INVALID_TOKEN_ID"
    INVALID_WALLET_ADDRESS = "INVALID_WALLET_ADDRESS"
    NOT_FOUND = "NOT_FOUND"
    OWNERSHIP_MISMATCH = "OWNERSHIP_MISMATCH"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CANCELLED = "CANCELLED"
    STORE_ERROR = "STORE_ERROR"


class MarketplaceError(Exception):
    """Base class for all typed failures raised by the core."""

    code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(MarketplaceError):
    code = ErrorCode.INVALID_CONTRACT_ADDRESS


class NotFoundError(MarketplaceError):
    code = ErrorCode.NOT_FOUND


class ContractCallError(NotFoundError):
    """The ledger answered, but the call reverted or returned nothing."""


class ExternalServiceError(MarketplaceError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR


class CallCancelled(ExternalServiceError):
    """Deadline expired or the caller cancelled before the call could run."""

    code = ErrorCode.CANCELLED


class StoreError(MarketplaceError):
    code = ErrorCode.STORE_ERROR
