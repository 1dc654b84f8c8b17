"""Error taxonomy for wallet and Lightning operations.

Every failure raised by the ledger carries a structured error code and the
HTTP status the API layer answers with. None of these are fatal to the
process and none are retried automatically.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Structured error codes"""
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    LIGHTNING_DISABLED = "lightning_disabled"
    PROVIDER_FAILURE = "provider_failure"
    PROVIDER_TIMEOUT = "provider_timeout"
    PRIVATE_NODE_UNREACHABLE = "private_node_unreachable"


class WalletError(Exception):
    """Base exception for wallet operations."""

    error_code = ErrorCode.INVALID_INPUT
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        result = {
            "error": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class NotFound(WalletError):
    error_code = ErrorCode.NOT_FOUND
    status_code = 404


class AlreadyExists(WalletError):
    error_code = ErrorCode.ALREADY_EXISTS
    status_code = 409


class InvalidInput(WalletError):
    error_code = ErrorCode.INVALID_INPUT
    status_code = 400


class InsufficientBalance(WalletError):
    error_code = ErrorCode.INSUFFICIENT_BALANCE
    status_code = 400


class LightningDisabled(WalletError):
    error_code = ErrorCode.LIGHTNING_DISABLED
    status_code = 400


class ProviderFailure(WalletError):
    """The Lightning provider rejected a call or could not be reached."""

    error_code = ErrorCode.PROVIDER_FAILURE
    status_code = 502


class ProviderTimeout(ProviderFailure):
    error_code = ErrorCode.PROVIDER_TIMEOUT
    status_code = 504


class PrivateNodeUnreachable(ProviderFailure):
    """The invoice's destination is a private node without route hints.

    Nothing is wrong with this wallet; the invoice creator has to reissue it
    with route hints.
    """

    error_code = ErrorCode.PRIVATE_NODE_UNREACHABLE
    status_code = 400
