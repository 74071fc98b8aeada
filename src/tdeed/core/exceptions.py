"""
Exception hierarchy for the T-Deed contract-interaction engine.

Provides typed exceptions so resolvers, the transaction executor and the
operation handlers can distinguish configuration problems, protocol mismatches,
authorization failures, transport failures and wallet rejections.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DeedEngineError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    recoverable = False
    user_message = "The operation failed."

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# ==================== Configuration Errors ====================


class ConfigurationError(DeedEngineError):
    """Raised when no usable ABI or contract address exists for the active network."""

    user_message = "This network is not supported. Please switch to a supported network."


class InputValidationError(DeedEngineError):
    """Raised when operation input is blank or malformed."""

    user_message = "Please fill in all required fields."


# ==================== Protocol Errors ====================


class DecodeError(DeedEngineError):
    """Raised when on-chain bytes do not match the expected ABI shape.

    Indicates a protocol mismatch between the bundled ABI and the deployed
    contract; never retried.
    """

    user_message = "Unexpected data returned by the contract."


class PermissionDenied(DeedEngineError):
    """Raised when no authorization source grants the caller access."""

    user_message = "You are not authorized to modify this T-Deed."
    unverified_message = "Could not verify your authorization for this T-Deed. Please try again."

    def __init__(self, message: str, decision: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.decision = decision
        if getattr(decision, "could_not_verify", False):
            self.user_message = self.unverified_message


# ==================== Transport Errors ====================


class TransportFailure(DeedEngineError):
    """Raised when an RPC call fails."""

    recoverable = True
    user_message = "The network request failed. Please try again."


class UserRejected(DeedEngineError):
    """Raised when the wallet rejects a signature or transaction request."""

    user_message = "The request was rejected in your wallet."


def user_message_for(exc: BaseException) -> str:
    """Return the user-facing message for any exception."""
    if isinstance(exc, (PermissionDenied, UserRejected, ConfigurationError)):
        return exc.user_message
    if isinstance(exc, DeedEngineError):
        return exc.message or exc.user_message
    return str(exc) or DeedEngineError.user_message
