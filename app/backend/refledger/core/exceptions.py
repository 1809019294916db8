"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class ReferralLedgerError(Exception):
    """Base exception class for the referral ledger."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ReferralLedgerError):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class ExternalServiceError(ReferralLedgerError):
    """Raised when an external service error occurs."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR"
    ):
        super().__init__(message, code, details)


class StoreError(ExternalServiceError):
    """Raised when a call to the tabular store fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_ERROR")


class ValidationError(ReferralLedgerError):
    """Raised when data validation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR"
    ):
        super().__init__(message, code, details)


class NotFoundError(ReferralLedgerError):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class SchedulerError(ReferralLedgerError):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class CacheClosedError(ReferralLedgerError):
    """Raised when the index cache is used after close()."""

    def __init__(self):
        super().__init__("Index cache is closed", "CACHE_CLOSED")


class CodeGenerationExhaustedError(ReferralLedgerError):
    """Raised when no unique referral code could be generated."""

    def __init__(self, attempts: int):
        super().__init__(
            f"Could not generate a unique code after {attempts} attempts",
            "CODE_GENERATION_EXHAUSTED",
            {"attempts": attempts}
        )


# Referral-specific exceptions
class ReferrerNotFoundError(NotFoundError):
    """Raised when a referrer is not found."""

    def __init__(self, key: Any):
        super().__init__(
            f"Referrer not found: {key}",
            {"key": key}
        )


class RowNotFoundError(NotFoundError):
    """Raised when a keyed row is missing from a sheet."""

    def __init__(self, sheet: str, key: Any):
        super().__init__(
            f"Row with key {key} not found in sheet {sheet}",
            {"sheet": sheet, "key": key}
        )


class InvalidWalletError(ValidationError):
    """Raised when a payout address has the wrong format."""

    def __init__(self, wallet: str):
        super().__init__(
            f"Invalid TON wallet address: {wallet}",
            {"wallet": wallet},
            code="INVALID_WALLET"
        )


class AlreadyInvitedError(ValidationError):
    """Raised when a user is already bound to a referrer."""

    def __init__(self, user_id: int, ref_code: str):
        super().__init__(
            f"User {user_id} is already bound to code {ref_code}",
            {"user_id": user_id, "ref_code": ref_code},
            code="ALREADY_INVITED"
        )


class SelfReferralError(ValidationError):
    """Raised when a referrer tries to use their own code."""

    def __init__(self, user_id: int):
        super().__init__(
            f"User {user_id} cannot use their own referral code",
            {"user_id": user_id},
            code="SELF_REFERRAL"
        )
