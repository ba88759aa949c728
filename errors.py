from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    validation_error = "VALIDATION_ERROR"
    not_found = "NOT_FOUND"
    duplicate_name = "DUPLICATE_NAME"
    system_category = "SYSTEM_CATEGORY"
    has_transactions = "HAS_TRANSACTIONS"
    invalid_reassign = "INVALID_REASSIGN"
    invalid_category = "INVALID_CATEGORY"
    invalid_account = "INVALID_ACCOUNT"
    type_mismatch = "TYPE_MISMATCH"
    rate_limit_exceeded = "RATE_LIMIT_EXCEEDED"
    email_exists = "EMAIL_EXISTS"
    unauthorized = "UNAUTHORIZED"
    internal = "INTERNAL"


class LedgerError(ValueError):
    """Base for every failure the engine reports to its callers.

    Subclasses pin the error ``code`` and the HTTP status the API layer maps
    it to; ``details`` carries whatever a caller needs to decide its next
    step without another round-trip.
    """

    code: ErrorCode = ErrorCode.internal
    status_code: int = 500
    default_message = "Internal error"

    def __init__(
        self, message: Optional[str] = None, *, details: Optional[dict] = None
    ) -> None:
        self.message = message or self.default_message
        self.details: dict[str, Any] = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(LedgerError):
    code = ErrorCode.validation_error
    status_code = 400
    default_message = "Validation failed"


class NotFound(LedgerError):
    code = ErrorCode.not_found
    status_code = 404
    default_message = "Not found"


class DuplicateName(LedgerError):
    code = ErrorCode.duplicate_name
    status_code = 409
    default_message = "Name already exists"


class SystemCategory(LedgerError):
    code = ErrorCode.system_category
    status_code = 400
    default_message = "Cannot delete system category"


class HasTransactions(LedgerError):
    code = ErrorCode.has_transactions
    status_code = 400

    def __init__(self, transaction_count: int, message: Optional[str] = None) -> None:
        super().__init__(
            message or "Entity has transactions. Provide reassign_to.",
            details={"transaction_count": transaction_count},
        )
        self.transaction_count = transaction_count


class InvalidReassign(LedgerError):
    code = ErrorCode.invalid_reassign
    status_code = 404
    default_message = "Reassignment target not found"


class InvalidCategory(LedgerError):
    code = ErrorCode.invalid_category
    status_code = 404
    default_message = "Category not found"


class InvalidAccount(LedgerError):
    code = ErrorCode.invalid_account
    status_code = 404
    default_message = "Account not found"


class TypeMismatch(LedgerError):
    code = ErrorCode.type_mismatch
    status_code = 400

    def __init__(
        self, required_type: str, *, transaction_id: Optional[str] = None
    ) -> None:
        details: dict[str, Any] = {"required_type": required_type}
        message = f"Transaction type must match category type ({required_type})"
        if transaction_id is not None:
            details["transaction_id"] = transaction_id
            message = f"{message}. Incompatible transaction: {transaction_id}"
        super().__init__(message, details=details)
        self.required_type = required_type
        self.transaction_id = transaction_id


class RateLimitExceeded(LedgerError):
    code = ErrorCode.rate_limit_exceeded
    status_code = 429

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(
            f"Too many attempts. Try again in {retry_after_seconds} seconds.",
            details={"retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


class EmailExists(LedgerError):
    code = ErrorCode.email_exists
    status_code = 409
    default_message = "Email already registered"


class Unauthorized(LedgerError):
    code = ErrorCode.unauthorized
    status_code = 401
    default_message = "Invalid credentials"


class InternalError(LedgerError):
    pass
