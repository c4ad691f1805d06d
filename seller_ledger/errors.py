"""Error taxonomy for the ledger.

Every error carries the HTTP status the API layer maps it to, so routes never
translate exceptions by hand.
"""

from typing import Optional


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(LedgerError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self) -> dict:
        return {**super().to_dict(), "fields": self.fields}


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"


class InsufficientBalanceError(LedgerError):
    status_code = 409
    code = "insufficient_balance"


class AlreadyReversedError(LedgerError):
    status_code = 409
    code = "already_reversed"


class ForbiddenError(LedgerError):
    status_code = 403
    code = "forbidden"


class ConcurrencyConflictError(LedgerError):
    status_code = 409
    code = "concurrency_conflict"


class StorageError(LedgerError):
    status_code = 500
    code = "storage_error"
