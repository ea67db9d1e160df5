"""
Result type returned by CRM service operations.

Services never raise for expected failures (validation, duplicates,
persistence errors); they return an OperationResult that the router or the
in-memory controllers inspect.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Classification of a failed operation."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NO_VALID_RECORDS = "no_valid_records"
    ALL_DUPLICATES = "all_duplicates"
    SHEET_EXISTS = "sheet_exists"
    FORBIDDEN = "forbidden"
    PERSISTENCE = "persistence"


# HTTP status used by the routers for each error kind
ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NO_VALID_RECORDS: 400,
    ErrorKind.ALL_DUPLICATES: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SHEET_EXISTS: 409,
    ErrorKind.PERSISTENCE: 500,
}


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a service call: either a value or an error kind + detail."""
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str) -> "OperationResult":
        return cls(ok=False, error=error, detail=detail)

    @property
    def status_code(self) -> int:
        """HTTP status for this result (200 on success)."""
        if self.ok:
            return 200
        return ERROR_STATUS_CODES.get(self.error, 500)
