"""Error taxonomy for table administration operations."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Category of a failed operation."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DATABASE = "database"
    CONFIGURATION = "configuration"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.DATABASE: 500,
    ErrorKind.CONFIGURATION: 500,
}


class OperationError(BaseModel):
    """Structured failure returned by service operations."""

    kind: ErrorKind
    message: str
    errors: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_payload(self, debug: bool = False) -> Dict[str, Any]:
        """Render the error for an API response.

        Context (attempted SQL, driver message) is diagnostic and only
        included when debug mode is on.
        """
        payload: Dict[str, Any] = {
            "error_type": f"{self.kind.value}_error",
            "message": self.message,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        if debug and self.context:
            payload["context"] = dict(self.context)
        return payload


class TableAdminError(Exception):
    """Failure that cannot be returned as a value.

    Raised by the execution collaborator when the driver fails and by the
    configuration loader at startup. Carries the same kind/message pair as
    OperationError, plus the SQLSTATE code when one is known.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.context = dict(context or {})

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (SQLSTATE {self.code})"
        return self.message

    def to_operation_error(
        self, message: Optional[str] = None, kind: Optional[ErrorKind] = None
    ) -> OperationError:
        """Convert to a returnable error, optionally replacing message and kind."""
        context = dict(self.context)
        context.setdefault("driver_message", self.message)
        if self.code:
            context.setdefault("code", self.code)
        return OperationError(kind=kind or self.kind, message=message or self.message, context=context)
