"""Error taxonomy shared by allocation, submission and repair."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    DURATION = "DURATION_ERROR"
    STRUCTURE = "STRUCTURE_ERROR"
    PARSE = "PARSE_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    SERVER = "SERVER_ERROR"
    CONTINUOUS_WORK = "EXCESSIVE_WORK_TIME"
    VALIDATION = "VALIDATION_ERROR"
    OVERFLOW = "OVERFLOW"
    CANCELLED = "CANCELLED"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.PARSE,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER,
        ErrorKind.CONTINUOUS_WORK,
    }
)


class WorkPlanError(Exception):
    """Base error carrying a classification and structured details."""

    kind: ErrorKind = ErrorKind.STRUCTURE

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.kind.value, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, details={self.details!r})"


class DurationError(WorkPlanError):
    kind = ErrorKind.DURATION


class StructureError(WorkPlanError):
    kind = ErrorKind.STRUCTURE


class ParseError(WorkPlanError):
    kind = ErrorKind.PARSE


class RateLimitError(WorkPlanError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        overloaded: bool = False,
    ) -> None:
        super().__init__(message, details)
        self.overloaded = overloaded


class ServerError(WorkPlanError):
    kind = ErrorKind.SERVER


class ContinuousWorkError(WorkPlanError):
    """Remote rejection naming a block with too much work between breaks."""

    kind = ErrorKind.CONTINUOUS_WORK

    @property
    def block_title(self) -> str | None:
        block = self.details.get("block")
        return str(block) if block else None


class ValidationRejectedError(WorkPlanError):
    kind = ErrorKind.VALIDATION


class OperationCancelledError(WorkPlanError):
    kind = ErrorKind.CANCELLED
