"""
Error kinds and the result value returned by every engine operation.

Inside an operation a failure is raised as DomainError so the unit of work
stops before anything is written; at the operation boundary it is turned
into an OperationResult. Callers never have to catch domain exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INSUFFICIENT_INVENTORY = "InsufficientInventory"
    INVENTORY_CONFLICT = "InventoryConflict"
    INVENTORY_IN_USE = "InventoryInUse"
    DEPOSIT_REQUIRED = "DepositRequired"
    OUTSTANDING_BALANCE = "OutstandingBalance"
    INVALID_TRANSITION = "InvalidTransition"
    VALIDATION_ERROR = "ValidationError"


class DomainError(Exception):
    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"DomainError({self.kind.value}, {self.message!r})"


class NotFound(DomainError):
    def __init__(self, what: str, ident: Any):
        super().__init__(ErrorKind.NOT_FOUND, f"{what} {ident} not found")


class ValidationFailed(DomainError):
    def __init__(self, message: str, **details: Any):
        super().__init__(ErrorKind.VALIDATION_ERROR, message, **details)


class InsufficientInventory(DomainError):
    def __init__(self, requested: int, available: int):
        super().__init__(
            ErrorKind.INSUFFICIENT_INVENTORY,
            f"Not enough units available for the selected dates. "
            f"Requested: {requested}, Available: {available}",
            requested=requested,
            available=available,
        )


class InvalidTransition(DomainError):
    def __init__(self, operation: str, status: str):
        super().__init__(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot {operation} a booking that is {status}",
            status=status,
        )


@dataclass
class OperationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[DomainError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DomainError, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(value=value, error=error)
