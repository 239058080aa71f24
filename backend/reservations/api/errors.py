"""
Translate failed OperationResults into HTTP errors.
"""

from fastapi import HTTPException, status

from reservations.services.errors import ErrorKind, OperationResult

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_INVENTORY: status.HTTP_409_CONFLICT,
    ErrorKind.INVENTORY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVENTORY_IN_USE: status.HTTP_409_CONFLICT,
    ErrorKind.DEPOSIT_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.OUTSTANDING_BALANCE: status.HTTP_402_PAYMENT_REQUIRED,
}

# Detail keys that are plain values and safe to echo to the client
_PUBLIC_DETAILS = ("requested", "available", "units", "removable", "status", "capacity", "bookings")


def unwrap(result: OperationResult):
    """Return the result value, or raise the HTTPException matching its error kind."""
    if result.ok:
        return result.value

    error = result.error
    detail = {"kind": error.kind.value, "message": error.message}
    for key in _PUBLIC_DETAILS:
        if key in error.details:
            detail[key] = error.details[key]
    if "booking" in error.details:
        detail["booking_id"] = error.details["booking"].id
    raise HTTPException(status_code=STATUS_BY_KIND[error.kind], detail=detail)
