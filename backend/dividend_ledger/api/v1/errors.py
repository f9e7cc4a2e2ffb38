"""Translate service errors into HTTP errors"""
from fastapi import HTTPException

from dividend_ledger.services.errors import (
    AllocationInputError,
    AllocationIntegrityError,
    ComputationInUseError,
    DividendError,
    InvalidTransitionError,
    NotFoundError,
)

STATUS_CODES = {
    AllocationInputError: 400,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ComputationInUseError: 409,
    AllocationIntegrityError: 422,
}


def to_http_exception(error: DividendError) -> HTTPException:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
