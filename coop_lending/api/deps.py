"""
Service dependency and error mapping for the HTTP layer
"""

from fastapi import HTTPException

from ..errors import InvalidTransition, LoanLimitExceeded, NotFound, OverpaymentRejected
from ..service import LendingService


# Global lending service instance
lending_service = LendingService()


# Dependency to get lending service
def get_lending_service() -> LendingService:
    return lending_service


def to_http_exception(error: ValueError) -> HTTPException:
    """Translate an engine error into the matching HTTP error"""
    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (InvalidTransition, LoanLimitExceeded)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, OverpaymentRejected):
        return HTTPException(status_code=422, detail={
            "message": str(error),
            "installment_id": error.installment_id,
            "max_acceptable": str(error.max_acceptable),
        })
    return HTTPException(status_code=400, detail=str(error))
