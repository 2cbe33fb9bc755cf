"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import get_lending_service, to_http_exception
from .schemas import (
    CreateLoanRequest, DisburseLoanRequest, UpdateLoanTermsRequest, loan_to_response, progress_to_response
)
from ..currency import Currency
from ..service import LendingService


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    service: LendingService = Depends(get_lending_service)
):
    """Create a draft loan"""
    try:
        currency = Currency.from_code(request.currency) if request.currency else None
        loan = service.create_loan(
            customer_id=request.customer_id,
            principal=request.principal,
            annual_rate_percent=request.annual_rate_percent,
            term_months=request.term_months,
            currency=currency,
        )
        return loan_to_response(loan, include_installments=False)

    except ValueError as e:
        raise to_http_exception(e)


@router.get("")
async def list_loans(
    customer_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    service: LendingService = Depends(get_lending_service)
):
    """List loans, newest first"""
    try:
        result = service.list_loans(customer_id=customer_id, status=status, page=page, limit=limit)
    except ValueError as e:
        raise to_http_exception(e)

    return {
        "loans": [loan_to_response(loan, include_installments=False) for loan in result.loans],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
    }


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    service: LendingService = Depends(get_lending_service)
):
    """Get loan details with its installments"""
    try:
        return loan_to_response(service.get_loan(loan_id))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{loan_id}")
async def update_loan_terms(
    loan_id: str,
    request: UpdateLoanTermsRequest,
    service: LendingService = Depends(get_lending_service)
):
    """Edit the terms of a draft loan"""
    try:
        loan = service.update_loan_terms(
            loan_id, request.principal, request.annual_rate_percent, request.term_months
        )
        return loan_to_response(loan, include_installments=False)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    service: LendingService = Depends(get_lending_service)
):
    try:
        service.delete_loan(loan_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"loan_id": loan_id, "message": "Loan deleted successfully"}


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    service: LendingService = Depends(get_lending_service)
):
    try:
        return loan_to_response(service.approve_loan(loan_id), include_installments=False)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    service: LendingService = Depends(get_lending_service)
):
    try:
        return loan_to_response(service.cancel_loan(loan_id), include_installments=False)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    request: DisburseLoanRequest,
    service: LendingService = Depends(get_lending_service)
):
    """Disburse an approved loan and generate its schedule"""
    try:
        return loan_to_response(service.disburse_loan(loan_id, request.start_date))
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{loan_id}/progress")
async def get_loan_progress(
    loan_id: str,
    service: LendingService = Depends(get_lending_service)
):
    try:
        return progress_to_response(service.get_loan_progress(loan_id))
    except ValueError as e:
        raise to_http_exception(e)
