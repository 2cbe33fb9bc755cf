"""
Installment endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from .deps import get_lending_service, to_http_exception
from .schemas import PaymentRequest, SweepRequest, installment_to_response, installments_to_response
from ..service import LendingService


router = APIRouter()


@router.get("/overdue")
async def list_overdue_installments(
    as_of: Optional[date] = None,
    loan_id: Optional[str] = None,
    service: LendingService = Depends(get_lending_service)
):
    """Unpaid installments past due, most days past due first"""
    as_of = as_of or service.today()
    try:
        installments = service.list_overdue_installments(as_of, loan_id=loan_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"as_of": as_of.isoformat(), "installments": installments_to_response(installments)}


@router.get("/reminders")
async def list_reminder_installments(
    offset_days: int,
    as_of: Optional[date] = None,
    service: LendingService = Depends(get_lending_service)
):
    """Unpaid installments falling due ``offset_days`` from ``as_of``"""
    as_of = as_of or service.today()
    try:
        installments = service.installments_due_for_reminder(as_of, offset_days)
    except ValueError as e:
        raise to_http_exception(e)
    return {
        "as_of": as_of.isoformat(),
        "offset_days": offset_days,
        "installments": installments_to_response(installments),
    }


@router.post("/sweep")
async def run_delinquency_sweep(
    request: Optional[SweepRequest] = None,
    service: LendingService = Depends(get_lending_service)
):
    """Recompute delinquency and apply the default policy"""
    request = request or SweepRequest()
    try:
        results = service.run_delinquency_sweep(as_of=request.as_of, loan_id=request.loan_id)
    except ValueError as e:
        raise to_http_exception(e)
    return results


@router.post("/{installment_id}/pay")
async def pay_installment(
    installment_id: str,
    request: PaymentRequest,
    service: LendingService = Depends(get_lending_service)
):
    """Apply a payment to one installment"""
    try:
        installment = service.pay_installment(installment_id, request.amount, request.payment_date)
        return installment_to_response(installment)
    except ValueError as e:
        raise to_http_exception(e)
