"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..currency import Money
from ..installments import Installment
from ..loans import Loan
from ..reporting import LoanProgress


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (IDR, USD, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate_percent: str = Field(..., description="Nominal annual rate in percent, e.g. \"12\"")
    term_months: int
    currency: Optional[str] = Field(None, description="Currency code; configured default when omitted")


class UpdateLoanTermsRequest(BaseModel):
    principal: str
    annual_rate_percent: str
    term_months: int


class DisburseLoanRequest(BaseModel):
    start_date: date


# Installment schemas
class PaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: date


class SweepRequest(BaseModel):
    as_of: Optional[date] = None
    loan_id: Optional[str] = None


def installment_to_response(installment: Installment) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "contract_number": installment.contract_number,
        "sequence": installment.sequence,
        "due_date": installment.due_date.isoformat(),
        "amount_due": MoneyModel.from_money(installment.amount_due).model_dump(),
        "amount_paid": MoneyModel.from_money(installment.amount_paid).model_dump(),
        "status": installment.status.value,
        "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
        "dpd": installment.dpd,
    }


def loan_to_response(loan: Loan, include_installments: bool = True) -> Dict[str, Any]:
    result = {
        "id": loan.id,
        "customer_id": loan.customer_id,
        "contract_number": loan.contract_number,
        "status": loan.status.value,
        "principal": MoneyModel.from_money(loan.principal).model_dump(),
        "annual_rate_percent": str(loan.annual_rate_percent),
        "term_months": loan.term_months,
        "periodic_payment": MoneyModel.from_money(loan.periodic_payment).model_dump(),
        "disbursed_at": loan.disbursed_at.isoformat() if loan.disbursed_at else None,
        "start_date": loan.start_date.isoformat() if loan.start_date else None,
        "first_due_date": loan.first_due_date.isoformat() if loan.first_due_date else None,
        "maturity_date": loan.maturity_date.isoformat() if loan.maturity_date else None,
        "created_at": loan.created_at.isoformat(),
        "updated_at": loan.updated_at.isoformat(),
    }
    if include_installments:
        result["installments"] = [installment_to_response(i) for i in loan.installments]
    return result


def progress_to_response(progress: LoanProgress) -> Dict[str, Any]:
    return {
        "loan_id": progress.loan_id,
        "progress_percent": progress.progress_percent,
        "total_paid": MoneyModel.from_money(progress.total_paid).model_dump(),
        "outstanding": MoneyModel.from_money(progress.outstanding).model_dump(),
        "paid_installments": progress.paid_installments,
        "total_installments": progress.total_installments,
    }


def installments_to_response(installments: List[Installment]) -> List[Dict[str, Any]]:
    return [installment_to_response(i) for i in installments]
