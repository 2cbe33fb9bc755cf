"""
Amortization Module

Fixed-rate reducing-balance amortization: periodic payment calculation and
repayment schedule generation. Pure functions, no storage and no clock.

Rounding rules:
- the periodic payment is rounded half-up to the currency's minor unit
  (rounded down when the rate is zero);
- the schedule's grand total is principal plus the exact, unrounded total
  interest, quantized once;
- the final installment absorbs whatever the earlier rounded payments leave,
  so the schedule always sums to the grand total to the unit.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Union

from .currency import Money
from .errors import InvalidTerms

MONTHS_PER_YEAR = Decimal('12')
HUNDRED = Decimal('100')

RateInput = Union[Decimal, int, str]


@dataclass(frozen=True)
class ScheduleEntry:
    """One scheduled repayment obligation"""
    sequence: int
    due_date: date
    amount_due: Money


def validate_terms(principal: Money, annual_rate_percent: RateInput, term_months: int) -> Decimal:
    """Check terms and return the annual rate as a Decimal"""
    if not isinstance(principal, Money):
        raise InvalidTerms("Principal must be a Money amount")
    if not principal.is_positive():
        raise InvalidTerms(f"Principal must be greater than 0, got {principal.to_string()}")
    if isinstance(term_months, bool) or not isinstance(term_months, int):
        raise InvalidTerms(f"Term must be a whole number of months, got {term_months!r}")
    if term_months <= 0:
        raise InvalidTerms(f"Term must be greater than 0 months, got {term_months}")
    if isinstance(annual_rate_percent, float):
        raise InvalidTerms("Interest rate must be given as Decimal, int or str, not float")
    try:
        rate = Decimal(str(annual_rate_percent))
    except InvalidOperation:
        raise InvalidTerms(f"Interest rate is not a number: {annual_rate_percent!r}")
    if not rate.is_finite():
        raise InvalidTerms(f"Interest rate is not a number: {annual_rate_percent!r}")
    if rate < 0:
        raise InvalidTerms(f"Interest rate must not be negative, got {rate}")
    return rate


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    """Annual nominal percentage to monthly fraction, e.g. 12 -> 0.01"""
    return annual_rate_percent / HUNDRED / MONTHS_PER_YEAR


def _exact_payment(principal: Decimal, rate: Decimal, term_months: int) -> Decimal:
    """Unrounded annuity payment P * r(1+r)^n / ((1+r)^n - 1)"""
    if rate == 0:
        return principal / Decimal(term_months)
    factor = (1 + rate) ** term_months
    return principal * rate * factor / (factor - 1)


def compute_payment(principal: Money, annual_rate_percent: RateInput, term_months: int) -> Money:
    """
    Periodic (monthly) payment for a fixed-rate loan.

    Args:
        principal: Loan amount, must be positive
        annual_rate_percent: Nominal annual rate in percent, e.g. 12 for 12%
        term_months: Number of monthly installments

    Returns:
        Payment rounded to the currency's minor unit

    Raises:
        InvalidTerms: principal <= 0, term <= 0, rate < 0, or terms so large
            the formula overflows
    """
    rate = monthly_rate(validate_terms(principal, annual_rate_percent, term_months))
    try:
        exact = _exact_payment(principal.amount, rate, term_months)
        if rate == 0:
            payment = Money.floor(exact, principal.currency)
        else:
            payment = Money(exact, principal.currency)
    except ArithmeticError:
        raise InvalidTerms(
            f"Terms out of range: {principal.to_string()} at {annual_rate_percent}% "
            f"over {term_months} months"
        )

    if not payment.is_positive():
        raise InvalidTerms(
            f"Principal {principal.to_string()} is too small to spread over {term_months} months"
        )
    return payment


def total_repayment(principal: Money, annual_rate_percent: RateInput, term_months: int) -> Money:
    """Principal plus exact total interest, quantized once"""
    rate = monthly_rate(validate_terms(principal, annual_rate_percent, term_months))
    if rate == 0:
        return principal
    try:
        exact = _exact_payment(principal.amount, rate, term_months)
        return Money(exact * term_months, principal.currency)
    except ArithmeticError:
        raise InvalidTerms(
            f"Terms out of range: {principal.to_string()} at {annual_rate_percent}% "
            f"over {term_months} months"
        )


def total_interest(principal: Money, annual_rate_percent: RateInput, term_months: int) -> Money:
    return total_repayment(principal, annual_rate_percent, term_months) - principal


def add_months(start_date: date, months: int) -> date:
    """Add calendar months to a date, clamping to the last day of the month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def generate_schedule(
    principal: Money,
    annual_rate_percent: RateInput,
    term_months: int,
    start_date: date
) -> List[ScheduleEntry]:
    """
    Build the full repayment schedule.

    Installment k (1-based) is due ``k`` calendar months after start_date.
    Each due date is computed from start_date directly so a month-end start
    keeps landing on month ends.
    """
    payment = compute_payment(principal, annual_rate_percent, term_months)
    grand_total = total_repayment(principal, annual_rate_percent, term_months)

    regular_total = payment * (term_months - 1)
    final_amount = grand_total - regular_total
    if not final_amount.is_positive():
        # Only reachable when the payment is a handful of minor units
        raise InvalidTerms(
            f"Principal {principal.to_string()} is too small for a {term_months}-month schedule"
        )

    schedule = []
    for sequence in range(1, term_months + 1):
        schedule.append(ScheduleEntry(
            sequence=sequence,
            due_date=add_months(start_date, sequence),
            amount_due=payment if sequence < term_months else final_amount,
        ))
    return schedule
