"""
Reporting Module

Read-only aggregates over the loan book: outstanding balance, collection
rate, per-loan progress, overdue listings, delinquency aging and reminder
candidates. Nothing here writes to storage.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .currency import Currency, Money
from .installments import Installment, InstallmentLedger
from .loans import LoanManager, PAYABLE_STATUSES, TERMINAL_STATUSES

HUNDRED = Decimal('100')

# Reminder windows relative to the due date, in days
REMINDER_OFFSETS = (-7, -3, -1, 1, 3, 7)


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    period_start: date
    period_end: date
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.metadata:
            self.metadata = {'row_count': len(self.data)}


@dataclass
class LoanProgress:
    """Repayment progress of one loan"""
    loan_id: str
    progress_percent: int
    total_paid: Money
    outstanding: Money
    paid_installments: int
    total_installments: int


class ReportingEngine:
    """
    Portfolio and collection reporting over loans and installments
    """

    def __init__(
        self,
        loan_manager: LoanManager,
        ledger: InstallmentLedger,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.loan_manager = loan_manager
        self.ledger = ledger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def total_outstanding(self, currency: Currency) -> Money:
        """Unpaid amounts of every non-paid installment of non-terminal loans"""
        live_loans = {
            loan.id for loan in self.loan_manager.get_all_loans()
            if loan.status not in TERMINAL_STATUSES and loan.currency == currency
        }
        total = Money.zero(currency)
        for installment in self.ledger.get_all_installments():
            if installment.loan_id in live_loans and not installment.is_paid:
                total = total + installment.outstanding
        return total

    def collection_rate(self, period_start: date, period_end: date) -> Decimal:
        """
        Collected over targeted for a period (both bounds inclusive).

        Collected counts installments settled (paid_at) inside the period,
        targeted counts installments falling due inside it. Returns 0 when
        nothing fell due.
        """
        collected, targeted = self._collection_totals(period_start, period_end)
        if targeted == 0:
            return Decimal('0')
        return collected / targeted

    def _collection_totals(self, period_start: date, period_end: date):
        collected = Decimal('0')
        targeted = Decimal('0')
        for installment in self.ledger.get_all_installments():
            if installment.paid_at and period_start <= installment.paid_at <= period_end:
                collected += installment.amount_paid.amount
            if period_start <= installment.due_date <= period_end:
                targeted += installment.amount_due.amount
        return collected, targeted

    def loan_progress(self, loan_id: str) -> LoanProgress:
        loan = self.loan_manager.get_loan(loan_id)
        installments = loan.installments
        currency = loan.currency

        total_paid = Money.zero(currency)
        outstanding = Money.zero(currency)
        paid_count = 0
        for installment in installments:
            total_paid = total_paid + installment.amount_paid
            outstanding = outstanding + installment.outstanding
            if installment.is_paid:
                paid_count += 1

        percent = 0
        if installments:
            ratio = Decimal(paid_count) * HUNDRED / Decimal(len(installments))
            percent = int(ratio.quantize(Decimal('1'), rounding=ROUND_HALF_UP))

        return LoanProgress(
            loan_id=loan.id,
            progress_percent=percent,
            total_paid=total_paid,
            outstanding=outstanding,
            paid_installments=paid_count,
            total_installments=len(installments),
        )

    def overdue_installments(self, as_of: date, loan_id: Optional[str] = None) -> List[Installment]:
        if loan_id is not None:
            # Raises NotFound for an unknown loan rather than reporting nothing overdue
            self.loan_manager.get_loan(loan_id)
        return self.ledger.list_overdue(as_of, loan_id=loan_id)

    def delinquency_report(self, as_of: date, currency: Currency) -> ReportResult:
        """
        Delinquency aging of disbursed and active loans.

        Each loan lands in one bucket by its worst installment's DPD as of
        ``as_of``; the balance is what the loan still owes.
        """
        buckets = {
            'current': {'loans': 0, 'balance': Decimal('0')},
            '1-30': {'loans': 0, 'balance': Decimal('0')},
            '31-60': {'loans': 0, 'balance': Decimal('0')},
            '61-90': {'loans': 0, 'balance': Decimal('0')},
            '90+': {'loans': 0, 'balance': Decimal('0')},
        }
        totals = {'total_loans': 0, 'total_balance': Decimal('0')}

        for loan in self.loan_manager.get_all_loans():
            if loan.status not in PAYABLE_STATUSES or loan.currency != currency:
                continue
            installments = self.ledger.get_installments(loan.id)
            worst_dpd = max((i.days_past_due(as_of) for i in installments), default=0)
            balance = sum((i.outstanding.amount for i in installments), Decimal('0'))

            bucket_name = 'current'
            if worst_dpd > 90:
                bucket_name = '90+'
            elif worst_dpd > 60:
                bucket_name = '61-90'
            elif worst_dpd > 30:
                bucket_name = '31-60'
            elif worst_dpd > 0:
                bucket_name = '1-30'

            buckets[bucket_name]['loans'] += 1
            buckets[bucket_name]['balance'] += balance
            totals['total_loans'] += 1
            totals['total_balance'] += balance

        data = []
        for bucket_name, bucket in buckets.items():
            percentage = Decimal('0')
            if totals['total_balance'] > 0:
                percentage = bucket['balance'] / totals['total_balance'] * HUNDRED
            data.append({
                'aging_bucket': bucket_name,
                'loan_count': bucket['loans'],
                'total_balance': bucket['balance'],
                'percentage': percentage,
                'currency': currency.code,
            })

        return ReportResult(
            report_id="delinquency",
            generated_at=self._clock(),
            period_start=as_of,
            period_end=as_of,
            data=data,
            totals=totals,
            metadata={'row_count': len(data), 'currency': currency.code, 'as_of': as_of.isoformat()},
        )

    def collection_report(self, period_start: date, period_end: date) -> ReportResult:
        if period_end < period_start:
            raise ValueError("period_end must not be before period_start")
        collected, targeted = self._collection_totals(period_start, period_end)
        rate = collected / targeted if targeted else Decimal('0')
        totals = {
            'collected': collected,
            'targeted': targeted,
            'collection_rate': rate,
            'collection_percentage': (rate * HUNDRED).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP),
        }
        return ReportResult(
            report_id="collection",
            generated_at=self._clock(),
            period_start=period_start,
            period_end=period_end,
            data=[totals],
            totals=totals,
        )

    def installments_due_for_reminder(self, as_of: date, offset_days: int) -> List[Installment]:
        """
        Unpaid installments of disbursed/active loans due exactly
        ``offset_days`` after ``as_of`` (negative offsets look back).
        """
        if offset_days not in REMINDER_OFFSETS:
            raise ValueError(
                f"Reminder offset must be one of {list(REMINDER_OFFSETS)}, got {offset_days}"
            )
        target = as_of + timedelta(days=offset_days)
        live_loans = {
            loan.id for loan in self.loan_manager.get_all_loans() if loan.status in PAYABLE_STATUSES
        }
        due = [
            i for i in self.ledger.get_all_installments()
            if i.loan_id in live_loans and i.due_date == target and not i.is_paid
        ]
        due.sort(key=lambda i: (i.contract_number, i.sequence))
        return due

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Export report result in specified format
        """
        if format == ReportFormat.DICT:
            return {
                'report_id': result.report_id,
                'generated_at': result.generated_at.isoformat(),
                'period_start': result.period_start.isoformat(),
                'period_end': result.period_end.isoformat(),
                'data': result.data,
                'totals': result.totals,
                'metadata': result.metadata,
            }

        elif format == ReportFormat.JSON:
            export_dict = self.export_report(result, ReportFormat.DICT)
            return json.dumps(export_dict, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            if result.data:
                writer = csv.DictWriter(output, fieldnames=list(result.data[0].keys()))
                writer.writeheader()
                for row in result.data:
                    writer.writerow(row)
            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")
