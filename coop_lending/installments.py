"""
Installment Ledger Module

Owns each installment's payment application, days-past-due computation and
status transitions. Status and DPD are always derived from
(due_date, amount_due, amount_paid, as_of) and never from a prior status,
so the periodic sweep and payment application cannot corrupt each other.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .amortization import ScheduleEntry
from .currency import Currency, Money
from .errors import InvalidTerms, NotFound, OverpaymentRejected
from .locking import KeyedLock
from .storage import StorageInterface, StorageRecord

logger = logging.getLogger("coop_lending.installments")


class InstallmentStatus(Enum):
    """Installment payment/delinquency state"""
    PENDING = "pending"    # Nothing paid, not yet past due
    PARTIAL = "partial"    # Something paid, not yet past due
    PAID = "paid"          # Fully paid
    OVERDUE = "overdue"    # Past due and not fully paid


def calculate_days_past_due(due_date: date, amount_due: Money, amount_paid: Money, as_of: date) -> int:
    """Whole days an unpaid installment is late as of a date; 0 when paid or not yet due"""
    if amount_paid >= amount_due or as_of <= due_date:
        return 0
    return (as_of - due_date).days


def derive_status(due_date: date, amount_due: Money, amount_paid: Money, as_of: date) -> InstallmentStatus:
    """Status as a pure function of the schedule, the amount paid and the evaluation date"""
    if amount_paid >= amount_due:
        return InstallmentStatus.PAID
    if due_date < as_of:
        return InstallmentStatus.OVERDUE
    if amount_paid.is_positive():
        return InstallmentStatus.PARTIAL
    return InstallmentStatus.PENDING


@dataclass
class Installment(StorageRecord):
    """One scheduled repayment obligation within a loan"""
    loan_id: str
    contract_number: str
    sequence: int
    due_date: date
    amount_due: Money
    amount_paid: Money = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[date] = None
    dpd: int = 0

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = InstallmentStatus(self.status)
        if self.amount_paid is None:
            self.amount_paid = Money.zero(self.amount_due.currency)
        if self.sequence < 1:
            raise ValueError(f"Installment sequence must start at 1, got {self.sequence}")
        if self.amount_paid.is_negative() or self.amount_paid > self.amount_due:
            raise ValueError(
                f"Amount paid {self.amount_paid.to_string()} outside 0..{self.amount_due.to_string()}"
            )
        if self.dpd < 0:
            raise ValueError("dpd must not be negative")

    @property
    def outstanding(self) -> Money:
        return self.amount_due - self.amount_paid

    @property
    def is_paid(self) -> bool:
        return self.amount_paid >= self.amount_due

    @property
    def is_pending(self) -> bool:
        return self.status == InstallmentStatus.PENDING

    def days_past_due(self, as_of: date) -> int:
        return calculate_days_past_due(self.due_date, self.amount_due, self.amount_paid, as_of)

    def status_as_of(self, as_of: date) -> InstallmentStatus:
        return derive_status(self.due_date, self.amount_due, self.amount_paid, as_of)

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result.update({
            'loan_id': self.loan_id,
            'contract_number': self.contract_number,
            'sequence': self.sequence,
            'due_date': self.due_date.isoformat(),
            'currency': self.amount_due.currency.code,
            'amount_due': str(self.amount_due.amount),
            'amount_paid': str(self.amount_paid.amount),
            'status': self.status.value,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'dpd': self.dpd,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Installment':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            **StorageRecord.parse_timestamps(data),
            loan_id=data['loan_id'],
            contract_number=data['contract_number'],
            sequence=data['sequence'],
            due_date=date.fromisoformat(data['due_date']),
            amount_due=Money(Decimal(data['amount_due']), currency),
            amount_paid=Money(Decimal(data['amount_paid']), currency),
            status=InstallmentStatus(data['status']),
            paid_at=date.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
            dpd=data.get('dpd', 0),
        )


class InstallmentLedger:
    """
    Applies payments to installments and keeps their delinquency current
    """

    def __init__(
        self,
        storage: StorageInterface,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.locks = locks or KeyedLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.installments_table = "installments"

    def create_installments(
        self,
        loan_id: str,
        contract_number: str,
        schedule: Sequence[ScheduleEntry]
    ) -> List[Installment]:
        """
        Persist a freshly generated schedule.

        The caller owns atomicity: run this inside ``storage.atomic()``
        together with the loan status change.
        """
        now = self._clock()
        installments = []
        for entry in schedule:
            installment = Installment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                contract_number=contract_number,
                sequence=entry.sequence,
                due_date=entry.due_date,
                amount_due=entry.amount_due,
            )
            self._save(installment)
            installments.append(installment)
        return installments

    def apply_payment(self, installment_id: str, amount: Money, payment_date: date) -> Installment:
        """
        Apply a payment to one installment.

        Raises:
            NotFound: unknown installment
            InvalidTerms: amount not positive or in the wrong currency
            OverpaymentRejected: amount paid would exceed amount due
        """
        loan_id = self.get_installment(installment_id).loan_id

        with self.locks.hold(loan_id):
            installment = self.get_installment(installment_id)

            if not isinstance(amount, Money) or not amount.is_positive():
                raise InvalidTerms(f"Payment amount must be a positive Money amount, got {amount!r}")
            if amount.currency != installment.amount_due.currency:
                raise InvalidTerms(
                    f"Payment currency {amount.currency.code} does not match "
                    f"installment currency {installment.amount_due.currency.code}"
                )

            new_paid = installment.amount_paid + amount
            if new_paid > installment.amount_due:
                raise OverpaymentRejected(
                    installment_id=installment.id,
                    amount_due=installment.amount_due.amount,
                    amount_paid=installment.amount_paid.amount,
                    attempted=amount.amount,
                )

            installment.amount_paid = new_paid
            if new_paid == installment.amount_due:
                installment.status = InstallmentStatus.PAID
                installment.paid_at = payment_date
            else:
                installment.status = InstallmentStatus.PARTIAL
            installment.dpd = installment.days_past_due(payment_date)
            installment.updated_at = self._clock()
            self._save(installment)

        logger.info(
            "Payment applied",
            extra={
                'installment_id': installment.id,
                'loan_id': installment.loan_id,
                'action': 'apply_payment',
                'extra': {
                    'amount': str(amount.amount),
                    'amount_paid': str(installment.amount_paid.amount),
                    'status': installment.status.value,
                },
            },
        )
        return installment

    def recompute_delinquency(self, installment_id: str, as_of: date) -> Installment:
        """Recompute DPD and status from stored amounts; idempotent"""
        loan_id = self.get_installment(installment_id).loan_id
        with self.locks.hold(loan_id):
            return self._recompute(self.get_installment(installment_id), as_of)

    def recompute_loan(self, loan_id: str, as_of: date) -> List[Installment]:
        """Recompute every installment of one loan"""
        with self.locks.hold(loan_id):
            return [self._recompute(inst, as_of) for inst in self.get_installments(loan_id)]

    def _recompute(self, installment: Installment, as_of: date) -> Installment:
        dpd = installment.days_past_due(as_of)
        status = installment.status_as_of(as_of)
        if dpd != installment.dpd or status != installment.status:
            installment.dpd = dpd
            installment.status = status
            installment.updated_at = self._clock()
            self._save(installment)
        return installment

    def get_installment(self, installment_id: str) -> Installment:
        data = self.storage.load(self.installments_table, installment_id)
        if not data:
            raise NotFound("installment", installment_id)
        return Installment.from_dict(data)

    def get_installments(self, loan_id: str) -> List[Installment]:
        """A loan's installments ordered by sequence"""
        records = self.storage.find(self.installments_table, {'loan_id': loan_id})
        installments = [Installment.from_dict(data) for data in records]
        installments.sort(key=lambda i: i.sequence)
        return installments

    def get_all_installments(self) -> List[Installment]:
        return [Installment.from_dict(data) for data in self.storage.load_all(self.installments_table)]

    def delete_installments(self, loan_id: str) -> int:
        """Remove a loan's whole schedule; only the lifecycle controller calls this"""
        removed = 0
        for installment in self.get_installments(loan_id):
            if self.storage.delete(self.installments_table, installment.id):
                removed += 1
        return removed

    def list_overdue(self, as_of: date, loan_id: Optional[str] = None) -> List[Installment]:
        """
        Unpaid installments past due as of a date.

        Ordered by DPD (most late first), then contract number, then
        sequence. DPD and status on the returned copies reflect ``as_of``;
        nothing is written back.
        """
        if loan_id:
            candidates = self.get_installments(loan_id)
        else:
            candidates = self.get_all_installments()

        overdue = []
        for installment in candidates:
            dpd = installment.days_past_due(as_of)
            if dpd > 0 and not installment.is_paid:
                installment.dpd = dpd
                installment.status = InstallmentStatus.OVERDUE
                overdue.append(installment)

        overdue.sort(key=lambda i: (-i.dpd, i.contract_number, i.sequence))
        return overdue

    def _save(self, installment: Installment) -> None:
        self.storage.save(self.installments_table, installment.id, installment.to_dict())
