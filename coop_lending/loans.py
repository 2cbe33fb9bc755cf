"""
Loan Module

Loan records and the lifecycle controller: creation, approval, cancellation,
disbursement (which materializes the repayment schedule exactly once),
payment routing with activation and completion detection, the periodic
delinquency sweep, and removal.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from .amortization import add_months, compute_payment, generate_schedule, validate_terms
from .audit import AuditEventType, AuditTrail
from .config import LendingConfig, get_config
from .currency import Currency, Money, to_decimal
from .errors import (
    InvalidTerms, InvalidTransition, LoanLimitExceeded, NotFound, OverpaymentRejected
)
from .installments import Installment, InstallmentLedger, InstallmentStatus
from .logging_config import get_logger, log_action
from .policies import DefaultPolicy, build_default_policy
from .storage import StorageInterface, StorageRecord

logger = get_logger("loans")

AmountInput = Union[Money, Decimal, int, str]


class LoanStatus(Enum):
    """Loan lifecycle states"""
    DRAFT = "draft"              # Created, terms editable
    APPROVED = "approved"        # Approved, awaiting disbursement
    DISBURSED = "disbursed"      # Funds released, schedule materialized
    ACTIVE = "active"            # Under active repayment
    COMPLETED = "completed"      # Every installment paid
    DEFAULTED = "defaulted"      # Default policy triggered
    CANCELLED = "cancelled"      # Withdrawn before disbursement


TERMINAL_STATUSES = frozenset({LoanStatus.COMPLETED, LoanStatus.DEFAULTED, LoanStatus.CANCELLED})
SCHEDULED_STATUSES = frozenset({
    LoanStatus.DISBURSED, LoanStatus.ACTIVE, LoanStatus.COMPLETED, LoanStatus.DEFAULTED
})
PAYABLE_STATUSES = frozenset({LoanStatus.DISBURSED, LoanStatus.ACTIVE})
OPEN_STATUSES = frozenset({
    LoanStatus.DRAFT, LoanStatus.APPROVED, LoanStatus.DISBURSED, LoanStatus.ACTIVE
})

# event -> (allowed source states, target state)
TRANSITIONS = {
    'approve': ({LoanStatus.DRAFT}, LoanStatus.APPROVED),
    'cancel': ({LoanStatus.DRAFT, LoanStatus.APPROVED}, LoanStatus.CANCELLED),
    'disburse': ({LoanStatus.APPROVED}, LoanStatus.DISBURSED),
    'activate': ({LoanStatus.DISBURSED}, LoanStatus.ACTIVE),
    'complete': ({LoanStatus.ACTIVE}, LoanStatus.COMPLETED),
    'default': ({LoanStatus.ACTIVE}, LoanStatus.DEFAULTED),
}

_AUDIT_EVENTS = {
    'approve': AuditEventType.LOAN_APPROVED,
    'cancel': AuditEventType.LOAN_CANCELLED,
    'disburse': AuditEventType.LOAN_DISBURSED,
    'activate': AuditEventType.LOAN_ACTIVATED,
    'complete': AuditEventType.LOAN_COMPLETED,
    'default': AuditEventType.LOAN_DEFAULTED,
}


class CustomerDirectory(ABC):
    """Lookup of known customers; onboarding lives outside this engine"""

    @abstractmethod
    def exists(self, customer_id: str) -> bool:
        """True if the customer is registered"""


@dataclass
class Loan(StorageRecord):
    """Loan with its terms, lifecycle status and (on read) its installments"""
    customer_id: str
    contract_number: str
    principal: Money
    annual_rate_percent: Decimal
    term_months: int
    periodic_payment: Money
    status: LoanStatus = LoanStatus.DRAFT
    disbursed_at: Optional[datetime] = None
    start_date: Optional[date] = None
    first_due_date: Optional[date] = None
    installments: List[Installment] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = LoanStatus(self.status)
        if not isinstance(self.annual_rate_percent, Decimal):
            self.annual_rate_percent = Decimal(str(self.annual_rate_percent))

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_schedule(self) -> bool:
        return self.status in SCHEDULED_STATUSES

    @property
    def maturity_date(self) -> Optional[date]:
        if not self.start_date:
            return None
        return add_months(self.start_date, self.term_months)

    def to_dict(self) -> Dict:
        """Installments are stored separately and not part of the loan record"""
        result = super().to_dict()
        result.update({
            'customer_id': self.customer_id,
            'contract_number': self.contract_number,
            'currency': self.currency.code,
            'principal': str(self.principal.amount),
            'annual_rate_percent': str(self.annual_rate_percent),
            'term_months': self.term_months,
            'periodic_payment': str(self.periodic_payment.amount),
            'status': self.status.value,
            'disbursed_at': self.disbursed_at.isoformat() if self.disbursed_at else None,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'first_due_date': self.first_due_date.isoformat() if self.first_due_date else None,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        currency = Currency[data['currency']]

        def get_date(key: str) -> Optional[date]:
            return date.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            id=data['id'],
            **StorageRecord.parse_timestamps(data),
            customer_id=data['customer_id'],
            contract_number=data['contract_number'],
            principal=Money(Decimal(data['principal']), currency),
            annual_rate_percent=Decimal(data['annual_rate_percent']),
            term_months=data['term_months'],
            periodic_payment=Money(Decimal(data['periodic_payment']), currency),
            status=LoanStatus(data['status']),
            disbursed_at=datetime.fromisoformat(data['disbursed_at']) if data.get('disbursed_at') else None,
            start_date=get_date('start_date'),
            first_due_date=get_date('first_due_date'),
        )


@dataclass
class LoanPage:
    """One page of a loan listing"""
    loans: List[Loan]
    total: int
    page: int
    limit: int


class LoanManager:
    """
    Loan lifecycle controller.

    All mutations of one loan (and its installments) run under that loan's
    lock from the shared KeyedLock, so payments, the sweep and disbursement
    never interleave on the same loan.
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: InstallmentLedger,
        audit_trail: AuditTrail,
        config: Optional[LendingConfig] = None,
        default_policy: Optional[DefaultPolicy] = None,
        customer_directory: Optional[CustomerDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.default_policy = default_policy or build_default_policy(self.config)
        self.customer_directory = customer_directory
        self.locks = ledger.locks
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._creation_lock = threading.Lock()

        self.loans_table = "loans"
        self.sequences_table = "contract_sequences"

    # Creation and terms

    def create_loan(
        self,
        customer_id: str,
        principal: AmountInput,
        annual_rate_percent: Union[Decimal, int, str],
        term_months: int,
        currency: Optional[Currency] = None
    ) -> Loan:
        """
        Create a loan in draft status.

        Raises:
            InvalidTerms: terms rejected by the calculator or configured limits
            NotFound: customer unknown to the customer directory
            LoanLimitExceeded: customer already holds an open loan
        """
        principal_money = self._to_money(principal, currency)
        rate = self._validate_terms(principal_money, annual_rate_percent, term_months)
        payment = compute_payment(principal_money, rate, term_months)

        if self.customer_directory is not None and not self.customer_directory.exists(customer_id):
            raise NotFound("customer", customer_id)

        with self._creation_lock:
            if self.config.single_active_loan_per_customer:
                for existing in self._find_loans(customer_id=customer_id):
                    if existing.status in OPEN_STATUSES:
                        raise LoanLimitExceeded(customer_id, existing.id)

            now = self._clock()
            business_year = now.astimezone(ZoneInfo(self.config.timezone)).year
            with self.storage.atomic():
                loan = Loan(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    customer_id=customer_id,
                    contract_number=self._next_contract_number(business_year),
                    principal=principal_money,
                    annual_rate_percent=rate,
                    term_months=term_months,
                    periodic_payment=payment,
                )
                self._save_loan(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "customer_id": customer_id,
                "contract_number": loan.contract_number,
                "principal": loan.principal.to_string(),
                "annual_rate_percent": str(rate),
                "term_months": term_months,
                "periodic_payment": payment.to_string(),
            },
        )
        logger.info("Loan created", extra={'loan_id': loan.id, 'action': 'create',
                                           'extra': {'contract_number': loan.contract_number}})
        return loan

    def update_terms(
        self,
        loan_id: str,
        principal: AmountInput,
        annual_rate_percent: Union[Decimal, int, str],
        term_months: int
    ) -> Loan:
        """Edit the terms of a draft loan and recompute its periodic payment"""
        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)
            if loan.status != LoanStatus.DRAFT:
                raise InvalidTransition(
                    f"Terms can only be edited while draft, loan is {loan.status.value}",
                    current_status=loan.status.value, event="update_terms",
                )
            principal_money = self._to_money(principal, loan.currency)
            rate = self._validate_terms(principal_money, annual_rate_percent, term_months)

            loan.principal = principal_money
            loan.annual_rate_percent = rate
            loan.term_months = term_months
            loan.periodic_payment = compute_payment(principal_money, rate, term_months)
            loan.updated_at = self._clock()
            self._save_loan(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_TERMS_UPDATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "principal": loan.principal.to_string(),
                "annual_rate_percent": str(loan.annual_rate_percent),
                "term_months": loan.term_months,
                "periodic_payment": loan.periodic_payment.to_string(),
            },
        )
        return loan

    # Lifecycle events

    def approve_loan(self, loan_id: str) -> Loan:
        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)
            self._transition(loan, 'approve')
            self._save_loan(loan)
        self._record_transition(loan, 'approve')
        return loan

    def cancel_loan(self, loan_id: str) -> Loan:
        """Cancel a loan that has not been disbursed yet"""
        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)
            self._transition(loan, 'cancel')
            self._save_loan(loan)
        self._record_transition(loan, 'cancel')
        return loan

    def disburse_loan(self, loan_id: str, start_date: date) -> Loan:
        """
        Release funds and materialize the repayment schedule.

        Installments are due 1..term calendar months after ``start_date``.
        Calling this again on a loan that already has a schedule returns the
        existing loan and schedule unchanged.

        Raises:
            InvalidTransition: loan is draft or cancelled
        """
        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)

            if loan.has_schedule:
                logger.info("Loan already disbursed; returning existing schedule",
                            extra={'loan_id': loan_id, 'action': 'disburse'})
                loan.installments = self.ledger.get_installments(loan_id)
                return loan

            self._check_transition(loan, 'disburse')
            schedule = generate_schedule(loan.principal, loan.annual_rate_percent, loan.term_months, start_date)

            with self.storage.atomic():
                installments = self.ledger.create_installments(loan.id, loan.contract_number, schedule)
                loan.status = LoanStatus.DISBURSED
                loan.disbursed_at = self._clock()
                loan.start_date = start_date
                loan.first_due_date = schedule[0].due_date
                loan.updated_at = loan.disbursed_at
                self._save_loan(loan)

            loan.installments = installments

        self._record_transition(loan, 'disburse', {
            "start_date": start_date.isoformat(),
            "first_due_date": loan.first_due_date.isoformat(),
            "installment_count": len(installments),
            "schedule_total": str(sum((i.amount_due.amount for i in installments), Decimal('0'))),
        })
        return loan

    def pay_installment(self, installment_id: str, amount: AmountInput, payment_date: date) -> Installment:
        """
        Apply a payment to an installment and cascade the loan status.

        The first payment moves a disbursed loan to active; the payment that
        settles the last unpaid installment completes the loan.

        Raises:
            NotFound: unknown installment
            InvalidTransition: loan is not disbursed or active
            InvalidTerms: amount not positive or wrong currency
            OverpaymentRejected: payment exceeds what the installment still owes
        """
        loan_id = self.ledger.get_installment(installment_id).loan_id
        events = []

        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)
            if loan.status not in PAYABLE_STATUSES:
                raise InvalidTransition(
                    f"Cannot accept payments for a {loan.status.value} loan",
                    current_status=loan.status.value, event="pay",
                )
            payment = self._to_money(amount, loan.currency)

            try:
                with self.storage.atomic():
                    installment = self.ledger.apply_payment(installment_id, payment, payment_date)

                    if loan.status == LoanStatus.DISBURSED:
                        self._transition(loan, 'activate')
                        events.append('activate')

                    remaining = [i for i in self.ledger.get_installments(loan_id) if not i.is_paid]
                    if not remaining:
                        self._transition(loan, 'complete')
                        events.append('complete')

                    if events:
                        self._save_loan(loan)
            except OverpaymentRejected as e:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_REJECTED,
                    entity_type="installment",
                    entity_id=installment_id,
                    metadata={
                        "loan_id": loan_id,
                        "attempted": e.attempted,
                        "max_acceptable": e.max_acceptable,
                    },
                )
                logger.warning("Overpayment rejected", extra={
                    'loan_id': loan_id, 'installment_id': installment_id, 'action': 'pay',
                    'extra': {'attempted': str(e.attempted), 'max_acceptable': str(e.max_acceptable)},
                })
                raise

        self.audit_trail.log_event(
            event_type=AuditEventType.INSTALLMENT_PAYMENT,
            entity_type="installment",
            entity_id=installment.id,
            metadata={
                "loan_id": loan_id,
                "sequence": installment.sequence,
                "amount": payment.to_string(),
                "amount_paid": installment.amount_paid.to_string(),
                "status": installment.status.value,
                "payment_date": payment_date.isoformat(),
            },
        )
        for event in events:
            self._record_transition(loan, event)
        return installment

    def sweep_delinquency(self, as_of: date, loan_id: Optional[str] = None) -> Dict[str, int]:
        """
        Recompute DPD/status for every installment of disbursed and active
        loans, activate loans whose first installment has fallen due, and
        apply the default policy to active loans.

        A failure on one loan is logged and the sweep continues.
        """
        results = {
            "loans_processed": 0,
            "installments_overdue": 0,
            "loans_activated": 0,
            "loans_defaulted": 0,
            "errors": 0,
        }

        if loan_id:
            candidates = [self._load_loan(loan_id)]
        else:
            candidates = [loan for loan in self._find_loans() if loan.status in PAYABLE_STATUSES]

        for candidate in candidates:
            events = []
            try:
                with self.locks.hold(candidate.id):
                    loan = self._load_loan(candidate.id)
                    if loan.status not in PAYABLE_STATUSES:
                        continue

                    installments = self.ledger.recompute_loan(loan.id, as_of)
                    results["installments_overdue"] += sum(
                        1 for i in installments if i.status == InstallmentStatus.OVERDUE
                    )

                    if loan.status == LoanStatus.DISBURSED and loan.first_due_date and as_of >= loan.first_due_date:
                        self._transition(loan, 'activate')
                        events.append('activate')

                    if loan.status == LoanStatus.ACTIVE and self.default_policy.is_defaulted(installments, as_of):
                        self._transition(loan, 'default')
                        events.append('default')

                    if events:
                        self._save_loan(loan)
                    results["loans_processed"] += 1
            except Exception:
                results["errors"] += 1
                logger.exception("Delinquency sweep failed for loan",
                                 extra={'loan_id': candidate.id, 'action': 'sweep'})
                continue

            for event in events:
                self._record_transition(loan, event, {"as_of": as_of.isoformat(),
                                                      "policy": self.default_policy.describe()})
                results["loans_activated" if event == 'activate' else "loans_defaulted"] += 1

        self.audit_trail.log_event(
            event_type=AuditEventType.DELINQUENCY_SWEEP,
            entity_type="loan_book",
            entity_id=loan_id or "all",
            metadata={"as_of": as_of.isoformat(), **results},
        )
        logger.info("Delinquency sweep completed", extra={'action': 'sweep', 'extra': results})
        return results

    def delete_loan(self, loan_id: str) -> None:
        """
        Remove a loan together with its installments.

        Only allowed while every installment is still pending (or none
        exist yet).
        """
        with self.locks.hold(loan_id):
            loan = self._load_loan(loan_id)
            installments = self.ledger.get_installments(loan_id)
            touched = [i for i in installments if not i.is_pending or not i.amount_paid.is_zero()]
            if touched:
                raise InvalidTransition(
                    f"Loan {loan.contract_number} has {len(touched)} installment(s) "
                    f"that are no longer pending and cannot be removed",
                    current_status=loan.status.value, event="delete",
                )
            with self.storage.atomic():
                self.ledger.delete_installments(loan_id)
                self.storage.delete(self.loans_table, loan_id)

        self.locks.discard(loan_id)
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_DELETED,
            entity_type="loan",
            entity_id=loan_id,
            metadata={"contract_number": loan.contract_number, "status": loan.status.value},
        )
        logger.info("Loan deleted", extra={'loan_id': loan_id, 'action': 'delete'})

    # Queries

    def get_loan(self, loan_id: str) -> Loan:
        """Loan with its installments attached"""
        loan = self._load_loan(loan_id)
        loan.installments = self.ledger.get_installments(loan_id)
        return loan

    def get_all_loans(self) -> List[Loan]:
        return self._find_loans()

    def list_loans(
        self,
        customer_id: Optional[str] = None,
        status: Optional[Union[LoanStatus, str]] = None,
        page: int = 1,
        limit: int = 20
    ) -> LoanPage:
        """Newest loans first, optionally filtered by customer and status"""
        if page < 1:
            page = 1
        if limit < 1 or limit > 100:
            limit = 20
        if isinstance(status, str):
            status = LoanStatus(status)

        loans = self._find_loans(customer_id=customer_id, status=status)
        loans.sort(key=lambda l: (l.created_at, l.contract_number), reverse=True)
        offset = (page - 1) * limit
        return LoanPage(loans=loans[offset:offset + limit], total=len(loans), page=page, limit=limit)

    # Helpers

    def _to_money(self, amount: AmountInput, currency: Optional[Currency]) -> Money:
        if isinstance(amount, Money):
            if currency is not None and amount.currency != currency:
                raise InvalidTerms(f"Expected {currency.code} amount, got {amount.currency.code}")
            return amount
        currency = currency or Currency.from_code(self.config.default_currency)
        try:
            value = to_decimal(amount)
            if not value.is_finite():
                raise ValueError(value)
            money = Money(value, currency)
        except (TypeError, ValueError, InvalidOperation):
            raise InvalidTerms(f"Invalid amount: {amount!r}")
        if money.amount != value:
            raise InvalidTerms(
                f"Amount {value} has more precision than {currency.code} allows"
            )
        return money

    def _validate_terms(self, principal: Money, annual_rate_percent, term_months: int) -> Decimal:
        """Configured limits on top of the calculator's own checks"""
        rate = validate_terms(principal, annual_rate_percent, term_months)
        if term_months > self.config.max_term_months:
            raise InvalidTerms(
                f"Term must be at most {self.config.max_term_months} months, got {term_months}"
            )
        if rate > Decimal(self.config.max_annual_rate_percent):
            raise InvalidTerms(
                f"Interest rate must be at most {self.config.max_annual_rate_percent}%, got {rate}"
            )
        return rate

    def _check_transition(self, loan: Loan, event: str) -> LoanStatus:
        allowed, target = TRANSITIONS[event]
        if loan.status not in allowed:
            raise InvalidTransition(
                f"Cannot {event} a {loan.status.value} loan",
                current_status=loan.status.value, event=event,
            )
        return target

    def _transition(self, loan: Loan, event: str) -> None:
        loan.status = self._check_transition(loan, event)
        loan.updated_at = self._clock()

    def _record_transition(self, loan: Loan, event: str, metadata: Optional[Dict] = None) -> None:
        self.audit_trail.log_event(
            event_type=_AUDIT_EVENTS[event],
            entity_type="loan",
            entity_id=loan.id,
            metadata={"contract_number": loan.contract_number, "status": loan.status.value,
                      **(metadata or {})},
        )
        log_action(logger, "info", f"Loan {event} -> {loan.status.value}",
                   action=event, loan_id=loan.id,
                   extra={"contract_number": loan.contract_number})

    def _next_contract_number(self, year: int) -> str:
        """
        Issue the next number for the year. The per-year counter is stored
        and never decreases, so numbers of deleted loans are not reissued.
        Caller holds the creation lock and a storage transaction.
        """
        prefix = f"{self.config.contract_prefix}-{year}-"
        counter = self.storage.load(self.sequences_table, prefix) or {}
        highest = counter.get('last_sequence', 0)
        # Loans stored before the counter existed
        for data in self.storage.load_all(self.loans_table):
            number = data.get('contract_number', '')
            if number.startswith(prefix):
                try:
                    highest = max(highest, int(number[len(prefix):]))
                except ValueError:
                    continue
        sequence = highest + 1
        self.storage.save(self.sequences_table, prefix, {
            'id': prefix, 'prefix': prefix, 'last_sequence': sequence,
        })
        return f"{prefix}{sequence:04d}"

    def _find_loans(
        self,
        customer_id: Optional[str] = None,
        status: Optional[LoanStatus] = None
    ) -> List[Loan]:
        filters = {}
        if customer_id:
            filters['customer_id'] = customer_id
        if status:
            filters['status'] = status.value
        return [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]

    def _load_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFound("loan", loan_id)
        return Loan.from_dict(data)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
