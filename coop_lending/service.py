"""
Lending Service

Wires storage, audit trail, installment ledger, loan lifecycle controller,
default policy and reporting together and exposes the engine's operations
as one facade.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from .audit import AuditTrail
from .config import LendingConfig, get_config
from .currency import Currency, Money
from .installments import Installment, InstallmentLedger
from .locking import KeyedLock
from .loans import CustomerDirectory, Loan, LoanManager, LoanPage, LoanStatus
from .logging_config import get_logger, log_action
from .policies import DefaultPolicy, build_default_policy
from .reporting import LoanProgress, ReportResult, ReportingEngine
from .storage import StorageInterface, create_storage

logger = get_logger("service")


class LendingService:
    """Cooperative lending engine with all components initialized"""

    def __init__(
        self,
        config: Optional[LendingConfig] = None,
        storage: Optional[StorageInterface] = None,
        default_policy: Optional[DefaultPolicy] = None,
        customer_directory: Optional[CustomerDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.storage = storage or create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(
            self.storage, clock=self.clock, enabled=self.config.enable_audit_logging
        )
        self.locks = KeyedLock()
        self.ledger = InstallmentLedger(self.storage, locks=self.locks, clock=self.clock)
        self.default_policy = default_policy or build_default_policy(self.config)
        self.loan_manager = LoanManager(
            self.storage, self.ledger, self.audit_trail,
            config=self.config,
            default_policy=self.default_policy,
            customer_directory=customer_directory,
            clock=self.clock,
        )
        self.reporting_engine = ReportingEngine(self.loan_manager, self.ledger, clock=self.clock)

    @property
    def default_currency(self) -> Currency:
        return Currency.from_code(self.config.default_currency)

    def today(self) -> date:
        """Current business date in the configured timezone"""
        return self.clock().astimezone(ZoneInfo(self.config.timezone)).date()

    # Loans

    def create_loan(
        self,
        customer_id: str,
        principal: Union[Money, Decimal, int, str],
        annual_rate_percent: Union[Decimal, int, str],
        term_months: int,
        currency: Optional[Currency] = None
    ) -> Loan:
        return self.loan_manager.create_loan(
            customer_id, principal, annual_rate_percent, term_months, currency=currency
        )

    def approve_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.approve_loan(loan_id)

    def cancel_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.cancel_loan(loan_id)

    def disburse_loan(self, loan_id: str, start_date: date) -> Loan:
        return self.loan_manager.disburse_loan(loan_id, start_date)

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.get_loan(loan_id)

    def list_loans(
        self,
        customer_id: Optional[str] = None,
        status: Optional[Union[LoanStatus, str]] = None,
        page: int = 1,
        limit: int = 20
    ) -> LoanPage:
        return self.loan_manager.list_loans(customer_id=customer_id, status=status, page=page, limit=limit)

    def update_loan_terms(
        self,
        loan_id: str,
        principal: Union[Money, Decimal, int, str],
        annual_rate_percent: Union[Decimal, int, str],
        term_months: int
    ) -> Loan:
        return self.loan_manager.update_terms(loan_id, principal, annual_rate_percent, term_months)

    def delete_loan(self, loan_id: str) -> None:
        self.loan_manager.delete_loan(loan_id)

    # Installments

    def pay_installment(
        self,
        installment_id: str,
        amount: Union[Money, Decimal, int, str],
        payment_date: date
    ) -> Installment:
        return self.loan_manager.pay_installment(installment_id, amount, payment_date)

    def list_overdue_installments(self, as_of: date, loan_id: Optional[str] = None) -> List[Installment]:
        return self.reporting_engine.overdue_installments(as_of, loan_id=loan_id)

    def run_delinquency_sweep(self, as_of: Optional[date] = None, loan_id: Optional[str] = None) -> Dict[str, int]:
        """Sweep as of the given date, or today in the configured timezone"""
        as_of = as_of or self.today()
        log_action(logger, "info", "Running delinquency sweep", action="sweep", loan_id=loan_id,
                   extra={"as_of": as_of.isoformat()})
        return self.loan_manager.sweep_delinquency(as_of, loan_id=loan_id)

    # Reporting

    def get_loan_progress(self, loan_id: str) -> LoanProgress:
        return self.reporting_engine.loan_progress(loan_id)

    def total_outstanding(self, currency: Optional[Currency] = None) -> Money:
        return self.reporting_engine.total_outstanding(currency or self.default_currency)

    def collection_rate(self, period_start: date, period_end: date) -> Decimal:
        return self.reporting_engine.collection_rate(period_start, period_end)

    def collection_report(self, period_start: date, period_end: date) -> ReportResult:
        return self.reporting_engine.collection_report(period_start, period_end)

    def delinquency_report(self, as_of: date, currency: Optional[Currency] = None) -> ReportResult:
        return self.reporting_engine.delinquency_report(as_of, currency or self.default_currency)

    def installments_due_for_reminder(self, as_of: date, offset_days: int) -> List[Installment]:
        return self.reporting_engine.installments_due_for_reminder(as_of, offset_days)

    def verify_audit_trail(self) -> Dict:
        return self.audit_trail.verify_integrity()

    def close(self) -> None:
        self.storage.close()
