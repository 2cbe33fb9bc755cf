"""
Test suite for installment ledger

Payment application, days-past-due, status derivation and overdue listing.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from coop_lending.amortization import ScheduleEntry
from coop_lending.currency import Money, Currency
from coop_lending.errors import InvalidTerms, NotFound, OverpaymentRejected
from coop_lending.installments import (
    Installment, InstallmentLedger, InstallmentStatus, calculate_days_past_due, derive_status
)
from coop_lending.storage import InMemoryStorage


def idr(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.IDR)


DUE = date(2024, 2, 15)


class TestDerivedStatus:
    """Status and DPD are pure functions of the stored amounts and a date"""

    def test_pending_before_due(self):
        assert derive_status(DUE, idr(1000), idr(0), DUE) == InstallmentStatus.PENDING

    def test_partial_before_due(self):
        assert derive_status(DUE, idr(1000), idr(400), DUE) == InstallmentStatus.PARTIAL

    def test_overdue_after_due(self):
        assert derive_status(DUE, idr(1000), idr(0), DUE + timedelta(days=1)) == InstallmentStatus.OVERDUE
        assert derive_status(DUE, idr(1000), idr(400), DUE + timedelta(days=1)) == InstallmentStatus.OVERDUE

    def test_paid_regardless_of_date(self):
        assert derive_status(DUE, idr(1000), idr(1000), DUE + timedelta(days=300)) == InstallmentStatus.PAID

    def test_dpd_zero_on_or_before_due(self):
        assert calculate_days_past_due(DUE, idr(1000), idr(0), DUE) == 0
        assert calculate_days_past_due(DUE, idr(1000), idr(0), DUE - timedelta(days=30)) == 0

    def test_dpd_non_decreasing_while_unpaid(self):
        previous = 0
        for offset in range(-5, 120):
            dpd = calculate_days_past_due(DUE, idr(1000), idr(250), DUE + timedelta(days=offset))
            assert dpd >= 0
            assert dpd >= previous
            previous = dpd
        assert previous == 119

    def test_dpd_zero_when_paid(self):
        assert calculate_days_past_due(DUE, idr(1000), idr(1000), DUE + timedelta(days=40)) == 0


class TestInstallmentRecord:
    """Test installment dataclass"""

    def test_round_trip_through_dict(self):
        now = datetime(2024, 1, 15, tzinfo=timezone.utc)
        installment = Installment(
            id="inst-1", created_at=now, updated_at=now, loan_id="loan-1",
            contract_number="KOP-2024-0001", sequence=1, due_date=DUE,
            amount_due=idr(1_000_000), amount_paid=idr(400_000),
            status="partial",
        )
        restored = Installment.from_dict(installment.to_dict())

        assert restored == installment
        assert restored.status == InstallmentStatus.PARTIAL
        assert restored.outstanding == idr(600_000)

    def test_amount_paid_cannot_exceed_amount_due(self):
        now = datetime(2024, 1, 15, tzinfo=timezone.utc)
        with pytest.raises(ValueError, match="outside"):
            Installment(
                id="inst-1", created_at=now, updated_at=now, loan_id="loan-1",
                contract_number="KOP-2024-0001", sequence=1, due_date=DUE,
                amount_due=idr(1_000), amount_paid=idr(1_001),
            )


class TestApplyPayment:
    """Test payment application on a single 1,000,000 installment"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.ledger = InstallmentLedger(
            self.storage, clock=lambda: datetime(2024, 1, 15, tzinfo=timezone.utc)
        )
        installments = self.ledger.create_installments(
            "loan-1", "KOP-2024-0001", [ScheduleEntry(1, DUE, idr(1_000_000))]
        )
        self.installment_id = installments[0].id

    def test_new_installment_is_pending(self):
        installment = self.ledger.get_installment(self.installment_id)
        assert installment.status == InstallmentStatus.PENDING
        assert installment.amount_paid.is_zero()
        assert installment.dpd == 0
        assert installment.paid_at is None

    def test_partial_then_overdue_then_paid(self):
        """400,000 on the due date, overdue 10 days later, settled with 600,000"""
        installment = self.ledger.apply_payment(self.installment_id, idr(400_000), DUE)
        assert installment.status == InstallmentStatus.PARTIAL
        assert installment.amount_paid == idr(400_000)
        assert installment.dpd == 0

        late = DUE + timedelta(days=10)
        installment = self.ledger.recompute_delinquency(self.installment_id, late)
        assert installment.dpd == 10
        assert installment.status == InstallmentStatus.OVERDUE

        installment = self.ledger.apply_payment(self.installment_id, idr(600_000), late)
        assert installment.amount_paid == idr(1_000_000)
        assert installment.status == InstallmentStatus.PAID
        assert installment.dpd == 0
        assert installment.paid_at == late

        stored = self.ledger.get_installment(self.installment_id)
        assert stored.status == InstallmentStatus.PAID
        assert stored.paid_at == late

    def test_late_partial_payment_keeps_days_past_due(self):
        """A partial payment after the due date records DPD as of the payment"""
        installment = self.ledger.apply_payment(self.installment_id, idr(100_000), DUE + timedelta(days=5))
        assert installment.status == InstallmentStatus.PARTIAL
        assert installment.dpd == 5

        installment = self.ledger.recompute_delinquency(self.installment_id, DUE + timedelta(days=5))
        assert installment.status == InstallmentStatus.OVERDUE

    def test_overpayment_rejected_without_effect(self):
        self.ledger.apply_payment(self.installment_id, idr(400_000), DUE)

        with pytest.raises(OverpaymentRejected) as exc_info:
            self.ledger.apply_payment(self.installment_id, idr(700_000), DUE)

        assert exc_info.value.max_acceptable == Decimal('600000')
        assert exc_info.value.installment_id == self.installment_id
        stored = self.ledger.get_installment(self.installment_id)
        assert stored.amount_paid == idr(400_000)
        assert stored.status == InstallmentStatus.PARTIAL

    def test_amount_paid_never_exceeds_amount_due(self):
        attempts = [300_000, 800_000, 300_000, 500_000, 400_000, 1]
        for amount in attempts:
            try:
                self.ledger.apply_payment(self.installment_id, idr(amount), DUE)
            except OverpaymentRejected:
                pass
            stored = self.ledger.get_installment(self.installment_id)
            assert stored.amount_paid <= stored.amount_due

        assert self.ledger.get_installment(self.installment_id).is_paid

    def test_non_positive_amount_rejected(self):
        with pytest.raises(InvalidTerms, match="positive"):
            self.ledger.apply_payment(self.installment_id, idr(0), DUE)
        with pytest.raises(InvalidTerms, match="positive"):
            self.ledger.apply_payment(self.installment_id, idr(-5), DUE)

    def test_currency_mismatch_rejected(self):
        with pytest.raises(InvalidTerms, match="currency"):
            self.ledger.apply_payment(self.installment_id, Money(Decimal('10.00'), Currency.USD), DUE)

    def test_unknown_installment(self):
        with pytest.raises(NotFound, match="Installment missing not found"):
            self.ledger.apply_payment("missing", idr(1), DUE)


class TestRecomputeDelinquency:
    """Recomputation is idempotent and tolerates out-of-order dates"""

    def setup_method(self):
        self.ledger = InstallmentLedger(InMemoryStorage())
        self.installment_id = self.ledger.create_installments(
            "loan-1", "KOP-2024-0001", [ScheduleEntry(1, DUE, idr(1_000_000))]
        )[0].id

    def test_idempotent(self):
        as_of = DUE + timedelta(days=3)
        first = self.ledger.recompute_delinquency(self.installment_id, as_of)
        second = self.ledger.recompute_delinquency(self.installment_id, as_of)
        assert first.dpd == second.dpd == 3
        assert first.status == second.status == InstallmentStatus.OVERDUE

    def test_regressing_date_restores_pending(self):
        self.ledger.recompute_delinquency(self.installment_id, DUE + timedelta(days=20))
        installment = self.ledger.recompute_delinquency(self.installment_id, DUE - timedelta(days=1))
        assert installment.status == InstallmentStatus.PENDING
        assert installment.dpd == 0

    def test_paid_installment_stays_paid(self):
        self.ledger.apply_payment(self.installment_id, idr(1_000_000), DUE)
        installment = self.ledger.recompute_delinquency(self.installment_id, DUE + timedelta(days=90))
        assert installment.status == InstallmentStatus.PAID
        assert installment.dpd == 0


class TestListOverdue:
    """Test overdue listing and ordering"""

    def setup_method(self):
        self.ledger = InstallmentLedger(InMemoryStorage())
        self.ledger.create_installments("loan-a", "KOP-2024-0002", [
            ScheduleEntry(1, date(2024, 2, 1), idr(500_000)),
            ScheduleEntry(2, date(2024, 3, 1), idr(500_000)),
        ])
        self.ledger.create_installments("loan-b", "KOP-2024-0001", [
            ScheduleEntry(1, date(2024, 2, 1), idr(700_000)),
            ScheduleEntry(2, date(2024, 4, 1), idr(700_000)),
        ])

    def test_ordered_by_dpd_then_contract_then_sequence(self):
        overdue = self.ledger.list_overdue(date(2024, 3, 11))

        assert [(i.contract_number, i.sequence, i.dpd) for i in overdue] == [
            ("KOP-2024-0001", 1, 39),
            ("KOP-2024-0002", 1, 39),
            ("KOP-2024-0002", 2, 10),
        ]
        assert all(i.status == InstallmentStatus.OVERDUE for i in overdue)

    def test_filter_by_loan(self):
        overdue = self.ledger.list_overdue(date(2024, 3, 11), loan_id="loan-b")
        assert [(i.loan_id, i.sequence) for i in overdue] == [("loan-b", 1)]

    def test_paid_installments_excluded(self):
        first = self.ledger.get_installments("loan-b")[0]
        self.ledger.apply_payment(first.id, idr(700_000), date(2024, 3, 5))
        overdue = self.ledger.list_overdue(date(2024, 3, 11), loan_id="loan-b")
        assert overdue == []

    def test_listing_does_not_write(self):
        self.ledger.list_overdue(date(2024, 3, 11))
        assert all(i.status == InstallmentStatus.PENDING for i in self.ledger.get_all_installments())

    def test_nothing_overdue_on_due_date(self):
        assert self.ledger.list_overdue(date(2024, 2, 1)) == []
