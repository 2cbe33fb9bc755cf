"""
Test suite for reporting module

Outstanding balance, collection rate, loan progress, delinquency aging,
reminder candidates and report export.
"""

import json
import pytest
from decimal import Decimal
from datetime import date

from coop_lending.currency import Money, Currency
from coop_lending.errors import NotFound
from coop_lending.reporting import REMINDER_OFFSETS, ReportFormat


def idr(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.IDR)


class TestTotalOutstanding:
    """Test outstanding balance over live loans"""

    def test_full_schedule_outstanding(self, service, disbursed_loan):
        assert service.total_outstanding(Currency.IDR) == idr(12_794_226)

    def test_payments_reduce_outstanding(self, service, disbursed_loan):
        first, second = disbursed_loan.installments[:2]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 15))
        service.pay_installment(second.id, idr(400_000), date(2024, 3, 1))

        assert service.total_outstanding() == idr(12_794_226 - 1_066_185 - 400_000)

    def test_terminal_loans_excluded(self, service, disbursed_loan):
        service.run_delinquency_sweep(date(2024, 6, 1))
        assert service.total_outstanding() == idr(0)

    def test_other_currencies_excluded(self, service, disbursed_loan):
        assert service.total_outstanding(Currency.USD) == Money.zero(Currency.USD)


class TestCollectionRate:
    """Test collected over targeted for a period"""

    def test_fully_collected_month(self, service, disbursed_loan):
        first = disbursed_loan.installments[0]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 15))

        assert service.collection_rate(date(2024, 2, 1), date(2024, 2, 29)) == Decimal('1')

    def test_partial_payment_not_yet_collected(self, service, disbursed_loan):
        first = disbursed_loan.installments[0]
        service.pay_installment(first.id, idr(500_000), date(2024, 2, 15))

        assert service.collection_rate(date(2024, 2, 1), date(2024, 2, 29)) == Decimal('0')

    def test_period_bounds_inclusive(self, service, disbursed_loan):
        first = disbursed_loan.installments[0]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 15))

        assert service.collection_rate(date(2024, 2, 15), date(2024, 2, 15)) == Decimal('1')

    def test_nothing_due_is_zero(self, service, disbursed_loan):
        assert service.collection_rate(date(2023, 1, 1), date(2023, 12, 31)) == Decimal('0')

    def test_collection_report(self, service, disbursed_loan):
        first, second = disbursed_loan.installments[:2]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 15))

        report = service.collection_report(date(2024, 2, 1), date(2024, 3, 31))

        assert report.report_id == "collection"
        assert report.totals['collected'] == Decimal('1066185')
        assert report.totals['targeted'] == Decimal('2132370')
        assert report.totals['collection_percentage'] == Decimal('50.00')

    def test_collection_report_rejects_inverted_period(self, service):
        with pytest.raises(ValueError, match="period_end"):
            service.collection_report(date(2024, 3, 1), date(2024, 2, 1))


class TestLoanProgress:
    """Test per-loan repayment progress"""

    def test_progress_after_payments(self, service, disbursed_loan):
        first, second = disbursed_loan.installments[:2]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 15))
        service.pay_installment(second.id, idr(400_000), date(2024, 3, 1))

        progress = service.get_loan_progress(disbursed_loan.id)

        assert progress.paid_installments == 1
        assert progress.total_installments == 12
        assert progress.progress_percent == 8
        assert progress.total_paid == idr(1_466_185)
        assert progress.outstanding == idr(12_794_226 - 1_466_185)

    def test_progress_rounds_to_nearest(self, service, disbursed_loan):
        for installment in disbursed_loan.installments[:6]:
            service.pay_installment(installment.id, installment.amount_due, installment.due_date)
        assert service.get_loan_progress(disbursed_loan.id).progress_percent == 50

        service.pay_installment(
            disbursed_loan.installments[6].id, disbursed_loan.installments[6].amount_due, date(2024, 8, 15)
        )
        # 7/12 = 58.33
        assert service.get_loan_progress(disbursed_loan.id).progress_percent == 58

    def test_loan_without_schedule(self, service):
        loan = service.create_loan("cust-009", idr(1_000_000), Decimal("12"), 6)
        progress = service.get_loan_progress(loan.id)

        assert progress.progress_percent == 0
        assert progress.total_installments == 0
        assert progress.total_paid.is_zero()

    def test_unknown_loan(self, service):
        with pytest.raises(NotFound):
            service.get_loan_progress("missing")


class TestDelinquencyReport:
    """Test aging buckets"""

    def test_buckets_by_worst_installment(self, service, disbursed_loan):
        second_loan = service.create_loan("cust-002", idr(6_000_000), Decimal("0"), 6)
        service.approve_loan(second_loan.id)
        second_loan = service.disburse_loan(second_loan.id, date(2024, 3, 10))

        report = service.delinquency_report(date(2024, 4, 1), Currency.IDR)
        buckets = {row['aging_bucket']: row for row in report.data}

        assert list(buckets) == ['current', '1-30', '31-60', '61-90', '90+']
        assert buckets['31-60']['loan_count'] == 1
        assert buckets['31-60']['total_balance'] == Decimal('12794226')
        assert buckets['current']['loan_count'] == 1
        assert buckets['current']['total_balance'] == Decimal('6000000')
        assert report.totals['total_loans'] == 2
        assert report.period_start == date(2024, 4, 1)

    def test_empty_book(self, service):
        report = service.delinquency_report(date(2024, 4, 1))
        assert report.totals['total_loans'] == 0
        assert all(row['percentage'] == Decimal('0') for row in report.data)


class TestReminders:
    """Test reminder window selection"""

    def test_reminder_offsets(self):
        assert REMINDER_OFFSETS == (-7, -3, -1, 1, 3, 7)

    def test_due_in_seven_days(self, service, disbursed_loan):
        due = service.installments_due_for_reminder(date(2024, 2, 8), 7)
        assert [(i.loan_id, i.sequence) for i in due] == [(disbursed_loan.id, 1)]

    def test_one_day_late(self, service, disbursed_loan):
        due = service.installments_due_for_reminder(date(2024, 2, 16), -1)
        assert [i.sequence for i in due] == [1]

    def test_paid_installments_skipped(self, service, disbursed_loan):
        first = disbursed_loan.installments[0]
        service.pay_installment(first.id, first.amount_due, date(2024, 2, 10))
        assert service.installments_due_for_reminder(date(2024, 2, 12), 3) == []

    def test_offset_outside_reminder_windows_rejected(self, service, disbursed_loan):
        with pytest.raises(ValueError, match="Reminder offset must be one of"):
            service.installments_due_for_reminder(date(2024, 2, 10), 5)


class TestOverdueInstallments:
    """Test overdue listing through the reporting engine"""

    def test_scoped_to_one_loan(self, service, disbursed_loan):
        overdue = service.list_overdue_installments(date(2024, 3, 20), loan_id=disbursed_loan.id)
        assert [(i.sequence, i.days_past_due(date(2024, 3, 20))) for i in overdue] == [(1, 34), (2, 5)]

    def test_unknown_loan(self, service, disbursed_loan):
        with pytest.raises(NotFound):
            service.list_overdue_installments(date(2024, 5, 1), loan_id="no-such-loan")


class TestExportReport:
    """Test report export formats"""

    def test_dict_json_and_csv(self, service, disbursed_loan):
        engine = service.reporting_engine
        report = service.delinquency_report(date(2024, 2, 1))

        exported = engine.export_report(report, ReportFormat.DICT)
        assert exported['report_id'] == "delinquency"
        assert exported['period_start'] == "2024-02-01"

        parsed = json.loads(engine.export_report(report, ReportFormat.JSON))
        assert parsed['data'][0]['total_balance'] == "12794226"

        csv_content = engine.export_report(report, ReportFormat.CSV)
        assert csv_content.splitlines()[0] == "aging_bucket,loan_count,total_balance,percentage,currency"
        assert len(csv_content.splitlines()) == 6
