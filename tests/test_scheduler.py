"""
Tests for the delinquency sweep scheduler
"""

import time
from datetime import date, datetime, timezone

from coop_lending.loans import LoanStatus
from coop_lending.scheduler import DelinquencySweeper


class TestDelinquencySweeper:
    """Periodic sweep driver"""

    def test_run_once_sweeps_as_of_today(self, service, disbursed_loan):
        sweeper = DelinquencySweeper(service, interval_seconds=60, today=lambda: date(2024, 2, 20))

        results = sweeper.run_once()

        assert results["loans_activated"] == 1
        assert list(sweeper.history) == [results]
        assert service.get_loan(disbursed_loan.id).status == LoanStatus.ACTIVE

    def test_today_uses_configured_timezone(self, service, clock):
        # 20:00 UTC is already the next day in Jakarta (UTC+7)
        clock.now = datetime(2024, 2, 14, 20, 0, tzinfo=timezone.utc)
        assert service.today() == date(2024, 2, 15)

    def test_interval_defaults_to_config(self, service):
        assert DelinquencySweeper(service).interval_seconds == 3600

    def test_history_keeps_only_recent_runs(self, service):
        sweeper = DelinquencySweeper(service, today=lambda: date(2024, 2, 20), history_size=3)
        for _ in range(5):
            sweeper.run_once()
        assert len(sweeper.history) == 3

    def test_start_runs_immediately_and_stops(self, service, disbursed_loan):
        sweeper = DelinquencySweeper(service, interval_seconds=3600, today=lambda: date(2024, 2, 20))

        sweeper.start()
        sweeper.start()  # second start is a no-op
        deadline = time.time() + 5
        while not sweeper.history and time.time() < deadline:
            time.sleep(0.01)
        sweeper.stop()

        assert len(sweeper.history) == 1
        assert not sweeper.running
        assert service.get_loan(disbursed_loan.id).status == LoanStatus.ACTIVE

    def test_failed_run_keeps_loop_alive(self, service):
        calls = []

        def flaky_today():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("clock unavailable")
            return date(2024, 2, 20)

        sweeper = DelinquencySweeper(service, interval_seconds=0.01, today=flaky_today)
        sweeper.start()
        deadline = time.time() + 5
        while not sweeper.history and time.time() < deadline:
            time.sleep(0.01)
        sweeper.stop()

        assert len(calls) >= 2
        assert sweeper.history
