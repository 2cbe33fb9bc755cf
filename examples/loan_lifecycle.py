#!/usr/bin/env python3
"""
Example: One cooperative loan from application to completion

Creates, approves and disburses a 12,000,000 IDR loan at 12% over 12
months, pays every installment on its due date, and prints the schedule,
progress and delinquency picture along the way.
"""

import os
import sys
from decimal import Decimal
from datetime import date

# Add the lending package to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from coop_lending.config import LendingConfig
from coop_lending.currency import Money, Currency
from coop_lending.errors import OverpaymentRejected
from coop_lending.service import LendingService


def main():
    print("Cooperative Lending - loan lifecycle example")
    print("=" * 60)

    # 1. Configuration
    print("\n1. Configuration")
    config = LendingConfig()
    print(f"   Database URL: {config.database_url}")
    print(f"   Default policy: {config.default_policy}")
    service = LendingService(config=config)

    # 2. Application and approval
    print("\n2. Application")
    loan = service.create_loan("member-0042", Money(Decimal('12000000'), Currency.IDR), Decimal('12'), 12)
    print(f"   Contract {loan.contract_number}: {loan.principal.to_string()} at "
          f"{loan.annual_rate_percent}% for {loan.term_months} months")
    print(f"   Monthly payment: {loan.periodic_payment.to_string()}")
    service.approve_loan(loan.id)

    # 3. Disbursement
    print("\n3. Disbursement and schedule")
    loan = service.disburse_loan(loan.id, date(2024, 1, 15))
    for installment in loan.installments:
        print(f"   #{installment.sequence:>2}  {installment.due_date}  {installment.amount_due.to_string()}")

    # 4. A late partial payment and the sweep
    print("\n4. Delinquency")
    first = loan.installments[0]
    service.pay_installment(first.id, Money(Decimal('400000'), Currency.IDR), date(2024, 2, 15))
    service.run_delinquency_sweep(date(2024, 2, 25))
    for installment in service.list_overdue_installments(date(2024, 2, 25)):
        print(f"   {installment.contract_number} #{installment.sequence}: "
              f"{installment.outstanding.to_string()} outstanding, {installment.dpd} days past due")

    try:
        service.pay_installment(first.id, Money(Decimal('1000000'), Currency.IDR), date(2024, 2, 25))
    except OverpaymentRejected as e:
        print(f"   Rejected: {e} (at most {e.max_acceptable})")

    # 5. Repay everything
    print("\n5. Repayment")
    for installment in service.get_loan(loan.id).installments:
        remaining = installment.outstanding
        if remaining.is_positive():
            service.pay_installment(installment.id, remaining, max(installment.due_date, date(2024, 2, 25)))
    progress = service.get_loan_progress(loan.id)
    print(f"   Progress: {progress.progress_percent}% ({progress.total_paid.to_string()} paid)")
    print(f"   Status: {service.get_loan(loan.id).status.value}")

    # 6. Audit
    print("\n6. Audit trail")
    print(f"   Integrity: {service.verify_audit_trail()}")

    service.close()
    print("\nExample completed")
    print("=" * 60)


if __name__ == "__main__":
    main()
