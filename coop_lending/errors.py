"""
Error Taxonomy Module

Typed failures raised by the lending engine. Every error derives from
LendingError, which is a ValueError so callers validating input can catch
the whole family at once.
"""

from decimal import Decimal
from typing import Optional


class LendingError(ValueError):
    """Base class for all lending engine errors"""


class InvalidTerms(LendingError):
    """Principal, rate, term or payment amount is not acceptable"""


class InvalidTransition(LendingError):
    """Lifecycle event is not permitted from the loan's current state"""

    def __init__(self, message: str, current_status: Optional[str] = None, event: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.event = event


class OverpaymentRejected(LendingError):
    """
    Payment would push amount paid above amount due.

    Nothing is applied. ``max_acceptable`` is the largest amount the
    installment can still take, so the caller can re-split the payment.
    """

    def __init__(
        self,
        installment_id: str,
        amount_due: Decimal,
        amount_paid: Decimal,
        attempted: Decimal
    ):
        self.installment_id = installment_id
        self.amount_due = amount_due
        self.amount_paid = amount_paid
        self.attempted = attempted
        self.max_acceptable = amount_due - amount_paid
        super().__init__(
            f"Payment of {attempted} exceeds remaining {self.max_acceptable} "
            f"on installment {installment_id}"
        )


class NotFound(LendingError):
    """Referenced loan or installment does not exist"""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


class LoanLimitExceeded(LendingError):
    """Customer already holds an open loan"""

    def __init__(self, customer_id: str, existing_loan_id: str):
        self.customer_id = customer_id
        self.existing_loan_id = existing_loan_id
        super().__init__(
            f"Customer {customer_id} already has an open loan ({existing_loan_id})"
        )
