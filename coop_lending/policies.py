"""
Default Policy Module

Decides when an active loan's delinquency is severe enough to default it.
The threshold is a business decision, so it is injected rather than fixed.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .installments import Installment
    from .config import LendingConfig


class DefaultPolicy(ABC):
    """Strategy deciding whether a loan has defaulted as of a date"""

    name = "abstract"

    @abstractmethod
    def is_defaulted(self, installments: Sequence['Installment'], as_of: date) -> bool:
        """True when the loan's schedule meets the default criterion"""

    def describe(self) -> str:
        return self.name


class NeverDefault(DefaultPolicy):
    """Loans are never defaulted automatically"""

    name = "never"

    def is_defaulted(self, installments, as_of) -> bool:
        return False


class DaysPastDueThreshold(DefaultPolicy):
    """Default once any single installment is more than ``max_dpd`` days late"""

    name = "dpd_threshold"

    def __init__(self, max_dpd: int = 90):
        if max_dpd < 0:
            raise ValueError("max_dpd must not be negative")
        self.max_dpd = max_dpd

    def is_defaulted(self, installments, as_of) -> bool:
        return any(inst.days_past_due(as_of) > self.max_dpd for inst in installments)

    def describe(self) -> str:
        return f"{self.name}(>{self.max_dpd} days)"


class ConsecutiveOverdueInstallments(DefaultPolicy):
    """Default once ``count`` installments in a row are past due and unpaid"""

    name = "consecutive_overdue"

    def __init__(self, count: int = 3):
        if count < 1:
            raise ValueError("count must be at least 1")
        self.count = count

    def is_defaulted(self, installments, as_of) -> bool:
        run = 0
        for inst in sorted(installments, key=lambda i: i.sequence):
            if inst.days_past_due(as_of) > 0:
                run += 1
                if run >= self.count:
                    return True
            else:
                run = 0
        return False

    def describe(self) -> str:
        return f"{self.name}({self.count})"


def build_default_policy(config: 'LendingConfig') -> DefaultPolicy:
    """Build the policy named by configuration"""
    if config.default_policy == DaysPastDueThreshold.name:
        return DaysPastDueThreshold(config.default_dpd_threshold)
    if config.default_policy == ConsecutiveOverdueInstallments.name:
        return ConsecutiveOverdueInstallments(config.default_consecutive_overdue)
    if config.default_policy == NeverDefault.name:
        return NeverDefault()
    raise ValueError(f"Unknown default policy: {config.default_policy}")
