"""
Finance system composition root

Builds storage and every engine component once, wired together. The API
and the run script each own one FinanceSystem; there is no global instance.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from .accounts import AccountLedger
from .amortization import AmortizationCalculator
from .budgets import BudgetSync
from .config import FinanceConfig, get_config
from .groups import GroupManager
from .ledger import GeneralLedger
from .loans import LoanManager
from .materializer import Materializer
from .obligations import ObligationManager
from .recurrence import RecurrenceEngine
from .scheduler import SchedulerDaemon
from .storage import StorageInterface, create_storage


class FinanceSystem:
    """Engine with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[FinanceConfig] = None,
        clock: Callable[[], date] = date.today
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.clock = clock

        self.calculator = AmortizationCalculator()
        self.recurrence = RecurrenceEngine()
        self.account_ledger = AccountLedger(self.storage, clock=clock)
        self.ledger = GeneralLedger(self.storage, self.account_ledger, clock=clock)
        self.budget_sync = BudgetSync(self.storage)
        self.obligation_manager = ObligationManager(
            self.storage, self.budget_sync, self.recurrence, clock=clock,
            max_repeat_count=self.config.max_repeat_count,
            max_occurrences=self.config.max_occurrences
        )
        self.group_manager = GroupManager(self.storage, self.obligation_manager)
        self.loan_manager = LoanManager(
            self.storage, self.account_ledger, self.obligation_manager, ledger=self.ledger,
            calculator=self.calculator, recurrence=self.recurrence, clock=clock,
            max_principal=Decimal(self.config.max_loan_principal),
            max_duration_months=self.config.max_loan_duration_months
        )
        self.materializer = Materializer(
            self.storage, self.obligation_manager, self.loan_manager,
            self.ledger, self.account_ledger, self.recurrence, clock=clock,
            same_day_guard=self.config.duplicate_guard_same_day
        )
        self.scheduler = SchedulerDaemon(
            self.materializer, self.obligation_manager,
            interval_seconds=self.config.scheduler_interval_seconds,
            run_on_start=self.config.scheduler_run_on_start,
            clock=clock
        )

    def close(self) -> None:
        """Stop the scheduler and release storage"""
        self.scheduler.stop()
        self.storage.close()
