"""
Materialization Module

Turns one due obligation into a posted ledger entry and advances its
schedule. The whole unit (duplicate check, loan payment, ledger entry,
balance change, schedule advance) runs in a single atomic scope.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Callable, Optional
import logging

from .accounts import AccountLedger
from .errors import ConflictError, StateError
from .ledger import GeneralLedger, LedgerEntry
from .loans import LoanManager, LoanPaymentResult
from .logging_config import log_action
from .money import signed_amount
from .obligations import Obligation, ObligationManager
from .recurrence import Frequency, RecurrenceEngine
from .storage import StorageInterface, utc_now

logger = logging.getLogger(__name__)


@dataclass
class MaterializationResult:
    entry: LedgerEntry
    obligation: Obligation
    loan_payment: Optional[LoanPaymentResult] = None


def occurrence_key(obligation: Obligation) -> str:
    """Idempotency token of the obligation's current scheduled occurrence"""
    return f"{obligation.id}:{obligation.next_due_date.isoformat()}"


class Materializer:
    """
    Posts due obligations to the ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        obligation_manager: ObligationManager,
        loan_manager: LoanManager,
        ledger: GeneralLedger,
        account_ledger: AccountLedger,
        recurrence: Optional[RecurrenceEngine] = None,
        clock: Callable[[], date] = date.today,
        same_day_guard: bool = True
    ):
        self.storage = storage
        self.obligation_manager = obligation_manager
        self.loan_manager = loan_manager
        self.ledger = ledger
        self.account_ledger = account_ledger
        self.recurrence = recurrence or RecurrenceEngine()
        self.clock = clock
        self.same_day_guard = same_day_guard

    def materialize(self, obligation_id: str, user_id: Optional[str] = None) -> MaterializationResult:
        """
        Post the obligation's current occurrence

        Raises:
            NotFoundError: Unknown obligation (or loan for loan-linked ones)
            StateError: Obligation is inactive
            ConflictError: This occurrence was already posted today
        """
        today = self.clock()

        with self.storage.atomic():
            obligation = self.obligation_manager.get_obligation(obligation_id, user_id)
            if not obligation.is_active:
                raise StateError(f"Obligation {obligation_id} is not active")

            signed = signed_amount(obligation.category, obligation.amount)
            key = occurrence_key(obligation)
            self._guard_duplicate(obligation, signed, key, today)

            if obligation.loan_id:
                entry, loan_payment = self._pay_loan(obligation, key)
            else:
                loan_payment = None
                entry = self.ledger.record_entry(
                    user_id=obligation.user_id,
                    amount=obligation.amount,
                    category=obligation.category,
                    entry_date=obligation.next_due_date,
                    subcategory_id=obligation.subcategory_id,
                    account_id=obligation.account_id,
                    note=obligation.note or obligation.title,
                    payee=obligation.payee,
                    obligation_id=obligation.id,
                    occurrence_key=key,
                    post_to_account=False
                )
                self.account_ledger.post(obligation.account_id, obligation.amount, obligation.category)
                self._advance(obligation)

            obligation.last_materialized_at = utc_now()
            obligation.updated_at = obligation.last_materialized_at
            self.obligation_manager.save_obligation(obligation)

        log_action(logger, "info", f"Materialized obligation {obligation.title}",
                   user_id=obligation.user_id, action="obligation.materialize",
                   resource=f"obligation:{obligation.id}",
                   extra={"entry_id": entry.id, "amount": str(entry.amount),
                          "next_due_date": obligation.next_due_date.isoformat(),
                          "is_active": obligation.is_active})
        return MaterializationResult(entry=entry, obligation=obligation, loan_payment=loan_payment)

    def _guard_duplicate(self, obligation: Obligation, signed: Decimal, key: str, today: date) -> None:
        existing = self.ledger.find_by_occurrence(key)
        if existing is None and self.same_day_guard:
            existing = self.ledger.find_same_day_duplicate(
                user_id=obligation.user_id,
                category=obligation.category,
                subcategory_id=obligation.subcategory_id,
                signed=signed,
                day=today,
                obligation_id=obligation.id,
                title=obligation.title
            )
        if existing is not None:
            raise ConflictError(
                f"Obligation {obligation.id} was already materialized (entry {existing.id})"
            )

    def _pay_loan(self, obligation: Obligation, key: str):
        """Pay the next planned installment; the loan step writes and posts the entry"""
        loan = self.loan_manager.get_loan(obligation.loan_id, obligation.user_id)
        if loan.is_paid_off:
            raise StateError(f"Loan {loan.id} is already paid off")
        installment = self.loan_manager.next_planned_installment(loan.id)
        if installment is None:
            raise StateError(f"Loan {loan.id} has no planned installment")

        payment = self.loan_manager.record_payment(
            loan_id=loan.id,
            payment_number=installment.payment_number,
            actual_amount=obligation.amount,
            paid_date=self.clock(),
            account_id=obligation.account_id or loan.account_id,
            source=obligation,
            occurrence_key=key
        )

        # Resync to the loan's schedule and payment
        if payment.loan.is_paid_off:
            obligation.is_active = False
        else:
            if payment.loan.next_payment_date:
                obligation.next_due_date = payment.loan.next_payment_date
            obligation.amount = payment.loan.monthly_payment
        return payment.entry, payment

    def _advance(self, obligation: Obligation) -> None:
        """Move a non-loan obligation to its next occurrence, or retire it"""
        if obligation.frequency == Frequency.ONE_TIME:
            obligation.is_active = False
            return

        if obligation.frequency == Frequency.REPEAT:
            obligation.remaining_repeats = max((obligation.remaining_repeats or 0) - 1, 0)
            if obligation.remaining_repeats == 0:
                obligation.is_active = False
                return

        obligation.next_due_date = self.recurrence.next_due_date_after_firing(
            obligation.start_date, obligation.frequency, obligation.next_due_date
        )
        if obligation.end_date and obligation.next_due_date > obligation.end_date:
            obligation.is_active = False
