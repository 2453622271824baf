"""
Obligation Module

Recurring and one-off scheduled money events (bills, incomes, loan
installments) that have not been posted yet. This is the CRUD surface:
it keeps next_due_date consistent with the recurrence rules and mirrors
obligations into the budget when asked to.
"""

from decimal import Decimal
from datetime import datetime, date, timedelta
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging
import uuid

from .budgets import BudgetSync, APPLICATION_MODES, MODE_DIVIDE, MODE_SPECIFIC
from .errors import ConflictError, NotFoundError, StateError, ValidationError
from .groups import OBLIGATION_GROUPS_TABLE
from .logging_config import log_action
from .money import ZERO, normalize_category, quantize, to_decimal
from .recurrence import Frequency, RecurrenceEngine, parse_frequency
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)

OBLIGATIONS_TABLE = "obligations"


class ConfirmationMode(Enum):
    """Whether the scheduler may post an obligation on its own"""
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


def parse_confirmation_mode(value: Union[str, ConfirmationMode]) -> ConfirmationMode:
    if isinstance(value, ConfirmationMode):
        return value
    try:
        return ConfirmationMode(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unsupported confirmation mode: {value}")


@dataclass
class Obligation(StorageRecord):
    """A scheduled money event not yet posted to the ledger"""
    user_id: str
    title: str
    category: str
    amount: Decimal                          # unsigned magnitude; category gives the sign
    frequency: Frequency
    start_date: date
    next_due_date: date
    confirmation_mode: ConfirmationMode = ConfirmationMode.MANUAL
    is_active: bool = True
    subcategory_id: Optional[str] = None
    note: Optional[str] = None
    payee: Optional[str] = None
    account_id: Optional[str] = None
    loan_id: Optional[str] = None
    group_id: Optional[str] = None
    end_date: Optional[date] = None
    repeat_count: Optional[int] = None
    remaining_repeats: Optional[int] = None
    applied_to_budget: bool = False
    budget_application_mode: Optional[str] = None
    budget_target_month: Optional[int] = None
    budget_year: Optional[int] = None
    last_materialized_at: Optional[datetime] = None

    @property
    def is_automatic(self) -> bool:
        return self.confirmation_mode == ConfirmationMode.AUTOMATIC

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Obligation':
        data = dict(data)
        data['amount'] = Decimal(data['amount'])
        data['frequency'] = Frequency(data['frequency'])
        data['confirmation_mode'] = ConfirmationMode(data['confirmation_mode'])
        for key in ('start_date', 'next_due_date', 'end_date'):
            if data.get(key):
                data[key] = date.fromisoformat(data[key])
        if data.get('last_materialized_at'):
            data['last_materialized_at'] = datetime.fromisoformat(data['last_materialized_at'])
        return super().from_dict(data)


# Fields update_obligation accepts
_UPDATABLE_FIELDS = {
    "title", "category", "subcategory_id", "amount", "frequency", "start_date", "end_date",
    "confirmation_mode", "note", "payee", "account_id", "group_id", "repeat_count",
}

# Changes that alter the budget allocation
_BUDGET_FIELDS = {"amount", "frequency", "category", "subcategory_id", "start_date"}


class ObligationManager:
    """
    Create, edit, list and schedule obligations
    """

    def __init__(
        self,
        storage: StorageInterface,
        budget_sync: BudgetSync,
        recurrence: Optional[RecurrenceEngine] = None,
        clock: Callable[[], date] = date.today,
        max_repeat_count: int = 100,
        max_occurrences: int = 100
    ):
        self.storage = storage
        self.budget_sync = budget_sync
        self.recurrence = recurrence or RecurrenceEngine()
        self.clock = clock
        self.max_repeat_count = max_repeat_count
        self.max_occurrences = max_occurrences
        self.obligations_table = OBLIGATIONS_TABLE

    def create_obligation(
        self,
        user_id: str,
        category: str,
        amount: Decimal,
        frequency: Union[str, Frequency],
        start_date: date,
        title: Optional[str] = None,
        confirmation_mode: Union[str, ConfirmationMode] = ConfirmationMode.MANUAL,
        subcategory_id: Optional[str] = None,
        note: Optional[str] = None,
        payee: Optional[str] = None,
        account_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        group_id: Optional[str] = None,
        end_date: Optional[date] = None,
        repeat_count: Optional[int] = None,
        apply_to_budget: bool = False,
        budget_mode: Optional[str] = None,
        budget_target_month: Optional[int] = None,
        budget_year: Optional[int] = None
    ) -> Obligation:
        """
        Create an obligation

        ``next_due_date`` starts at the first due date as of today. With
        ``apply_to_budget`` the budget is updated afterwards; a budget failure
        is logged and does not undo the creation.
        """
        frequency = parse_frequency(frequency)
        magnitude = self._validate_amount(amount)
        self._validate_repeat(frequency, repeat_count)
        if end_date is not None and end_date < start_date:
            raise ValidationError("End date cannot be before start date")
        self._validate_group(user_id, group_id)

        category = normalize_category(category)
        now = utc_now()
        obligation = Obligation(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            title=(title or note or category.title()).strip(),
            category=category,
            amount=magnitude,
            frequency=frequency,
            start_date=start_date,
            next_due_date=self.recurrence.next_due_date(start_date, frequency, self.clock()),
            confirmation_mode=parse_confirmation_mode(confirmation_mode),
            subcategory_id=subcategory_id,
            note=note,
            payee=payee,
            account_id=account_id,
            loan_id=loan_id,
            group_id=group_id,
            end_date=end_date,
            repeat_count=repeat_count if frequency == Frequency.REPEAT else None,
            remaining_repeats=repeat_count if frequency == Frequency.REPEAT else None
        )
        self.save_obligation(obligation)

        log_action(logger, "info", f"Created {frequency.value} obligation {obligation.title}",
                   user_id=user_id, action="obligation.create", resource=f"obligation:{obligation.id}")

        if apply_to_budget:
            try:
                obligation = self.apply_to_budget(obligation.id, user_id, budget_mode,
                                                  budget_target_month, budget_year)
            except Exception:
                logger.warning("Budget sync failed for new obligation %s", obligation.id, exc_info=True)

        return obligation

    def get_obligation(self, obligation_id: str, user_id: Optional[str] = None) -> Obligation:
        """Load an obligation; raises NotFoundError when absent or owned by someone else"""
        data = self.storage.load(self.obligations_table, obligation_id)
        if not data or (user_id is not None and data.get('user_id') != user_id):
            raise NotFoundError(f"Obligation {obligation_id} not found")
        return Obligation.from_dict(data)

    def update_obligation(self, obligation_id: str, user_id: Optional[str] = None, **changes) -> Obligation:
        """
        Edit an obligation

        Changing the start date or frequency recomputes next_due_date;
        changing repeat_count restarts the repeat counter. If the obligation
        is in the budget, its old contribution is swapped for the new one.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        obligation = self.get_obligation(obligation_id, user_id)
        before = Obligation.from_dict(obligation.to_dict())
        if changes.get('group_id') is not None:
            self._validate_group(obligation.user_id, changes['group_id'])

        if 'amount' in changes:
            obligation.amount = self._validate_amount(changes['amount'])
        if 'frequency' in changes:
            obligation.frequency = parse_frequency(changes['frequency'])
        if 'category' in changes:
            obligation.category = normalize_category(changes['category'])
        if 'confirmation_mode' in changes:
            obligation.confirmation_mode = parse_confirmation_mode(changes['confirmation_mode'])
        for key in ('title', 'subcategory_id', 'start_date', 'end_date', 'note', 'payee',
                    'account_id', 'group_id'):
            if key in changes:
                setattr(obligation, key, changes[key])

        if obligation.frequency == Frequency.REPEAT:
            repeat_count = changes.get('repeat_count', obligation.repeat_count)
            self._validate_repeat(obligation.frequency, repeat_count)
            if 'repeat_count' in changes or before.frequency != Frequency.REPEAT:
                obligation.repeat_count = repeat_count
                obligation.remaining_repeats = repeat_count
        else:
            obligation.repeat_count = None
            obligation.remaining_repeats = None

        if obligation.end_date is not None and obligation.end_date < obligation.start_date:
            raise ValidationError("End date cannot be before start date")

        if 'start_date' in changes or 'frequency' in changes:
            obligation.next_due_date = self.recurrence.next_due_date(
                obligation.start_date, obligation.frequency, self.clock()
            )

        obligation.updated_at = utc_now()
        self.save_obligation(obligation)

        if before.applied_to_budget and _BUDGET_FIELDS & set(changes):
            self.resync_budget(before, obligation)

        log_action(logger, "info", "Updated obligation", user_id=obligation.user_id,
                   action="obligation.update", resource=f"obligation:{obligation.id}",
                   extra={"fields": sorted(changes)})
        return self.get_obligation(obligation.id)

    def delete_obligation(self, obligation_id: str, user_id: Optional[str] = None) -> None:
        """Delete an obligation, taking it out of the budget first (best effort)"""
        obligation = self.get_obligation(obligation_id, user_id)
        self._remove_budget_quietly(obligation)
        self.storage.delete(self.obligations_table, obligation_id)
        log_action(logger, "info", "Deleted obligation", user_id=obligation.user_id,
                   action="obligation.delete", resource=f"obligation:{obligation_id}")

    def list_obligations(self, user_id: str, group_id: Optional[str] = None,
                         active_only: bool = False) -> List[Obligation]:
        """Obligations of a user ordered by next due date"""
        filters: Dict[str, Any] = {"user_id": user_id}
        if group_id is not None:
            filters["group_id"] = group_id
        if active_only:
            filters["is_active"] = True
        obligations = [Obligation.from_dict(data) for data in self.storage.find(self.obligations_table, filters)]
        return sorted(obligations, key=lambda o: (o.next_due_date, o.title))

    def list_due(self, user_id: str, within_days: int = 7) -> List[Obligation]:
        """Active obligations due today or within the next ``within_days`` days"""
        if within_days < 0:
            raise ValidationError("within_days cannot be negative")
        horizon = self.clock() + timedelta(days=within_days)
        return [o for o in self.list_obligations(user_id, active_only=True) if o.next_due_date <= horizon]

    def find_due_automatic(self, as_of: Optional[date] = None) -> List[Obligation]:
        """Active AUTOMATIC obligations of every user due on or before ``as_of``"""
        as_of = as_of or self.clock()
        due = [
            Obligation.from_dict(data)
            for data in self.storage.find(self.obligations_table, {
                "is_active": True,
                "confirmation_mode": ConfirmationMode.AUTOMATIC.value
            })
        ]
        return sorted((o for o in due if o.next_due_date <= as_of), key=lambda o: o.next_due_date)

    def find_for_loan(self, loan_id: str) -> List[Obligation]:
        return [Obligation.from_dict(data) for data in self.storage.find(self.obligations_table, {"loan_id": loan_id})]

    def next_occurrences(self, start_date: date, frequency: Union[str, Frequency],
                         count: int = 5) -> List[date]:
        """Preview the next ``count`` due dates for a schedule"""
        if not isinstance(count, int) or count < 1 or count > self.max_occurrences:
            raise ValidationError(f"Count must be between 1 and {self.max_occurrences}")
        return self.recurrence.next_n_occurrences(start_date, frequency, count, self.clock())

    def toggle_active(self, obligation_id: str, user_id: Optional[str], is_active: bool) -> Obligation:
        """Pause or resume an obligation"""
        if not isinstance(is_active, bool):
            raise ValidationError("is_active must be a boolean")
        obligation = self.get_obligation(obligation_id, user_id)
        if is_active and obligation.frequency == Frequency.REPEAT and not obligation.remaining_repeats:
            raise StateError("Repeat obligation has no repetitions left")

        obligation.is_active = is_active
        obligation.updated_at = utc_now()
        self.save_obligation(obligation)
        log_action(logger, "info", f"Obligation {'activated' if is_active else 'deactivated'}",
                   user_id=obligation.user_id, action="obligation.toggle",
                   resource=f"obligation:{obligation_id}")
        return obligation

    def apply_to_budget(self, obligation_id: str, user_id: Optional[str] = None,
                        mode: Optional[str] = None, target_month: Optional[int] = None,
                        year: Optional[int] = None) -> Obligation:
        """
        Add an obligation to the budget of ``year`` (default: current year)

        The mode and target month are stored on the obligation so removal can
        reverse exactly what was applied.
        """
        if mode is not None and mode not in APPLICATION_MODES:
            raise ValidationError(f"Unknown budget application mode: {mode}")

        with self.storage.atomic():
            obligation = self.get_obligation(obligation_id, user_id)
            if obligation.applied_to_budget:
                raise ConflictError(f"Obligation {obligation_id} is already applied to the budget")

            year = year or self.clock().year
            if obligation.frequency == Frequency.YEARLY:
                mode = mode or MODE_DIVIDE
                if mode == MODE_SPECIFIC and target_month is None:
                    target_month = obligation.start_date.month - 1
                if mode == MODE_DIVIDE:
                    target_month = None
            else:
                mode, target_month = None, None

            self.budget_sync.apply(obligation, year, mode, target_month)

            obligation.applied_to_budget = True
            obligation.budget_application_mode = mode
            obligation.budget_target_month = target_month
            obligation.budget_year = year
            obligation.updated_at = utc_now()
            self.save_obligation(obligation)

        return obligation

    def remove_from_budget(self, obligation_id: str, user_id: Optional[str] = None,
                           mode: Optional[str] = None, target_month: Optional[int] = None,
                           year: Optional[int] = None) -> Obligation:
        """
        Take an obligation out of the budget

        Parameters not given fall back to what was stored at application time,
        and for legacy records without a stored mode to the flagged cells.
        """
        with self.storage.atomic():
            obligation = self.get_obligation(obligation_id, user_id)
            if not obligation.applied_to_budget:
                raise StateError(f"Obligation {obligation_id} is not applied to the budget")
            self._remove_contribution(obligation, mode, target_month, year)
            obligation.applied_to_budget = False
            obligation.budget_application_mode = None
            obligation.budget_target_month = None
            obligation.budget_year = None
            obligation.updated_at = utc_now()
            self.save_obligation(obligation)

        return obligation

    def save_obligation(self, obligation: Obligation) -> None:
        self.storage.save(self.obligations_table, obligation.id, obligation.to_dict())

    def _remove_contribution(self, obligation: Obligation, mode: Optional[str] = None,
                             target_month: Optional[int] = None, year: Optional[int] = None) -> None:
        year = year or obligation.budget_year or self.clock().year
        if obligation.frequency == Frequency.YEARLY:
            if mode is None:
                mode = obligation.budget_application_mode
                if target_month is None:
                    target_month = obligation.budget_target_month
            if mode is None:
                mode, inferred_month = self.budget_sync.infer_application_mode(obligation, year)
                if target_month is None:
                    target_month = inferred_month
        self.budget_sync.remove(obligation, year, mode, target_month)

    def _remove_budget_quietly(self, obligation: Obligation) -> None:
        if not obligation.applied_to_budget:
            return
        try:
            self._remove_contribution(obligation)
        except Exception:
            logger.warning("Budget removal failed for obligation %s", obligation.id, exc_info=True)

    def resync_budget(self, before: Obligation, after: Obligation) -> None:
        """Swap the old budget contribution for the new one (best effort)"""
        try:
            with self.storage.atomic():
                self._remove_contribution(before)
                mode = after.budget_application_mode if after.frequency == Frequency.YEARLY else None
                target_month = after.budget_target_month if mode == MODE_SPECIFIC else None
                if after.frequency == Frequency.YEARLY and mode is None:
                    mode = MODE_DIVIDE
                self.budget_sync.apply(after, before.budget_year or self.clock().year, mode, target_month)
                after.budget_application_mode = mode
                after.budget_target_month = target_month
                self.save_obligation(after)
        except Exception:
            logger.warning("Budget resync failed for obligation %s", after.id, exc_info=True)

    def _validate_amount(self, amount: Any) -> Decimal:
        magnitude = quantize(abs(to_decimal(amount)))
        if magnitude <= ZERO:
            raise ValidationError("Amount must be non-zero")
        return magnitude

    def _validate_group(self, user_id: str, group_id: Optional[str]) -> None:
        if group_id is None:
            return
        group = self.storage.load(OBLIGATION_GROUPS_TABLE, group_id)
        if not group or group.get('user_id') != user_id:
            raise ValidationError(f"Invalid group_id: {group_id}")

    def _validate_repeat(self, frequency: Frequency, repeat_count: Optional[int]) -> None:
        if frequency != Frequency.REPEAT:
            return
        if not isinstance(repeat_count, int) or isinstance(repeat_count, bool) \
                or not 1 <= repeat_count <= self.max_repeat_count:
            raise ValidationError(f"Repeat count must be between 1 and {self.max_repeat_count}")
