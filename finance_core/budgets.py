"""
Budget Synchronization Module

Mirrors obligations into monthly budget cells. Each frequency has a pure
allocation rule producing per-month deltas for one year; applying adds the
deltas and flags the obligation as a contributor, removing subtracts exactly
the same deltas.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from .errors import ValidationError
from .logging_config import log_action
from .money import ZERO, quantize
from .recurrence import Frequency, parse_frequency
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)

MODE_SPECIFIC = "specific"
MODE_DIVIDE = "divide"
APPLICATION_MODES = (MODE_SPECIFIC, MODE_DIVIDE)

BUDGET_CELLS_TABLE = "budget_cells"


@dataclass
class BudgetCell(StorageRecord):
    """Planned total for one category in one month"""
    user_id: str
    category: str
    subcategory_id: Optional[str]
    period: str                   # YYYY-MM
    amount: Decimal
    managed_automatically: bool = False
    contributors: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> 'BudgetCell':
        data = dict(data)
        data['amount'] = Decimal(data['amount'])
        data['contributors'] = list(data.get('contributors') or [])
        return super().from_dict(data)


def cell_id(user_id: str, category: str, subcategory_id: Optional[str], period: str) -> str:
    return f"{user_id}:{category}:{subcategory_id or '-'}:{period}"


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


class BudgetSync:
    """Applies and removes obligation contributions to budget cells"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.cells_table = BUDGET_CELLS_TABLE

    def allocate(self, obligation, year: int, mode: Optional[str] = None,
                 target_month: Optional[int] = None) -> Dict[int, Decimal]:
        """
        Per-month contribution of an obligation for ``year``

        Returns ``{month (1-12): amount}``. ``target_month`` is zero based
        (0 = January) and only used by YEARLY in specific mode.
        """
        amount = abs(obligation.amount)
        frequency = parse_frequency(obligation.frequency)
        all_months = range(1, 13)

        if frequency == Frequency.MONTHLY:
            return {month: amount for month in all_months}

        if frequency == Frequency.YEARLY:
            mode = mode or MODE_DIVIDE
            if mode not in APPLICATION_MODES:
                raise ValidationError(f"Unknown budget application mode: {mode}")
            if mode == MODE_SPECIFIC:
                if target_month is None:
                    target_month = obligation.start_date.month - 1
                if not isinstance(target_month, int) or not 0 <= target_month <= 11:
                    raise ValidationError("Target month must be between 0 and 11")
                return {target_month + 1: amount}
            share = quantize(amount / Decimal('12'))
            return {month: share for month in all_months}

        if frequency == Frequency.ONE_TIME:
            if obligation.start_date.year != year:
                raise ValidationError(
                    f"One-time obligation dated {obligation.start_date.isoformat()} does not fall in {year}"
                )
            return {obligation.start_date.month: amount}

        if frequency == Frequency.WEEKLY:
            share = quantize(amount * Decimal('52') / Decimal('12'))
            return {month: share for month in all_months}

        if frequency == Frequency.QUARTERLY:
            share = quantize(amount / Decimal('3'))
            return {month: share for month in all_months}

        if frequency == Frequency.SEMIANNUAL:
            share = quantize(amount / Decimal('6'))
            return {month: share for month in all_months}

        raise ValidationError(f"Frequency {frequency.value} cannot be applied to the budget")

    def apply(self, obligation, year: int, mode: Optional[str] = None,
              target_month: Optional[int] = None) -> Dict[int, Decimal]:
        """Add the obligation's allocation to its budget cells"""
        deltas = self.allocate(obligation, year, mode, target_month)
        with self.storage.atomic():
            for month, delta in deltas.items():
                self._adjust_cell(obligation, year, month, delta, contributing=True)

        log_action(logger, "info", f"Applied obligation to {len(deltas)} budget months",
                   user_id=obligation.user_id, action="budget.apply",
                   resource=f"obligation:{obligation.id}", extra={"year": year, "mode": mode})
        return deltas

    def remove(self, obligation, year: int, mode: Optional[str] = None,
               target_month: Optional[int] = None) -> Dict[int, Decimal]:
        """Subtract the same allocation that ``apply`` added"""
        deltas = self.allocate(obligation, year, mode, target_month)
        with self.storage.atomic():
            for month, delta in deltas.items():
                self._adjust_cell(obligation, year, month, -delta, contributing=False)

        log_action(logger, "info", f"Removed obligation from {len(deltas)} budget months",
                   user_id=obligation.user_id, action="budget.remove",
                   resource=f"obligation:{obligation.id}", extra={"year": year, "mode": mode})
        return deltas

    def infer_application_mode(self, obligation, year: int) -> Tuple[str, Optional[int]]:
        """
        Guess how a legacy obligation was applied from the cells it flagged

        One flagged month means specific mode for that month, twelve means
        divide; any other count is ambiguous and falls back to divide.
        """
        flagged = [
            cell for cell in self.get_cells(obligation.user_id, year, obligation.category)
            if obligation.id in cell.contributors
        ]
        if len(flagged) == 1:
            month = int(flagged[0].period.split("-")[1])
            return MODE_SPECIFIC, month - 1
        if len(flagged) != 12:
            logger.warning("Ambiguous budget application for obligation %s (%d flagged months), assuming divide",
                           obligation.id, len(flagged))
        return MODE_DIVIDE, None

    def get_cells(self, user_id: str, year: int, category: Optional[str] = None) -> List[BudgetCell]:
        """Budget cells of one year, ordered by period"""
        filters = {"user_id": user_id}
        if category:
            filters["category"] = category
        prefix = f"{year:04d}-"
        cells = [
            BudgetCell.from_dict(data)
            for data in self.storage.find(self.cells_table, filters)
            if data['period'].startswith(prefix)
        ]
        return sorted(cells, key=lambda c: (c.period, c.category, c.subcategory_id or ""))

    def get_cell(self, user_id: str, category: str, subcategory_id: Optional[str],
                 year: int, month: int) -> Optional[BudgetCell]:
        data = self.storage.load(self.cells_table, cell_id(user_id, category, subcategory_id, period_key(year, month)))
        return BudgetCell.from_dict(data) if data else None

    def _adjust_cell(self, obligation, year: int, month: int, delta: Decimal, contributing: bool) -> None:
        period = period_key(year, month)
        record_id = cell_id(obligation.user_id, obligation.category, obligation.subcategory_id, period)
        data = self.storage.load(self.cells_table, record_id)
        now = utc_now()

        if data:
            cell = BudgetCell.from_dict(data)
        else:
            cell = BudgetCell(
                id=record_id,
                created_at=now,
                updated_at=now,
                user_id=obligation.user_id,
                category=obligation.category,
                subcategory_id=obligation.subcategory_id,
                period=period,
                amount=ZERO
            )

        cell.amount = quantize(cell.amount + delta)
        if contributing and obligation.id not in cell.contributors:
            cell.contributors.append(obligation.id)
        elif not contributing and obligation.id in cell.contributors:
            cell.contributors.remove(obligation.id)
        cell.managed_automatically = bool(cell.contributors)
        cell.updated_at = now

        self.storage.save(self.cells_table, cell.id, cell.to_dict())
