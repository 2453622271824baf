"""
General Ledger Module

Stores ledger entries (posted transactions). Creating, editing or deleting
an entry adjusts the account balance through AccountLedger in the same
atomic scope, so balance and entries never disagree.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging
import uuid

from .accounts import AccountLedger, Posting, LEDGER_ENTRIES_TABLE
from .errors import NotFoundError, ValidationError
from .logging_config import log_action
from .money import ZERO, normalize_category, optional_decimal, quantize, signed_amount, to_decimal
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry(StorageRecord):
    """A posted transaction. ``amount`` carries the category sign."""
    user_id: str
    entry_date: date
    amount: Decimal
    category: str
    subcategory_id: Optional[str] = None
    account_id: Optional[str] = None
    note: Optional[str] = None
    payee: Optional[str] = None
    obligation_id: Optional[str] = None
    occurrence_key: Optional[str] = None
    loan_id: Optional[str] = None
    payment_number: Optional[int] = None
    principal_amount: Optional[Decimal] = None
    interest_amount: Optional[Decimal] = None
    recorded_on: Optional[date] = None

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    def posting(self) -> Posting:
        return Posting(self.account_id, self.magnitude, self.category)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        data = dict(data)
        data['entry_date'] = date.fromisoformat(data['entry_date'])
        data['amount'] = Decimal(data['amount'])
        data['principal_amount'] = optional_decimal(data.get('principal_amount'))
        data['interest_amount'] = optional_decimal(data.get('interest_amount'))
        if data.get('recorded_on'):
            data['recorded_on'] = date.fromisoformat(data['recorded_on'])
        return super().from_dict(data)


# Fields a caller may change on an existing entry
_EDITABLE_FIELDS = {"entry_date", "amount", "category", "subcategory_id", "account_id", "note", "payee"}


class GeneralLedger:
    """Ledger entry store wired to the account balances"""

    def __init__(self, storage: StorageInterface, account_ledger: AccountLedger,
                 clock: Callable[[], date] = date.today):
        self.storage = storage
        self.account_ledger = account_ledger
        self.clock = clock
        self.entries_table = LEDGER_ENTRIES_TABLE

    def record_entry(
        self,
        user_id: str,
        amount: Decimal,
        category: str,
        entry_date: Optional[date] = None,
        subcategory_id: Optional[str] = None,
        account_id: Optional[str] = None,
        note: Optional[str] = None,
        payee: Optional[str] = None,
        obligation_id: Optional[str] = None,
        occurrence_key: Optional[str] = None,
        loan_id: Optional[str] = None,
        payment_number: Optional[int] = None,
        principal_amount: Optional[Decimal] = None,
        interest_amount: Optional[Decimal] = None,
        post_to_account: bool = True
    ) -> LedgerEntry:
        """
        Create a ledger entry

        ``amount`` is a magnitude; the stored amount is signed by category.
        With ``post_to_account`` the account balance moves in the same atomic
        scope; callers that post the balance themselves pass False.
        """
        category = normalize_category(category)
        magnitude = quantize(abs(to_decimal(amount)))
        if magnitude == ZERO:
            raise ValidationError("Entry amount must be non-zero")

        now = utc_now()
        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            entry_date=entry_date or self.clock(),
            amount=signed_amount(category, magnitude),
            category=category,
            subcategory_id=subcategory_id,
            account_id=account_id,
            note=note,
            payee=payee,
            obligation_id=obligation_id,
            occurrence_key=occurrence_key,
            loan_id=loan_id,
            payment_number=payment_number,
            principal_amount=principal_amount,
            interest_amount=interest_amount,
            recorded_on=self.clock()
        )

        with self.storage.atomic():
            if account_id:
                self.account_ledger.get_account(account_id, user_id)
            self._save_entry(entry)
            if post_to_account:
                self.account_ledger.post(account_id, magnitude, category)

        log_action(logger, "info", f"Recorded ledger entry {entry.amount} {category}",
                   user_id=user_id, action="ledger.record", resource=f"entry:{entry.id}")
        return entry

    def get_entry(self, entry_id: str, user_id: Optional[str] = None) -> LedgerEntry:
        data = self.storage.load(self.entries_table, entry_id)
        if not data or (user_id is not None and data.get('user_id') != user_id):
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        return LedgerEntry.from_dict(data)

    def list_entries(self, user_id: str, account_id: Optional[str] = None) -> List[LedgerEntry]:
        """Entries for a user, newest date first"""
        filters = {"user_id": user_id}
        if account_id:
            filters["account_id"] = account_id
        entries = [LedgerEntry.from_dict(data) for data in self.storage.find(self.entries_table, filters)]
        return sorted(entries, key=lambda e: (e.entry_date, e.created_at), reverse=True)

    def update_entry(self, entry_id: str, user_id: Optional[str] = None, **changes) -> LedgerEntry:
        """Edit an entry in place and move the balance from the old posting to the new one"""
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            entry = self.get_entry(entry_id, user_id)
            old_posting = entry.posting()

            category = normalize_category(changes.get('category', entry.category))
            magnitude = quantize(abs(to_decimal(changes.get('amount', entry.magnitude))))
            if magnitude == ZERO:
                raise ValidationError("Entry amount must be non-zero")
            if changes.get('account_id'):
                self.account_ledger.get_account(changes['account_id'], entry.user_id)

            for key in ("entry_date", "subcategory_id", "account_id", "note", "payee"):
                if key in changes:
                    setattr(entry, key, changes[key])
            entry.category = category
            entry.amount = signed_amount(category, magnitude)
            entry.updated_at = utc_now()

            self._save_entry(entry)
            self.account_ledger.reapply(old_posting, entry.posting())

        return entry

    def delete_entry(self, entry_id: str, user_id: Optional[str] = None) -> None:
        """Delete an entry and revert its balance effect"""
        with self.storage.atomic():
            entry = self.get_entry(entry_id, user_id)
            self.storage.delete(self.entries_table, entry_id)
            self.account_ledger.revert(entry.account_id, entry.magnitude, entry.category)
        log_action(logger, "info", "Deleted ledger entry",
                   user_id=entry.user_id, action="ledger.delete", resource=f"entry:{entry_id}")

    def find_by_occurrence(self, occurrence_key: str) -> Optional[LedgerEntry]:
        """Entry already created for a scheduled occurrence, if any"""
        matches = self.storage.find(self.entries_table, {"occurrence_key": occurrence_key})
        return LedgerEntry.from_dict(matches[0]) if matches else None

    def find_same_day_duplicate(
        self,
        user_id: str,
        category: str,
        subcategory_id: Optional[str],
        signed: Decimal,
        day: date,
        obligation_id: str,
        title: Optional[str] = None
    ) -> Optional[LedgerEntry]:
        """
        Heuristic duplicate check for a materialization

        Matches an entry recorded on ``day`` with the same category,
        subcategory and signed amount that either came from the same
        obligation or is a manual entry whose note mentions its title.
        """
        filters = {"user_id": user_id, "category": normalize_category(category)}
        for data in self.storage.find(self.entries_table, filters):
            entry = LedgerEntry.from_dict(data)
            if entry.subcategory_id != subcategory_id or entry.amount != signed:
                continue
            if entry.recorded_on != day:
                continue
            if entry.obligation_id == obligation_id:
                return entry
            if entry.obligation_id is None and title and entry.note and title.lower() in entry.note.lower():
                return entry
        return None

    def _save_entry(self, entry: LedgerEntry) -> None:
        self.storage.save(self.entries_table, entry.id, entry.to_dict())
