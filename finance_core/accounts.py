"""
Account Ledger Module

Accounts hold a running balance that is an aggregate of posted ledger
entries and transfers. Every balance mutation goes through post/revert
inside an atomic storage scope; recalculate rebuilds the balance from
scratch when drift is suspected.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging
import uuid

from .errors import NotFoundError, ValidationError
from .logging_config import log_action
from .money import INCOME, EXPENSE, ZERO, flip_category, quantize, signed_amount, to_decimal
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)

ACCOUNTS_TABLE = "accounts"
TRANSFERS_TABLE = "transfers"
LEDGER_ENTRIES_TABLE = "ledger_entries"


@dataclass
class Account(StorageRecord):
    """Account whose balance mirrors its posted entries"""
    user_id: str
    name: str
    balance: Decimal
    opening_balance: Decimal = ZERO
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        data = dict(data)
        data['balance'] = Decimal(data['balance'])
        data['opening_balance'] = Decimal(data.get('opening_balance', '0'))
        return super().from_dict(data)


@dataclass
class Transfer(StorageRecord):
    """Money moved between two accounts of the same user"""
    user_id: str
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transfer_date: date
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transfer':
        data = dict(data)
        data['amount'] = Decimal(data['amount'])
        data['transfer_date'] = date.fromisoformat(data['transfer_date'])
        return super().from_dict(data)


@dataclass(frozen=True)
class Posting:
    """A balance effect: magnitude booked to an account under a category"""
    account_id: Optional[str]
    magnitude: Decimal
    category: str


class AccountLedger:
    """
    Balance mutation primitives used by everything that posts money
    """

    def __init__(self, storage: StorageInterface, clock: Callable[[], date] = date.today):
        self.storage = storage
        self.clock = clock

    def open_account(self, user_id: str, name: str, opening_balance: Decimal = ZERO) -> Account:
        """Create an account with an opening balance"""
        if not name or not name.strip():
            raise ValidationError("Account name is required")
        now = utc_now()
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            name=name.strip(),
            balance=quantize(to_decimal(opening_balance)),
            opening_balance=quantize(to_decimal(opening_balance))
        )
        self._save_account(account)
        log_action(logger, "info", f"Opened account {account.name}",
                   user_id=user_id, action="account.open", resource=f"account:{account.id}")
        return account

    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Account:
        """Load an account; raises NotFoundError when absent or owned by someone else"""
        data = self.storage.load(ACCOUNTS_TABLE, account_id) if account_id else None
        if not data or (user_id is not None and data.get('user_id') != user_id):
            raise NotFoundError(f"Account {account_id} not found")
        return Account.from_dict(data)

    def list_accounts(self, user_id: str) -> List[Account]:
        return [Account.from_dict(data) for data in self.storage.find(ACCOUNTS_TABLE, {"user_id": user_id})]

    def post(self, account_id: Optional[str], magnitude: Decimal, category: str) -> Optional[Account]:
        """
        Book ``magnitude`` to the account with the sign its category implies

        No-op returning None when no account is given.
        """
        if not account_id:
            return None
        delta = signed_amount(category, magnitude)
        with self.storage.atomic():
            account = self.get_account(account_id)
            account.balance = quantize(account.balance + delta)
            account.updated_at = utc_now()
            self._save_account(account)
        logger.debug("Posted %s to account %s", delta, account_id)
        return account

    def revert(self, account_id: Optional[str], magnitude: Decimal, category: str) -> Optional[Account]:
        """Undo a posting by booking it under the opposite-signed category"""
        return self.post(account_id, magnitude, flip_category(category))

    def reapply(self, old: Posting, new: Posting) -> None:
        """Replace one posting with another as a single atomic change"""
        with self.storage.atomic():
            self.revert(old.account_id, old.magnitude, old.category)
            self.post(new.account_id, new.magnitude, new.category)

    def transfer(self, user_id: str, from_account_id: str, to_account_id: str, amount: Decimal,
                 transfer_date: Optional[date] = None, note: Optional[str] = None) -> Transfer:
        """Move money between two of the user's accounts"""
        amount = quantize(abs(to_decimal(amount)))
        if amount <= ZERO:
            raise ValidationError("Transfer amount must be positive")
        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account")

        now = utc_now()
        with self.storage.atomic():
            self.get_account(from_account_id, user_id)
            self.get_account(to_account_id, user_id)
            transfer = Transfer(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                amount=amount,
                transfer_date=transfer_date or self.clock(),
                note=note
            )
            self.storage.save(TRANSFERS_TABLE, transfer.id, transfer.to_dict())
            self.post(from_account_id, amount, EXPENSE)
            self.post(to_account_id, amount, INCOME)

        log_action(logger, "info", f"Transferred {amount}",
                   user_id=user_id, action="account.transfer", resource=f"transfer:{transfer.id}")
        return transfer

    def recalculate(self, account_id: str, user_id: Optional[str] = None) -> Decimal:
        """
        Rebuild the balance from the opening balance plus every entry and transfer

        Returns the correction that was applied (new balance minus old).
        """
        with self.storage.atomic():
            account = self.get_account(account_id, user_id)

            total = account.opening_balance
            for entry in self.storage.find(LEDGER_ENTRIES_TABLE, {"account_id": account_id}):
                total += signed_amount(entry['category'], Decimal(entry['amount']))
            for transfer in self.storage.find(TRANSFERS_TABLE, {"from_account_id": account_id}):
                total -= Decimal(transfer['amount'])
            for transfer in self.storage.find(TRANSFERS_TABLE, {"to_account_id": account_id}):
                total += Decimal(transfer['amount'])

            total = quantize(total)
            correction = total - account.balance
            account.balance = total
            account.updated_at = utc_now()
            self._save_account(account)

        if correction != ZERO:
            log_action(logger, "warning", f"Healed balance drift of {correction}",
                       user_id=account.user_id, action="account.recalculate",
                       resource=f"account:{account_id}", extra={"correction": str(correction)})
        return correction

    def _save_account(self, account: Account) -> None:
        self.storage.save(ACCOUNTS_TABLE, account.id, account.to_dict())
