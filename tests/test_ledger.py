"""
Test suite for the general ledger

Every entry change must move the account balance in the same atomic scope.
"""

import pytest
from decimal import Decimal
from datetime import date

from finance_core.accounts import AccountLedger
from finance_core.errors import NotFoundError, ValidationError
from finance_core.ledger import GeneralLedger
from finance_core.storage import InMemoryStorage


class TestGeneralLedger:

    def setup_method(self):
        self.storage = InMemoryStorage()
        clock = lambda: date(2025, 3, 15)
        self.accounts = AccountLedger(self.storage, clock=clock)
        self.ledger = GeneralLedger(self.storage, self.accounts, clock=clock)
        self.account = self.accounts.open_account("alice", "Checking", Decimal('1000.00'))

    def balance(self, account_id=None):
        return self.accounts.get_account(account_id or self.account.id).balance

    def test_record_entry_signs_amount_and_posts(self):
        entry = self.ledger.record_entry("alice", Decimal('100'), "expense", account_id=self.account.id)

        assert entry.amount == Decimal('-100.00')
        assert entry.category == "EXPENSE"
        assert entry.entry_date == date(2025, 3, 15)
        assert entry.recorded_on == date(2025, 3, 15)
        assert self.balance() == Decimal('900.00')

    def test_record_without_posting(self):
        self.ledger.record_entry("alice", Decimal('100'), "EXPENSE", account_id=self.account.id,
                                 post_to_account=False)
        assert self.balance() == Decimal('1000.00')

    def test_record_entry_validation(self):
        with pytest.raises(ValidationError):
            self.ledger.record_entry("alice", Decimal('0'), "EXPENSE")
        with pytest.raises(ValidationError):
            self.ledger.record_entry("alice", Decimal('10'), "")
        with pytest.raises(NotFoundError):
            self.ledger.record_entry("bob", Decimal('10'), "EXPENSE", account_id=self.account.id)

    def test_update_amount_and_category(self):
        entry = self.ledger.record_entry("alice", Decimal('100'), "EXPENSE", account_id=self.account.id)

        self.ledger.update_entry(entry.id, "alice", amount="40")
        assert self.balance() == Decimal('960.00')

        updated = self.ledger.update_entry(entry.id, "alice", category="INCOME")
        assert updated.amount == Decimal('40.00')
        assert self.balance() == Decimal('1040.00')

    def test_update_moves_entry_to_other_account(self):
        other = self.accounts.open_account("alice", "Cash", Decimal('50.00'))
        entry = self.ledger.record_entry("alice", Decimal('20'), "EXPENSE", account_id=self.account.id)

        self.ledger.update_entry(entry.id, "alice", account_id=other.id)

        assert self.balance() == Decimal('1000.00')
        assert self.balance(other.id) == Decimal('30.00')

    def test_update_rejects_unknown_fields(self):
        entry = self.ledger.record_entry("alice", Decimal('20'), "EXPENSE")
        with pytest.raises(ValidationError):
            self.ledger.update_entry(entry.id, "alice", obligation_id="x")

    def test_delete_reverts_balance(self):
        entry = self.ledger.record_entry("alice", Decimal('100'), "EXPENSE", account_id=self.account.id)
        self.ledger.delete_entry(entry.id, "alice")

        assert self.balance() == Decimal('1000.00')
        with pytest.raises(NotFoundError):
            self.ledger.get_entry(entry.id)

    def test_list_entries_newest_first(self):
        self.ledger.record_entry("alice", Decimal('1'), "EXPENSE", entry_date=date(2025, 1, 1))
        self.ledger.record_entry("alice", Decimal('2'), "EXPENSE", entry_date=date(2025, 2, 1))
        self.ledger.record_entry("bob", Decimal('3'), "EXPENSE")

        entries = self.ledger.list_entries("alice")
        assert [e.entry_date for e in entries] == [date(2025, 2, 1), date(2025, 1, 1)]

    def test_find_by_occurrence(self):
        entry = self.ledger.record_entry("alice", Decimal('5'), "EXPENSE", occurrence_key="ob-1:2025-03-15")

        assert self.ledger.find_by_occurrence("ob-1:2025-03-15").id == entry.id
        assert self.ledger.find_by_occurrence("ob-1:2025-04-15") is None

    def test_same_day_duplicate_matches_manual_entry_by_title(self):
        self.ledger.record_entry("alice", Decimal('100'), "EXPENSE", note="Paid rent early")

        match = self.ledger.find_same_day_duplicate(
            "alice", "EXPENSE", None, Decimal('-100.00'), date(2025, 3, 15), "ob-1", title="Rent"
        )
        assert match is not None
        assert self.ledger.find_same_day_duplicate(
            "alice", "EXPENSE", None, Decimal('-100.00'), date(2025, 3, 16), "ob-1", title="Rent"
        ) is None
        assert self.ledger.find_same_day_duplicate(
            "alice", "EXPENSE", None, Decimal('-99.00'), date(2025, 3, 15), "ob-1", title="Rent"
        ) is None
