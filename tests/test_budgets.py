"""
Test suite for budget synchronization

Applying an obligation and removing it again must leave every budget cell
exactly where it started.
"""

import pytest
from decimal import Decimal
from datetime import date
from types import SimpleNamespace

from finance_core.budgets import MODE_DIVIDE, MODE_SPECIFIC
from finance_core.errors import ConflictError, StateError, ValidationError
from finance_core.recurrence import Frequency


def cell_amounts(system, user_id="alice", year=2025, category="EXPENSE"):
    return {int(cell.period[5:]): cell.amount for cell in system.budget_sync.get_cells(user_id, year, category)}


class TestAllocation:
    """Test the per-frequency allocation rules"""

    def obligation(self, frequency, amount, start_date=date(2025, 4, 10)):
        return SimpleNamespace(amount=Decimal(amount), frequency=frequency, start_date=start_date)

    def test_monthly(self, system):
        deltas = system.budget_sync.allocate(self.obligation(Frequency.MONTHLY, '80.00'), 2025)
        assert deltas == {month: Decimal('80.00') for month in range(1, 13)}

    def test_yearly_divide(self, system):
        deltas = system.budget_sync.allocate(self.obligation(Frequency.YEARLY, '1200.00'), 2025, MODE_DIVIDE)
        assert set(deltas.values()) == {Decimal('100.00')}
        assert len(deltas) == 12

    def test_yearly_specific(self, system):
        obligation = self.obligation(Frequency.YEARLY, '1200.00')
        assert system.budget_sync.allocate(obligation, 2025, MODE_SPECIFIC, 2) == {3: Decimal('1200.00')}
        assert system.budget_sync.allocate(obligation, 2025, MODE_SPECIFIC) == {4: Decimal('1200.00')}
        with pytest.raises(ValidationError):
            system.budget_sync.allocate(obligation, 2025, MODE_SPECIFIC, 12)

    def test_one_time(self, system):
        obligation = self.obligation(Frequency.ONE_TIME, '300.00', date(2025, 6, 5))
        assert system.budget_sync.allocate(obligation, 2025) == {6: Decimal('300.00')}
        with pytest.raises(ValidationError):
            system.budget_sync.allocate(obligation, 2026)

    def test_spread_frequencies(self, system):
        weekly = system.budget_sync.allocate(self.obligation(Frequency.WEEKLY, '10.00'), 2025)
        quarterly = system.budget_sync.allocate(self.obligation(Frequency.QUARTERLY, '300.00'), 2025)
        semiannual = system.budget_sync.allocate(self.obligation(Frequency.SEMIANNUAL, '600.00'), 2025)

        assert weekly[1] == Decimal('43.33')
        assert quarterly[7] == Decimal('100.00')
        assert semiannual[12] == Decimal('100.00')

    def test_repeat_is_not_budgeted(self, system):
        with pytest.raises(ValidationError):
            system.budget_sync.allocate(self.obligation(Frequency.REPEAT, '10.00'), 2025)


class TestBudgetApplication:
    """Test applying and removing obligations through the manager"""

    def create(self, system, **overrides):
        kwargs = dict(user_id="alice", category="EXPENSE", amount="1200", frequency="YEARLY",
                      start_date=date(2025, 4, 1), title="Insurance")
        kwargs.update(overrides)
        return system.obligation_manager.create_obligation(**kwargs)

    def test_divide_then_remove_restores_cells(self, system):
        obligation = self.create(system)

        applied = system.obligation_manager.apply_to_budget(obligation.id, "alice", MODE_DIVIDE, year=2025)
        assert applied.applied_to_budget
        assert applied.budget_application_mode == MODE_DIVIDE
        assert cell_amounts(system) == {month: Decimal('100.00') for month in range(1, 13)}
        cell = system.budget_sync.get_cell("alice", "EXPENSE", None, 2025, 1)
        assert cell.managed_automatically
        assert cell.contributors == [obligation.id]

        removed = system.obligation_manager.remove_from_budget(obligation.id, "alice")
        assert not removed.applied_to_budget
        assert set(cell_amounts(system).values()) == {Decimal('0.00')}
        assert not system.budget_sync.get_cell("alice", "EXPENSE", None, 2025, 1).managed_automatically

    def test_existing_amounts_are_preserved(self, system):
        monthly = self.create(system, amount="50", frequency="MONTHLY", title="Gym")
        system.obligation_manager.apply_to_budget(monthly.id, "alice", year=2025)
        yearly = self.create(system)

        system.obligation_manager.apply_to_budget(yearly.id, "alice", MODE_DIVIDE, year=2025)
        assert cell_amounts(system)[6] == Decimal('150.00')

        system.obligation_manager.remove_from_budget(yearly.id, "alice")
        assert set(cell_amounts(system).values()) == {Decimal('50.00')}
        cell = system.budget_sync.get_cell("alice", "EXPENSE", None, 2025, 6)
        assert cell.contributors == [monthly.id]
        assert cell.managed_automatically

    def test_specific_month(self, system):
        obligation = self.create(system)
        system.obligation_manager.apply_to_budget(obligation.id, "alice", MODE_SPECIFIC, 2, 2025)

        amounts = cell_amounts(system)
        assert amounts == {3: Decimal('1200.00')}

        system.obligation_manager.remove_from_budget(obligation.id, "alice")
        assert cell_amounts(system) == {3: Decimal('0.00')}

    def test_apply_twice_conflicts(self, system):
        obligation = self.create(system)
        system.obligation_manager.apply_to_budget(obligation.id, "alice", year=2025)
        with pytest.raises(ConflictError):
            system.obligation_manager.apply_to_budget(obligation.id, "alice", year=2025)

    def test_remove_when_not_applied(self, system):
        obligation = self.create(system)
        with pytest.raises(StateError):
            system.obligation_manager.remove_from_budget(obligation.id, "alice")

    def test_unknown_mode(self, system):
        obligation = self.create(system)
        with pytest.raises(ValidationError):
            system.obligation_manager.apply_to_budget(obligation.id, "alice", "halves")

    def test_legacy_record_infers_mode(self, system):
        obligation = self.create(system)
        system.budget_sync.apply(obligation, 2025, MODE_SPECIFIC, 5)
        obligation.applied_to_budget = True
        obligation.budget_year = 2025
        system.obligation_manager.save_obligation(obligation)

        system.obligation_manager.remove_from_budget(obligation.id, "alice")
        assert cell_amounts(system) == {6: Decimal('0.00')}

    def test_budget_failure_on_create_is_not_fatal(self, system):
        obligation = self.create(system, frequency="ONE_TIME", start_date=date(2026, 2, 1),
                                 apply_to_budget=True, budget_year=2025)

        stored = system.obligation_manager.get_obligation(obligation.id)
        assert not stored.applied_to_budget
        assert cell_amounts(system) == {}

    def test_create_with_budget(self, system):
        obligation = self.create(system, apply_to_budget=True, budget_mode=MODE_SPECIFIC,
                                 budget_target_month=0)
        assert obligation.applied_to_budget
        assert obligation.budget_year == 2025
        assert cell_amounts(system) == {1: Decimal('1200.00')}

    def test_update_resyncs_contribution(self, system):
        obligation = self.create(system, amount="100", frequency="MONTHLY", title="Rent")
        system.obligation_manager.apply_to_budget(obligation.id, "alice", year=2025)

        system.obligation_manager.update_obligation(obligation.id, "alice", amount="150")
        assert set(cell_amounts(system).values()) == {Decimal('150.00')}

    def test_delete_removes_contribution(self, system):
        obligation = self.create(system)
        system.obligation_manager.apply_to_budget(obligation.id, "alice", year=2025)

        system.obligation_manager.delete_obligation(obligation.id, "alice")
        assert set(cell_amounts(system).values()) == {Decimal('0.00')}
