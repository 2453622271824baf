"""
Test suite for loans module

Tests loan creation, persisted installment schedules, payment recording,
skipped payments, early payoff and loan metadata changes.
"""

import pytest
from decimal import Decimal
from datetime import date

from finance_core.errors import ConflictError, NotFoundError, StateError, ValidationError
from finance_core.loans import InstallmentStatus, LoanStatus, LoanType
from finance_core.obligations import ConfirmationMode


def create_loan(system, **overrides):
    kwargs = dict(
        user_id="alice",
        name="Car loan",
        principal=Decimal('10000'),
        annual_rate=Decimal('0.05'),
        duration_months=12,
        first_payment_date=date(2025, 1, 1)
    )
    kwargs.update(overrides)
    return system.loan_manager.create_loan(**kwargs)


def planned_rows(system, loan_id):
    return [r for r in system.loan_manager.get_installments(loan_id) if r.status == InstallmentStatus.PLANNED]


class TestLoanCreation:

    def test_create_persists_schedule(self, system):
        loan = create_loan(system)

        assert loan.status == LoanStatus.ACTIVE
        assert loan.monthly_payment == Decimal('856.07')
        assert loan.current_balance == Decimal('10000.00')
        assert loan.remaining_months == 12
        assert loan.next_payment_date == date(2025, 1, 1)
        assert loan.category == "DEBT"

        rows = system.loan_manager.get_installments(loan.id)
        assert [r.payment_number for r in rows] == list(range(1, 13))
        assert rows[0].id == f"{loan.id}_1"
        assert sum(r.principal_portion for r in rows) == Decimal('10000.00')
        assert all(r.status == InstallmentStatus.PLANNED for r in rows)

    def test_loan_type_sets_default_category(self, system):
        loan = create_loan(system, loan_type="personal_loan")
        assert loan.loan_type == LoanType.PERSONAL_LOAN
        assert loan.category == "EXPENSE"

    @pytest.mark.parametrize("changes", [
        {"principal": Decimal('0')},
        {"principal": Decimal('20000000')},
        {"annual_rate": Decimal('1.5')},
        {"duration_months": 0},
        {"duration_months": 601},
        {"name": " "},
        {"loan_type": "BALLOON"},
    ])
    def test_invalid_parameters(self, system, changes):
        with pytest.raises(ValidationError):
            create_loan(system, **changes)

    def test_account_must_belong_to_user(self, system):
        account = system.account_ledger.open_account("bob", "Checking")
        with pytest.raises(NotFoundError):
            create_loan(system, account_id=account.id)
        assert system.loan_manager.list_for_user("alice")["loans"] == []

    def test_auto_create_payments(self, system):
        loan = create_loan(system, auto_create_payments=True)

        plans = system.obligation_manager.find_for_loan(loan.id)
        assert len(plans) == 1
        plan = plans[0]
        assert plan.confirmation_mode == ConfirmationMode.AUTOMATIC
        assert plan.amount == Decimal('856.07')
        assert plan.next_due_date == date(2025, 1, 1)
        assert plan.title == "Loan payment - Car loan"


class TestLoanPayments:
    """Test recording payments against installments"""

    def test_on_schedule_payment(self, system):
        loan = create_loan(system)
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'), paid_date=date(2025, 1, 1))

        assert result.installment.status == InstallmentStatus.PAID
        assert result.interest_portion == Decimal('41.67')
        assert result.principal_portion == Decimal('814.40')
        assert result.schedule_changed is False
        assert result.loan.current_balance == Decimal('9185.60')
        assert result.loan.remaining_months == 11
        assert result.loan.monthly_payment == Decimal('856.07')
        assert result.loan.next_payment_date == date(2025, 2, 1)
        assert result.loan.paid_payments == 1

    def test_paying_same_installment_twice(self, system):
        loan = create_loan(system)
        system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'))
        with pytest.raises(ConflictError):
            system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'))

    def test_unknown_installment_or_loan(self, system):
        loan = create_loan(system)
        with pytest.raises(NotFoundError):
            system.loan_manager.record_payment(loan.id, 99, Decimal('10'))
        with pytest.raises(NotFoundError):
            system.loan_manager.record_payment("missing", 1, Decimal('10'))
        with pytest.raises(NotFoundError):
            system.loan_manager.record_payment(loan.id, 1, Decimal('10'), user_id="bob")
        with pytest.raises(ValidationError):
            system.loan_manager.record_payment(loan.id, 1, Decimal('0'))

    def test_partial_payment_reprojects_schedule(self, system):
        loan = create_loan(system)
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('500.00'))

        assert result.installment.status == InstallmentStatus.PARTIAL
        assert result.schedule_changed is True
        assert result.loan.current_balance == Decimal('9541.67')
        assert result.loan.monthly_payment != Decimal('856.07')

        planned = planned_rows(system, loan.id)
        assert len(planned) == 11
        assert sum(r.principal_portion for r in planned) == result.loan.current_balance
        assert planned[0].scheduled_amount == result.loan.monthly_payment

    def test_top_up_completes_partial_installment(self, system):
        loan = create_loan(system)
        system.loan_manager.record_payment(loan.id, 1, Decimal('500.00'))
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('356.07'))

        assert result.installment.status == InstallmentStatus.PAID
        assert result.installment.actual_amount == Decimal('856.07')
        assert result.interest_portion == Decimal('0')
        assert result.principal_portion == Decimal('356.07')

        paid = result.loan
        assert paid.paid_payments == 1
        assert paid.remaining_months == 11
        assert paid.current_balance == Decimal('9185.60')
        assert paid.principal_paid == Decimal('814.40')
        assert paid.interest_paid == Decimal('41.67')
        assert paid.total_paid == Decimal('856.07')
        assert paid.next_payment_date == date(2025, 2, 1)
        assert len(planned_rows(system, loan.id)) == 11

        with pytest.raises(ConflictError):
            system.loan_manager.record_payment(loan.id, 1, Decimal('1.00'))

    def test_small_top_up_keeps_installment_partial(self, system):
        loan = create_loan(system)
        system.loan_manager.record_payment(loan.id, 1, Decimal('300.00'))
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('200.00'))

        assert result.installment.status == InstallmentStatus.PARTIAL
        assert result.installment.actual_amount == Decimal('500.00')
        assert result.loan.paid_payments == 1
        assert result.loan.remaining_months == 11

    def test_top_up_can_pay_off(self, system):
        loan = create_loan(system, principal=Decimal('1000'), annual_rate=Decimal('0'), duration_months=2)
        system.loan_manager.record_payment(loan.id, 1, Decimal('200.00'))
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('800.00'))

        assert result.loan.status == LoanStatus.PAID_OFF
        assert result.loan.principal_paid == Decimal('1000.00')
        assert planned_rows(system, loan.id) == []

    def test_payment_posts_to_account(self, system):
        account = system.account_ledger.open_account("alice", "Checking", Decimal('5000.00'))
        loan = create_loan(system)

        result = system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'), account_id=account.id)
        assert system.account_ledger.get_account(account.id).balance == Decimal('4143.93')
        assert system.account_ledger.recalculate(account.id) == Decimal('0')

        entries = system.ledger.list_entries("alice")
        assert len(entries) == 1
        assert entries[0].id == result.entry.id
        assert entries[0].amount == Decimal('-856.07')
        assert entries[0].account_id == account.id
        assert entries[0].loan_id == loan.id
        assert entries[0].payment_number == 1
        assert entries[0].principal_amount == Decimal('814.40')
        assert entries[0].interest_amount == Decimal('41.67')

    def test_payment_without_account_is_still_recorded(self, system):
        loan = create_loan(system)
        system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'))

        entries = system.ledger.list_entries("alice")
        assert len(entries) == 1
        assert entries[0].account_id is None
        assert entries[0].note == "Loan payment - Car loan (installment 1)"

    def test_payment_from_another_users_account(self, system):
        account = system.account_ledger.open_account("bob", "Checking", Decimal('5000.00'))
        loan = create_loan(system)

        with pytest.raises(NotFoundError):
            system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'), account_id=account.id)

        assert system.account_ledger.get_account(account.id).balance == Decimal('5000.00')
        assert system.loan_manager.get_loan(loan.id).current_balance == Decimal('10000.00')
        assert system.ledger.list_entries("alice") == []
        assert system.ledger.list_entries("bob") == []

    def test_reamortized_payment_updates_payment_plan(self, system):
        loan = create_loan(system, auto_create_payments=True)
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('3000.00'))

        plan = system.obligation_manager.find_for_loan(loan.id)[0]
        assert result.schedule_changed is True
        assert plan.amount == result.loan.monthly_payment
        assert plan.next_due_date == date(2025, 2, 1)

        materialized = system.materializer.materialize(plan.id)
        assert materialized.loan_payment.schedule_changed is False
        assert materialized.loan_payment.installment.payment_number == 2
        assert system.loan_manager.get_loan(loan.id).monthly_payment == result.loan.monthly_payment

    def test_pay_next_uses_schedule_defaults(self, system):
        account = system.account_ledger.open_account("alice", "Checking", Decimal('5000.00'))
        loan = create_loan(system, account_id=account.id)

        first = system.loan_manager.pay_next(loan.id, "alice")
        assert first.installment.payment_number == 1
        assert first.installment.actual_amount == Decimal('856.07')
        assert first.installment.paid_date == date(2025, 3, 15)
        assert first.entry.account_id == account.id

        second = system.loan_manager.pay_next(loan.id, "alice", amount=Decimal('900.00'))
        assert second.installment.payment_number == 2
        assert second.loan.paid_payments == 2
        assert system.account_ledger.get_account(account.id).balance == Decimal('3243.93')

    def test_pay_next_rejects_closed_or_foreign_loans(self, system):
        loan = create_loan(system, principal=Decimal('100'), annual_rate=Decimal('0'), duration_months=1)
        with pytest.raises(NotFoundError):
            system.loan_manager.pay_next(loan.id, "bob")

        system.loan_manager.pay_next(loan.id, "alice")
        with pytest.raises(StateError):
            system.loan_manager.pay_next(loan.id, "alice")

    def test_full_payment_pays_off(self, system):
        loan = create_loan(system, auto_create_payments=True)
        result = system.loan_manager.record_payment(loan.id, 1, Decimal('10041.67'))

        paid = result.loan
        assert paid.status == LoanStatus.PAID_OFF
        assert paid.current_balance == Decimal('0')
        assert paid.remaining_months == 0
        assert paid.next_payment_date is None
        assert paid.paid_off_date == date(2025, 3, 15)
        assert planned_rows(system, loan.id) == []
        assert not system.obligation_manager.find_for_loan(loan.id)[0].is_active

        with pytest.raises(StateError):
            system.loan_manager.record_payment(loan.id, 2, Decimal('856.07'))
        with pytest.raises(StateError):
            system.loan_manager.skip_payment(loan.id)

    def test_paying_every_installment_closes_loan(self, system):
        loan = create_loan(system, principal=Decimal('300'), annual_rate=Decimal('0'), duration_months=3)
        for number in (1, 2, 3):
            system.loan_manager.record_payment(loan.id, number, Decimal('100.00'))

        closed = system.loan_manager.get_loan(loan.id)
        assert closed.status == LoanStatus.PAID_OFF
        assert closed.principal_paid == Decimal('300.00')


class TestSkipAndPayoff:

    def test_skip_shifts_planned_rows(self, system):
        loan = create_loan(system, principal=Decimal('300'), annual_rate=Decimal('0'),
                           duration_months=3, first_payment_date=date(2025, 1, 31))
        skipped = system.loan_manager.skip_payment(loan.id, "alice")

        rows = system.loan_manager.get_installments(loan.id)
        assert [r.due_date for r in rows] == [date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)]
        assert skipped.next_payment_date == date(2025, 2, 28)
        assert skipped.current_balance == Decimal('300.00')
        assert skipped.remaining_months == 3

    def test_skip_moves_linked_obligation(self, system):
        loan = create_loan(system, auto_create_payments=True)
        system.loan_manager.skip_payment(loan.id)

        plan = system.obligation_manager.find_for_loan(loan.id)[0]
        assert plan.next_due_date == date(2025, 2, 1)

    def test_skip_without_planned_rows(self, system):
        loan = create_loan(system)
        for row in system.loan_manager.get_installments(loan.id):
            row.status = InstallmentStatus.PAID
            system.loan_manager._save_row(row)

        with pytest.raises(StateError):
            system.loan_manager.skip_payment(loan.id)

    def test_payoff(self, system):
        loan = create_loan(system, auto_create_payments=True)
        system.loan_manager.record_payment(loan.id, 1, Decimal('856.07'))

        closed = system.loan_manager.payoff(loan.id, Decimal('9200.00'), user_id="alice")

        assert closed.status == LoanStatus.PAID_OFF
        assert closed.current_balance == Decimal('0')
        assert closed.principal_paid == Decimal('10000.00')
        assert closed.interest_paid == Decimal('41.67') + Decimal('14.40')
        assert planned_rows(system, loan.id) == []
        assert not system.obligation_manager.find_for_loan(loan.id)[0].is_active

        with pytest.raises(StateError):
            system.loan_manager.payoff(loan.id, Decimal('1.00'))

    def test_simulate_payoff(self, system):
        loan = create_loan(system)

        default = system.loan_manager.simulate_payoff(loan.id)
        assert len(default["simulations"]) == 12

        mixed = system.loan_manager.simulate_payoff(loan.id, [0, 3, 20])
        first, second, third = mixed["simulations"]
        assert "error" in first
        assert second.target_month == 3
        assert "error" in third


class TestLoanMetadata:

    def test_update_name_retitles_payment_plan(self, system):
        loan = create_loan(system, auto_create_payments=True)
        updated = system.loan_manager.update_loan(loan.id, "alice", name="Family car", lender_name="Bank")

        assert updated.name == "Family car"
        assert updated.lender_name == "Bank"
        assert system.obligation_manager.find_for_loan(loan.id)[0].title == "Loan payment - Family car"

    def test_financial_terms_are_fixed(self, system):
        loan = create_loan(system)
        with pytest.raises(ValidationError):
            system.loan_manager.update_loan(loan.id, "alice", principal=Decimal('5000'))

    def test_delete_cascades(self, system):
        loan = create_loan(system, auto_create_payments=True)
        system.loan_manager.delete_loan(loan.id, "alice")

        assert system.loan_manager.get_installments(loan.id) == []
        assert system.obligation_manager.find_for_loan(loan.id) == []
        with pytest.raises(NotFoundError):
            system.loan_manager.get_loan(loan.id)

    def test_list_and_details(self, system):
        loan = create_loan(system)
        create_loan(system, user_id="bob")

        listing = system.loan_manager.list_for_user("alice")
        assert [l.id for l in listing["loans"]] == [loan.id]
        assert listing["summary"]["total_debt"] == Decimal('10000.00')
        assert listing["summary"]["monthly_payments"] == Decimal('856.07')

        details = system.loan_manager.get_details(loan.id, "alice")
        assert details["statistics"]["planned_installments"] == 12
        assert details["statistics"]["progress_percent"] == Decimal('0.00')
        assert details["statistics"]["next_installment"].payment_number == 1
