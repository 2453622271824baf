"""
Loan Module

Handles installment loan creation, amortization schedule persistence,
payment recording, skipped payments, early payoff and loan metadata.
Loan state and installment rows change together inside one atomic scope,
and linked obligations are kept on the loan's schedule in the same scope.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging
import uuid

from .accounts import AccountLedger
from .amortization import AmortizationCalculator, STATUS_PAID_OFF
from .errors import ConflictError, NotFoundError, StateError, ValidationError
from .ledger import GeneralLedger, LedgerEntry
from .logging_config import log_action
from .money import DEBT, EXPENSE, ZERO, normalize_category, optional_decimal, quantize, to_decimal
from .obligations import ConfirmationMode, Obligation, ObligationManager
from .recurrence import Frequency, RecurrenceEngine
from .storage import StorageInterface, StorageRecord, utc_now

logger = logging.getLogger(__name__)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "ACTIVE"
    PAID_OFF = "PAID_OFF"     # Terminal


class LoanType(Enum):
    PERSONAL_LOAN = "PERSONAL_LOAN"
    MORTGAGE = "MORTGAGE"
    AUTO_LOAN = "AUTO_LOAN"
    OTHER = "OTHER"


class InstallmentStatus(Enum):
    PLANNED = "PLANNED"
    PAID = "PAID"
    PARTIAL = "PARTIAL"


# Ledger category used for payments when none is given
_DEFAULT_CATEGORY = {
    LoanType.MORTGAGE: DEBT,
    LoanType.AUTO_LOAN: DEBT,
    LoanType.PERSONAL_LOAN: EXPENSE,
    LoanType.OTHER: DEBT,
}

# Metadata that can change after creation; financial terms cannot
_MUTABLE_FIELDS = {"name", "description", "notes", "category", "subcategory_id", "lender_name"}


@dataclass
class Loan(StorageRecord):
    """Installment loan and its running state"""
    user_id: str
    name: str
    loan_type: LoanType
    principal: Decimal
    annual_rate: Decimal
    duration_months: int
    remaining_months: int
    current_balance: Decimal
    monthly_payment: Decimal
    status: LoanStatus
    first_payment_date: date
    next_payment_date: Optional[date] = None
    category: str = DEBT
    subcategory_id: Optional[str] = None
    account_id: Optional[str] = None
    lender_name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    paid_payments: int = 0
    total_paid: Decimal = ZERO
    principal_paid: Decimal = ZERO
    interest_paid: Decimal = ZERO
    paid_off_date: Optional[date] = None

    @property
    def is_paid_off(self) -> bool:
        return self.status == LoanStatus.PAID_OFF

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        data['loan_type'] = LoanType(data['loan_type'])
        data['status'] = LoanStatus(data['status'])
        for key in ('principal', 'annual_rate', 'current_balance', 'monthly_payment',
                    'total_paid', 'principal_paid', 'interest_paid'):
            data[key] = Decimal(data[key])
        for key in ('first_payment_date', 'next_payment_date', 'paid_off_date'):
            if data.get(key):
                data[key] = date.fromisoformat(data[key])
        return super().from_dict(data)


@dataclass
class InstallmentRow(StorageRecord):
    """One scheduled installment of a loan"""
    loan_id: str
    payment_number: int
    due_date: date
    scheduled_amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    remaining_balance_after: Decimal
    status: InstallmentStatus = InstallmentStatus.PLANNED
    actual_amount: Optional[Decimal] = None
    paid_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InstallmentRow':
        data = dict(data)
        data['due_date'] = date.fromisoformat(data['due_date'])
        data['status'] = InstallmentStatus(data['status'])
        for key in ('scheduled_amount', 'principal_portion', 'interest_portion', 'remaining_balance_after'):
            data[key] = Decimal(data[key])
        data['actual_amount'] = optional_decimal(data.get('actual_amount'))
        if data.get('paid_date'):
            data['paid_date'] = date.fromisoformat(data['paid_date'])
        return super().from_dict(data)


@dataclass
class LoanPaymentResult:
    """What recording one payment did"""
    loan: Loan
    installment: InstallmentRow
    interest_portion: Decimal
    principal_portion: Decimal
    schedule_changed: bool
    entry: Optional[LedgerEntry] = None


def _parse_loan_type(value: Union[str, LoanType]) -> LoanType:
    if isinstance(value, LoanType):
        return value
    try:
        return LoanType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unsupported loan type: {value}")


class LoanManager:
    """
    Manages loan lifecycle from creation through payoff
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_ledger: AccountLedger,
        obligation_manager: ObligationManager,
        ledger: Optional[GeneralLedger] = None,
        calculator: Optional[AmortizationCalculator] = None,
        recurrence: Optional[RecurrenceEngine] = None,
        clock: Callable[[], date] = date.today,
        max_principal: Decimal = Decimal('10000000.00'),
        max_duration_months: int = 600
    ):
        self.storage = storage
        self.account_ledger = account_ledger
        self.obligation_manager = obligation_manager
        self.ledger = ledger or GeneralLedger(storage, account_ledger, clock=clock)
        self.calculator = calculator or AmortizationCalculator()
        self.recurrence = recurrence or RecurrenceEngine()
        self.clock = clock
        self.max_principal = to_decimal(max_principal)
        self.max_duration_months = max_duration_months

        self.loans_table = "loans"
        self.installments_table = "loan_installments"

    def create_loan(
        self,
        user_id: str,
        name: str,
        principal: Decimal,
        annual_rate: Decimal,
        duration_months: int,
        first_payment_date: date,
        loan_type: Union[str, LoanType] = LoanType.OTHER,
        category: Optional[str] = None,
        subcategory_id: Optional[str] = None,
        account_id: Optional[str] = None,
        lender_name: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        auto_create_payments: bool = False
    ) -> Loan:
        """
        Create a loan and persist its full installment schedule

        Args:
            principal: Amount borrowed
            annual_rate: Yearly rate as a fraction (0.05 for 5%)
            duration_months: Number of monthly installments
            first_payment_date: Due date of installment 1
            auto_create_payments: Also create an AUTOMATIC monthly obligation
                that pays each installment when due

        Returns:
            Created Loan object
        """
        if not name or not name.strip():
            raise ValidationError("Loan name is required")
        principal = quantize(to_decimal(principal))
        annual_rate = to_decimal(annual_rate)
        self.calculator.validate_loan_parameters(principal, annual_rate, duration_months,
                                                 self.max_principal, self.max_duration_months)
        loan_type = _parse_loan_type(loan_type)

        schedule = self.calculator.schedule(principal, annual_rate, duration_months, first_payment_date)

        now = utc_now()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            name=name.strip(),
            loan_type=loan_type,
            principal=principal,
            annual_rate=annual_rate,
            duration_months=duration_months,
            remaining_months=len(schedule.rows),
            current_balance=principal,
            monthly_payment=schedule.monthly_payment,
            status=LoanStatus.ACTIVE,
            first_payment_date=first_payment_date,
            next_payment_date=first_payment_date,
            category=normalize_category(category) if category else _DEFAULT_CATEGORY[loan_type],
            subcategory_id=subcategory_id,
            account_id=account_id,
            lender_name=lender_name,
            description=description,
            notes=notes
        )

        with self.storage.atomic():
            if account_id:
                self.account_ledger.get_account(account_id, user_id)
            self._save_loan(loan)
            for row in schedule.rows:
                self._save_row(InstallmentRow(
                    id=f"{loan.id}_{row.payment_number}",
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    payment_number=row.payment_number,
                    due_date=row.due_date,
                    scheduled_amount=row.scheduled_amount,
                    principal_portion=row.principal_portion,
                    interest_portion=row.interest_portion,
                    remaining_balance_after=row.remaining_balance
                ))
            if auto_create_payments:
                self._create_payment_plan(loan)

        log_action(logger, "info", f"Created loan {loan.name}", user_id=user_id,
                   action="loan.create", resource=f"loan:{loan.id}",
                   extra={"principal": str(principal), "annual_rate": str(annual_rate),
                          "duration_months": duration_months,
                          "monthly_payment": str(loan.monthly_payment),
                          "total_interest": str(schedule.total_interest)})
        return loan

    def get_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Load a loan; raises NotFoundError when absent or owned by someone else"""
        data = self.storage.load(self.loans_table, loan_id)
        if not data or (user_id is not None and data.get('user_id') != user_id):
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def get_installments(self, loan_id: str) -> List[InstallmentRow]:
        rows = [InstallmentRow.from_dict(data) for data in self.storage.find(self.installments_table, {"loan_id": loan_id})]
        return sorted(rows, key=lambda r: r.payment_number)

    def next_planned_installment(self, loan_id: str) -> Optional[InstallmentRow]:
        planned = [r for r in self.get_installments(loan_id) if r.status == InstallmentStatus.PLANNED]
        return planned[0] if planned else None

    def list_for_user(self, user_id: str) -> Dict[str, Any]:
        """Loans of a user with portfolio totals"""
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, {"user_id": user_id})]
        loans.sort(key=lambda l: l.created_at, reverse=True)
        active = [loan for loan in loans if loan.status == LoanStatus.ACTIVE]
        return {
            "loans": loans,
            "summary": {
                "total_loans": len(loans),
                "active_loans": len(active),
                "total_debt": sum((loan.current_balance for loan in active), ZERO),
                "monthly_payments": sum((loan.monthly_payment for loan in active), ZERO),
            }
        }

    def get_details(self, loan_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Loan, its installment rows and repayment statistics"""
        loan = self.get_loan(loan_id, user_id)
        rows = self.get_installments(loan_id)
        planned = [r for r in rows if r.status == InstallmentStatus.PLANNED]
        progress = ZERO
        if loan.principal > ZERO:
            progress = quantize((loan.principal - loan.current_balance) / loan.principal * Decimal('100'))

        return {
            "loan": loan,
            "installments": rows,
            "statistics": {
                "total_paid": loan.total_paid,
                "principal_paid": loan.principal_paid,
                "interest_paid": loan.interest_paid,
                "paid_payments": loan.paid_payments,
                "planned_installments": len(planned),
                "remaining_interest": sum((r.interest_portion for r in planned), ZERO),
                "progress_percent": progress,
                "next_installment": planned[0] if planned else None,
            }
        }

    def simulate_payoff(self, loan_id: str, target_months: Optional[List[int]] = None,
                        user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Early payoff scenarios for several target months

        Defaults to months 1..min(12, remaining). Invalid months are reported
        per item instead of failing the whole request.
        """
        loan = self.get_loan(loan_id, user_id)
        if loan.is_paid_off:
            raise StateError(f"Loan {loan_id} is already paid off")

        if not target_months:
            target_months = list(range(1, min(12, loan.remaining_months) + 1))

        simulations = []
        for month in target_months:
            try:
                simulations.append(self.calculator.simulate_early_payoff(loan, month))
            except ValidationError as e:
                simulations.append({"target_month": month, "error": str(e)})

        return {
            "loan_id": loan.id,
            "current_balance": loan.current_balance,
            "remaining_months": loan.remaining_months,
            "monthly_payment": loan.monthly_payment,
            "simulations": simulations,
        }

    def record_payment(
        self,
        loan_id: str,
        payment_number: int,
        actual_amount: Decimal,
        paid_date: Optional[date] = None,
        account_id: Optional[str] = None,
        user_id: Optional[str] = None,
        source: Optional[Obligation] = None,
        occurrence_key: Optional[str] = None
    ) -> LoanPaymentResult:
        """
        Record an actual payment against one installment

        The installment becomes PAID once the amounts paid on it cover its
        scheduled figure and PARTIAL otherwise. A further payment on a
        PARTIAL installment tops it up: it goes to principal only and does
        not count as another month.

        Every payment also writes a ledger entry carrying the principal and
        interest split, posted to ``account_id`` when given. ``source`` is
        the obligation that paid the installment, if any; the entry then
        takes its category, note and payee.
        """
        actual_amount = quantize(to_decimal(actual_amount))
        if actual_amount <= ZERO:
            raise ValidationError("Payment amount must be positive")

        with self.storage.atomic():
            loan = self.get_loan(loan_id, user_id)
            if loan.is_paid_off:
                raise StateError(f"Loan {loan_id} is already paid off")
            if account_id:
                self.account_ledger.get_account(account_id, loan.user_id)

            row = self._load_row(loan_id, payment_number)
            if row.status == InstallmentStatus.PAID:
                raise ConflictError(f"Installment {payment_number} of loan {loan_id} is already paid")

            top_up = row.status == InstallmentStatus.PARTIAL
            if top_up:
                result = self.calculator.apply_extra_principal(loan, actual_amount)
            else:
                result = self.calculator.recalculate_after_payment(loan, actual_amount)

            now = utc_now()
            row.actual_amount = (row.actual_amount or ZERO) + actual_amount
            if row.actual_amount >= row.scheduled_amount:
                row.status = InstallmentStatus.PAID
            else:
                row.status = InstallmentStatus.PARTIAL
            row.paid_date = paid_date or self.clock()
            row.updated_at = now
            self._save_row(row)

            loan.current_balance = result.new_balance
            loan.remaining_months = result.remaining_months
            loan.monthly_payment = result.monthly_payment
            if not top_up:
                loan.paid_payments += 1
            loan.total_paid += actual_amount
            loan.principal_paid += result.principal_portion
            loan.interest_paid += result.interest_portion
            loan.updated_at = now

            if result.status == STATUS_PAID_OFF:
                self._close_loan(loan, row.paid_date)
            elif result.schedule_changed:
                self._reproject_planned_rows(loan)
            loan.next_payment_date = self._first_planned_due_date(loan.id)

            self._save_loan(loan)
            self._sync_linked_obligations(loan)

            entry = self._record_entry(loan, row, actual_amount, result.principal_portion,
                                       result.interest_portion, account_id, source, occurrence_key)

        log_action(logger, "info", f"Recorded payment {payment_number} of {actual_amount}",
                   user_id=loan.user_id, action="loan.payment", resource=f"loan:{loan.id}",
                   extra={"interest": str(result.interest_portion), "principal": str(result.principal_portion),
                          "new_balance": str(loan.current_balance), "status": loan.status.value,
                          "top_up": top_up, "entry_id": entry.id})
        if loan.is_paid_off:
            log_action(logger, "info", "Loan paid off", user_id=loan.user_id,
                       action="loan.paid_off", resource=f"loan:{loan.id}")

        return LoanPaymentResult(
            loan=loan,
            installment=row,
            interest_portion=result.interest_portion,
            principal_portion=result.principal_portion,
            schedule_changed=result.schedule_changed,
            entry=entry
        )

    def pay_next(self, loan_id: str, user_id: Optional[str] = None, amount: Optional[Decimal] = None,
                 paid_date: Optional[date] = None, account_id: Optional[str] = None) -> LoanPaymentResult:
        """
        Pay the earliest planned installment

        Defaults to the installment's scheduled amount and the loan's own
        account.
        """
        loan = self.get_loan(loan_id, user_id)
        if loan.is_paid_off:
            raise StateError(f"Loan {loan_id} is already paid off")
        installment = self.next_planned_installment(loan_id)
        if installment is None:
            raise StateError(f"Loan {loan_id} has no planned installment")

        return self.record_payment(
            loan_id,
            installment.payment_number,
            installment.scheduled_amount if amount is None else amount,
            paid_date=paid_date,
            account_id=account_id or loan.account_id,
            user_id=user_id
        )

    def skip_payment(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """
        Push the next installment and every later planned one back one month

        Balance and remaining months stay as they are: the schedule is
        delayed, not forgiven.
        """
        with self.storage.atomic():
            loan = self.get_loan(loan_id, user_id)
            if loan.is_paid_off:
                raise StateError(f"Loan {loan_id} is already paid off")

            planned = [r for r in self.get_installments(loan_id) if r.status == InstallmentStatus.PLANNED]
            if not planned:
                raise StateError(f"Loan {loan_id} has no planned installment to skip")

            now = utc_now()
            for row in planned:
                row.due_date = self.recurrence.next_due_date_after_firing(
                    loan.first_payment_date, Frequency.MONTHLY, row.due_date
                )
                row.updated_at = now
                self._save_row(row)

            loan.next_payment_date = planned[0].due_date
            loan.updated_at = now
            self._save_loan(loan)
            self._sync_linked_obligations(loan)

        log_action(logger, "info", f"Skipped installment {planned[0].payment_number}",
                   user_id=loan.user_id, action="loan.skip", resource=f"loan:{loan.id}",
                   extra={"next_payment_date": loan.next_payment_date.isoformat()})
        return loan

    def payoff(self, loan_id: str, payoff_amount: Decimal, paid_date: Optional[date] = None,
               user_id: Optional[str] = None) -> Loan:
        """Close the loan with a single final payment"""
        payoff_amount = quantize(to_decimal(payoff_amount))
        if payoff_amount <= ZERO:
            raise ValidationError("Payoff amount must be positive")

        with self.storage.atomic():
            loan = self.get_loan(loan_id, user_id)
            if loan.is_paid_off:
                raise StateError(f"Loan {loan_id} is already paid off")

            balance = loan.current_balance
            loan.total_paid += payoff_amount
            loan.principal_paid += balance
            loan.interest_paid += max(ZERO, payoff_amount - balance)
            loan.updated_at = utc_now()
            self._close_loan(loan, paid_date or self.clock())

            self._save_loan(loan)
            self._sync_linked_obligations(loan)

        log_action(logger, "info", f"Loan paid off early with {payoff_amount}",
                   user_id=loan.user_id, action="loan.payoff", resource=f"loan:{loan.id}",
                   extra={"balance_before": str(balance)})
        return loan

    def update_loan(self, loan_id: str, user_id: Optional[str] = None, **changes) -> Loan:
        """Change loan metadata; financial terms are fixed at creation"""
        immutable = set(changes) - _MUTABLE_FIELDS
        if immutable:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(immutable))}")

        loan = self.get_loan(loan_id, user_id)
        if 'name' in changes and (not changes['name'] or not str(changes['name']).strip()):
            raise ValidationError("Loan name is required")
        for key, value in changes.items():
            if key == 'category':
                value = normalize_category(value)
            elif key == 'name':
                value = value.strip()
            setattr(loan, key, value)
        loan.updated_at = utc_now()
        self._save_loan(loan)

        if 'name' in changes:
            self._retitle_payment_plan(loan)

        log_action(logger, "info", "Updated loan metadata", user_id=loan.user_id,
                   action="loan.update", resource=f"loan:{loan.id}", extra={"fields": sorted(changes)})
        return loan

    def delete_loan(self, loan_id: str, user_id: Optional[str] = None) -> None:
        """Delete a loan with its installment rows and linked obligations"""
        with self.storage.atomic():
            loan = self.get_loan(loan_id, user_id)
            for row in self.get_installments(loan_id):
                self.storage.delete(self.installments_table, row.id)
            for obligation in self.obligation_manager.find_for_loan(loan_id):
                self.obligation_manager.delete_obligation(obligation.id)
            self.storage.delete(self.loans_table, loan_id)

        log_action(logger, "info", f"Deleted loan {loan.name}", user_id=loan.user_id,
                   action="loan.delete", resource=f"loan:{loan_id}")

    def _create_payment_plan(self, loan: Loan) -> Obligation:
        """Automatic monthly obligation that pays this loan"""
        return self.obligation_manager.create_obligation(
            user_id=loan.user_id,
            category=loan.category,
            subcategory_id=loan.subcategory_id,
            amount=loan.monthly_payment,
            frequency=Frequency.MONTHLY,
            start_date=loan.first_payment_date,
            title=f"Loan payment - {loan.name}",
            note=f"Automatic payment for loan {loan.name}",
            payee=loan.lender_name,
            confirmation_mode=ConfirmationMode.AUTOMATIC,
            account_id=loan.account_id,
            loan_id=loan.id
        )

    def _retitle_payment_plan(self, loan: Loan) -> None:
        try:
            for obligation in self.obligation_manager.find_for_loan(loan.id):
                obligation.title = f"Loan payment - {loan.name}"
                obligation.updated_at = utc_now()
                self.obligation_manager.save_obligation(obligation)
        except Exception:
            logger.warning("Could not retitle payment plan of loan %s", loan.id, exc_info=True)

    def _sync_linked_obligations(self, loan: Loan) -> None:
        """
        Keep linked obligations on the loan's schedule and payment

        Paid-off loans stop them. A re-amortized payment becomes the new
        obligation amount, so the next automatic payment stays on schedule.
        """
        for obligation in self.obligation_manager.find_for_loan(loan.id):
            before = Obligation.from_dict(obligation.to_dict())
            if loan.is_paid_off:
                obligation.is_active = False
            else:
                if loan.next_payment_date:
                    obligation.next_due_date = loan.next_payment_date
                if loan.monthly_payment > ZERO:
                    obligation.amount = loan.monthly_payment
            obligation.updated_at = utc_now()
            self.obligation_manager.save_obligation(obligation)

            if obligation.applied_to_budget and obligation.amount != before.amount:
                self.obligation_manager.resync_budget(before, obligation)

    def _record_entry(self, loan: Loan, row: InstallmentRow, amount: Decimal, principal: Decimal,
                      interest: Decimal, account_id: Optional[str], source: Optional[Obligation],
                      occurrence_key: Optional[str]) -> LedgerEntry:
        if source is not None:
            details = dict(category=source.category, subcategory_id=source.subcategory_id,
                           entry_date=source.next_due_date, note=source.note or source.title,
                           payee=source.payee, obligation_id=source.id)
        else:
            details = dict(category=loan.category, subcategory_id=loan.subcategory_id,
                           entry_date=row.paid_date,
                           note=f"Loan payment - {loan.name} (installment {row.payment_number})",
                           payee=loan.lender_name)

        return self.ledger.record_entry(
            user_id=loan.user_id,
            amount=amount,
            account_id=account_id,
            occurrence_key=occurrence_key,
            loan_id=loan.id,
            payment_number=row.payment_number,
            principal_amount=principal,
            interest_amount=interest,
            **details
        )

    def _close_loan(self, loan: Loan, paid_date: date) -> None:
        """Mark paid off and drop installments that will never be due"""
        loan.status = LoanStatus.PAID_OFF
        loan.current_balance = ZERO
        loan.remaining_months = 0
        loan.monthly_payment = ZERO
        loan.paid_off_date = paid_date
        loan.next_payment_date = None
        for row in self.get_installments(loan.id):
            if row.status == InstallmentStatus.PLANNED:
                self.storage.delete(self.installments_table, row.id)

    def _reproject_planned_rows(self, loan: Loan) -> None:
        """
        Recompute the breakdown of the planned rows from the new balance and payment

        When a residue is re-amortized past the last scheduled installment,
        extra rows are appended so every remaining month has a row.
        """
        rows = self.get_installments(loan.id)
        planned = [r for r in rows if r.status == InstallmentStatus.PLANNED]
        rate = self.calculator.monthly_rate(loan.annual_rate)
        balance = loan.current_balance
        now = utc_now()

        last = rows[-1]
        while len(planned) < loan.remaining_months:
            due_date = self.recurrence.next_due_date_after_firing(
                loan.first_payment_date, Frequency.MONTHLY, last.due_date
            )
            last = InstallmentRow(
                id=f"{loan.id}_{last.payment_number + 1}",
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                payment_number=last.payment_number + 1,
                due_date=due_date,
                scheduled_amount=ZERO,
                principal_portion=ZERO,
                interest_portion=ZERO,
                remaining_balance_after=ZERO
            )
            planned.append(last)

        for index, row in enumerate(planned):
            interest = quantize(balance * rate)
            if index == len(planned) - 1:
                principal = balance
            else:
                principal = min(loan.monthly_payment - interest, balance)
            balance = balance - principal
            row.principal_portion = principal
            row.interest_portion = interest
            row.scheduled_amount = principal + interest
            row.remaining_balance_after = balance
            row.updated_at = now
            self._save_row(row)

    def _first_planned_due_date(self, loan_id: str) -> Optional[date]:
        planned = [r.due_date for r in self.get_installments(loan_id) if r.status == InstallmentStatus.PLANNED]
        return min(planned) if planned else None

    def _load_row(self, loan_id: str, payment_number: int) -> InstallmentRow:
        data = self.storage.load(self.installments_table, f"{loan_id}_{payment_number}")
        if not data:
            raise NotFoundError(f"Installment {payment_number} of loan {loan_id} not found")
        return InstallmentRow.from_dict(data)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _save_row(self, row: InstallmentRow) -> None:
        self.storage.save(self.installments_table, row.id, row.to_dict())
