"""
Amortization Module

Pure financial math for equal-installment (French method) loans: payment
sizing, schedule generation, early payoff simulation and the recalculation
applied after each recorded payment. Nothing here touches storage.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ValidationError
from .money import CENT, ZERO, quantize, to_decimal
from .recurrence import add_months

MONTHS_PER_YEAR = Decimal('12')

# Balances at or below this are treated as fully repaid
BALANCE_EPSILON = CENT

STATUS_ACTIVE = "ACTIVE"
STATUS_PAID_OFF = "PAID_OFF"


@dataclass
class ScheduleRow:
    """One installment of a generated schedule"""
    payment_number: int
    due_date: date
    scheduled_amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    remaining_balance: Decimal


@dataclass
class AmortizationSchedule:
    """Full schedule plus its totals"""
    monthly_payment: Decimal
    total_interest: Decimal
    total_cost: Decimal
    rows: List[ScheduleRow] = field(default_factory=list)


@dataclass
class PayoffSimulation:
    """Outcome of paying a loan off in full before a given installment"""
    target_month: int
    payoff_date: Optional[date]
    current_balance: Decimal
    early_payoff_amount: Decimal
    monthly_payment: Decimal
    remaining_payments: int
    months_saved: int
    total_remaining_cost: Decimal
    interest_saved: Decimal


@dataclass
class PaymentRecalculation:
    """Loan state after applying one actual payment"""
    interest_portion: Decimal
    principal_portion: Decimal
    new_balance: Decimal
    remaining_months: int
    monthly_payment: Decimal
    status: str
    schedule_changed: bool


class AmortizationCalculator:
    """Equal-installment loan calculator. All results are Decimal, rounded to cents where stored."""

    @staticmethod
    def monthly_rate(annual_rate: Decimal) -> Decimal:
        return to_decimal(annual_rate) / MONTHS_PER_YEAR

    def monthly_payment(self, principal: Decimal, annual_rate: Decimal, months: int) -> Decimal:
        """
        Annuity payment ``P * r(1+r)^n / ((1+r)^n - 1)`` with ``r = annual_rate / 12``

        A zero rate returns ``principal / months`` exactly. The result is not
        rounded; callers that store it round it to cents.

        Raises:
            ValidationError: If principal or months is not positive, or the rate is negative
        """
        principal = to_decimal(principal)
        annual_rate = to_decimal(annual_rate)
        if principal <= ZERO:
            raise ValidationError("Principal must be positive")
        if not isinstance(months, int) or months <= 0:
            raise ValidationError("Duration in months must be positive")
        if annual_rate < ZERO:
            raise ValidationError("Annual interest rate cannot be negative")

        if annual_rate == ZERO:
            return principal / Decimal(months)

        r = self.monthly_rate(annual_rate)
        factor = (Decimal('1') + r) ** months
        return principal * (r * factor) / (factor - Decimal('1'))

    def schedule(self, principal: Decimal, annual_rate: Decimal, months: int,
                 first_due_date: date) -> AmortizationSchedule:
        """
        Generate the full installment schedule

        Interest on each row is the running balance times the monthly rate,
        rounded to cents. The final row's principal equals whatever balance is
        left, so the schedule always repays the principal exactly.
        """
        payment = quantize(self.monthly_payment(principal, annual_rate, months))
        principal = quantize(to_decimal(principal))
        rate = self.monthly_rate(annual_rate)

        rows = []
        balance = principal
        total_interest = ZERO

        for payment_number in range(1, months + 1):
            interest = quantize(balance * rate)
            if payment_number == months:
                principal_portion = balance
            else:
                principal_portion = min(payment - interest, balance)
            scheduled = principal_portion + interest
            balance = balance - principal_portion
            total_interest += interest

            rows.append(ScheduleRow(
                payment_number=payment_number,
                due_date=add_months(first_due_date, payment_number - 1),
                scheduled_amount=scheduled,
                principal_portion=principal_portion,
                interest_portion=interest,
                remaining_balance=balance
            ))

            if balance <= ZERO:
                break

        return AmortizationSchedule(
            monthly_payment=payment,
            total_interest=total_interest,
            total_cost=principal + total_interest,
            rows=rows
        )

    def simulate_early_payoff(self, loan, target_month: int) -> PayoffSimulation:
        """
        Simulate paying the loan off right before installment ``target_month``

        ``target_month`` counts from the next unpaid installment (1 = pay off
        now instead of the next payment). The payoff is penalty free, so the
        payoff amount equals the outstanding balance at that point.
        """
        remaining_months = loan.remaining_months
        if not isinstance(target_month, int) or target_month < 1 or target_month > remaining_months:
            raise ValidationError(
                f"Target month must be between 1 and {remaining_months}, got {target_month}"
            )

        first_due = loan.next_payment_date or loan.first_payment_date
        projection = self.schedule(loan.current_balance, loan.annual_rate, remaining_months, first_due)

        if target_month == 1:
            balance_before = quantize(loan.current_balance)
        else:
            balance_before = projection.rows[target_month - 2].remaining_balance

        remaining_payments = remaining_months - target_month + 1
        total_remaining_cost = quantize(loan.monthly_payment * remaining_payments)
        interest_saved = max(ZERO, total_remaining_cost - balance_before)

        return PayoffSimulation(
            target_month=target_month,
            payoff_date=add_months(first_due, target_month - 1) if first_due else None,
            current_balance=balance_before,
            early_payoff_amount=balance_before,
            monthly_payment=loan.monthly_payment,
            remaining_payments=remaining_payments,
            months_saved=remaining_payments - 1,
            total_remaining_cost=total_remaining_cost,
            interest_saved=quantize(interest_saved)
        )

    def recalculate_after_payment(self, loan, actual_amount: Decimal) -> PaymentRecalculation:
        """
        Apply one actual payment to the loan's running state

        Interest is charged on the current balance first and the rest reduces
        principal. A payment matching the scheduled figure keeps that figure;
        any other amount re-amortizes the new balance over the months left.
        """
        actual_amount = to_decimal(actual_amount)
        if actual_amount <= ZERO:
            raise ValidationError("Payment amount must be positive")

        balance = to_decimal(loan.current_balance)
        rate = self.monthly_rate(loan.annual_rate)

        interest = quantize(balance * rate)
        if actual_amount < interest:
            interest = actual_amount
        principal = actual_amount - interest
        new_balance = balance - principal

        if new_balance <= BALANCE_EPSILON:
            return PaymentRecalculation(
                interest_portion=interest,
                principal_portion=balance,
                new_balance=ZERO,
                remaining_months=0,
                monthly_payment=ZERO,
                status=STATUS_PAID_OFF,
                schedule_changed=True
            )

        months_left = loan.remaining_months - 1
        on_schedule = abs(actual_amount - loan.monthly_payment) < CENT

        if on_schedule and months_left > 0:
            return PaymentRecalculation(
                interest_portion=interest,
                principal_portion=principal,
                new_balance=new_balance,
                remaining_months=months_left,
                monthly_payment=loan.monthly_payment,
                status=STATUS_ACTIVE,
                schedule_changed=False
            )

        # Off-schedule payment, or rounding residue after the last scheduled month
        months_left = max(months_left, 1)
        new_payment = quantize(self.monthly_payment(new_balance, loan.annual_rate, months_left))
        return PaymentRecalculation(
            interest_portion=interest,
            principal_portion=principal,
            new_balance=new_balance,
            remaining_months=months_left,
            monthly_payment=new_payment,
            status=STATUS_ACTIVE,
            schedule_changed=True
        )

    def apply_extra_principal(self, loan, amount: Decimal) -> PaymentRecalculation:
        """
        Apply a top-up to an installment that was already partly paid

        The period's interest was charged with the first payment, so the
        whole amount reduces principal and the balance is re-amortized over
        the same number of remaining months.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive")

        balance = to_decimal(loan.current_balance)
        new_balance = balance - amount
        if new_balance <= BALANCE_EPSILON:
            return PaymentRecalculation(
                interest_portion=ZERO,
                principal_portion=balance,
                new_balance=ZERO,
                remaining_months=0,
                monthly_payment=ZERO,
                status=STATUS_PAID_OFF,
                schedule_changed=True
            )

        months_left = max(loan.remaining_months, 1)
        return PaymentRecalculation(
            interest_portion=ZERO,
            principal_portion=amount,
            new_balance=new_balance,
            remaining_months=months_left,
            monthly_payment=quantize(self.monthly_payment(new_balance, loan.annual_rate, months_left)),
            status=STATUS_ACTIVE,
            schedule_changed=True
        )

    def validate_loan_parameters(self, principal: Decimal, annual_rate: Decimal, months: int,
                                 max_principal: Decimal, max_months: int) -> None:
        """Reject loans outside the supported envelope"""
        principal = to_decimal(principal)
        annual_rate = to_decimal(annual_rate)
        if principal <= ZERO:
            raise ValidationError("Principal must be positive")
        if principal > max_principal:
            raise ValidationError(f"Principal cannot exceed {max_principal}")
        if annual_rate < ZERO or annual_rate > Decimal('1'):
            raise ValidationError("Annual interest rate must be between 0 and 1")
        if not isinstance(months, int) or months < 1 or months > max_months:
            raise ValidationError(f"Duration must be between 1 and {max_months} months")
