"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from ..errors import FinanceCoreError
from ..system import FinanceSystem
from .dependencies import get_finance_system, get_user_id
from .errors import to_http_error
from .schemas import (
    CreateLoanRequest, LoanPaymentRequest, PayNextRequest, PayoffRequest,
    SimulatePayoffRequest, UpdateLoanRequest, to_response
)


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Create a loan and its installment schedule"""
    try:
        loan = system.loan_manager.create_loan(user_id=user_id, **request.model_dump())
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(loan)


@router.get("")
async def list_loans(
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """List the caller's loans with totals"""
    return to_response(system.loan_manager.list_for_user(user_id))


@router.get("/{loan_id}")
async def get_loan_details(
    loan_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Loan with installments and statistics"""
    try:
        return to_response(system.loan_manager.get_details(loan_id, user_id))
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.post("/{loan_id}/simulate-payoff")
async def simulate_payoff(
    loan_id: str,
    request: SimulatePayoffRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Early payoff scenarios"""
    try:
        return to_response(system.loan_manager.simulate_payoff(loan_id, request.target_months, user_id))
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.post("/{loan_id}/payments")
async def record_payment(
    loan_id: str,
    request: LoanPaymentRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Record a payment against one installment"""
    try:
        result = system.loan_manager.record_payment(
            loan_id=loan_id,
            payment_number=request.payment_number,
            actual_amount=request.amount,
            paid_date=request.paid_date,
            account_id=request.account_id,
            user_id=user_id
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(result)


@router.post("/{loan_id}/pay-next")
async def pay_next_installment(
    loan_id: str,
    request: Optional[PayNextRequest] = None,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Pay the earliest planned installment, by default for its scheduled amount"""
    request = request or PayNextRequest()
    try:
        result = system.loan_manager.pay_next(
            loan_id,
            user_id,
            amount=request.amount,
            paid_date=request.paid_date,
            account_id=request.account_id
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(result)


@router.post("/{loan_id}/skip")
async def skip_payment(
    loan_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Delay the remaining schedule by one month"""
    try:
        return to_response(system.loan_manager.skip_payment(loan_id, user_id))
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.post("/{loan_id}/payoff")
async def payoff_loan(
    loan_id: str,
    request: PayoffRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Close the loan with one final payment"""
    try:
        loan = system.loan_manager.payoff(loan_id, request.amount, request.paid_date, user_id)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(loan)


@router.patch("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Update loan metadata"""
    try:
        loan = system.loan_manager.update_loan(loan_id, user_id, **request.model_dump(exclude_unset=True))
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(loan)


@router.delete("/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_loan(
    loan_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Delete a loan, its schedule and its payment plan"""
    try:
        system.loan_manager.delete_loan(loan_id, user_id)
    except FinanceCoreError as e:
        raise to_http_error(e)
