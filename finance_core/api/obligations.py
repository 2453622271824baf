"""
Obligation endpoints, including budget application
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..errors import FinanceCoreError
from ..system import FinanceSystem
from .dependencies import get_finance_system, get_user_id
from .errors import to_http_error
from .schemas import (
    BudgetApplicationRequest, CreateObligationRequest, MoveObligationRequest,
    ToggleActiveRequest, UpdateObligationRequest, to_response
)


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_obligation(
    request: CreateObligationRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Create a recurring or one-off obligation"""
    fields = request.model_dump(exclude={"budget"})
    budget = request.budget or BudgetApplicationRequest()
    try:
        obligation = system.obligation_manager.create_obligation(
            user_id=user_id,
            budget_mode=budget.mode,
            budget_target_month=budget.target_month,
            budget_year=budget.year,
            **fields
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)


@router.get("")
async def list_obligations(
    group_id: Optional[str] = None,
    active_only: bool = False,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """List the caller's obligations, optionally for one group"""
    return to_response(system.obligation_manager.list_obligations(user_id, group_id, active_only))


@router.get("/due")
async def list_due_obligations(
    within_days: Optional[int] = Query(None, ge=0),
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Obligations due within the next few days"""
    if within_days is None:
        within_days = system.config.due_window_days
    return to_response(system.obligation_manager.list_due(user_id, within_days))


@router.get("/occurrences")
async def next_occurrences(
    start_date: date,
    frequency: str,
    count: int = 5,
    system: FinanceSystem = Depends(get_finance_system)
):
    """Preview upcoming due dates for a schedule"""
    try:
        dates = system.obligation_manager.next_occurrences(start_date, frequency, count)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return {"occurrences": to_response(dates)}


@router.get("/{obligation_id}")
async def get_obligation(
    obligation_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    try:
        return to_response(system.obligation_manager.get_obligation(obligation_id, user_id))
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.patch("/{obligation_id}")
async def update_obligation(
    obligation_id: str,
    request: UpdateObligationRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Edit an obligation"""
    try:
        obligation = system.obligation_manager.update_obligation(
            obligation_id, user_id, **request.model_dump(exclude_unset=True)
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)


@router.delete("/{obligation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_obligation(
    obligation_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    try:
        system.obligation_manager.delete_obligation(obligation_id, user_id)
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.post("/{obligation_id}/materialize")
async def materialize_obligation(
    obligation_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Post the obligation's current occurrence now ("pay now")"""
    try:
        result = system.materializer.materialize(obligation_id, user_id)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return {
        "entry": to_response(result.entry),
        "obligation": to_response(result.obligation),
    }


@router.post("/{obligation_id}/toggle-active")
async def toggle_active(
    obligation_id: str,
    request: ToggleActiveRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    try:
        obligation = system.obligation_manager.toggle_active(obligation_id, user_id, request.is_active)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)


@router.post("/{obligation_id}/move")
async def move_obligation(
    obligation_id: str,
    request: MoveObligationRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Move the obligation to another group, or out of its group"""
    try:
        obligation = system.group_manager.move_obligation(obligation_id, user_id, request.group_id)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)


@router.post("/{obligation_id}/budget")
async def apply_to_budget(
    obligation_id: str,
    request: BudgetApplicationRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Mirror the obligation into the monthly budget"""
    try:
        obligation = system.obligation_manager.apply_to_budget(
            obligation_id, user_id, request.mode, request.target_month, request.year
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)


@router.delete("/{obligation_id}/budget")
async def remove_from_budget(
    obligation_id: str,
    mode: Optional[str] = None,
    target_month: Optional[int] = None,
    year: Optional[int] = None,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Take the obligation's contribution back out of the budget"""
    try:
        obligation = system.obligation_manager.remove_from_budget(
            obligation_id, user_id, mode, target_month, year
        )
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(obligation)
