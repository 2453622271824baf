"""
Obligation group endpoints
"""

from fastapi import APIRouter, Depends, status

from ..errors import FinanceCoreError
from ..system import FinanceSystem
from .dependencies import get_finance_system, get_user_id
from .errors import to_http_error
from .schemas import CreateGroupRequest, ReorderGroupsRequest, UpdateGroupRequest, to_response


router = APIRouter()


@router.get("")
async def list_groups(
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """The caller's groups in display order, each with its obligations"""
    return to_response(system.group_manager.list_with_obligations(user_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_group(
    request: CreateGroupRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    try:
        group = system.group_manager.create_group(user_id, request.name, request.sort_order)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(group)


@router.post("/reorder")
async def reorder_groups(
    request: ReorderGroupsRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Set the display order to the order of the given ids"""
    try:
        return to_response(system.group_manager.reorder_groups(user_id, request.group_ids))
    except FinanceCoreError as e:
        raise to_http_error(e)


@router.patch("/{group_id}")
async def update_group(
    group_id: str,
    request: UpdateGroupRequest,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    try:
        group = system.group_manager.update_group(group_id, user_id, request.name, request.sort_order)
    except FinanceCoreError as e:
        raise to_http_error(e)
    return to_response(group)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: str,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Delete a group; its obligations become ungrouped"""
    try:
        system.group_manager.delete_group(group_id, user_id)
    except FinanceCoreError as e:
        raise to_http_error(e)
