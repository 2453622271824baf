"""
Budget cell endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..system import FinanceSystem
from .dependencies import get_finance_system, get_user_id
from .schemas import to_response


router = APIRouter()


@router.get("/{year}")
async def get_budget_cells(
    year: int,
    category: Optional[str] = None,
    user_id: str = Depends(get_user_id),
    system: FinanceSystem = Depends(get_finance_system)
):
    """Budget cells of one year"""
    cells = system.budget_sync.get_cells(user_id, year, category.upper() if category else None)
    return {"year": year, "cells": to_response(cells)}
