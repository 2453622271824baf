"""
Scheduler control endpoints
"""

from fastapi import APIRouter, Depends

from ..system import FinanceSystem
from .dependencies import get_finance_system
from .schemas import to_response


router = APIRouter()


@router.get("/status")
async def scheduler_status(system: FinanceSystem = Depends(get_finance_system)):
    return system.scheduler.status()


@router.post("/start")
async def start_scheduler(system: FinanceSystem = Depends(get_finance_system)):
    started = system.scheduler.start()
    return {"started": started, "status": system.scheduler.status()}


@router.post("/stop")
async def stop_scheduler(system: FinanceSystem = Depends(get_finance_system)):
    system.scheduler.stop()
    return {"stopped": True, "status": system.scheduler.status()}


@router.post("/run")
async def run_scheduler_now(system: FinanceSystem = Depends(get_finance_system)):
    """Run one sweep immediately"""
    sweep = system.scheduler.run_now()
    return {**sweep.summary(), "results": to_response(sweep.results)}
