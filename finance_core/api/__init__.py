"""
Finance Core API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..system import FinanceSystem
from .budgets import router as budgets_router
from .groups import router as groups_router
from .loans import router as loans_router
from .obligations import router as obligations_router
from .scheduler import router as scheduler_router


def create_app(system: Optional[FinanceSystem] = None, start_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Engine instance to serve; a new one is built from configuration when omitted
        start_scheduler: Run the scheduler for the app's lifetime (defaults to config)
    """
    system = system or FinanceSystem()
    if start_scheduler is None:
        start_scheduler = system.config.scheduler_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            system.scheduler.start()
        try:
            yield
        finally:
            system.scheduler.stop()

    app = FastAPI(
        title="Finance Core API",
        description="Recurring obligations, installment loans and budget synchronization",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.finance_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(obligations_router, prefix="/obligations", tags=["Obligations"])
    app.include_router(groups_router, prefix="/groups", tags=["Groups"])
    app.include_router(budgets_router, prefix="/budgets", tags=["Budgets"])
    app.include_router(scheduler_router, prefix="/scheduler", tags=["Scheduler"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "finance_core_api",
            "version": __version__,
            "scheduler_running": system.scheduler.is_running()
        }

    return app
