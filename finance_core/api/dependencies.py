"""
Request dependencies: the engine instance and the calling user
"""

from fastapi import Header, Request

from ..system import FinanceSystem


def get_finance_system(request: Request) -> FinanceSystem:
    return request.app.state.finance_system


def get_user_id(x_user_id: str = Header(default="default")) -> str:
    """User identity is supplied by the fronting gateway"""
    return x_user_id
