"""
Pydantic schemas for API requests and responses
"""

from dataclasses import asdict, is_dataclass
from datetime import date
from typing import Any, List, Optional
from pydantic import BaseModel, Field, StrictBool

from ..storage import StorageRecord, serialize_value


def to_response(value: Any) -> Any:
    """Render records, dataclasses and containers as JSON-ready values (Decimals as strings)"""
    if isinstance(value, StorageRecord):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return serialize_value(asdict(value))
    if isinstance(value, dict):
        return {key: to_response(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_response(item) for item in value]
    return serialize_value(value)


# Loan schemas
class CreateLoanRequest(BaseModel):
    name: str
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate: str = Field(..., description="Yearly rate as a fraction, e.g. 0.05")
    duration_months: int
    first_payment_date: date
    loan_type: str = "OTHER"
    category: Optional[str] = None
    subcategory_id: Optional[str] = None
    account_id: Optional[str] = None
    lender_name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    auto_create_payments: bool = False


class SimulatePayoffRequest(BaseModel):
    target_months: Optional[List[int]] = None


class LoanPaymentRequest(BaseModel):
    payment_number: int
    amount: str = Field(..., description="Decimal amount as string")
    paid_date: Optional[date] = None
    account_id: Optional[str] = None


class PayNextRequest(BaseModel):
    amount: Optional[str] = Field(None, description="Defaults to the installment's scheduled amount")
    paid_date: Optional[date] = None
    account_id: Optional[str] = None


class PayoffRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    paid_date: Optional[date] = None


class UpdateLoanRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    category: Optional[str] = None
    subcategory_id: Optional[str] = None
    lender_name: Optional[str] = None


# Obligation schemas
class BudgetApplicationRequest(BaseModel):
    mode: Optional[str] = Field(None, description="specific or divide (YEARLY only)")
    target_month: Optional[int] = Field(None, description="0 = January ... 11 = December")
    year: Optional[int] = None


class CreateObligationRequest(BaseModel):
    category: str
    amount: str = Field(..., description="Decimal amount as string")
    frequency: str
    start_date: date
    title: Optional[str] = None
    confirmation_mode: str = "MANUAL"
    subcategory_id: Optional[str] = None
    note: Optional[str] = None
    payee: Optional[str] = None
    account_id: Optional[str] = None
    group_id: Optional[str] = None
    end_date: Optional[date] = None
    repeat_count: Optional[int] = None
    apply_to_budget: bool = False
    budget: Optional[BudgetApplicationRequest] = None


class UpdateObligationRequest(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    subcategory_id: Optional[str] = None
    amount: Optional[str] = None
    frequency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    confirmation_mode: Optional[str] = None
    note: Optional[str] = None
    payee: Optional[str] = None
    account_id: Optional[str] = None
    group_id: Optional[str] = None
    repeat_count: Optional[int] = None


class ToggleActiveRequest(BaseModel):
    is_active: StrictBool


class MoveObligationRequest(BaseModel):
    group_id: Optional[str] = Field(None, description="Target group; null removes the obligation from its group")


# Group schemas
class CreateGroupRequest(BaseModel):
    name: str
    sort_order: Optional[int] = None


class UpdateGroupRequest(BaseModel):
    name: Optional[str] = None
    sort_order: Optional[int] = None


class ReorderGroupsRequest(BaseModel):
    group_ids: List[str]
