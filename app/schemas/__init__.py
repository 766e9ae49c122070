"""Pydantic schemas for the returns API."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

RefundType = Literal["cash", "card", "adjustment", "credit"]
ItemCondition = Literal["good", "damaged", "defective"]


# ── Return requests ──────────────────────────────────────
class ReturnItemIn(BaseModel):
    sale_item_id: UUID
    quantity: int
    condition: ItemCondition = "good"
    return_reason: Optional[str] = None
    restock: bool = True
    notes: Optional[str] = None

    model_config = {"extra": "forbid"}


class ReturnCreate(BaseModel):
    sale_id: UUID
    store_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    items: list[ReturnItemIn] = Field(default_factory=list)
    refund_type: RefundType = "cash"
    restock_items: bool = True
    notes: Optional[str] = None

    model_config = {"extra": "forbid"}


class ReturnUpdate(BaseModel):
    notes: Optional[str] = None
    refund_type: Optional[RefundType] = None
    restock_items: Optional[bool] = None
    expected_status: Optional[str] = None


class RefundSplitIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: RefundType


class StatusUpdate(BaseModel):
    status: str
    actor_id: str = Field(..., min_length=1)
    comment: Optional[str] = None
    expected_status: Optional[str] = None
    refunds: Optional[list[RefundSplitIn]] = None


# ── Return records ───────────────────────────────────────
class ReturnItemOut(BaseModel):
    id: UUID
    sale_item_id: UUID
    product_id: str
    variation_id: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    condition: str
    return_reason: Optional[str]
    restock: bool
    notes: Optional[str]

    model_config = {"from_attributes": True}


class ReturnRefundOut(BaseModel):
    id: UUID
    reference: Optional[str]
    amount: Decimal
    method: str
    transaction_id: Optional[str]
    processed_by: str
    processed_at: datetime
    status: str

    model_config = {"from_attributes": True}


class ReturnOut(BaseModel):
    id: UUID
    return_number: str
    sale_id: UUID
    store_id: str
    user_id: str
    status: str
    return_date: datetime
    total_amount: Decimal
    tax_amount: Decimal
    refund_amount: Decimal
    refund_type: str
    refund_status: str
    restock_items: bool
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    processed_by: Optional[str]
    processed_at: Optional[datetime]
    status_comment: Optional[str]
    notes: Optional[str]
    items: list[ReturnItemOut] = Field(default_factory=list)
    refunds: list[ReturnRefundOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ReturnPageOut(BaseModel):
    items: list[ReturnOut]
    page: int
    limit: int
    total: int
    pages: int

    model_config = {"from_attributes": True}


# ── Eligibility ──────────────────────────────────────────
class EligibleLineOut(BaseModel):
    sale_item_id: str
    product_id: str
    variation_id: Optional[str]
    product_name: str = ""
    sku: str = ""
    ordered_quantity: int
    returned_quantity: int
    returnable_quantity: int
    unit_price: Decimal
    returnable_amount: Decimal

    model_config = {"from_attributes": True}


class SaleEligibilityOut(BaseModel):
    sale_id: str
    sale_number: str
    store_id: str
    customer_name: str = ""
    total_amount: Decimal
    created_at: Optional[datetime] = None
    return_status: str
    returnable_amount: Decimal
    has_returnable_items: bool
    lines: list[EligibleLineOut]
