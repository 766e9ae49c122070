"""Returns & refunds models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class ProductReturn(Base):
    """Return of items from a completed sale."""
    __tablename__ = "product_returns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    return_number = Column(String(100), unique=True, nullable=False, index=True)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    store_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    status = Column(
        Enum("pending", "approved", "rejected", "completed", name="return_status"),
        default="pending",
        nullable=False,
    )
    return_date = Column(DateTime(timezone=True), default=utcnow, index=True)
    total_amount = Column(Numeric(12, 2), default=0)  # pre-tax
    tax_amount = Column(Numeric(12, 2), default=0)
    refund_amount = Column(Numeric(12, 2), default=0)
    refund_type = Column(
        Enum("cash", "card", "adjustment", "credit", name="refund_type"),
        nullable=False,
    )
    refund_status = Column(
        Enum("pending", "completed", name="refund_status"),
        default="pending",
    )
    restock_items = Column(Boolean, default=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(String(64), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    status_comment = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship(
        "ReturnItem", back_populates="product_return", lazy="selectin", order_by="ReturnItem.id",
        cascade="all, delete-orphan",
    )
    refunds = relationship(
        "ReturnRefund", back_populates="product_return", lazy="selectin", order_by="ReturnRefund.reference",
        cascade="all, delete-orphan",
    )


class ReturnItem(Base):
    __tablename__ = "return_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    return_id = Column(
        UUID(as_uuid=True), ForeignKey("product_returns.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sale_item_id = Column(UUID(as_uuid=True), ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    variation_id = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    condition = Column(
        Enum("good", "damaged", "defective", name="item_condition"),
        default="good",
    )
    return_reason = Column(String(300), nullable=True)
    restock = Column(Boolean, default=True)
    notes = Column(Text, nullable=True)

    product_return = relationship("ProductReturn", back_populates="items")


class ReturnRefund(Base):
    """Money paid back for a completed return."""
    __tablename__ = "return_refunds"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    return_id = Column(
        UUID(as_uuid=True), ForeignKey("product_returns.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    reference = Column(String(120), unique=True, nullable=True)  # per-leg idempotency reference
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(
        Enum("cash", "card", "adjustment", "credit", name="refund_method"),
        nullable=False,
    )
    transaction_id = Column(String(200), nullable=True)
    processed_by = Column(String(64), nullable=False)
    processed_at = Column(DateTime(timezone=True), default=utcnow)
    status = Column(String(50), default="completed")

    product_return = relationship("ProductReturn", back_populates="refunds")
