"""POS data models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Sale(Base):
    """Completed register sale. Owned by the sales ledger; read-only here."""
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sale_number = Column(String(100), unique=True, nullable=False, index=True)
    store_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), default="")
    customer_id = Column(String(64), nullable=True)
    customer_name = Column(String(300), default="")
    customer_email = Column(String(320), default="")
    status = Column(
        Enum("draft", "completed", "voided", name="sale_status"),
        default="completed",
    )
    subtotal = Column(Numeric(12, 2), default=0)
    tax_rate = Column(Numeric(6, 4), nullable=True)  # e.g. 0.1000
    tax_amount = Column(Numeric(12, 2), default=0)
    total_amount = Column(Numeric(12, 2), default=0)
    notes = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    items = relationship(
        "SaleItem", back_populates="sale", lazy="selectin", order_by="SaleItem.position",
    )


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    position = Column(Integer, default=0)
    product_id = Column(String(64), nullable=False)
    variation_id = Column(String(64), nullable=True)
    sku = Column(String(100), default="")
    product_name = Column(String(500), default="")
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(12, 2), default=0)

    sale = relationship("Sale", back_populates="items")


from app.models.returns import ProductReturn, ReturnItem, ReturnRefund  # noqa: E402,F401
