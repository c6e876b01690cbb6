"""Order and return request records owned by the order management service.

The cashback engine reads these rows and annotates ``Order.metadata_json``;
it never creates or deletes them.
"""

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cashback_api.db.base import Base, enum_values


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ReturnRequestStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    order_number = Column(String, nullable=True, unique=True)
    payment_status = Column(
        SqlEnum(PaymentStatusEnum, name="order_payment_status_enum", values_callable=enum_values),
        nullable=False,
        default=PaymentStatusEnum.PENDING,
        server_default=PaymentStatusEnum.PENDING.value,
    )
    subtotal = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    tax = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    shipping = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    discount = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    notes = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    return_requests = relationship("ReturnRequest", back_populates="order", cascade="all, delete-orphan")


class ReturnRequest(Base):
    __tablename__ = "return_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(
        SqlEnum(ReturnRequestStatusEnum, name="return_request_status_enum", values_callable=enum_values),
        nullable=False,
        default=ReturnRequestStatusEnum.PENDING,
        server_default=ReturnRequestStatusEnum.PENDING.value,
    )
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    order = relationship("Order", back_populates="return_requests")
