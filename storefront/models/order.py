from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from storefront.models.database import Base

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total = Column(Numeric(12, 2), nullable=False)
    # Merchant-chosen token echoed back by the gateway; written before the gateway call.
    external_reference = Column(String(64), unique=True, nullable=True, index=True)
    checkout_request_id = Column(String(128), nullable=True, index=True)
    # Gateway's own transaction reference; written only by the callback.
    gateway_reference = Column(String(128), nullable=True)
    transaction_id = Column(String(128), nullable=True)
    payment_status = Column(String(20), nullable=False, default=PAYMENT_STATUS_PENDING)  # pending | completed | failed
    status = Column(String(20), nullable=False, default=ORDER_STATUS_PENDING)
    phone_number = Column(String(16), nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)
    payment_message = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
