from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, new_id, utcnow

ORDER_STATUSES = ("pending", "paid", "processing", "shipped", "delivered", "cancelled")


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    order_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(30), default="pending")
    total_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    # Not a foreign key: the order keeps the submitted id even if it never matched an address
    shipping_address_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_address: Mapped[str] = mapped_column(String(500))
    payment_method: Mapped[str] = mapped_column(String(50), default="Paystack")
    delivery_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    items_count: Mapped[int] = mapped_column(Integer, default=0)
    payment_transaction_id: Mapped[str | None] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    discount_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order")
    payment_transaction = relationship("PaymentTransaction")
