from datetime import datetime
from sqlalchemy import String, DateTime, Numeric, JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, new_id, utcnow


class PaymentTransaction(Base):
    """Append-only audit row for a gateway-verified payment.

    ``reference`` is unique, so at most one row exists per Paystack reference.
    Resubmitting a reference still creates a second order (unless
    IDEMPOTENT_REFERENCES is set) but not a second transaction row: the
    repeat insert fails softly, the new order keeps a null
    ``payment_transaction_id`` and a ``transaction_not_logged`` record is
    written for the repair job to flag as a duplicate.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    amount: Mapped[float] = mapped_column(Numeric(12, 2))
    reference: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(30), default="success")  # success | failed
    provider: Mapped[str] = mapped_column(String(50), default="paystack")
    provider_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
