from datetime import datetime
from sqlalchemy import String, DateTime, Integer, Numeric, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, new_id, utcnow

DISCOUNT_TYPES = ("percentage", "fixed")


class Discount(Base):
    __tablename__ = "discounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)  # stored upper-cased
    type: Mapped[str] = mapped_column(String(20), default="percentage")
    value: Mapped[float] = mapped_column(Numeric(12, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = uncapped
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses
