from sqlalchemy import String, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, new_id


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    # Snapshot of the cart line; product and variant rows may change after purchase
    product_id: Mapped[str] = mapped_column(String(36), index=True)
    variant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    variant_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    product_name: Mapped[str] = mapped_column(String(200))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[float] = mapped_column(Numeric(12, 2))  # unit price incl. variant impact

    order = relationship("Order", back_populates="items")
