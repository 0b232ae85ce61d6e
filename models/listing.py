from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Boolean, Float, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Listing(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    store_id: Mapped[int | None] = mapped_column(ForeignKey("stores.id", ondelete="SET NULL"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    original_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="AZN")

    # Listing-level discount. Legacy rows carry only discount_percentage, which
    # may be a percent-encoded fixed amount; new rows also store type and value.
    has_discount: Mapped[bool] = mapped_column(Boolean, default=False)
    discount_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    discount_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    discount_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Paid promotion
    promotion_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # featured, premium, vip
    promotion_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Countdown shown independently of any discount
    timer_bar_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    timer_bar_title: Mapped[str | None] = mapped_column(String(50), nullable=True)
    timer_bar_color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    timer_bar_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("Store", back_populates="listings")
    owner = relationship("User")
