from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Text, JSON, Integer, Float, Numeric, ForeignKey, Table, Column
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


# Followers are kept through deactivation and archival so reactivation restores them
store_followers = Table(
    "store_followers",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("store_id", Integer, ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
    Column("followed_at", DateTime, default=datetime.utcnow),
)


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(150), index=True)
    category_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Plan snapshot taken at activation/renewal time
    plan_id: Mapped[str] = mapped_column(String(50))
    plan_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    max_ads: Mapped[int] = mapped_column(Integer)
    duration_days: Mapped[int] = mapped_column(Integer)

    # Usage
    ads_used: Mapped[int] = mapped_column(Integer, default=0)
    deleted_listing_ids: Mapped[list] = mapped_column(JSON, default=list)

    # Reputation survives deactivation
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0)

    # Lifecycle; status is derived from expires_at, never stored
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reactivated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_payment_reminder: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="stores")
    followers = relationship("User", secondary=store_followers, lazy="selectin")
    listings = relationship("Listing", back_populates="store")

    @property
    def status(self) -> str:
        """Snapshot of the lifecycle status at the time of the read."""
        from services.lifecycle import store_status

        return store_status(self)

    @property
    def follower_count(self) -> int:
        return len(self.followers)
