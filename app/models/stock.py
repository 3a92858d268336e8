"""Stock recommendation model. Prices are authored as free text, quotes are floats."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockRecommendation(Base):
    """A published call: where to enter, where to take profit, where to cut."""

    __tablename__ = "stock_recommendations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    symbol: Mapped[str] = mapped_column(String(30), nullable=False)  # RELIANCE or RELIANCE.NS
    company_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    date_of_rec: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    entry_zone: Mapped[str] = mapped_column(String(50), nullable=False)  # "650 - 570"
    average_entry: Mapped[float | None] = mapped_column(Float, nullable=True)
    target: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stop_loss: Mapped[str | None] = mapped_column(String(50), nullable=True)
    potential_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="entry")  # entry, hold, exit, exited
    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_price_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    realised_pct: Mapped[float | None] = mapped_column(Float, nullable=True)  # frozen at exit
    exited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_stock_recommendations_status", "status"),
        Index("ix_stock_recommendations_symbol", "symbol"),
        Index("ix_stock_recommendations_status_exited_at", "status", "exited_at"),
    )
