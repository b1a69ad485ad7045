"""Append-only usage history.

Rows are never deleted; old records are excluded at query time.
"""
from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from net.cloudmon.model.base import Base, str255, timestamptz


class UsageHistoryRow(Base):
    __tablename__ = "usage_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_name: Mapped[str255]
    usage_amount: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    recorded_at: Mapped[timestamptz]

    __table_args__ = (
        Index("idx_usage_history_account", "account_name", "recorded_at"),
    )
