from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JsonColumn = JSON().with_variant(JSONB, "postgresql")
# sqlite only autoincrements INTEGER primary keys.
AutoIncrementId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class QueueDocument(Base):
    __tablename__ = "queue_documents"

    # One row per queue; the whole entry list is replaced atomically on every save.
    name: Mapped[str] = mapped_column(String, primary_key=True)
    entries_json: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class NotificationReceipt(Base):
    __tablename__ = "notification_receipts"

    entry_id: Mapped[str] = mapped_column(String, primary_key=True)
    event: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String, default="")
    severity: Mapped[str] = mapped_column(String, default="info")
    # Unix seconds, matching the queue document timestamps.
    created_at: Mapped[int] = mapped_column(BigInteger, index=True)
    acknowledged_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    steps_json: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, default=list)
    last_updated_at: Mapped[int] = mapped_column(BigInteger)


class HistoryEvent(Base):
    __tablename__ = "history_events"

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    category: Mapped[str] = mapped_column(String, index=True)
    # success | info | warning | failure
    severity: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(Text)
