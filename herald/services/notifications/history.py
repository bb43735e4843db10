from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Literal, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.domain.models import HistoryEvent


logger = logging.getLogger(__name__)

HistorySeverity = Literal["success", "info", "warning", "failure"]

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "failure": logging.ERROR,
}


class HistorySink(Protocol):
    # Operator-facing audit trail: (category, severity, message) triples.
    async def log(self, category: str, severity: HistorySeverity, message: str) -> None:
        ...


@dataclass(frozen=True)
class HistoryRecord:
    category: str
    severity: str
    message: str


class LoggingHistorySink:
    async def log(self, category: str, severity: HistorySeverity, message: str) -> None:
        logger.log(
            _LOG_LEVELS.get(severity, logging.INFO),
            "history_event category=%s severity=%s message=%s",
            category,
            severity,
            message,
        )


class InMemoryHistorySink:
    def __init__(self) -> None:
        self.records: list[HistoryRecord] = []

    async def log(self, category: str, severity: HistorySeverity, message: str) -> None:
        self.records.append(HistoryRecord(category=category, severity=severity, message=message))

    def by_category(self, category: str) -> list[HistoryRecord]:
        return [record for record in self.records if record.category == category]


class SqlHistorySink:
    # Best-effort rows: a history write failure never fails the delivery pass that produced it.
    def __init__(self, *, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def log(self, category: str, severity: HistorySeverity, message: str) -> None:
        try:
            async with self._sessionmaker() as session:
                session.add(HistoryEvent(category=category, severity=severity, message=message))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("history_event_write_failed category=%s severity=%s", category, severity, exc_info=exc)
