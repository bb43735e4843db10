from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.core.errors import ReceiptStoreError
from herald.domain.models import NotificationReceipt
from herald.domain.notifications import Entry, ResolutionStep
from herald.services.notifications.actors import SYSTEM_ACTOR


logger = logging.getLogger(__name__)

CREATED_SUMMARY = "Incident detected and notification queued."
ACKNOWLEDGED_SUMMARY = "Acknowledgement recorded."
RESOLVED_SUMMARY = "Incident marked as resolved."


@dataclass(slots=True)
class Receipt:
    entry_id: str
    event: str
    title: str
    severity: str
    created_at: int
    last_updated_at: int
    acknowledged_at: int | None = None
    acknowledged_by: str | None = None
    resolved_at: int | None = None
    resolved_by: str | None = None
    steps: list[ResolutionStep] = field(default_factory=list)

    def status(self) -> str:
        if self.resolved_at is not None:
            return "resolved"
        if self.acknowledged_at is not None:
            return "acknowledged"
        return "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "event": self.event,
            "title": self.title,
            "severity": self.severity,
            "status": self.status(),
            "created_at": self.created_at,
            "acknowledged_at": self.acknowledged_at,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
            "last_updated_at": self.last_updated_at,
            "steps": [step.to_dict() for step in self.steps],
        }


def receipt_from_entry(entry: Entry) -> Receipt:
    # Seed a receipt from a queue entry, carrying any resolution state it already has.
    receipt = Receipt(
        entry_id=entry.id,
        event=entry.event,
        title=entry.title,
        severity=entry.severity,
        created_at=entry.created_at,
        last_updated_at=entry.created_at,
        steps=[ResolutionStep(timestamp=entry.created_at, actor=SYSTEM_ACTOR, summary=CREATED_SUMMARY, type="created")],
    )
    resolution = entry.resolution
    if resolution.acknowledged_at is not None:
        receipt.acknowledged_at = resolution.acknowledged_at
        receipt.acknowledged_by = entry.acknowledged_by
    if resolution.resolved_at is not None:
        receipt.resolved_at = resolution.resolved_at
        if receipt.acknowledged_at is None:
            receipt.acknowledged_at = resolution.resolved_at
    for step in resolution.steps:
        receipt.steps.append(ResolutionStep(step.timestamp, step.actor, step.summary, step.type))
    receipt.last_updated_at = max(step.timestamp for step in receipt.steps)
    return receipt


def apply_acknowledgement(receipt: Receipt, *, actor: str, summary: str, at: int) -> bool:
    # First acknowledgement wins; later ones leave the receipt untouched.
    if receipt.acknowledged_at is not None:
        return False
    receipt.acknowledged_at = at
    receipt.acknowledged_by = actor
    receipt.steps.append(
        ResolutionStep(timestamp=at, actor=actor, summary=summary.strip() or ACKNOWLEDGED_SUMMARY, type="acknowledged")
    )
    receipt.last_updated_at = at
    return True


def apply_resolution(receipt: Receipt, *, actor: str, summary: str, at: int) -> bool:
    if receipt.resolved_at is not None:
        return False
    receipt.resolved_at = at
    receipt.resolved_by = actor
    if receipt.acknowledged_at is None:
        receipt.acknowledged_at = at
        receipt.acknowledged_by = actor
    receipt.steps.append(
        ResolutionStep(timestamp=at, actor=actor, summary=summary.strip() or RESOLVED_SUMMARY, type="resolved")
    )
    receipt.last_updated_at = at
    return True


class ReceiptStore(Protocol):
    async def is_acknowledged(self, entry_id: str) -> bool:
        ...

    async def is_resolved(self, entry_id: str) -> bool:
        ...

    async def record_creation(self, entry: Entry) -> Receipt:
        ...

    async def acknowledge(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        ...

    async def resolve(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        ...

    async def add_step(self, entry_id: str, step: ResolutionStep) -> Receipt | None:
        ...

    async def get(self, entry_id: str) -> Receipt | None:
        ...

    async def list_recent(self, limit: int = 20) -> list[Receipt]:
        ...


class InMemoryReceiptStore:
    def __init__(self) -> None:
        self._receipts: dict[str, Receipt] = {}

    async def is_acknowledged(self, entry_id: str) -> bool:
        receipt = self._receipts.get(entry_id)
        return receipt is not None and receipt.acknowledged_at is not None

    async def is_resolved(self, entry_id: str) -> bool:
        receipt = self._receipts.get(entry_id)
        return receipt is not None and receipt.resolved_at is not None

    async def record_creation(self, entry: Entry) -> Receipt:
        receipt = self._receipts.get(entry.id)
        if receipt is None:
            receipt = receipt_from_entry(entry)
            self._receipts[entry.id] = receipt
        return deepcopy(receipt)

    async def acknowledge(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        receipt = self._receipts.setdefault(entry.id, receipt_from_entry(entry))
        apply_acknowledgement(receipt, actor=actor, summary=summary, at=at)
        return deepcopy(receipt)

    async def resolve(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        receipt = self._receipts.setdefault(entry.id, receipt_from_entry(entry))
        apply_resolution(receipt, actor=actor, summary=summary, at=at)
        return deepcopy(receipt)

    async def add_step(self, entry_id: str, step: ResolutionStep) -> Receipt | None:
        receipt = self._receipts.get(entry_id)
        if receipt is None or not step.summary.strip():
            return None
        receipt.steps.append(deepcopy(step))
        receipt.last_updated_at = step.timestamp
        return deepcopy(receipt)

    async def get(self, entry_id: str) -> Receipt | None:
        receipt = self._receipts.get(entry_id)
        return deepcopy(receipt) if receipt is not None else None

    async def list_recent(self, limit: int = 20) -> list[Receipt]:
        ordered = sorted(self._receipts.values(), key=lambda item: item.last_updated_at, reverse=True)
        return [deepcopy(item) for item in ordered[: max(0, int(limit))]]


def _row_to_receipt(row: NotificationReceipt) -> Receipt:
    steps: list[ResolutionStep] = []
    for raw in row.steps_json or []:
        if isinstance(raw, dict):
            step = ResolutionStep.from_dict(raw)
            if step is not None:
                steps.append(step)
    return Receipt(
        entry_id=row.entry_id,
        event=row.event,
        title=row.title or "",
        severity=row.severity or "info",
        created_at=int(row.created_at),
        last_updated_at=int(row.last_updated_at),
        acknowledged_at=row.acknowledged_at,
        acknowledged_by=row.acknowledged_by,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
        steps=steps,
    )


def _write_receipt(row: NotificationReceipt, receipt: Receipt) -> None:
    row.acknowledged_at = receipt.acknowledged_at
    row.acknowledged_by = receipt.acknowledged_by
    row.resolved_at = receipt.resolved_at
    row.resolved_by = receipt.resolved_by
    row.steps_json = [step.to_dict() for step in receipt.steps]
    row.last_updated_at = receipt.last_updated_at


def _new_row(receipt: Receipt) -> NotificationReceipt:
    row = NotificationReceipt(
        entry_id=receipt.entry_id,
        event=receipt.event,
        title=receipt.title,
        severity=receipt.severity,
        created_at=receipt.created_at,
    )
    _write_receipt(row, receipt)
    return row


class SqlReceiptStore:
    def __init__(self, *, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def _get_row(self, session: AsyncSession, entry_id: str) -> NotificationReceipt | None:
        return await session.get(NotificationReceipt, entry_id)

    async def is_acknowledged(self, entry_id: str) -> bool:
        receipt = await self.get(entry_id)
        return receipt is not None and receipt.acknowledged_at is not None

    async def is_resolved(self, entry_id: str) -> bool:
        receipt = await self.get(entry_id)
        return receipt is not None and receipt.resolved_at is not None

    async def record_creation(self, entry: Entry) -> Receipt:
        try:
            async with self._sessionmaker() as session:
                row = await self._get_row(session, entry.id)
                if row is not None:
                    return _row_to_receipt(row)
                receipt = receipt_from_entry(entry)
                session.add(_new_row(receipt))
                await session.commit()
                return receipt
        except SQLAlchemyError as exc:
            raise ReceiptStoreError(f"receipt create failed: {exc}") from exc

    async def _mark(self, entry: Entry, *, status: str, actor: str, summary: str, at: int) -> Receipt:
        try:
            async with self._sessionmaker() as session:
                row = await self._get_row(session, entry.id)
                if row is None:
                    row = _new_row(receipt_from_entry(entry))
                    session.add(row)
                receipt = _row_to_receipt(row)
                if status == "acknowledged":
                    changed = apply_acknowledgement(receipt, actor=actor, summary=summary, at=at)
                else:
                    changed = apply_resolution(receipt, actor=actor, summary=summary, at=at)
                if changed:
                    _write_receipt(row, receipt)
                await session.commit()
                return receipt
        except SQLAlchemyError as exc:
            raise ReceiptStoreError(f"receipt {status} failed: {exc}") from exc

    async def acknowledge(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        return await self._mark(entry, status="acknowledged", actor=actor, summary=summary, at=at)

    async def resolve(self, entry: Entry, *, actor: str, summary: str = "", at: int) -> Receipt:
        return await self._mark(entry, status="resolved", actor=actor, summary=summary, at=at)

    async def add_step(self, entry_id: str, step: ResolutionStep) -> Receipt | None:
        if not step.summary.strip():
            return None
        try:
            async with self._sessionmaker() as session:
                row = await self._get_row(session, entry_id)
                if row is None:
                    return None
                receipt = _row_to_receipt(row)
                receipt.steps.append(step)
                receipt.last_updated_at = step.timestamp
                _write_receipt(row, receipt)
                await session.commit()
                return receipt
        except SQLAlchemyError as exc:
            raise ReceiptStoreError(f"receipt step failed: {exc}") from exc

    async def get(self, entry_id: str) -> Receipt | None:
        try:
            async with self._sessionmaker() as session:
                row = await self._get_row(session, entry_id)
                return _row_to_receipt(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise ReceiptStoreError(f"receipt read failed: {exc}") from exc

    async def list_recent(self, limit: int = 20) -> list[Receipt]:
        try:
            async with self._sessionmaker() as session:
                rows = (
                    await session.execute(
                        select(NotificationReceipt)
                        .order_by(NotificationReceipt.last_updated_at.desc())
                        .limit(max(0, int(limit)))
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise ReceiptStoreError(f"receipt list failed: {exc}") from exc
        return [_row_to_receipt(row) for row in rows]
