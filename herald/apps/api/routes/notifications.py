from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from herald.apps.api.deps import get_services
from herald.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from herald.apps.api.response import SuccessEnvelope, success_response
from herald.domain.notifications import Entry
from herald.services.notifications.factory import NotificationServices


router = APIRouter(prefix="/notifications", tags=["notifications"], responses=DEFAULT_ERROR_RESPONSES)


class ChannelRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    escalation: bool = False


class EnqueueRequest(BaseModel):
    id: str | None = Field(default=None, max_length=128)
    event: str = Field(default="event", max_length=128)
    title: str = ""
    subject: str = ""
    lines: list[str] = Field(default_factory=list)
    body: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    severity: str = "info"
    channels: dict[str, ChannelRequest]
    escalation: dict[str, Any] | None = None
    reminders: dict[str, Any] | None = None
    resolution: dict[str, Any] | None = None
    quiet_until: int | None = None
    quiet_hours: dict[str, Any] | None = None


class AcknowledgeRequest(BaseModel):
    user_id: str | None = Field(default=None, max_length=128)
    note: str = Field(default="", max_length=2000)


class ResolveRequest(BaseModel):
    user_id: str | None = Field(default=None, max_length=128)
    notes: str = Field(default="", max_length=2000)


def _not_found(entry_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "NOT_FOUND", "message": "Notification entry not found", "entry_id": entry_id},
    )


def _entry_payload(entry: Entry) -> dict[str, Any]:
    return entry.to_dict()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict[str, Any]])
async def enqueue_notification(
    request: Request,
    payload: EnqueueRequest,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    candidate = payload.model_dump(exclude_none=True)
    candidate["channels"] = {key: channel.model_dump() for key, channel in payload.channels.items()}
    entry = await services.queue.enqueue(candidate)
    if entry is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "ENTRY_REJECTED", "message": "Entry has no usable channel"},
        )
    return success_response(request=request, data=_entry_payload(entry))


@router.get("/queue", response_model=SuccessEnvelope[dict[str, Any]])
async def get_queue_snapshot(
    request: Request,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    return success_response(request=request, data=await services.queue.snapshot())


@router.get("/receipts", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def list_receipts(
    request: Request,
    limit: int = Query(default=20, ge=1, le=200),
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    receipts = await services.receipts.list_recent(limit)
    return success_response(request=request, data=[receipt.to_dict() for receipt in receipts])


@router.get("/{entry_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def get_notification(
    entry_id: str,
    request: Request,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.find_entry(entry_id)
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))


@router.post("/{entry_id}/retry", response_model=SuccessEnvelope[dict[str, Any]])
async def retry_notification(
    entry_id: str,
    request: Request,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.retry_entry(entry_id)
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))


@router.delete("/{entry_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def delete_notification(
    entry_id: str,
    request: Request,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    if not await services.queue.delete_entry(entry_id):
        raise _not_found(entry_id)
    return success_response(request=request, data={"id": entry_id, "deleted": True})


@router.post("/{entry_id}/remind", response_model=SuccessEnvelope[dict[str, Any]])
async def remind_notification(
    entry_id: str,
    request: Request,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    result = await services.queue.trigger_manual_reminder(entry_id)
    if result.status == "not_found":
        raise _not_found(entry_id)
    return success_response(request=request, data=result.to_dict())


@router.post("/{entry_id}/ack", response_model=SuccessEnvelope[dict[str, Any]])
async def acknowledge_notification(
    entry_id: str,
    request: Request,
    payload: AcknowledgeRequest,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.acknowledge_entry(entry_id, user_id=payload.user_id, note=payload.note)
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))


@router.post("/{entry_id}/resolve", response_model=SuccessEnvelope[dict[str, Any]])
async def resolve_notification(
    entry_id: str,
    request: Request,
    payload: ResolveRequest,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.resolve_entry(entry_id, user_id=payload.user_id, notes=payload.notes)
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))


@router.post("/{entry_id}/channels/{channel_key}/ack", response_model=SuccessEnvelope[dict[str, Any]])
async def acknowledge_notification_channel(
    entry_id: str,
    channel_key: str,
    request: Request,
    payload: AcknowledgeRequest,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.acknowledge_channel(
        entry_id, channel_key, user_id=payload.user_id, note=payload.note
    )
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))


@router.post("/{entry_id}/channels/{channel_key}/resolve", response_model=SuccessEnvelope[dict[str, Any]])
async def resolve_notification_channel(
    entry_id: str,
    channel_key: str,
    request: Request,
    payload: ResolveRequest,
    services: NotificationServices = Depends(get_services),
) -> dict[str, Any]:
    entry = await services.queue.resolve_channel(
        entry_id, channel_key, user_id=payload.user_id, notes=payload.notes
    )
    if entry is None:
        raise _not_found(entry_id)
    return success_response(request=request, data=_entry_payload(entry))
