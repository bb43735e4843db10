from __future__ import annotations

from fastapi import HTTPException, Request

from herald.services.notifications.factory import NotificationServices


def get_services(request: Request) -> NotificationServices:
    # Services are wired once in create_app (or the lifespan) and shared by every request.
    services = getattr(request.app.state, "notification_services", None)
    if services is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "SERVICE_UNAVAILABLE", "message": "Notification services not initialized"},
        )
    return services
