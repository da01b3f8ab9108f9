"""
Notifications API Endpoints
===========================
"""

import uuid

from fastapi import APIRouter, Query

from app.dependencies import CurrentUser, DBSession
from app.schemas.common import ERROR_RESPONSES
from app.services.notification_service import DEFAULT_LIMIT, NotificationService

router = APIRouter()


@router.get("")
async def list_notifications(
    current_user: CurrentUser,
    db: DBSession,
    limit: int = Query(default=DEFAULT_LIMIT, ge=1),
    unread_only: bool = Query(default=False),
):
    """Newest first; ``limit`` is capped at 50."""
    result = await NotificationService(db).list_for_user(current_user.user_id, limit=limit, unread_only=unread_only)
    return {
        "notifications": [n.to_api_dict() for n in result["notifications"]],
        "unread_count": result["unread_count"],
        "total": result["total"],
    }


@router.patch("/{notification_id}/read", responses=ERROR_RESPONSES)
async def mark_read(notification_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    service = NotificationService(db)
    notification = await service.mark_read(current_user.user_id, notification_id)
    await db.commit()
    return {
        "notification": notification.to_api_dict(),
        "unread_count": await service.unread_count(current_user.user_id),
    }


@router.post("/read_all")
async def mark_all_read(current_user: CurrentUser, db: DBSession):
    await NotificationService(db).mark_all_read(current_user.user_id)
    await db.commit()
    return {"success": True, "unread_count": 0}
