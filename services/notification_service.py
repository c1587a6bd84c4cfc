from __future__ import annotations

from typing import Optional

from crm_shared import format_dt
from shared.db import Notification


def notification_to_dict(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "read": bool(notification.read),
        "created_at": format_dt(notification.created_at),
    }


def create_notification(
    db,
    *,
    user_id: Optional[str],
    notification_type: Optional[str],
    title: Optional[str],
    message: Optional[str],
    data: Optional[dict] = None,
) -> Notification:
    if not user_id:
        raise ValueError("userId is required")
    if not title:
        raise ValueError("title is required")
    notification = Notification(
        user_id=str(user_id),
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
        read=False,
    )
    db.add(notification)
    db.flush()
    return notification
