"""
Notification feed endpoints.

Clients poll the feed and dismiss what they have shown.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from cardkeeper.api.dependencies import get_feed
from cardkeeper.sync.notifications import NotificationFeed, NotificationLevel

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: str
    level: NotificationLevel
    title: str
    description: str = ""
    duration: float
    retryable: bool = False


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    feed: Annotated[NotificationFeed, Depends(get_feed)],
) -> list[NotificationResponse]:
    """Undismissed notifications, oldest first."""
    return [
        NotificationResponse(
            id=item.id,
            level=item.level,
            title=item.title,
            description=item.description,
            duration=item.duration,
            retryable=item.retryable,
        )
        for item in feed.pending()
    ]


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_notification(
    notification_id: str,
    feed: Annotated[NotificationFeed, Depends(get_feed)],
) -> None:
    if not feed.dismiss(notification_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )
