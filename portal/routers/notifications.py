"""
Notifications API Endpoints
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth import get_current_user
from portal.db import get_db
from portal.db.models import Profile
from portal.models import NotificationOut
from portal.notifications import inbox

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return await inbox.list_notifications(db, current_user.id, unread_only=unread_only, limit=limit)


@router.get("/unread-count")
async def unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return {"count": await inbox.unread_count(db, current_user.id)}


@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    updated = await inbox.mark_all_read(db, current_user.id)
    await db.commit()
    return {"updated": updated}


@router.post("/{notification_id}/read", status_code=204)
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    if not await inbox.mark_read(db, current_user.id, notification_id):
        raise HTTPException(404, "Notification not found or already read")
    await db.commit()
