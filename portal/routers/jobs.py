"""
Scheduled Job Endpoints

Triggered by an external scheduler with the ``X-Cron-Secret`` header.
"""

from fastapi import APIRouter, Depends

from portal.auth import get_current_admin, require_cron_secret
from portal.notifications import reminders
from portal.notifications.processor import NotificationProcessor

router = APIRouter()


@router.post("/process-notifications", dependencies=[Depends(require_cron_secret)])
async def process_notifications(force: bool = False):
    results = await NotificationProcessor().process_pending(force=force)
    return {"processed": len(results), "results": results}


@router.post("/billing-reminders", dependencies=[Depends(require_cron_secret)])
async def billing_reminders():
    return await reminders.send_billing_reminders()


@router.post("/overdue-reminders", dependencies=[Depends(require_cron_secret)])
async def overdue_reminders():
    return await reminders.send_overdue_reminders()


@router.post("/task-reminders", dependencies=[Depends(require_cron_secret)])
async def task_reminders():
    return await reminders.send_overdue_task_reminders()


@router.get("/channels", dependencies=[Depends(get_current_admin)])
async def channel_health():
    """Delivery channel status (admins only)"""
    processor = NotificationProcessor()
    return {
        "enabled": processor.enabled_channels,
        "health": await processor.health_check(),
    }
