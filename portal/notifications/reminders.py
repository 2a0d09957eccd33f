"""Scheduled reminder jobs.

Each job scans the database once, queues external notifications through
``portal.notifications.queue`` and returns a summary dict. Delivery
happens later in ``NotificationProcessor``.
"""

import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from portal.adapters.ai_writer import AIWriter
from portal.config import PortalConfig, get_config
from portal.db import get_session
from portal.db.models import (
    BillingReminderLog,
    MemberRole,
    PaymentStatus,
    Profile,
    Project,
    ProjectMember,
    Task,
    TaskAssignee,
    utcnow,
)
from portal.notifications import queue
from portal.notifications.messages import project_link
from portal.notifications.preferences import channel_enabled, is_enabled

logger = logging.getLogger(__name__)

BILLING_EXCLUDED_STATUSES = (
    PaymentStatus.PAID.value,
    PaymentStatus.CANCELLED.value,
    PaymentStatus.BID_LOST.value,
)

OVERDUE_STATUSES = (
    PaymentStatus.PROPOSED.value,
    PaymentStatus.OVERDUE.value,
    PaymentStatus.PENDING.value,
    PaymentStatus.IN_PROCESS.value,
)

# Overdue invoice reminders only go out for these statuses unless the
# recipient's billing_reminder preference lists others.
DEFAULT_REMINDER_STATUSES = [PaymentStatus.OVERDUE.value]


def local_today(config: PortalConfig) -> date:
    """Today in the portal's home timezone."""
    try:
        tz = ZoneInfo(config.notification.preferences.quiet_hours.timezone)
    except Exception:
        tz = ZoneInfo("UTC")
    return datetime.now(tz).date()


def overdue_reminder_type(days_overdue: int) -> Optional[str]:
    """Which reminder (if any) is due after ``days_overdue`` days.

    >>> overdue_reminder_type(10)
    'overdue_weekly'
    """
    if days_overdue == 0:
        return "due_date"
    if days_overdue == 3:
        return "overdue_3_days"
    if days_overdue > 3 and (days_overdue - 3) % 7 == 0:
        return "overdue_weekly"
    return None


def _project_recipients(project: Project) -> list[Profile]:
    """Project creator plus project admins, without duplicates."""
    recipients = {project.creator.id: project.creator} if project.creator else {}
    for member in project.members:
        if member.role == MemberRole.ADMIN.value and member.user is not None:
            recipients.setdefault(member.user.id, member.user)
    return list(recipients.values())


def _billing_prefs(profile: Profile) -> dict:
    prefs = (profile.notification_preferences or {}).get("billing_reminder")
    return prefs if isinstance(prefs, dict) else {}


def _project_query():
    return select(Project).options(
        selectinload(Project.creator),
        selectinload(Project.members).selectinload(ProjectMember.user),
    )


# --- Upcoming billing (payment due in N days) ---


async def send_billing_reminders(
    config: Optional[PortalConfig] = None,
    today: Optional[date] = None,
    writer: Optional[AIWriter] = None,
) -> dict:
    config = config or get_config()
    today = today or local_today(config)
    writer = writer or AIWriter(config.ai)
    reminder_days = set(config.notification.preferences.billing_reminder_days)

    logger.info(f"Billing reminders: checking invoices due in {sorted(reminder_days)} days")
    summary = {"processed_projects": 0, "queued_notifications": 0, "skipped": 0}

    async with get_session() as session:
        result = await session.execute(
            _project_query().where(
                Project.payment_due_date.is_not(None),
                Project.payment_status.not_in(BILLING_EXCLUDED_STATUSES),
            )
        )
        projects = result.scalars().all()

        for project in projects:
            days_until_due = (project.payment_due_date - today).days
            if days_until_due not in reminder_days:
                continue
            summary["processed_projects"] += 1
            link = project_link(config.site_url, project.slug)

            for profile in _project_recipients(project):
                if not profile.phone or not is_enabled(
                    profile.notification_preferences, "billing_reminder"
                ):
                    summary["skipped"] += 1
                    continue

                text = await writer.billing_reminder(
                    profile.first_name or profile.full_name,
                    project.name,
                    days_until_due,
                    project.budget,
                    link,
                )
                row = await queue.enqueue(
                    session,
                    recipient_id=profile.id,
                    notification_type="billing_reminder",
                    context={
                        "message": text,
                        "project_id": project.id,
                        "project_name": project.name,
                        "project_slug": project.slug,
                        "days_until_due": days_until_due,
                    },
                    debounce_key=f"billing_due:{project.id}:{today.isoformat()}",
                )
                if row is None:
                    summary["skipped"] += 1
                else:
                    summary["queued_notifications"] += 1

            project.last_billing_reminder_sent_at = utcnow()

    logger.info(f"Billing reminders done: {summary}")
    return summary


# --- Overdue invoices ---


async def send_overdue_reminders(
    config: Optional[PortalConfig] = None, today: Optional[date] = None
) -> dict:
    config = config or get_config()
    today = today or local_today(config)

    logger.info("Overdue reminders: fetching overdue invoices")
    summary = {"processed_invoices": 0, "queued_notifications": 0, "skipped": 0}

    async with get_session() as session:
        result = await session.execute(
            _project_query().where(
                Project.payment_due_date.is_not(None),
                Project.payment_status.in_(OVERDUE_STATUSES),
            )
        )
        projects = result.scalars().all()
        summary["processed_invoices"] = len(projects)

        for project in projects:
            days_overdue = (today - project.payment_due_date).days
            reminder_type = overdue_reminder_type(days_overdue)
            if reminder_type is None:
                continue

            already_sent = await session.scalar(
                select(BillingReminderLog.id).where(
                    BillingReminderLog.project_id == project.id,
                    BillingReminderLog.reminder_type == reminder_type,
                    BillingReminderLog.sent_on == today,
                )
            )
            if already_sent is not None:
                continue

            context = {
                "project_id": project.id,
                "project_name": project.name,
                "project_slug": project.slug,
                "invoice_number": project.invoice_number,
                "days_overdue": days_overdue,
            }
            for profile in _project_recipients(project):
                prefs = profile.notification_preferences
                statuses = _billing_prefs(profile).get("statuses") or DEFAULT_REMINDER_STATUSES
                if not is_enabled(prefs, "billing_reminder") or project.payment_status not in statuses:
                    summary["skipped"] += 1
                    continue

                types = []
                if profile.phone and channel_enabled(prefs, "billing_reminder", "whatsapp"):
                    types.append("billing_reminder")
                if profile.email and channel_enabled(prefs, "billing_reminder", "email"):
                    types.append("billing_reminder_email")
                if not types:
                    summary["skipped"] += 1
                    continue

                for notification_type in types:
                    await queue.enqueue(
                        session,
                        recipient_id=profile.id,
                        notification_type=notification_type,
                        context=context,
                    )
                    summary["queued_notifications"] += 1

            # Logged even when every recipient opted out
            session.add(
                BillingReminderLog(
                    project_id=project.id, reminder_type=reminder_type, sent_on=today
                )
            )
            await session.flush()

    logger.info(f"Overdue reminders done: {summary}")
    return summary


# --- Overdue tasks ---


async def send_overdue_task_reminders(
    config: Optional[PortalConfig] = None, today: Optional[date] = None
) -> dict:
    config = config or get_config()
    today = today or local_today(config)

    logger.info("Task reminders: fetching overdue tasks")
    summary = {"processed_tasks": 0, "notifications_created": 0, "skipped": 0}

    async with get_session() as session:
        result = await session.execute(
            select(TaskAssignee)
            .join(TaskAssignee.task)
            .where(
                Task.completed.is_(False),
                Task.due_date.is_not(None),
                Task.due_date < today,
            )
            .options(
                selectinload(TaskAssignee.task).selectinload(Task.project),
                selectinload(TaskAssignee.user),
            )
        )
        assignments = result.scalars().all()
        summary["processed_tasks"] = len(assignments)

        for assignment in assignments:
            task, profile = assignment.task, assignment.user
            prefs = profile.notification_preferences
            if not is_enabled(prefs, "task_overdue"):
                summary["skipped"] += 1
                continue

            debounce_key = f"task_overdue:{task.id}:{today.isoformat()}"
            context = {
                "task_id": task.id,
                "task_title": task.title,
                "project_id": task.project_id,
                "project_name": task.project.name,
                "project_slug": task.project.slug,
                "days_overdue": (today - task.due_date).days,
                "debounce_key": debounce_key,
            }

            for channel, notification_type in (
                ("whatsapp", "task_overdue"),
                ("email", "task_overdue_email"),
            ):
                if not channel_enabled(prefs, "task_overdue", channel):
                    continue
                row = await queue.enqueue(
                    session,
                    recipient_id=profile.id,
                    notification_type=notification_type,
                    context=context,
                    debounce_key=debounce_key,
                )
                if row is None:
                    summary["skipped"] += 1
                else:
                    summary["notifications_created"] += 1

    logger.info(f"Task reminders done: {summary}")
    return summary
