"""Invoices view over project billing fields, plus payment status updates."""

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.db.models import PaymentStatus, Profile, Project, ProjectMember
from portal.errors import NotFoundError, PermissionDeniedError
from portal.models import BillingStats, Invoice, PaymentStatusUpdate, UserRef
from portal.notifications import inbox, queue

logger = logging.getLogger(__name__)

# Statuses that never count as outstanding
CLOSED_STATUSES = {
    PaymentStatus.PAID.value,
    PaymentStatus.CANCELLED.value,
    PaymentStatus.BID_LOST.value,
}

SEARCH_FIELDS = ("project_name", "invoice_number", "po_number", "client_name", "client_company_name")


def invoice_from_project(project: Project) -> Invoice:
    return Invoice(
        id=project.id,
        project_id=project.id,
        project_name=project.name,
        project_slug=project.slug,
        amount=project.budget or 0.0,
        status=project.payment_status,
        invoice_number=project.invoice_number,
        po_number=project.po_number,
        due_date=project.payment_due_date,
        paid_date=project.paid_date,
        client_name=project.client_name,
        client_company_name=project.client_company_name,
        project_owner=UserRef.from_profile(project.creator) if project.creator else None,
        last_billing_reminder_sent_at=project.last_billing_reminder_sent_at,
    )


def days_until_due(invoice: Invoice, today: Optional[date] = None) -> Optional[int]:
    """Negative when past due, None without a due date."""
    if invoice.due_date is None:
        return None
    return (invoice.due_date - (today or date.today())).days


def is_overdue(invoice: Invoice, today: Optional[date] = None) -> bool:
    if invoice.status in CLOSED_STATUSES:
        return False
    if invoice.status == PaymentStatus.OVERDUE.value:
        return True
    days = days_until_due(invoice, today)
    return days is not None and days < 0


def billing_stats(invoices: Iterable[Invoice], today: Optional[date] = None) -> BillingStats:
    stats = BillingStats()
    for invoice in invoices:
        if invoice.status in (PaymentStatus.CANCELLED.value, PaymentStatus.BID_LOST.value):
            continue
        stats.invoice_count += 1
        stats.total_amount += invoice.amount
        if invoice.status == PaymentStatus.PAID.value:
            stats.paid_count += 1
            stats.paid_amount += invoice.amount
            continue
        stats.outstanding_count += 1
        stats.outstanding_amount += invoice.amount
        if is_overdue(invoice, today):
            stats.overdue_count += 1
            stats.overdue_amount += invoice.amount
    return stats


def _matches(invoice: Invoice, term: str) -> bool:
    needle = term.strip().casefold()
    if not needle:
        return True
    return any(
        needle in str(getattr(invoice, name) or "").casefold() for name in SEARCH_FIELDS
    )


async def list_invoices(
    session: AsyncSession,
    user_id: str,
    status: Optional[str] = None,
    search: str = "",
) -> list[Invoice]:
    """Invoices of the user's projects, soonest due first."""
    member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
    stmt = (
        select(Project)
        .where(
            or_(
                Project.created_by == user_id,
                Project.personal_for_user_id == user_id,
                Project.id.in_(member_of),
            ),
            or_(Project.invoice_number.is_not(None), Project.payment_due_date.is_not(None)),
        )
        .options(selectinload(Project.creator))
    )
    if status:
        stmt = stmt.where(Project.payment_status == status)
    projects = (await session.execute(stmt)).scalars().all()

    invoices = [invoice_from_project(p) for p in projects]
    invoices = [i for i in invoices if _matches(i, search)]
    invoices.sort(key=lambda i: (i.due_date is None, i.due_date or date.max, i.project_name.casefold()))
    return invoices


async def update_payment_status(
    session: AsyncSession, project_id: str, user_id: str, update: PaymentStatusUpdate
) -> Invoice:
    project = await session.scalar(
        select(Project)
        .where(Project.id == project_id)
        .options(
            selectinload(Project.creator),
            selectinload(Project.members).selectinload(ProjectMember.user),
        )
    )
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")
    member_ids = {m.user_id for m in project.members}
    if user_id not in {project.created_by, project.personal_for_user_id, *member_ids}:
        raise PermissionDeniedError("Not a member of this project")

    old_status = project.payment_status
    project.payment_status = update.payment_status
    if update.payment_status == PaymentStatus.PAID.value:
        project.paid_date = update.paid_date or project.paid_date or date.today()
    elif update.paid_date is not None:
        project.paid_date = update.paid_date
    await session.flush()

    if old_status != update.payment_status:
        updater = await session.get(Profile, user_id)
        updater_name = updater.full_name if updater else "Someone"
        recipients = sorted({project.created_by, *member_ids} - {user_id})
        await inbox.create_notification(
            session,
            type="payment_status_updated",
            title=f"Payment status for {project.name}: {update.payment_status}",
            body=f"Updated by {updater_name}",
            recipients=recipients,
            actor_id=user_id,
            resource_type="project",
            resource_id=project.id,
            data={
                "link": f"/projects/{project.slug}",
                "old_status": old_status,
                "new_status": update.payment_status,
            },
        )
        for recipient_id in recipients:
            await queue.enqueue(
                session,
                recipient_id=recipient_id,
                notification_type="payment_status_updated",
                context={
                    "project_name": project.name,
                    "project_slug": project.slug,
                    "new_status": update.payment_status,
                    "updater_name": updater_name,
                },
            )
        logger.info(
            f"Payment status of {project.slug}: {old_status} -> {update.payment_status} "
            f"({len(recipients)} notified)"
        )

    return invoice_from_project(project)
