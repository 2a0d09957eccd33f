"""
Billing API Endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth import get_current_user
from portal.billing import service
from portal.db import get_db
from portal.db.models import Profile
from portal.models import BillingStats, Invoice, PaymentStatusUpdate

router = APIRouter()


@router.get("/invoices", response_model=list[Invoice])
async def list_invoices(
    status: Optional[str] = None,
    q: str = "",
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return await service.list_invoices(db, current_user.id, status=status, search=q)


@router.get("/stats", response_model=BillingStats)
async def billing_stats(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    invoices = await service.list_invoices(db, current_user.id)
    return service.billing_stats(invoices, today=date.today())


@router.patch("/invoices/{project_id}/status", response_model=Invoice)
async def update_payment_status(
    project_id: str,
    update: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    invoice = await service.update_payment_status(db, project_id, current_user.id, update)
    await db.commit()
    return invoice
