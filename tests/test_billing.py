"""Tests for the billing service."""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from conftest import make_project
from portal.billing import service
from portal.db import get_session
from portal.db.models import PendingNotification
from portal.errors import NotFoundError, PermissionDeniedError
from portal.models import Invoice, PaymentStatusUpdate
from portal.notifications import inbox

TODAY = date(2026, 3, 10)


def invoice(status: str, amount: float, due: date = None) -> Invoice:
    return Invoice(id="p", project_id="p", project_name="P", project_slug="p",
                   status=status, amount=amount, due_date=due)


class TestOverdue:
    def test_days_until_due(self):
        assert service.days_until_due(invoice("Unpaid", 1, TODAY + timedelta(days=3)), TODAY) == 3
        assert service.days_until_due(invoice("Unpaid", 1), TODAY) is None

    def test_is_overdue(self):
        assert service.is_overdue(invoice("Unpaid", 1, TODAY - timedelta(days=1)), TODAY)
        assert service.is_overdue(invoice("Overdue", 1), TODAY)
        assert not service.is_overdue(invoice("Paid", 1, TODAY - timedelta(days=30)), TODAY)
        assert not service.is_overdue(invoice("Unpaid", 1, TODAY), TODAY)

    def test_stats(self):
        stats = service.billing_stats([
            invoice("Paid", 100),
            invoice("Unpaid", 200, TODAY + timedelta(days=5)),
            invoice("Unpaid", 300, TODAY - timedelta(days=5)),
            invoice("Cancelled", 1000),
            invoice("Bid Lost", 1000),
        ], TODAY)
        assert stats.invoice_count == 3
        assert stats.total_amount == 600
        assert (stats.paid_count, stats.paid_amount) == (1, 100)
        assert (stats.outstanding_count, stats.outstanding_amount) == (2, 500)
        assert (stats.overdue_count, stats.overdue_amount) == (1, 300)


class TestInvoices:
    @pytest.mark.asyncio
    async def test_list_invoices(self, users):
        async with get_session() as session:
            await make_project(session, users["alice"], "Later", member_ids=[users["bob"]],
                               invoice_number="INV-2", payment_due_date=TODAY + timedelta(days=20),
                               client_name="PT Maju")
            await make_project(session, users["alice"], "Sooner", payment_due_date=TODAY,
                               payment_status="Unpaid")
            await make_project(session, users["alice"], "Undated", invoice_number="INV-3")
            await make_project(session, users["alice"], "No Billing")
            await make_project(session, users["carol"], "Carol's", invoice_number="INV-9")

            mine = await service.list_invoices(session, users["alice"])
            bobs = await service.list_invoices(session, users["bob"])
            unpaid = await service.list_invoices(session, users["alice"], status="Unpaid")
            by_client = await service.list_invoices(session, users["alice"], search="maju")

        assert [i.project_name for i in mine] == ["Sooner", "Later", "Undated"]
        assert mine[0].project_owner.id == users["alice"]
        assert [i.project_name for i in bobs] == ["Later"]
        assert [i.project_name for i in unpaid] == ["Sooner"]
        assert [i.invoice_number for i in by_client] == ["INV-2"]

    @pytest.mark.asyncio
    async def test_mark_paid_notifies_others(self, users):
        async with get_session() as session:
            project = await make_project(session, users["alice"], "Gala", member_ids=[users["bob"]],
                                         payment_due_date=TODAY)
            updated = await service.update_payment_status(
                session, project.id, users["bob"], PaymentStatusUpdate(payment_status="Paid")
            )
            assert updated.status == "Paid"
            assert updated.paid_date == date.today()

            alice_inbox = await inbox.list_notifications(session, users["alice"])
            bob_inbox = await inbox.list_notifications(session, users["bob"])
            pending = (await session.execute(select(PendingNotification))).scalars().all()

        assert alice_inbox[0].type == "payment_status_updated"
        assert bob_inbox == []
        assert [(p.recipient_id, p.notification_type) for p in pending] == [
            (users["alice"], "payment_status_updated")
        ]
        assert pending[0].context_data["updater_name"] == "Bob Brown"

    @pytest.mark.asyncio
    async def test_same_status_is_silent(self, users):
        async with get_session() as session:
            project = await make_project(session, users["alice"], "Gala", member_ids=[users["bob"]])
            await service.update_payment_status(
                session, project.id, users["alice"], PaymentStatusUpdate(payment_status="Proposed")
            )
            assert await inbox.unread_count(session, users["bob"]) == 0

    @pytest.mark.asyncio
    async def test_access(self, users):
        async with get_session() as session:
            project = await make_project(session, users["alice"], "Gala")
            with pytest.raises(PermissionDeniedError):
                await service.update_payment_status(
                    session, project.id, users["carol"], PaymentStatusUpdate(payment_status="Paid")
                )
            with pytest.raises(NotFoundError):
                await service.update_payment_status(
                    session, "missing", users["alice"], PaymentStatusUpdate(payment_status="Paid")
                )

    @pytest.mark.asyncio
    async def test_personal_project_visible_to_its_user(self, users):
        async with get_session() as session:
            project = await make_project(session, users["alice"], "For Carol", invoice_number="INV-7",
                                         personal_for_user_id=users["carol"])
            invoices = await service.list_invoices(session, users["carol"])
            updated = await service.update_payment_status(
                session, project.id, users["carol"], PaymentStatusUpdate(payment_status="Unpaid")
            )

        assert [i.invoice_number for i in invoices] == ["INV-7"]
        assert updated.status == "Unpaid"
