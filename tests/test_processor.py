"""Tests for NotificationProcessor (providers mocked)."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from portal.config import (
    ChannelsConfig,
    EmailConfig,
    MetaWhatsAppConfig,
    NotificationConfig,
    QuietHours,
    WbizToolConfig,
)
from portal.db import get_session
from portal.db.models import DeliveryStatus, PendingNotification
from portal.notifications import queue
from portal.notifications.processor import NotificationProcessor


def _provider(name: str, ok: bool, error: str = None) -> MagicMock:
    provider = MagicMock()
    provider.channel_name = name
    provider.last_error = None

    async def send(to, text):
        provider.last_error = None if ok else error
        return ok

    provider.send = AsyncMock(side_effect=send)
    return provider


async def _enqueue(recipient_id: str, notification_type: str = "task_assignment", **context):
    async with get_session() as session:
        row = await queue.enqueue(
            session, recipient_id=recipient_id, notification_type=notification_type,
            context=context or {"project_name": "Gala", "task_title": "Book venue"},
        )
        return row.id


async def _row(row_id: int) -> PendingNotification:
    async with get_session() as session:
        return await session.scalar(select(PendingNotification).where(PendingNotification.id == row_id))


class TestProviderSetup:
    def test_no_credentials_no_providers(self, test_config):
        processor = NotificationProcessor(test_config)
        assert processor.providers == []
        assert processor.enabled_channels == []

    def test_meta_tried_before_wbiztool(self, test_config):
        test_config.notification = NotificationConfig(
            channels=ChannelsConfig(
                meta=MetaWhatsAppConfig(phone_id="1", access_token="t"),
                wbiztool=WbizToolConfig(client_id="c", api_key="k", whatsapp_client_id="w"),
                email=EmailConfig(api_key="e"),
            )
        )
        processor = NotificationProcessor(test_config)
        assert [p.channel_name for p in processor.providers] == ["meta", "wbiztool"]
        assert processor.enabled_channels == ["meta", "wbiztool", "email"]


class TestQuietHours:
    def test_disabled_by_default(self, test_config):
        assert NotificationProcessor(test_config)._is_quiet_hours() is False

    def test_overnight_window(self, test_config):
        test_config.notification.preferences.quiet_hours = QuietHours(
            enabled=True, start="22:00", end="07:00", timezone="Asia/Jakarta"
        )
        processor = NotificationProcessor(test_config)
        # 16:00 UTC = 23:00 WIB
        assert processor._is_quiet_hours(datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc))
        # 05:00 UTC = 12:00 WIB
        assert not processor._is_quiet_hours(datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc))

    @pytest.mark.asyncio
    @patch("portal.notifications.processor.NotificationProcessor._is_quiet_hours", return_value=True)
    async def test_quiet_hours_defer_batch(self, mock_qh, test_config, users):
        row_id = await _enqueue(users["bob"])
        processor = NotificationProcessor(test_config)
        processor.providers = [_provider("meta", True)]

        assert await processor.process_pending() == []
        assert (await _row(row_id)).status == DeliveryStatus.PENDING.value

        results = await processor.process_pending(force=True)
        assert results[0]["status"] == "completed"


class TestProcessPending:
    @pytest.mark.asyncio
    async def test_no_provider_leaves_queue_untouched(self, test_config, users):
        row_id = await _enqueue(users["bob"])
        assert await NotificationProcessor(test_config).process_pending() == []
        assert (await _row(row_id)).status == DeliveryStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_meta_success(self, test_config, users):
        row_id = await _enqueue(users["bob"])
        processor = NotificationProcessor(test_config)
        meta, wbiz = _provider("meta", True), _provider("wbiztool", True)
        processor.providers = [meta, wbiz]

        results = await processor.process_pending()

        assert results == [
            {"id": row_id, "type": "task_assignment", "status": "completed", "provider": "meta"}
        ]
        phone, text = meta.send.call_args.args
        assert phone == "6281333334444"
        assert "*Book venue*" in text
        wbiz.send.assert_not_called()
        row = await _row(row_id)
        assert row.status == DeliveryStatus.COMPLETED.value
        assert row.processed_at is not None

    @pytest.mark.asyncio
    async def test_falls_back_to_wbiztool(self, test_config, users):
        row_id = await _enqueue(users["bob"])
        processor = NotificationProcessor(test_config)
        processor.providers = [
            _provider("meta", False, "Meta Failed: 190: bad token"),
            _provider("wbiztool", True),
        ]
        results = await processor.process_pending()
        assert results[0]["provider"] == "wbiztool"
        assert (await _row(row_id)).status == DeliveryStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, test_config, users):
        row_id = await _enqueue(users["bob"])
        processor = NotificationProcessor(test_config)
        processor.providers = [
            _provider("meta", False, "Meta Failed: 190: bad token"),
            _provider("wbiztool", False, "WBIZTOOL Failed: invalid client"),
        ]
        results = await processor.process_pending()

        assert results[0]["status"] == "failed"
        row = await _row(row_id)
        assert row.status == DeliveryStatus.FAILED.value
        assert row.error_message == "Meta Failed: 190: bad token | WBIZTOOL Failed: invalid client"
        assert row.retry_count == 1

    @pytest.mark.asyncio
    async def test_missing_and_invalid_phone(self, test_config, users):
        from portal.db.models import Profile

        no_phone = await _enqueue(users["carol"])
        async with get_session() as session:
            bob = await session.get(Profile, users["bob"])
            bob.phone = "12345"
        bad_phone = await _enqueue(users["bob"])

        processor = NotificationProcessor(test_config)
        provider = _provider("meta", True)
        processor.providers = [provider]
        await processor.process_pending()

        assert (await _row(no_phone)).error_message == "No phone number"
        assert (await _row(bad_phone)).error_message == "Invalid phone number"
        provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_precomposed_message_used_verbatim(self, test_config, users):
        await _enqueue(users["bob"], "billing_reminder", message="Custom text from writer")
        processor = NotificationProcessor(test_config)
        provider = _provider("meta", True)
        processor.providers = [provider]
        await processor.process_pending()
        assert provider.send.call_args.args[1] == "Custom text from writer"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_batch(self, test_config, users):
        first = await _enqueue(users["bob"])
        second = await _enqueue(users["alice"])
        processor = NotificationProcessor(test_config)
        provider = _provider("meta", True)
        provider.send = AsyncMock(side_effect=[RuntimeError("boom"), True])
        processor.providers = [provider]

        results = await processor.process_pending()

        assert [r["status"] for r in results] == ["failed", "completed"]
        assert (await _row(first)).error_message == "boom"
        assert (await _row(second)).status == DeliveryStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_batch_limit(self, test_config, users):
        test_config.notification.preferences.batch_limit = 2
        for _ in range(3):
            await _enqueue(users["bob"])
        processor = NotificationProcessor(test_config)
        processor.providers = [_provider("meta", True)]
        assert len(await processor.process_pending()) == 2
        assert len(await processor.process_pending()) == 1


class TestEmailNotifications:
    @pytest.mark.asyncio
    async def test_email_disabled_marks_completed(self, test_config, users):
        row_id = await _enqueue(users["bob"], "task_overdue_email", task_title="Call client")
        processor = NotificationProcessor(test_config)
        processor.providers = [_provider("meta", True)]
        results = await processor.process_pending()
        assert results[0]["status"] == "completed"
        assert results[0]["provider"] is None
        assert (await _row(row_id)).status == DeliveryStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_email_sent_without_markdown(self, test_config, users):
        test_config.notification.channels.email = EmailConfig(api_key="e")
        await _enqueue(
            users["bob"], "task_overdue_email",
            task_title="Call client", project_name="Gala", project_slug="gala",
        )
        processor = NotificationProcessor(test_config)
        processor.providers = [_provider("meta", True)]
        processor.email.send_email = AsyncMock(return_value=True)

        results = await processor.process_pending()

        assert results[0]["provider"] == "email"
        to, subject, text, link = processor.email.send_email.call_args.args
        assert to == "bob@example.com"
        assert subject == "Task overdue: Call client"
        assert "*" not in text
        assert link == "https://portal.test/projects/gala"
