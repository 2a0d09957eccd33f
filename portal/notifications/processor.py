"""Delivery of queued external notifications.

Handles:
- Provider discovery (Meta Cloud API first, WBIZTOOL as fallback)
- Quiet hours enforcement
- Email notification types (``*_email``)
- Error isolation (one failing notification doesn't block the batch)
"""

import logging
from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from portal.adapters import MessagingAdapter
from portal.adapters.email_adapter import EmailAdapter
from portal.adapters.meta_whatsapp import MetaWhatsAppAdapter
from portal.adapters.wbiztool import WbizToolAdapter
from portal.config import PortalConfig, get_config
from portal.db import get_session
from portal.db.models import PendingNotification, Profile
from portal.notifications import queue
from portal.notifications.messages import (
    EMAIL_SUFFIX,
    base_type,
    construct_message,
    email_subject,
    project_link,
)
from portal.notifications.phone import format_phone_number

logger = logging.getLogger(__name__)


class NotificationProcessor:
    """Drains ``pending_notifications`` through the configured providers."""

    def __init__(self, config: Optional[PortalConfig] = None):
        self.config = config or get_config()
        channels = self.config.notification.channels
        self.providers: list[MessagingAdapter] = self._init_providers()
        self.email = EmailAdapter(channels.email, site_url=self.config.site_url)

    def _init_providers(self) -> list[MessagingAdapter]:
        """WhatsApp providers in the order they are tried."""
        channels = self.config.notification.channels
        providers: list[MessagingAdapter] = []

        meta = MetaWhatsAppAdapter(channels.meta)
        if meta.is_enabled:
            providers.append(meta)

        wbiztool = WbizToolAdapter(channels.wbiztool)
        if wbiztool.is_enabled:
            providers.append(wbiztool)

        logger.info(
            f"Initialized {len(providers)} WhatsApp providers: "
            f"{[p.channel_name for p in providers]}"
        )
        return providers

    def _is_quiet_hours(self, now: Optional[datetime] = None) -> bool:
        """Check if we're in quiet hours (no external notifications)."""
        qh = self.config.notification.preferences.quiet_hours
        if not qh.enabled:
            return False
        try:
            tz = ZoneInfo(qh.timezone)
        except Exception:
            tz = ZoneInfo("UTC")

        current = (now.astimezone(tz) if now else datetime.now(tz)).time()
        start = time.fromisoformat(qh.start)
        end = time.fromisoformat(qh.end)

        # Handle overnight quiet hours (e.g., 22:00 - 07:00)
        if start > end:
            return current >= start or current <= end
        return start <= current <= end

    async def process_pending(self, force: bool = False) -> list[dict]:
        """Deliver one batch of due notifications.

        Args:
            force: If True, ignore quiet hours

        Returns:
            One result dict per claimed notification:
            ``{"id", "type", "status", "provider"?, "error"?}``
        """
        if not force and self._is_quiet_hours():
            logger.info("Quiet hours active, notifications deferred")
            return []

        if not self.providers:
            logger.warning("No WhatsApp provider configured, queue left untouched")
            return []

        limit = self.config.notification.preferences.batch_limit
        async with get_session() as session:
            rows = await queue.pop_pending(session, limit=limit)
            recipient_ids = {row.recipient_id for row in rows}
            profiles = {}
            if recipient_ids:
                result = await session.execute(
                    select(Profile).where(Profile.id.in_(recipient_ids))
                )
                profiles = {p.id: p for p in result.scalars()}

        if not rows:
            logger.info("No pending notifications")
            return []

        logger.info(f"Processing {len(rows)} pending notifications")
        results = []
        for row in rows:
            try:
                result = await self._process_one(row, profiles.get(row.recipient_id))
            except Exception as e:
                logger.error(f"Notification {row.id} failed: {e}", exc_info=True)
                queue.mark_failed(row, str(e))
                result = {"id": row.id, "type": row.notification_type,
                          "status": row.status, "error": str(e)}
            results.append(result)

        async with get_session() as session:
            for row in rows:
                await session.merge(row)

        sent = sum(1 for r in results if r["status"] == "completed")
        logger.info(f"Processed {len(results)} notifications: {sent} completed")
        return results

    async def _process_one(
        self, row: PendingNotification, recipient: Optional[Profile]
    ) -> dict:
        if row.notification_type.endswith(EMAIL_SUFFIX):
            return await self._process_email(row, recipient)

        result = {"id": row.id, "type": row.notification_type}

        if recipient is None or not recipient.phone:
            queue.mark_failed(row, "No phone number")
            return {**result, "status": row.status, "error": row.error_message}

        phone = format_phone_number(recipient.phone)
        if phone is None:
            queue.mark_failed(row, "Invalid phone number")
            return {**result, "status": row.status, "error": row.error_message}

        context = row.context_data or {}
        text = context.get("message") or construct_message(
            row.notification_type, context, self.config.site_url
        )

        errors = []
        for provider in self.providers:
            if await provider.send(phone, text):
                queue.mark_completed(row)
                return {**result, "status": row.status, "provider": provider.channel_name}
            errors.append(provider.last_error or f"{provider.channel_name} failed")

        queue.mark_failed(row, " | ".join(errors))
        logger.warning(f"Notification {row.id} to {phone} failed: {row.error_message}")
        return {**result, "status": row.status, "error": row.error_message}

    async def _process_email(
        self, row: PendingNotification, recipient: Optional[Profile]
    ) -> dict:
        result = {"id": row.id, "type": row.notification_type}

        if not self.email.is_enabled:
            # Delivered by another channel
            queue.mark_completed(row)
            return {**result, "status": row.status, "provider": None}

        if recipient is None or not recipient.email:
            queue.mark_failed(row, "No email address")
            return {**result, "status": row.status, "error": row.error_message}

        context = row.context_data or {}
        notification_type = base_type(row.notification_type)
        text = context.get("message") or construct_message(
            notification_type, context, self.config.site_url
        )
        text = text.replace("*", "")
        link = context.get("link") or project_link(
            self.config.site_url, context.get("project_slug")
        )

        if await self.email.send_email(
            recipient.email, email_subject(notification_type, context), text, link
        ):
            queue.mark_completed(row)
            return {**result, "status": row.status, "provider": self.email.channel_name}

        queue.mark_failed(row, self.email.last_error or "email failed")
        return {**result, "status": row.status, "error": row.error_message}

    async def health_check(self) -> dict[str, bool]:
        """Check health of all configured channels."""
        results = {}
        for adapter in [*self.providers, self.email]:
            try:
                results[adapter.channel_name] = await adapter.health_check()
            except Exception:
                results[adapter.channel_name] = False
        return results

    @property
    def enabled_channels(self) -> list[str]:
        names = [p.channel_name for p in self.providers]
        if self.email.is_enabled:
            names.append(self.email.channel_name)
        return names
