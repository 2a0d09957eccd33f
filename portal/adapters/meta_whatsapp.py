"""WhatsApp notification adapter via the Meta Cloud API.

Sends plain text messages from the configured business phone number.
No SDK dependency, just a Graph API POST via httpx.
"""

import logging
from typing import Optional

import httpx

from portal.config import MetaWhatsAppConfig

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.facebook.com"


class MetaWhatsAppAdapter:
    """Meta (Graph API) WhatsApp adapter."""

    channel_name = "meta"

    def __init__(self, config: MetaWhatsAppConfig):
        self.config = config
        self.last_error: Optional[str] = None

    @property
    def is_enabled(self) -> bool:
        return (
            self.config.enabled
            and bool(self.config.phone_id.strip())
            and bool(self.config.access_token.strip())
        )

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API}/{self.config.api_version}/{self.config.phone_id.strip()}/messages"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token.strip()}",
            "Content-Type": "application/json",
        }

    async def send(self, to: str, text: str) -> bool:
        self.last_error = None
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.messages_url,
                    headers=self.headers,
                    json={
                        "messaging_product": "whatsapp",
                        "to": to,
                        "type": "text",
                        "text": {"body": text},
                    },
                )
            if resp.status_code in (200, 201):
                logger.info(f"Meta WhatsApp sent to {to}")
                return True
            self.last_error = f"Meta Failed: {self._error_message(resp)}"
            logger.warning(f"Meta send failed for {to}: {self.last_error}")
            return False
        except Exception as e:
            self.last_error = f"Meta Exception: {e}"
            logger.error(f"Meta send failed for {to}: {e}")
            return False

    async def health_check(self) -> bool:
        if not self.is_enabled:
            return False
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{GRAPH_API}/{self.config.api_version}/{self.config.phone_id.strip()}",
                    headers=self.headers,
                )
                return resp.status_code == 200
        except Exception:
            return False

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        error = data.get("error") or {} if isinstance(data, dict) else {}
        message = error.get("message") or resp.text
        code = error.get("code")
        return f"{code}: {message}" if code else message
