"""WhatsApp notification adapter via WBIZTOOL.

Used as the fallback provider when the Meta Cloud API is not configured
or rejects a message.
"""

import logging
from typing import Optional

import httpx

from portal.config import WbizToolConfig

logger = logging.getLogger(__name__)

WBIZTOOL_API = "https://wbiztool.com/api/v1"


class WbizToolAdapter:
    """WBIZTOOL WhatsApp adapter."""

    channel_name = "wbiztool"

    def __init__(self, config: WbizToolConfig):
        self.config = config
        self.last_error: Optional[str] = None

    @property
    def is_enabled(self) -> bool:
        return (
            self.config.enabled
            and bool(self.config.client_id.strip())
            and bool(self.config.api_key.strip())
            and bool(self.config.whatsapp_client_id.strip())
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Client-ID": self.config.client_id.strip(),
            "X-Api-Key": self.config.api_key.strip(),
        }

    def _credentials(self) -> dict[str, str]:
        return {
            "client_id": self.config.client_id.strip(),
            "api_key": self.config.api_key.strip(),
        }

    async def send(self, to: str, text: str) -> bool:
        self.last_error = None
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    f"{WBIZTOOL_API}/send_msg/",
                    headers=self.headers,
                    json={
                        **self._credentials(),
                        "whatsapp_client": self.config.whatsapp_client_id.strip(),
                        "phone": to,
                        "message": text,
                    },
                )
            if resp.status_code in (200, 201):
                logger.info(f"WBIZTOOL WhatsApp sent to {to}")
                return True
            self.last_error = f"WBIZTOOL Failed: {resp.text[:100]}"
            logger.warning(f"WBIZTOOL send failed for {to}: {self.last_error}")
            return False
        except Exception as e:
            self.last_error = f"WBIZTOOL Exception: {e}"
            logger.error(f"WBIZTOOL send failed for {to}: {e}")
            return False

    async def check_number(self, phone: str) -> bool:
        """Ask WBIZTOOL whether a number is registered on WhatsApp."""
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{WBIZTOOL_API}/check_wa/",
                headers=self.headers,
                json={**self._credentials(), "phone": phone},
            )
            resp.raise_for_status()
            data = resp.json()
        return bool(data.get("exists") or data.get("status") == 1)

    async def health_check(self) -> bool:
        """WBIZTOOL has no health endpoint; verify credentials are set."""
        return self.is_enabled
