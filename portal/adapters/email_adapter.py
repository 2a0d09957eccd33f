"""Email notification adapter using the Emailit HTTP API.

Environment variables:
  EMAILIT_API_KEY
"""

import logging
from pathlib import Path
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader

from portal.config import EmailConfig

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

EMAILIT_SEND_URL = "https://api.emailit.com/v1/emails"


class EmailAdapter:
    """Emailit adapter for email notifications."""

    channel_name = "email"

    def __init__(self, config: EmailConfig, site_url: str = ""):
        self.config = config
        self.site_url = site_url.rstrip("/")
        self.last_error: Optional[str] = None
        self._jinja = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=True,
        )

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key.strip())

    def render(self, subject: str, text: str, link: Optional[str] = None) -> Optional[str]:
        """Render the HTML body, or None if the template is unusable."""
        try:
            template = self._jinja.get_template("notification_email.html")
            return template.render(
                subject=subject,
                paragraphs=[p for p in text.split("\n") if p.strip()],
                link=link,
                site_url=self.site_url,
            )
        except Exception as e:
            logger.warning(f"Template render failed, using plain: {e}")
            return None

    async def send_email(
        self, to: str, subject: str, text: str, link: Optional[str] = None
    ) -> bool:
        """Send an HTML email with a plain text alternative."""
        self.last_error = None
        payload = {
            "from": self.config.from_address,
            "to": to,
            "subject": subject,
            "text": text,
        }
        html = self.render(subject, text, link)
        if html:
            payload["html"] = html

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    EMAILIT_SEND_URL,
                    headers={
                        "Authorization": f"Bearer {self.config.api_key.strip()}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
            if resp.status_code in (200, 201, 202):
                logger.info(f"Email sent to {to}")
                return True
            self.last_error = f"Emailit Failed: {resp.text[:200]}"
            logger.warning(f"Email send failed for {to}: {self.last_error}")
            return False
        except Exception as e:
            self.last_error = f"Emailit Exception: {e}"
            logger.error(f"Email send failed: {e}")
            return False

    async def health_check(self) -> bool:
        return self.is_enabled
