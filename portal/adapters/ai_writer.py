"""Short reminder texts written by an Anthropic model.

Falls back to a fixed template whenever the API is not configured or
does not answer, so reminders are always sent.
"""

import logging
from typing import Optional

import httpx

from portal.config import AIConfig

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def _due_phrase(days_until_due: int) -> str:
    if days_until_due == 0:
        return "is due today"
    if days_until_due == 1:
        return "is due tomorrow"
    return f"is due in {days_until_due} days"


def fallback_billing_reminder(
    recipient_name: str,
    project_name: str,
    days_until_due: int,
    amount: Optional[float] = None,
    link: str = "",
) -> str:
    amount_text = f" (amount: {amount:,.0f})" if amount else ""
    text = (
        f"Hi {recipient_name}, the invoice for *{project_name}*{amount_text} "
        f"{_due_phrase(days_until_due)}. Please make sure it is followed up."
    )
    if link:
        text += f"\n\nView project: {link}"
    return text


class AIWriter:
    """Writes friendly billing reminder messages."""

    def __init__(self, config: AIConfig):
        self.config = config

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key.strip())

    def _prompt(self, recipient_name: str, project_name: str, days_until_due: int,
                amount: Optional[float]) -> str:
        amount_text = f"The invoice amount is {amount:,.0f}. " if amount else ""
        return (
            f"Write a short, friendly WhatsApp reminder (max 3 sentences) to "
            f"{recipient_name} that the invoice for the project \"{project_name}\" "
            f"{_due_phrase(days_until_due)}. {amount_text}"
            f"Use WhatsApp markdown (*bold*) for the project name. "
            f"Reply with the message text only."
        )

    async def billing_reminder(
        self,
        recipient_name: str,
        project_name: str,
        days_until_due: int,
        amount: Optional[float] = None,
        link: str = "",
    ) -> str:
        fallback = fallback_billing_reminder(
            recipient_name, project_name, days_until_due, amount, link
        )
        if not self.is_enabled:
            return fallback

        try:
            async with httpx.AsyncClient(timeout=30) as client:
                resp = await client.post(
                    ANTHROPIC_MESSAGES_URL,
                    headers={
                        "x-api-key": self.config.api_key.strip(),
                        "anthropic-version": ANTHROPIC_VERSION,
                        "content-type": "application/json",
                    },
                    json={
                        "model": self.config.model,
                        "max_tokens": self.config.max_tokens,
                        "messages": [
                            {
                                "role": "user",
                                "content": self._prompt(
                                    recipient_name, project_name, days_until_due, amount
                                ),
                            }
                        ],
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning(f"AI reminder generation failed, using fallback: {e}")
            return fallback

        parts = [
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]
        text = "".join(parts).strip()
        if not text:
            return fallback
        return f"{text}\n\nView project: {link}" if link else text
