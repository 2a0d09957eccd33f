"""Phone number normalisation for WhatsApp providers (Indonesian numbering)."""

import re
from typing import Optional

COUNTRY_CODE = "62"


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """Return the number in international form without '+', or None if unusable.

    >>> format_phone_number("0812-3456-789")
    '628123456789'
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone.strip())
    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith(COUNTRY_CODE):
        return digits
    if len(digits) > 8 and digits.startswith("8"):
        return COUNTRY_CODE + digits
    return None
