"""
Phone number canonicalization.

The same function is used when writing and when looking up by phone so that
(tenant, phone) natural keys stay stable.
"""

import re

from app.config import get_settings

_NON_DIGITS = re.compile(r"\D")

NANP_COUNTRY_CODE = "1"
MALTA_COUNTRY_CODE = "356"


def normalize_phone(value: str | None, default_country_code: str | None = None) -> str | None:
    """Canonicalize a phone number to ``+<digits>``.

    Rules, in order:

    - ``+`` or ``00`` prefix: already international
    - national trunk prefix ``0``: the configured default country code
      replaces it
    - ten digits: a North American number without its ``1``
    - eight digits starting 7 or 9: a Maltese mobile
    - anything else is taken to carry its country code

    Returns None when the value carries no digits. The result is stable under
    re-normalization.
    """
    if value is None:
        return None

    raw = str(value).strip()
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return None

    international = raw.startswith("+")
    if not international and raw.startswith("00"):
        digits = digits[2:]
        international = True

    if international:
        return f"+{digits}"

    if digits.startswith("0") and len(digits) in (10, 11):
        country = default_country_code or get_settings().phone_default_country_code
        return f"+{country}{digits[1:]}"

    if len(digits) == 10:
        return f"+{NANP_COUNTRY_CODE}{digits}"

    if len(digits) == 8 and digits[0] in "79":
        return f"+{MALTA_COUNTRY_CODE}{digits}"

    return f"+{digits}"
