"""ChatBridge – PII Filter.

Regex-based PII detection and masking for log safety.
Applied to log values only, NOT to message content sent to providers.
"""

import re
from typing import Any

# ──────────────────────────────────────────
# PII Patterns
# ──────────────────────────────────────────

PATTERNS: dict[str, re.Pattern[str]] = {
    # WhatsApp JIDs: 905551234567@c.us / @s.whatsapp.net / @g.us
    "whatsapp_jid": re.compile(r"\b(\d{6,15})@(c\.us|s\.whatsapp\.net|g\.us)\b"),
    "email": re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}"),
    "phone_intl": re.compile(r"\+\d{1,3}[\s\-]?\d{3,14}"),
    "iban": re.compile(r"\b[A-Z]{2}\d{2}\s?\d{4}\s?\d{4}\s?\d{4}\s?\d{4}\s?\d{0,2}\b"),
}


class PIIFilter:
    """PII detection and masking.

    Usage:
        pii = PIIFilter()
        safe_text = pii.mask(user_id)  # For logging only
    """

    def __init__(self, patterns: dict[str, re.Pattern[str]] | None = None) -> None:
        self._patterns = patterns or PATTERNS

    def mask(self, text: str) -> str:
        """Mask all PII in text for safe logging.

        - JID:   905551234567@c.us → 90555****@c.us
        - Phone: +905551234567     → +9055****
        - Email: user@example.com  → u****@e****.com
        - IBAN:  TR33000610051978645784 → TR33****5784
        """

        def mask_jid(match: re.Match[str]) -> str:
            return match.group(1)[:5] + "****@" + match.group(2)

        def mask_phone(match: re.Match[str]) -> str:
            full = match.group(0)
            return full[:5] + "****" if len(full) > 5 else "****"

        def mask_email(match: re.Match[str]) -> str:
            local, _, domain = match.group(0).partition("@")
            head, _, tld = domain.rpartition(".")
            return f"{local[:1]}****@{head[:1]}****.{tld or 'com'}"

        def mask_iban(match: re.Match[str]) -> str:
            iban = match.group(0).replace(" ", "")
            return iban[:4] + "****" + iban[-4:] if len(iban) > 8 else "****"

        result = self._patterns["whatsapp_jid"].sub(mask_jid, text)
        result = self._patterns["email"].sub(mask_email, result)
        result = self._patterns["phone_intl"].sub(mask_phone, result)
        result = self._patterns["iban"].sub(mask_iban, result)
        return result


_filter = PIIFilter()


def filter_log_record(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask PII in every string value except the event name."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str):
            event_dict[key] = _filter.mask(value)
    return event_dict
