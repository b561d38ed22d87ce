from __future__ import annotations

import uuid
from datetime import datetime, date, timezone


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Microseconds kept: forward commitments are ordered by this value.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_utc_iso(value: str) -> str:
    """
    Re-emit a date or ISO timestamp in the iso_now() form, so that plain
    string comparison orders it correctly. Naive values are taken as UTC.
    """
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


def fmt_grams(grams: float) -> str:
    return f"{grams:,.0f} g" if float(grams).is_integer() else f"{grams:,.2f} g"
