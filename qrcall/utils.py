import json
import re
from datetime import datetime, timezone as dt_timezone

from django.utils import timezone

from .constants import DEFAULT_TOKEN_EXPIRE_SECONDS, MAX_TOKEN_EXPIRE_SECONDS, ROLE_PUBLISHER, ROLE_SUBSCRIBER


def parse_role(value):
    if value is None:
        return ROLE_PUBLISHER
    if isinstance(value, int):
        return ROLE_PUBLISHER if value == ROLE_PUBLISHER else ROLE_SUBSCRIBER
    if isinstance(value, str):
        value = value.lower()
        if value in {"publisher", "host", "broadcaster"}:
            return ROLE_PUBLISHER
        if value in {"subscriber", "audience"}:
            return ROLE_SUBSCRIBER
    return None


def clamp_expire(expire):
    try:
        expire = int(expire)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    if expire <= 0:
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    return min(expire, MAX_TOKEN_EXPIRE_SECONDS)


def generate_channel_name(call_id: str) -> str:
    return f"emergency_{call_id}"


def caller_uid(call_id: str) -> str:
    return f"caller_{call_id}"


def receiver_uid(user_id: str) -> str:
    return f"owner_{user_id}"


def normalize_datetime(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        if timezone.is_naive(value):
            return timezone.make_aware(value, dt_timezone.utc)
        return value
    if hasattr(value, "timestamp"):
        return datetime.fromtimestamp(value.timestamp(), tz=dt_timezone.utc)
    return None


def format_timestamp(ts):
    if ts is None:
        return None
    if hasattr(ts, "isoformat"):
        return ts.isoformat()
    if hasattr(ts, "timestamp"):
        return datetime.fromtimestamp(ts.timestamp(), tz=dt_timezone.utc).isoformat()
    return str(ts)


def format_phone_number(phone: str) -> str:
    """Normalise a raw phone number to +<digits>, assuming +1 for 10-digit numbers."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def mask_phone_number(phone) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 4:
        return "***-***-****"
    return "*" * (len(digits) - 4) + digits[-4:]


def apply_updates(document: dict, updates: dict) -> dict:
    """Apply Firestore-style dotted field paths ("timing.endedAt") to a nested dict."""
    for path, value in updates.items():
        target = document
        parts = path.split(".")
        for part in parts[:-1]:
            nested = target.get(part)
            if not isinstance(nested, dict):
                nested = {}
                target[part] = nested
            target = nested
        target[parts[-1]] = value
    return document


def stringify_values(data: dict) -> dict:
    """Push gateways only accept string values in the data payload."""
    result = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = value
        elif value is None:
            result[key] = ""
        else:
            result[key] = json.dumps(value, default=str)
    return result
