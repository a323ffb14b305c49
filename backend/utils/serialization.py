"""Helpers for turning stored documents into JSON-safe API payloads."""
from datetime import datetime
from enum import Enum
from typing import Any

from bson import ObjectId


def strip_none(value: Any) -> Any:
    """Recursively drop None from dicts and lists.

    The document store rejects undefined values, so every write goes through
    this. Falsy but defined values (0, False, "", [], {}) are kept.
    """
    if isinstance(value, dict):
        return {k: strip_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [strip_none(v) for v in value if v is not None]
    return value


def to_json_safe(value: Any) -> Any:
    """Convert Mongo values (datetime, ObjectId, Enum) into JSON primitives."""
    if isinstance(value, dict):
        return {k: to_json_safe(v) for k, v in value.items() if k != "_id"}
    if isinstance(value, list):
        return [to_json_safe(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def format_amount(amount_cents: int, currency: str = "usd") -> str:
    """Display helper: 15900 -> "$159", 15950 -> "$159.50"."""
    symbol = {"usd": "$", "gbp": "£", "eur": "€"}.get(currency.lower(), "")
    whole, cents = divmod(int(amount_cents), 100)
    if cents:
        return f"{symbol}{whole:,}.{cents:02d}"
    return f"{symbol}{whole:,}"
