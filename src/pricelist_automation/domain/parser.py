from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from ..logging import get_logger
from .errors import SchemaViolation
from .models import PriceItem, PriceList


LOG = get_logger("domain-parser")


def utc_timestamp(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec="seconds") + "Z"


def is_timestamp(value: Any) -> bool:
    """True for ISO-8601 dates or datetimes (a trailing ``Z`` is accepted)."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def parse_price_list(payload: Any, *, now: Optional[datetime] = None) -> Tuple[PriceList, bool]:
    """Validate decoded model output and build a :class:`PriceList`.

    Expected input shape (from the extraction prompt):
    - category: str (required)
    - service: list of {name: str, price: str, originalPrice?: str, group?: str}
    - analyzedAt: ISO timestamp; defaulted to the current UTC time when missing
      or unreadable

    Null or blank optional fields are treated as absent; unknown keys are
    dropped. Returns the price list and whether ``analyzedAt`` was defaulted.
    """
    if not isinstance(payload, dict):
        raise SchemaViolation("top level must be a JSON object")

    def _optional(item: dict, key: str, idx: int) -> Optional[str]:
        value = item.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise SchemaViolation(f"service[{idx}].{key} must be a string")
        return value if value.strip() else None

    if "category" not in payload:
        raise SchemaViolation("category required")
    category = payload["category"]
    if not isinstance(category, str):
        raise SchemaViolation("category must be a string")

    if "service" not in payload:
        raise SchemaViolation("service required")
    service_in = payload["service"]
    if not isinstance(service_in, list):
        raise SchemaViolation("service must be a list")

    items: List[PriceItem] = []
    for idx, it in enumerate(service_in):
        if not isinstance(it, dict):
            raise SchemaViolation(f"service[{idx}] must be an object")
        for key in ("name", "price"):
            if key not in it:
                raise SchemaViolation(f"service[{idx}].{key} required")
            if not isinstance(it[key], str):
                raise SchemaViolation(f"service[{idx}].{key} must be a string")
        items.append(
            PriceItem(
                name=it["name"],
                price=it["price"],
                original_price=_optional(it, "originalPrice", idx),
                group=_optional(it, "group", idx),
            )
        )

    analyzed_at = payload.get("analyzedAt")
    defaulted = False
    if is_timestamp(analyzed_at):
        analyzed_at = analyzed_at.strip()
    else:
        replacement = utc_timestamp(now)
        LOG.warning("analyzedAt missing or invalid (%r); defaulting to %s", analyzed_at, replacement)
        analyzed_at = replacement
        defaulted = True

    LOG.debug("Validated price list with %d items", len(items))
    return PriceList(category=category, service=tuple(items), analyzed_at=analyzed_at), defaulted
