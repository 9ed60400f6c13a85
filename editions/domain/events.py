"""
Typed order-line events and Shopify order payload parsing.

Webhook bodies are untyped JSON. They are turned into OrderLineActivated /
OrderLineRetired values here, at the boundary, so the allocator only ever
sees validated product, order and line identifiers and a positive capacity
(or none at all).

Classification of a line:

- retired when the order is cancelled, voided, or a refund restocks the line
- activated when the order is paid/authorized/pending/partially paid, or the
  line is fulfilled
- ignored otherwise, and ignored when the line is not a limited edition
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.utils.dateparse import parse_datetime

from editions import conf
from editions.domain.exceptions import MalformedEventError

EDITION_SIZE_KEYS = ("edition_size", "edition size", "limited_edition_size", "total_edition")

RETIRED_CANCELLED = "cancelled"
RETIRED_VOIDED = "voided"
RETIRED_RESTOCKED = "restocked"
RETIRED_MANUAL = "manual"


# Column widths of AllocationRecord.
REF_MAX_LENGTH = 64
ORDER_NAME_MAX_LENGTH = 64
VENDOR_NAME_MAX_LENGTH = 255
REASON_MAX_LENGTH = 64
CAPACITY_MAX = 2147483647


def _require_ref(name, value, max_length=REF_MAX_LENGTH):
    if value is None or isinstance(value, bool):
        raise MalformedEventError(f"{name} is required")
    value = str(value).strip()
    if not value:
        raise MalformedEventError(f"{name} is required")
    if len(value) > max_length:
        raise MalformedEventError(f"{name} is longer than {max_length} characters")
    return value


def _truncated(value, max_length):
    return str(value or "")[:max_length]


def _optional_capacity(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedEventError("capacity must be a positive integer")
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise MalformedEventError("capacity must be a positive integer")
    if capacity <= 0:
        raise MalformedEventError("capacity must be a positive integer")
    if capacity > CAPACITY_MAX:
        raise MalformedEventError(f"capacity must not exceed {CAPACITY_MAX}")
    return capacity


@dataclass(frozen=True)
class OrderLineActivated:
    product_id: str
    order_ref: str
    item_ref: str
    capacity: Optional[int] = None
    ordered_at: Optional[datetime] = None
    order_name: str = ""
    vendor_name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "product_id", _require_ref("product_id", self.product_id))
        object.__setattr__(self, "order_ref", _require_ref("order_ref", self.order_ref))
        object.__setattr__(self, "item_ref", _require_ref("item_ref", self.item_ref))
        object.__setattr__(self, "capacity", _optional_capacity(self.capacity))
        object.__setattr__(self, "order_name", _truncated(self.order_name, ORDER_NAME_MAX_LENGTH))
        object.__setattr__(self, "vendor_name", _truncated(self.vendor_name, VENDOR_NAME_MAX_LENGTH))


@dataclass(frozen=True)
class OrderLineRetired:
    product_id: str
    order_ref: str
    item_ref: str
    reason: str = RETIRED_CANCELLED

    def __post_init__(self):
        object.__setattr__(self, "product_id", _require_ref("product_id", self.product_id))
        object.__setattr__(self, "order_ref", _require_ref("order_ref", self.order_ref))
        object.__setattr__(self, "item_ref", _require_ref("item_ref", self.item_ref))
        object.__setattr__(
            self, "reason", _require_ref("reason", self.reason or RETIRED_CANCELLED, REASON_MAX_LENGTH)
        )


@dataclass(frozen=True)
class OrderLineRestored:
    product_id: str
    order_ref: str
    item_ref: str

    def __post_init__(self):
        object.__setattr__(self, "product_id", _require_ref("product_id", self.product_id))
        object.__setattr__(self, "order_ref", _require_ref("order_ref", self.order_ref))
        object.__setattr__(self, "item_ref", _require_ref("item_ref", self.item_ref))


def edition_size_from_metafields(metafields):
    """Return the declared edition size, or None when absent or not a positive integer."""
    for meta in _dict_entries(metafields):
        key = str(meta.get("key") or meta.get("name") or "").lower()
        if key not in EDITION_SIZE_KEYS:
            continue
        try:
            size = int(str(meta.get("value")).strip())
        except (TypeError, ValueError):
            continue
        if size > 0:
            return size
    return None


def _dict_entries(value):
    """JSON objects in a JSON array; anything else yields nothing."""
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _line_product(item):
    product = item.get("product")
    return product if isinstance(product, dict) else {}


def _line_properties(item):
    return _dict_entries(item.get("properties"))


def _line_capacity(item):
    size = edition_size_from_metafields(_line_product(item).get("metafields"))
    if size is None:
        size = edition_size_from_metafields(_line_properties(item))
    return size


def _is_limited_edition(item, capacity):
    if capacity is not None:
        return True
    for prop in _line_properties(item):
        if prop.get("name") == "limited_edition" and str(prop.get("value")).lower() == "true":
            return True
    tags = _line_product(item).get("tags")
    return isinstance(tags, str) and "limited" in tags.lower()


def _restocked_line_ids(order):
    restocked = set()
    for refund in _dict_entries(order.get("refunds")):
        for refund_item in _dict_entries(refund.get("refund_line_items")):
            if refund_item.get("restock") is True and refund_item.get("line_item_id") is not None:
                restocked.add(str(refund_item["line_item_id"]))
    return restocked


def _vendor_name(item):
    if item.get("vendor"):
        return str(item["vendor"])
    for prop in _line_properties(item):
        if prop.get("name") == "vendor" and prop.get("value"):
            return str(prop["value"])
    return ""


def parse_order_payload(payload):
    """
    Convert a Shopify order body into a list of order-line events.

    Raises MalformedEventError when the order itself cannot be identified.
    Individual lines without a product are skipped.
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("order payload must be a JSON object")

    order_ref = _require_ref("order id", payload.get("id"))
    line_items = payload.get("line_items")
    if not isinstance(line_items, list):
        raise MalformedEventError("order line_items must be a list")

    ordered_at = None
    if payload.get("created_at"):
        try:
            ordered_at = parse_datetime(str(payload["created_at"]))
        except ValueError:
            ordered_at = None
        if ordered_at is None:
            raise MalformedEventError("order created_at is not an ISO 8601 timestamp")

    financial_status = payload.get("financial_status")
    if payload.get("cancelled_at"):
        order_retired_reason = RETIRED_CANCELLED
    elif financial_status == "voided":
        order_retired_reason = RETIRED_VOIDED
    else:
        order_retired_reason = None
    order_active = financial_status in conf.active_financial_statuses()
    restocked = _restocked_line_ids(payload)

    events = []
    for item in line_items:
        if not isinstance(item, dict) or item.get("product_id") in (None, ""):
            continue

        capacity = _line_capacity(item)
        if not _is_limited_edition(item, capacity):
            continue

        item_ref = _require_ref("line item id", item.get("id"))
        product_id = str(item["product_id"])

        if order_retired_reason is not None:
            events.append(OrderLineRetired(product_id, order_ref, item_ref, order_retired_reason))
        elif item_ref in restocked:
            events.append(OrderLineRetired(product_id, order_ref, item_ref, RETIRED_RESTOCKED))
        elif order_active or item.get("fulfillment_status") == "fulfilled":
            events.append(
                OrderLineActivated(
                    product_id=product_id,
                    order_ref=order_ref,
                    item_ref=item_ref,
                    capacity=capacity,
                    ordered_at=ordered_at,
                    order_name=str(payload.get("name") or ""),
                    vendor_name=_vendor_name(item),
                )
            )
    return events
