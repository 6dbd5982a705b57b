"""
Webhook → checkout correlation.

Finds the identifier a notification carries for the checkout attempt that
produced it, then resolves it against the link mapping store.

Identifier priority (over the nodes yielded by walk_payload):
  1. payment_link_id / paymentLinkId / payment_link
  2. order_code / orderCode
  3. an "id" shaped like a payment link id (pl_*)
  4. (descent itself only follows the container allow-list)
  5. any direct string value of the root shaped like a payment link id
"""

import re
from typing import Any, Mapping

from paylink.core.payload_search import first_string, walk_payload
from paylink.models.records import LinkMappingRecord
from paylink.models.store import LinkMappingStore

import structlog

logger = structlog.get_logger()

LINK_ID_RE = re.compile(r"^pl_[A-Za-z0-9]+$")

LINK_KEYS = ("payment_link_id", "paymentLinkId", "payment_link")
ORDER_CODE_KEYS = ("order_code", "orderCode")


def _link_field(node: Mapping[str, Any]) -> str | None:
    for key in LINK_KEYS:
        value = node.get(key)
        if isinstance(value, Mapping):
            value = value.get("id")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _is_link_id(value: Any) -> bool:
    return isinstance(value, str) and bool(LINK_ID_RE.match(value.strip()))


def extract_order_code(payload: Any) -> str | None:
    return first_string(walk_payload(payload), ORDER_CODE_KEYS)


def find_link_identifier(payload: Any) -> str | None:
    nodes = list(walk_payload(payload))

    for node in nodes:
        link_id = _link_field(node)
        if link_id:
            return link_id

    order_code = first_string(nodes, ORDER_CODE_KEYS)
    if order_code:
        return order_code

    for node in nodes:
        if _is_link_id(node.get("id")):
            return node["id"].strip()

    if isinstance(payload, Mapping):
        for value in payload.values():
            if _is_link_id(value):
                return value.strip()

    return None


def correlate(payload: Any, store: LinkMappingStore) -> LinkMappingRecord | None:
    candidate = find_link_identifier(payload)
    if candidate:
        record = store.get(candidate)
        if record is not None:
            logger.info("webhook_correlated", key=candidate, order_code=record.order_code)
            return record

    order_code = extract_order_code(payload)
    if order_code:
        for key, record in store.all().items():
            if record.order_code == order_code:
                logger.info("webhook_correlated", key=key, order_code=order_code, via="order_code_scan")
                return record

    logger.info("webhook_uncorrelated", candidate=candidate, order_code=order_code)
    return None
