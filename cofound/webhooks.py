"""Subscription webhook handling: signature check, subscription upsert, MRR recompute."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from cofound import metrics, services
from cofound.errors import WebhookError
from cofound.models import MRRData, StripeSubscription
from cofound.utils import current_month

log = logging.getLogger(__name__)

UPSERT_EVENTS = ("customer.subscription.created", "customer.subscription.updated")
DELETE_EVENT = "customer.subscription.deleted"


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------


def _parse_signature_header(header: str) -> tuple[str, list[str]]:
    timestamp = ""
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes, header: str | None, secret: str, *,
    tolerance: int = 300, now: float | None = None,
) -> None:
    """Check a ``t=...,v1=...`` header. With no secret configured only presence is checked."""
    if not header:
        raise WebhookError("No Stripe signature found")
    if not secret:
        return
    timestamp, signatures = _parse_signature_header(header)
    if not timestamp or not signatures:
        raise WebhookError("Malformed Stripe signature header")
    try:
        ts = int(timestamp)
    except ValueError as exc:
        raise WebhookError("Malformed Stripe signature timestamp") from exc
    if tolerance and abs((now or time.time()) - ts) > tolerance:
        raise WebhookError("Stripe signature timestamp outside tolerance")
    expected = sign_payload(payload, secret, ts)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookError("Stripe signature mismatch")


def parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise WebhookError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(event, dict):
        raise WebhookError("Event payload must be a JSON object")
    return event


# ---------------------------------------------------------------------------
# Subscription events
# ---------------------------------------------------------------------------


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC).replace(tzinfo=None)


def _first_price(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return {}
    return items[0].get("price") or {}


def _get_subscription(session: Session, stripe_id: str) -> StripeSubscription | None:
    return session.execute(
        select(StripeSubscription).where(StripeSubscription.stripe_subscription_id == stripe_id)
    ).scalars().first()


def recompute_project_mrr(session: Session, project_id: str, month: str | None = None) -> MRRData:
    """Rewrite the month's MRR row from the project's active subscriptions."""
    amounts = session.execute(
        select(StripeSubscription.amount).where(
            StripeSubscription.project_id == project_id,
            StripeSubscription.status == "active",
        )
    ).scalars().all()
    revenue = int(metrics.round_half_up(sum(a or 0 for a in amounts) / 100))
    row, _ = services.upsert_mrr(
        session, project_id, month or current_month(), revenue, subscription_count=len(amounts),
    )
    log.info("MRR for %s %s: %d from %d active subscriptions", project_id, row.month, revenue, len(amounts))
    return row


def _upsert_subscription(session: Session, subscription: dict) -> str | None:
    project_id = (subscription.get("metadata") or {}).get("project_id")
    if not project_id:
        log.warning("Subscription %s has no project_id in metadata; ignored", subscription.get("id"))
        return None
    price = _first_price(subscription)
    sub = _get_subscription(session, subscription["id"])
    if sub is None:
        sub = StripeSubscription(stripe_subscription_id=subscription["id"], project_id=project_id)
        session.add(sub)
    sub.project_id = project_id
    sub.stripe_customer_id = subscription.get("customer") or ""
    sub.status = subscription.get("status") or ""
    sub.amount = int(price.get("unit_amount") or 0)
    sub.currency = price.get("currency") or "usd"
    sub.current_period_start = _from_epoch(subscription.get("current_period_start"))
    sub.current_period_end = _from_epoch(subscription.get("current_period_end"))
    session.flush()
    recompute_project_mrr(session, project_id)
    return project_id


def _cancel_subscription(session: Session, subscription: dict) -> str | None:
    sub = _get_subscription(session, subscription["id"])
    if sub is not None:
        sub.status = "canceled"
        session.flush()
    project_id = (subscription.get("metadata") or {}).get("project_id") or (sub.project_id if sub else None)
    if project_id:
        recompute_project_mrr(session, project_id)
    return project_id


def handle_subscription_event(session: Session, event: dict[str, Any]) -> dict[str, Any]:
    """Apply one subscription event. The caller commits."""
    event_type = event.get("type", "")
    subscription = (event.get("data") or {}).get("object") or {}
    log.info("Received Stripe event: %s", event_type)

    if event_type in UPSERT_EVENTS or event_type == DELETE_EVENT:
        if not subscription.get("id"):
            raise WebhookError("Subscription event without an id")
        if event_type == DELETE_EVENT:
            project_id = _cancel_subscription(session, subscription)
        else:
            project_id = _upsert_subscription(session, subscription)
        return {"received": True, "handled": project_id is not None, "project_id": project_id}

    log.info("Unhandled event type: %s", event_type)
    return {"received": True, "handled": False, "project_id": None}
