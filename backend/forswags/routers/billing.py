# forswags/routers/billing.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import models
from forswags.cache import TTLCache
from forswags.config import env_bool, env_str
from forswags.database import get_db
from forswags.dependencies import get_tier_cache
from forswags.email_templates import EmailTemplate
from forswags.evaluations import create_evaluation
from forswags.membership import (
    EVENT_ACTIVATED,
    EVENT_CANCELLED,
    EVENT_EXPIRED,
    EVENT_PAYMENT_FAILED,
    EVENT_RENEWED,
    EVENT_TRIAL_STARTED,
    apply_subscription_event,
)
from forswags.notifications import notify_email
from forswags.plans import TIER_CHAMPIONSHIP_YEARLY, TIER_PRO_MONTHLY, normalize_tier
from forswags.tiers import current_membership, invalidate_tier

logger = logging.getLogger(__name__)

# ✅ All billing endpoints live under /billing
router = APIRouter(prefix="/billing", tags=["billing"])

# Stripe subscription.status -> lifecycle event
SUBSCRIPTION_STATUS_EVENTS = {
    "active": EVENT_ACTIVATED,
    "trialing": EVENT_TRIAL_STARTED,
    "past_due": EVENT_PAYMENT_FAILED,
    "canceled": EVENT_CANCELLED,
    "unpaid": EVENT_EXPIRED,
    "incomplete_expired": EVENT_EXPIRED,
}

PURPOSE_EVALUATION = "evaluation"


# -----------------------------
# Billing feature flag
# -----------------------------
def _require_billing_enabled() -> None:
    # default = enabled unless explicitly false-like
    if not env_bool("BILLING_ENABLED", True):
        raise HTTPException(status_code=503, detail="Billing disabled")


def _webhook_secret() -> str:
    wh = env_str("STRIPE_WEBHOOK_SECRET")
    if not wh:
        raise HTTPException(status_code=500, detail="Missing STRIPE_WEBHOOK_SECRET")
    return wh


def price_tiers() -> dict[str, str]:
    """Stripe price id -> tier, from STRIPE_PRICE_* settings."""
    out: dict[str, str] = {}
    for env_key, tier in (
        ("STRIPE_PRICE_PRO_MONTHLY", TIER_PRO_MONTHLY),
        ("STRIPE_PRICE_CHAMPIONSHIP_YEARLY", TIER_CHAMPIONSHIP_YEARLY),
    ):
        pid = env_str(env_key)
        if pid:
            out[pid] = tier
    return out


def _unix_to_dt(v: Optional[int]) -> Optional[datetime]:
    if not v:
        return None
    try:
        return datetime.fromtimestamp(int(v), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def _first_item(sub: dict) -> dict:
    items = ((sub.get("items") or {}).get("data")) or []
    return items[0] if items else {}


def _tier_for_subscription(sub: dict) -> Optional[str]:
    price_id = ((_first_item(sub).get("price")) or {}).get("id")
    if price_id and price_id in price_tiers():
        return price_tiers()[price_id]
    md_tier = (sub.get("metadata") or {}).get("tier")
    return normalize_tier(md_tier) if md_tier else None


def _period_end(sub: dict) -> Optional[datetime]:
    # newer API versions carry the period on the subscription item
    return _unix_to_dt(sub.get("current_period_end") or _first_item(sub).get("current_period_end"))


def _period_start(sub: dict) -> Optional[datetime]:
    return _unix_to_dt(sub.get("current_period_start") or _first_item(sub).get("current_period_start"))


def _user_id_from_metadata(md: Optional[dict]) -> Optional[int]:
    raw = (md or {}).get("user_id")
    try:
        return int(raw) if raw else None
    except (TypeError, ValueError):
        return None


def _user_id_for_subscription(db: Session, sub_id: Optional[str], md: Optional[dict]) -> Optional[int]:
    uid = _user_id_from_metadata(md)
    if uid:
        return uid
    if not sub_id:
        return None
    return db.scalar(
        select(models.Membership.user_id)
        .where(models.Membership.stripe_subscription_id == sub_id)
        .order_by(models.Membership.id.desc())
        .limit(1)
    )


def parse_event(payload: bytes, sig: Optional[str], secret: str) -> dict[str, Any]:
    """Verifies the Stripe-Signature header and returns the event as plain dicts."""
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), sig, secret)
        return json.loads(payload)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook signature")


# -----------------------------
# Event handlers
# -----------------------------
def _handle_subscription(db: Session, etype: str, sub: dict) -> Optional[int]:
    sub_id = sub.get("id")
    user_id = _user_id_for_subscription(db, sub_id, sub.get("metadata"))
    if not user_id:
        return None

    if etype == "customer.subscription.deleted":
        event = EVENT_CANCELLED
    else:
        event = SUBSCRIPTION_STATUS_EVENTS.get((sub.get("status") or "").lower())
    if not event:
        return None

    apply_subscription_event(
        db,
        user_id,
        event,
        tier=_tier_for_subscription(sub),
        start_date=_period_start(sub),
        end_date=_period_end(sub),
        stripe_subscription_id=sub_id,
    )
    return user_id


def _handle_invoice(db: Session, etype: str, invoice: dict) -> Optional[int]:
    sub_id = invoice.get("subscription")
    if not sub_id:
        parent = (invoice.get("parent") or {}).get("subscription_details") or {}
        sub_id = parent.get("subscription")
    user_id = _user_id_for_subscription(db, sub_id, None)
    if not user_id:
        return None

    if etype == "invoice.payment_failed":
        apply_subscription_event(db, user_id, EVENT_PAYMENT_FAILED, stripe_subscription_id=sub_id)
        return user_id

    if current_membership(db, user_id) is None:
        # first invoice; the subscription event creates the membership
        return None

    lines = ((invoice.get("lines") or {}).get("data")) or []
    period = (lines[0].get("period") or {}) if lines else {}
    apply_subscription_event(
        db,
        user_id,
        EVENT_RENEWED,
        end_date=_unix_to_dt(period.get("end")),
        stripe_subscription_id=sub_id,
    )
    return user_id


def _handle_checkout(db: Session, session_obj: dict) -> Optional[int]:
    """One-off evaluation purchases; subscription checkouts arrive as subscription events."""
    md = session_obj.get("metadata") or {}
    if md.get("purpose") != PURPOSE_EVALUATION:
        return None
    if (session_obj.get("payment_status") or "paid") != "paid":
        return None

    user_id = _user_id_from_metadata(md)
    reference = session_obj.get("id")
    if not user_id or not reference:
        return None

    replay = db.scalar(select(models.Evaluation.id).where(models.Evaluation.payment_reference == reference))
    if replay:
        return user_id

    ev = create_evaluation(
        db,
        user_id,
        payment_reference=reference,
        video_url=md.get("video_url"),
        is_reevaluation=str(md.get("is_reevaluation") or "").lower() in ("1", "true", "yes"),
    )

    user = db.get(models.User, user_id)
    amount = session_obj.get("amount_total")
    notify_email(
        db,
        user.email if user else None,
        EmailTemplate.PAYMENT_RECEIPT,
        {
            "full_name": user.profile.full_name if user and user.profile else "",
            "item": "Re-evaluation" if ev.is_reevaluation else "Evaluation",
            "amount": f"${int(amount) / 100:.2f}" if amount else "",
            "reference": ev.payment_reference,
        },
    )
    return user_id


# -----------------------------
# Webhook (public), disabled when BILLING_ENABLED=false
# -----------------------------
@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    _require_billing_enabled()
    event = parse_event(await request.body(), request.headers.get("stripe-signature"), _webhook_secret())

    etype = (event.get("type") or "").strip()
    obj = (event.get("data") or {}).get("object") or {}

    if etype in ("customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"):
        user_id = _handle_subscription(db, etype, obj)
    elif etype in ("invoice.paid", "invoice.payment_succeeded", "invoice.payment_failed"):
        user_id = _handle_invoice(db, etype, obj)
    elif etype == "checkout.session.completed":
        user_id = _handle_checkout(db, obj)
    else:
        return {"ok": True, "ignored": True, "type": etype}

    if not user_id:
        logger.info("Stripe event %s ignored (no matching user)", etype)
        return {"ok": True, "ignored": True, "type": etype}

    invalidate_tier(cache, user_id)
    logger.info("Stripe event %s applied user_id=%s", etype, user_id)
    return {"ok": True, "type": etype, "user_id": user_id}
