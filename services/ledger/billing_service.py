# services/ledger/billing_service.py
import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")

stripe.api_key = STRIPE_SECRET_KEY

# Coin bundles sold through one-off checkout. A configured Stripe price id wins
# over the inline price.
COIN_BUNDLES = {
    "small": {"coins": 100, "price_cents": 249, "price_id": os.getenv("STRIPE_PRICE_COINS_SMALL")},
    "medium": {"coins": 500, "price_cents": 999, "price_id": os.getenv("STRIPE_PRICE_COINS_MEDIUM")},
    "large": {"coins": 1000, "price_cents": 1899, "price_id": os.getenv("STRIPE_PRICE_COINS_LARGE")},
}

DEFAULT_PAID_PLAN = "pro"


class BillingError(Exception):
    """Raised when a Stripe call fails"""


def is_configured() -> bool:
    return bool(STRIPE_SECRET_KEY)


def parse_price_plans(raw: Optional[str]) -> dict[str, str]:
    """Parse "price_a:pro,price_b:couples" into a price id -> plan map"""
    plans = {}
    for entry in (raw or "").split(","):
        price_id, _, plan = entry.strip().partition(":")
        if price_id and plan:
            plans[price_id] = plan.strip()
    return plans


PRICE_PLANS = parse_price_plans(os.getenv("STRIPE_PRICE_PLANS"))


def plan_for_price(price_id: Optional[str], price_plans: Optional[dict[str, str]] = None) -> str:
    """Map a Stripe price id to a plan slug. Unknown prices are treated as pro."""
    plans = PRICE_PLANS if price_plans is None else price_plans
    return plans.get(price_id or "", DEFAULT_PAID_PLAN)


def checkout_urls(return_url: Optional[str], default_path: str, checkout_type: str) -> tuple[str, str]:
    path = return_url or default_path
    separator = "&" if "?" in path else "?"
    success_url = (
        f"{APP_BASE_URL}{path}{separator}session_id={{CHECKOUT_SESSION_ID}}&type={checkout_type}"
    )
    cancel_url = f"{APP_BASE_URL}{path}"
    return success_url, cancel_url


def coin_line_item(bundle_id: str) -> dict:
    bundle = COIN_BUNDLES[bundle_id]
    if bundle["price_id"]:
        return {"price": bundle["price_id"], "quantity": 1}
    return {
        "price_data": {
            "currency": "usd",
            "unit_amount": bundle["price_cents"],
            "product_data": {"name": f"{bundle['coins']} Luna Coins"},
        },
        "quantity": 1,
    }


def minute_line_item(package: dict) -> dict:
    return {
        "price_data": {
            "currency": "usd",
            "unit_amount": package["price_cents"],
            "product_data": {"name": f"{package['name']} - {package['minutes']} minutes"},
        },
        "quantity": 1,
    }


def _field(obj: Any, key: str) -> Any:
    """Read a key from a Stripe object, None when absent"""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


async def create_checkout_session(
    *,
    line_item: dict,
    metadata: dict[str, str],
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
    mode: str = "payment",
) -> tuple[str, str]:
    """Create a hosted checkout session. Returns (url, session_id)."""
    if not is_configured():
        raise BillingError("Stripe is not configured")

    params = {
        "mode": mode,
        "line_items": [line_item],
        "metadata": metadata,
        "success_url": success_url,
        "cancel_url": cancel_url,
    }
    if customer_email:
        params["customer_email"] = customer_email

    try:
        session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout creation failed: {e}")
        raise BillingError(str(e)) from e

    return session.url, session.id


async def retrieve_checkout_session(session_id: str) -> dict:
    """Fetch a checkout session as a plain dict of the fields we use"""
    if not is_configured():
        raise BillingError("Stripe is not configured")

    try:
        session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe session lookup failed for {session_id}: {e}")
        raise BillingError(str(e)) from e

    metadata = _field(session, "metadata")
    return {
        "id": _field(session, "id"),
        "payment_status": _field(session, "payment_status"),
        "payment_intent": _field(session, "payment_intent"),
        "metadata": dict(metadata) if metadata else {},
    }


async def find_active_subscription(email: str) -> Optional[dict]:
    """Look up the newest active Stripe subscription for a customer email.

    Returns ``{"subscription_id", "price_id", "current_period_end"}`` or None
    when the customer or an active subscription does not exist.
    """
    if not is_configured():
        raise BillingError("Stripe is not configured")

    try:
        customers = await asyncio.to_thread(stripe.Customer.list, email=email, limit=1)
        if not customers.data:
            return None

        subscriptions = await asyncio.to_thread(
            stripe.Subscription.list, customer=customers.data[0].id, status="active", limit=1
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe subscription lookup failed: {e}")
        raise BillingError(str(e)) from e

    if not subscriptions.data:
        return None

    subscription = subscriptions.data[0]
    items = _field(_field(subscription, "items"), "data") or []
    item = items[0] if items else None
    price_id = _field(_field(item, "price"), "id")

    # Newer API versions carry the period on the item
    period_end = _field(subscription, "current_period_end") or _field(item, "current_period_end")

    return {
        "subscription_id": _field(subscription, "id"),
        "price_id": price_id,
        "current_period_end": (
            datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
        ),
    }
