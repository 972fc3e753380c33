import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

import config
from cart import CartStore
from schemas import CartItem

logger = logging.getLogger("patrolstore.checkout")

STRIPE_CHECKOUT_URL = "https://checkout.stripe.com/pay"
NO_PRICE_MESSAGE = "No Stripe price IDs configured for items in your cart."


class FunctionError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FunctionsClient:
    """Calls the store's serverless functions over HTTP."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or config.FUNCTIONS_URL).rstrip("/")

    def invoke(self, name: str, body: Dict[str, Any], access_token: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = requests.post(f"{self.base_url}/{name}", json=body, headers=headers)
        except requests.RequestException as exc:
            raise FunctionError(str(exc))
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            message = data.get("error") or data.get("detail") or f"{name} failed with status {response.status_code}"
            raise FunctionError(message, status_code=response.status_code)
        return data


@dataclass
class CheckoutResult:
    ok: bool
    redirect_url: Optional[str] = None
    session_id: Optional[str] = None
    message: Optional[str] = None


def price_reference(item: CartItem) -> Optional[str]:
    return item.stripe_recurring_price_id if item.is_subscription else item.stripe_price_id


def build_line_items(items: List[CartItem]) -> Tuple[List[Dict[str, Any]], List[CartItem]]:
    """Line items for the payment provider, plus the cart lines that have no price reference."""
    line_items = []
    missing = []
    for item in items:
        price_id = price_reference(item)
        if not price_id:
            missing.append(item)
            continue
        line_items.append({"priceId": price_id, "quantity": item.quantity, "isSubscription": item.is_subscription})
    return line_items, missing


class CheckoutInitiator:
    """Turns a cart into a hosted checkout session.

    Problems are reported through the returned CheckoutResult, never raised.
    Each call creates a new session.
    """

    def __init__(self, functions: FunctionsClient, publishable_key: Optional[str] = None):
        self.functions = functions
        self.publishable_key = publishable_key

    def start(self, cart: CartStore, customer_email: Optional[str] = None) -> CheckoutResult:
        if not cart.items:
            return CheckoutResult(ok=False, message="No items to checkout.")
        if not (self.publishable_key or config.STRIPE_PUBLISHABLE_KEY):
            return CheckoutResult(ok=False, message="Stripe publishable key missing. Set STRIPE_PUBLISHABLE_KEY.")

        line_items, missing = build_line_items(cart.items)
        if missing:
            names = ", ".join(i.name for i in missing)
            return CheckoutResult(ok=False, message=f"{NO_PRICE_MESSAGE} Missing: {names}")

        body: Dict[str, Any] = {"items": line_items, "customerEmail": customer_email}
        if cart.key:
            body["cartKey"] = cart.key
        try:
            data = self.functions.invoke("create-checkout-session", body)
        except FunctionError as exc:
            logger.error("Stripe checkout error: %s", exc.message)
            return CheckoutResult(ok=False, message=exc.message)

        session_id = data.get("sessionId")
        if not session_id:
            return CheckoutResult(ok=False, message="Checkout session id not returned.")
        logger.info("Checkout session %s created for %d line(s)", session_id, len(line_items))
        return CheckoutResult(
            ok=True,
            session_id=session_id,
            redirect_url=data.get("url") or f"{STRIPE_CHECKOUT_URL}/{session_id}",
        )


def get_functions_client() -> FunctionsClient:
    return FunctionsClient()
