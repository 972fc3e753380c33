"""
Serverless functions.

Endpoints the storefront and admin panels call by name. They answer with
{"error": ...} bodies instead of FastAPI's {"detail": ...} so callers can show
the message verbatim.
"""
import logging
from typing import List, Optional
from urllib.parse import urlencode

import stripe
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
import database
from auth import ACCOUNTS, AuthContext, AuthError, AuthProvider, get_auth, get_auth_provider
from schemas import Account

logger = logging.getLogger("patrolstore.functions")

router = APIRouter(prefix="/functions/v1", tags=["functions"])

ROLES = ("admin", "user")


def error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# create-checkout-session

class LineItemIn(BaseModel):
    priceId: str
    quantity: int = 1
    isSubscription: bool = False


class CheckoutSessionIn(BaseModel):
    items: List[LineItemIn] = []
    customerEmail: Optional[str] = None
    cartKey: Optional[str] = None


@router.post("/create-checkout-session")
def create_checkout_session(data: CheckoutSessionIn):
    if not config.STRIPE_SECRET_KEY:
        logger.error("Missing STRIPE_SECRET_KEY")
        return error("Stripe not configured", 500)
    if not data.items:
        return error("Items are required", 400)

    stripe.api_key = config.STRIPE_SECRET_KEY
    success_url = f"{config.SITE_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = f"{config.SITE_URL}/checkout/cancel"
    if data.cartKey:
        # the browser comes back without its X-Cart-Key header
        success_url += "&" + urlencode({"cart_key": data.cartKey})
        cancel_url += "?" + urlencode({"cart_key": data.cartKey})
    mode = "subscription" if any(i.isSubscription for i in data.items) else "payment"
    params = {
        "mode": mode,
        "payment_method_types": ["card"],
        "line_items": [{"price": i.priceId, "quantity": i.quantity or 1} for i in data.items],
        "success_url": success_url,
        "cancel_url": cancel_url,
    }
    if data.customerEmail:
        params["customer_email"] = data.customerEmail
    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout error: %s", exc)
        return error(getattr(exc, "user_message", None) or str(exc) or "Unknown error", 500)
    return {"sessionId": session.id, "url": session.url}


# update-user-role

class RoleChangeIn(BaseModel):
    userId: Optional[str] = None
    newRole: Optional[str] = None


@router.post("/update-user-role")
def update_user_role(data: RoleChangeIn, auth: AuthContext = Depends(get_auth),
                     auth_provider: AuthProvider = Depends(get_auth_provider)):
    if not auth.access_token:
        return error("Missing authorization header", 401)
    if not auth.user:
        return error("Unauthorized", 401)
    if not auth.is_admin:
        return error("Admin access required", 403)
    if not data.userId or not data.newRole:
        return error("userId and newRole are required", 400)
    if data.newRole not in ROLES:
        return error("newRole must be either 'admin' or 'user'", 400)

    try:
        user = auth_provider.update_user(data.userId, user_metadata={"role": data.newRole})
    except AuthError as exc:
        return error(exc.message, exc.status_code)
    if database.collection_exists(ACCOUNTS):
        if not database.update_document(ACCOUNTS, data.userId, {"role": data.newRole}):
            # user signed up before the account table existed
            metadata = user.get("user_metadata") or {}
            account = Account(email=user["email"], full_name=metadata.get("full_name") or None, role=data.newRole)
            database.create_document(ACCOUNTS, account, doc_id=database.parse_id(data.userId))
            logger.info("Created missing account row for %s", data.userId)
    logger.info("User %s set role of %s to %s", auth.user["id"], data.userId, data.newRole)
    return {"success": True, "user": user}


# list-users

@router.get("/list-users")
def list_users(auth: AuthContext = Depends(get_auth), auth_provider: AuthProvider = Depends(get_auth_provider)):
    if not auth.user:
        return error("Unauthorized", 401)
    if not auth.is_admin:
        return error("Admin access required", 403)
    return {"users": auth_provider.list_users()}
