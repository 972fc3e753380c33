"""
Page router.

Every client-visible page is a member of Page. PAGE_ROUTES is the one table
mapping paths to pages and PAGE_HANDLERS maps each page to the function that
builds its view model. Unknown paths resolve to Page.NOT_FOUND.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

import admin
import catalog
import config
import database
from auth import AuthContext, get_auth
from cart import CartStore, get_cart


class Page(str, Enum):
    HOME = "Home"
    CUSTOM_LOGIN = "CustomLogin"
    CUSTOM_SIGNUP = "CustomSignup"
    FORGOT_PASSWORD = "ForgotPassword"
    RESET_PASSWORD = "ResetPassword"
    DASHBOARD = "Dashboard"
    STORE_FRONT = "StoreFront"
    ADMIN_DASHBOARD = "AdminDashboard"
    CHECKOUT = "Checkout"
    CHECKOUT_SUCCESS = "CheckoutSuccess"
    CHECKOUT_CANCEL = "CheckoutCancel"
    USER_PROFILE = "UserProfile"
    PRODUCT_DETAIL = "ProductDetail"
    ORDER_HISTORY = "OrderHistory"
    ORDER_DETAILS = "OrderDetails"
    NOT_FOUND = "NotFound"


MAIN_PAGE = Page.HOME

PAGE_ROUTES: Dict[str, Page] = {
    "/": MAIN_PAGE,
    "/checkout/success": Page.CHECKOUT_SUCCESS,
    "/checkout/cancel": Page.CHECKOUT_CANCEL,
    **{f"/{page.value}": page for page in Page if page is not Page.NOT_FOUND},
}


def resolve_page(path: str) -> Page:
    return PAGE_ROUTES.get("/" + path.strip("/"), Page.NOT_FOUND)


# View models shared with the JSON API

def site_settings() -> Dict[str, Any]:
    return database.find_document("sitesettings", {}) or {}


def storefront_listing(q: Optional[str] = None, min_price: Optional[float] = None,
                       max_price: Optional[float] = None, sort: str = "name") -> Dict[str, Any]:
    products = database.get_documents("product")
    reviews = database.get_documents("review", {"status": "approved"})
    items = catalog.apply_listing(products, reviews, q, min_price, max_price, sort)
    return {"items": items, "total": len(items)}


def product_detail(product_id: str) -> Dict[str, Any]:
    product = database.get_document("product", product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    reviews = database.get_documents(
        "review", {"product_id": product["id"], "status": "approved"}, sort=database.NEWEST_FIRST
    )
    return {"product": product, "reviews": reviews, "average_rating": catalog.average_rating(product["id"], reviews)}


def orders_for(email: str) -> List[Dict[str, Any]]:
    return database.get_documents("order", {"customer_email": email}, sort=database.NEWEST_FIRST)


def order_for(auth: AuthContext, order_id: str) -> Dict[str, Any]:
    order = database.get_document("order", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not auth.is_admin and order.get("customer_email") != auth.user["email"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return order


# Page handlers

@dataclass
class PageRequest:
    page: Page
    params: Dict[str, str]
    auth: AuthContext
    cart: CartStore

    def require_user(self) -> Dict[str, Any]:
        if not self.auth.user:
            raise HTTPException(status_code=401, detail="Sign in to view this page")
        return self.auth.user


def _float_param(params: Dict[str, str], name: str) -> Optional[float]:
    value = params.get(name)
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be a number")


def home_page(req: PageRequest) -> Dict[str, Any]:
    return {"storeName": config.STORE_NAME, "settings": site_settings()}


def store_front_page(req: PageRequest) -> Dict[str, Any]:
    listing = storefront_listing(
        req.params.get("q"),
        _float_param(req.params, "min_price"),
        _float_param(req.params, "max_price"),
        req.params.get("sort") or "name",
    )
    return {**listing, "cart": req.cart.to_dict()}


def product_detail_page(req: PageRequest) -> Dict[str, Any]:
    product_id = req.params.get("id")
    if not product_id:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_detail(product_id)


def checkout_page(req: PageRequest) -> Dict[str, Any]:
    return {"cart": req.cart.to_dict()}


def checkout_success_page(req: PageRequest) -> Dict[str, Any]:
    req.cart.clear()
    return {"sessionId": req.params.get("session_id")}


def dashboard_page(req: PageRequest) -> Dict[str, Any]:
    user = req.require_user()
    orders = orders_for(user["email"])
    return {
        "user": user,
        "isAdmin": req.auth.is_admin,
        "orders": orders[:5],
        "stats": {
            "total": len(orders),
            "pending": len([o for o in orders if o.get("status") == "pending"]),
            "completed": len([o for o in orders if o.get("status") == "completed"]),
        },
    }


def admin_dashboard_page(req: PageRequest) -> Dict[str, Any]:
    req.require_user()
    if not req.auth.is_admin:
        raise HTTPException(status_code=403, detail="You need administrator privileges to access this page.")
    return {"analytics": admin.analytics()}


def user_profile_page(req: PageRequest) -> Dict[str, Any]:
    user = req.require_user()
    return {
        "user": user,
        "account": req.auth.account,
        "accountTableExists": req.auth.account_table_exists,
        "orders": orders_for(user["email"]),
    }


def order_history_page(req: PageRequest) -> Dict[str, Any]:
    user = req.require_user()
    return {"orders": orders_for(user["email"])}


def order_details_page(req: PageRequest) -> Dict[str, Any]:
    req.require_user()
    return {"order": order_for(req.auth, req.params.get("id", ""))}


def static_page(req: PageRequest) -> Dict[str, Any]:
    return {}


def not_found_page(req: PageRequest) -> Dict[str, Any]:
    raise HTTPException(status_code=404, detail="Page not found")


PAGE_HANDLERS: Dict[Page, Callable[[PageRequest], Dict[str, Any]]] = {
    Page.HOME: home_page,
    Page.CUSTOM_LOGIN: static_page,
    Page.CUSTOM_SIGNUP: static_page,
    Page.FORGOT_PASSWORD: static_page,
    Page.RESET_PASSWORD: static_page,
    Page.DASHBOARD: dashboard_page,
    Page.STORE_FRONT: store_front_page,
    Page.ADMIN_DASHBOARD: admin_dashboard_page,
    Page.CHECKOUT: checkout_page,
    Page.CHECKOUT_SUCCESS: checkout_success_page,
    Page.CHECKOUT_CANCEL: static_page,
    Page.USER_PROFILE: user_profile_page,
    Page.PRODUCT_DETAIL: product_detail_page,
    Page.ORDER_HISTORY: order_history_page,
    Page.ORDER_DETAILS: order_details_page,
    Page.NOT_FOUND: not_found_page,
}


router = APIRouter(tags=["pages"])


def _render(path: str, request: Request, auth: AuthContext, cart: CartStore) -> Dict[str, Any]:
    page = resolve_page(path)
    req = PageRequest(page=page, params=dict(request.query_params), auth=auth, cart=cart)
    return {"page": page.value, **PAGE_HANDLERS[page](req)}


# Return URLs handed to the payment provider
@router.get("/checkout/success")
def checkout_success(request: Request, auth: AuthContext = Depends(get_auth), cart: CartStore = Depends(get_cart)):
    return _render("/checkout/success", request, auth, cart)


@router.get("/checkout/cancel")
def checkout_cancel(request: Request, auth: AuthContext = Depends(get_auth), cart: CartStore = Depends(get_cart)):
    return _render("/checkout/cancel", request, auth, cart)


@router.get("/pages/{path:path}")
def render_page(path: str, request: Request, auth: AuthContext = Depends(get_auth),
                cart: CartStore = Depends(get_cart)):
    return _render(path, request, auth, cart)
