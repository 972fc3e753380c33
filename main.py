import os
import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field

import config
import database
import admin
import functions
import pages
from auth import (
    ACCOUNTS,
    AuthContext,
    AuthError,
    AuthProvider,
    Session,
    get_auth,
    get_auth_provider,
    hash_password,
    require_user,
    USERS,
)
from cart import CartStore, get_cart
from catalog import SORT_KEYS
from checkout import CheckoutInitiator, FunctionsClient, get_functions_client
from schemas import Account, AuthUser, Order, OrderItem, Product, Review, Variation, VariationOption

# Logging
logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("patrolstore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.ROLE_SOURCE == "account":
        database.ensure_collection(ACCOUNTS)
    yield


app = FastAPI(title="Patrol Store API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.ALLOWED_ORIGINS] if config.ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(functions.router)
app.include_router(admin.router)
app.include_router(pages.router)

os.makedirs(config.STORAGE_DIR, exist_ok=True)
app.mount("/storage/v1/object/public", StaticFiles(directory=config.STORAGE_DIR), name="storage")


# Error handlers
@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Health and config
@app.get("/")
def root():
    return {"name": config.STORE_NAME, "status": "ok"}


@app.get("/config")
def get_config():
    return {
        "storeName": config.STORE_NAME,
        "currency": config.PRIMARY_CURRENCY,
        "stripePublishableKey": config.STRIPE_PUBLISHABLE_KEY,
        "payments": {"stripe": bool(config.STRIPE_SECRET_KEY and config.STRIPE_PUBLISHABLE_KEY)},
        "roleSource": config.ROLE_SOURCE,
    }


@app.get("/settings")
def get_site_settings():
    return pages.site_settings()


# Auth
class SignupDTO(BaseModel):
    full_name: str
    email: EmailStr
    password: str
    confirm_password: str


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordDTO(BaseModel):
    email: EmailStr
    redirect_to: Optional[str] = None


class ResetPasswordDTO(BaseModel):
    token: str
    password: str
    confirm_password: str


def session_response(session: Session) -> Dict:
    return {
        "access_token": session.access_token,
        "token_type": session.token_type,
        "expires_at": session.expires_at,
        "user": session.user,
    }


@app.post("/auth/signup")
def signup(data: SignupDTO, auth_provider: AuthProvider = Depends(get_auth_provider)):
    if data.password != data.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    session = auth_provider.sign_up(data.email, data.password, full_name=data.full_name)
    return session_response(session)


@app.post("/auth/login")
def login(data: LoginDTO, auth_provider: AuthProvider = Depends(get_auth_provider)):
    return session_response(auth_provider.sign_in_with_password(data.email, data.password))


@app.post("/auth/logout")
def logout(auth: AuthContext = Depends(require_user)):
    auth.sign_out()
    return {"ok": True}


@app.get("/auth/me")
def me(auth: AuthContext = Depends(require_user)):
    return {"user": auth.user, "role": auth.role, "isAdmin": auth.is_admin, "account": auth.account}


@app.post("/auth/forgot-password")
def forgot_password(data: ForgotPasswordDTO, auth_provider: AuthProvider = Depends(get_auth_provider)):
    auth_provider.reset_password_for_email(data.email, redirect_to=data.redirect_to)
    # Same answer whether or not the email is registered
    return {"ok": True}


@app.post("/auth/reset-password")
def reset_password(data: ResetPasswordDTO, auth_provider: AuthProvider = Depends(get_auth_provider)):
    if data.password != data.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    auth_provider.reset_password(data.token, data.password)
    return {"ok": True}


# Account / profile
class ProfileDTO(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None


@app.get("/account")
def get_account(auth: AuthContext = Depends(require_user)):
    return {
        "user": auth.user,
        "account": auth.account,
        "role": auth.role,
        "isAdmin": auth.is_admin,
        "accountTableExists": auth.account_table_exists,
    }


@app.put("/account")
def update_account(data: ProfileDTO, auth: AuthContext = Depends(require_user),
                   auth_provider: AuthProvider = Depends(get_auth_provider)):
    if auth.account_table_exists is not True and not auth.check_table_exists():
        raise HTTPException(status_code=409, detail="Account table is missing or not ready.")
    update = data.model_dump(exclude_unset=True, exclude_none=True)
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    if not database.update_document(ACCOUNTS, auth.user["id"], update):
        raise HTTPException(status_code=404, detail="Account not found")
    if "full_name" in update:
        auth_provider.update_user(auth.user["id"], user_metadata={"full_name": update["full_name"]})
    return database.get_document(ACCOUNTS, auth.user["id"])


# Products
@app.get("/products")
def list_products(q: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, sort: str = "name"):
    if sort not in SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"sort must be one of {', '.join(SORT_KEYS)}")
    return pages.storefront_listing(q, min_price, max_price, sort)


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return pages.product_detail(product_id)


# Reviews
class ReviewDTO(BaseModel):
    rating: int = Field(5, ge=1, le=5)
    comment: str = ""


@app.post("/products/{product_id}/reviews", status_code=201)
def create_review(product_id: str, data: ReviewDTO, auth: AuthContext = Depends(require_user)):
    product = database.get_document("product", product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    metadata = auth.user.get("user_metadata") or {}
    review = Review(
        product_id=product["id"],
        product_name=product["name"],
        user_email=auth.user["email"],
        user_name=metadata.get("full_name") or "Anonymous",
        rating=data.rating,
        comment=data.comment,
        status="approved",
    )
    review_id = database.create_document("review", review)
    return database.get_document("review", review_id)


# Cart
class CartAddDTO(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_variations: Dict[str, str] = {}


class CartQuantityDTO(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)


@app.get("/cart")
def cart_get(cart: CartStore = Depends(get_cart)):
    return cart.to_dict()


@app.post("/cart")
def cart_add(data: CartAddDTO, cart: CartStore = Depends(get_cart)):
    product = database.get_document("product", data.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    cart.add(product, data.quantity, data.selected_variations)
    return cart.to_dict()


@app.patch("/cart")
def cart_set_quantity(data: CartQuantityDTO, cart: CartStore = Depends(get_cart)):
    try:
        cart.set_quantity(data.product_id, data.quantity)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return cart.to_dict()


@app.delete("/cart/{product_id}")
def cart_remove(product_id: str, cart: CartStore = Depends(get_cart)):
    cart.remove(product_id)
    return cart.to_dict()


@app.delete("/cart")
def cart_clear(cart: CartStore = Depends(get_cart)):
    cart.clear()
    return cart.to_dict()


# Checkout
class CheckoutDTO(BaseModel):
    customer_email: Optional[EmailStr] = None


@app.post("/checkout")
def checkout(data: CheckoutDTO, cart: CartStore = Depends(get_cart), auth: AuthContext = Depends(get_auth),
             functions_client: FunctionsClient = Depends(get_functions_client)):
    email = data.customer_email or (auth.user or {}).get("email")
    result = CheckoutInitiator(functions_client).start(cart, customer_email=email)
    if not result.ok:
        return JSONResponse(status_code=400, content={"error": result.message})
    return RedirectResponse(result.redirect_url, status_code=303)


# Orders
class PlaceOrderDTO(BaseModel):
    customer_name: str
    customer_email: EmailStr


@app.post("/orders", status_code=201)
def place_order(data: PlaceOrderDTO, cart: CartStore = Depends(get_cart)):
    if not cart.items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    order = Order(
        customer_name=data.customer_name,
        customer_email=data.customer_email,
        items=[OrderItem(product_id=i.id, name=i.name, price=i.price, quantity=i.quantity,
                         image=i.image, selected_variations=i.selected_variations) for i in cart.items],
        total=cart.subtotal,
        status="pending",
    )
    order_id = database.create_document("order", order)
    logger.info("Order %s placed by %s", order_id, data.customer_email)
    # clear cart after the order is stored
    cart.clear()
    return database.get_document("order", order_id)


@app.get("/orders")
def list_orders(auth: AuthContext = Depends(require_user)):
    return pages.orders_for(auth.user["email"])


@app.get("/orders/{order_id}")
def get_order(order_id: str, auth: AuthContext = Depends(require_user)):
    return pages.order_for(auth, order_id)


# Sample seed endpoint (dev only)
@app.post("/dev/seed")
def seed():
    # Create admin if not exists
    if not database.find_document(USERS, {"email": "admin@alpineguardiansys.com"}):
        admin_user = AuthUser(
            email="admin@alpineguardiansys.com",
            password_hash=hash_password("admin123"),
            user_metadata={"full_name": "Admin", "role": "admin"},
            email_confirmed=True,
        )
        admin_id = database.create_document(USERS, admin_user)
        if database.collection_exists(ACCOUNTS):
            account = Account(email=admin_user.email, full_name="Admin", role="admin", verified=True)
            database.create_document(ACCOUNTS, account, doc_id=database.parse_id(admin_id))
    if database.db["product"].count_documents({}) == 0:
        database.create_document("product", Product(
            name="Avalanche Kit",
            price=149.0,
            description="Beacon, probe and shovel checklist templates for patrol rooms",
            rating=5,
            variations=[Variation(name="Size", options=[
                VariationOption(value="Standard", price_adjustment=0),
                VariationOption(value="Extended", price_adjustment=25),
            ])],
        ))
        database.create_document("product", Product(
            name="Radio Beacon",
            price=89.5,
            description="Dispatch log and radio protocol pack",
            rating=4,
        ))
        database.create_document("product", Product(
            name="Patrol Scheduler",
            price=29.0,
            description="Shift scheduling for volunteer and paid patrollers",
            is_subscription=True,
            subscription_interval="monthly",
        ))
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
