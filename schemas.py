"""
Patrol Store Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name. Example: class Product -> collection "product", class SiteSettings -> "sitesettings".

These schemas are used for validation before inserting/updating documents.
"""
from typing import List, Optional, Dict, Literal
from pydantic import BaseModel, Field, EmailStr

Role = Literal["admin", "user"]
OrderStatus = Literal["pending", "completed", "cancelled"]
ReviewStatus = Literal["pending", "approved", "rejected"]
SubscriptionInterval = Literal["weekly", "monthly", "yearly"]


class AuthUser(BaseModel):
    """Row in the auth provider's user directory, stored in "auth_user" rather than "authuser"."""
    email: EmailStr
    password_hash: str
    user_metadata: Dict[str, str] = Field(default_factory=dict, description="full_name, role")
    email_confirmed: bool = False


class Account(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    role: Role = "user"
    verified: bool = False


class VariationOption(BaseModel):
    value: str
    price_adjustment: float = 0.0


class Variation(BaseModel):
    name: str
    options: List[VariationOption] = []


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    image: Optional[str] = None
    images: List[str] = []
    rating: int = Field(5, ge=1, le=5)
    is_subscription: bool = False
    subscription_interval: Optional[SubscriptionInterval] = None
    stripe_price_id: Optional[str] = None
    stripe_recurring_price_id: Optional[str] = None
    template_url: Optional[str] = None
    variations: List[Variation] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    is_subscription: Optional[bool] = None
    subscription_interval: Optional[SubscriptionInterval] = None
    stripe_price_id: Optional[str] = None
    stripe_recurring_price_id: Optional[str] = None
    template_url: Optional[str] = None
    variations: Optional[List[Variation]] = None


class OrderItem(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    selected_variations: Dict[str, str] = {}


class Order(BaseModel):
    customer_name: str
    customer_email: EmailStr
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"


class OrderUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    items: Optional[List[OrderItem]] = None
    total: Optional[float] = Field(None, ge=0)
    status: Optional[OrderStatus] = None


class Review(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    user_name: str = "Anonymous"
    user_email: EmailStr
    rating: int = Field(5, ge=1, le=5)
    comment: str = ""
    status: ReviewStatus = "pending"


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None
    status: Optional[ReviewStatus] = None


class SiteSettings(BaseModel):
    logo_url: Optional[str] = None
    tagline: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    facebook_url: Optional[str] = None
    twitter_url: Optional[str] = None
    instagram_url: Optional[str] = None
    linkedin_url: Optional[str] = None


class CartItem(BaseModel):
    id: str
    name: str
    price: float  # resolved price (base price plus variation adjustments)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    is_subscription: bool = False
    stripe_price_id: Optional[str] = None
    stripe_recurring_price_id: Optional[str] = None
    selected_variations: Dict[str, str] = {}
