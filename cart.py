"""
Cart store.

A cart is an ordered list of lines keyed by product id, kept in a small
key/value "local storage" under the key "cart" as JSON. Every mutation writes
the whole cart back before returning.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from fastapi import Header, Query

import database
from schemas import CartItem

logger = logging.getLogger("patrolstore.cart")

CART_KEY = "cart"
CART_STORAGE = "cart_storage"


# Storage backends

class LocalStorage(ABC):
    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage(LocalStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class DocumentStorage(LocalStorage):
    """Local storage for one browser, identified by its cart key."""

    def __init__(self, cart_key: str):
        self.cart_key = cart_key

    def get_item(self, key: str) -> Optional[str]:
        doc = database.db[CART_STORAGE].find_one({"_id": self.cart_key}) or {}
        return doc.get("items", {}).get(key)

    def set_item(self, key: str, value: str) -> None:
        database.db[CART_STORAGE].update_one(
            {"_id": self.cart_key},
            {"$set": {f"items.{key}": value, "updated_date": database.now()}},
            upsert=True,
        )

    def remove_item(self, key: str) -> None:
        database.db[CART_STORAGE].update_one({"_id": self.cart_key}, {"$unset": {f"items.{key}": ""}})


# Pricing

def resolve_price(product: Dict[str, Any], selected_variations: Optional[Dict[str, str]] = None) -> float:
    """Base price plus the adjustment of every selected variation option."""
    adjustment = 0.0
    for var_name, var_value in (selected_variations or {}).items():
        variation = next((v for v in product.get("variations") or [] if v.get("name") == var_name), None)
        option = next((o for o in (variation or {}).get("options") or [] if o.get("value") == var_value), None)
        adjustment += float((option or {}).get("price_adjustment") or 0)
    return round(float(product.get("price") or 0) + adjustment, 2)


class CartStore:
    def __init__(self, storage: LocalStorage, key: Optional[str] = None):
        self.storage = storage
        # browser cart key, None for a cart that lives only in memory
        self.key = key
        self.items: List[CartItem] = self._hydrate()

    def _hydrate(self) -> List[CartItem]:
        raw = self.storage.get_item(CART_KEY)
        if not raw:
            return []
        try:
            return [CartItem(**i) for i in json.loads(raw)]
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable cart: %s", exc)
            return []

    def _persist(self) -> None:
        self.storage.set_item(CART_KEY, json.dumps([i.model_dump() for i in self.items]))

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.id == product_id), None)

    @property
    def subtotal(self) -> float:
        return round(sum(i.price * i.quantity for i in self.items), 2)

    @property
    def count(self) -> int:
        return sum(i.quantity for i in self.items)

    def add(self, product: Dict[str, Any], quantity: int = 1,
            selected_variations: Optional[Dict[str, str]] = None) -> CartItem:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        existing = self._find(str(product["id"]))
        if existing:
            existing.quantity += quantity
            line = existing
        else:
            line = CartItem(
                id=str(product["id"]),
                name=product["name"],
                price=resolve_price(product, selected_variations),
                quantity=quantity,
                image=product.get("image"),
                is_subscription=bool(product.get("is_subscription")),
                stripe_price_id=product.get("stripe_price_id"),
                stripe_recurring_price_id=product.get("stripe_recurring_price_id"),
                selected_variations=selected_variations or {},
            )
            self.items.append(line)
        self._persist()
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("quantity cannot be negative")
        if quantity == 0:
            self.remove(product_id)
            return
        line = self._find(product_id)
        if line is None:
            raise KeyError(product_id)
        line.quantity = quantity
        self._persist()

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.id != product_id]
        self._persist()

    def clear(self) -> None:
        self.items = []
        self.storage.remove_item(CART_KEY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [i.model_dump() for i in self.items],
            "count": self.count,
            "subtotal": self.subtotal,
        }


def get_cart(x_cart_key: Optional[str] = Header(default=None),
             cart_key: Optional[str] = Query(default=None)) -> CartStore:
    """Cart for the calling browser; without a cart key the cart lives only for this request.

    The key normally comes from the X-Cart-Key header. Redirects back from the
    payment provider cannot carry headers, so the cart_key query parameter is
    accepted as well.
    """
    key = x_cart_key or cart_key
    if not key:
        return CartStore(MemoryStorage())
    return CartStore(DocumentStorage(key), key=key)
