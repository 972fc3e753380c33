import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

import database
from auth import ACCOUNTS, USERS, AuthContext, require_admin
from checkout import FunctionError, FunctionsClient, get_functions_client
from schemas import Order, OrderUpdate, Product, ProductUpdate, ReviewUpdate, Role, SiteSettings
from storage import StorageError, template_bucket

logger = logging.getLogger("patrolstore.admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_or_404(collection: str, doc_id: str, label: str) -> Dict[str, Any]:
    doc = database.get_document(collection, doc_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def _update_or_404(collection: str, doc_id: str, update: Dict[str, Any], label: str) -> Dict[str, Any]:
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    if not database.update_document(collection, doc_id, update):
        raise HTTPException(status_code=404, detail=f"{label} not found")
    logger.info("Updated %s %s", collection, doc_id)
    return database.get_document(collection, doc_id)


def _delete_or_404(collection: str, doc_id: str, label: str) -> Dict[str, Any]:
    if not database.delete_document(collection, doc_id):
        raise HTTPException(status_code=404, detail=f"{label} not found")
    logger.info("Deleted %s %s", collection, doc_id)
    return {"id": doc_id, "deleted": True}


# Products

def _normalize_product(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("is_subscription") is False:
        data["subscription_interval"] = None
    return data


@router.get("/products")
def list_products():
    return database.get_documents("product")


@router.post("/products", status_code=201)
def create_product(data: Product):
    product_id = database.create_document("product", _normalize_product(data.model_dump()))
    logger.info("Created product %s", product_id)
    return database.get_document("product", product_id)


@router.put("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate):
    update = _normalize_product(data.model_dump(exclude_unset=True))
    return _update_or_404("product", product_id, update, "Product")


@router.delete("/products/{product_id}")
def delete_product(product_id: str):
    return _delete_or_404("product", product_id, "Product")


@router.post("/templates", status_code=201)
def upload_template(file: UploadFile = File(...)):
    bucket = template_bucket()
    try:
        key = bucket.upload(file.filename, file.file)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"key": key, "url": bucket.get_public_url(key)}


# Orders

@router.get("/orders")
def list_orders():
    return database.get_documents("order", sort=database.NEWEST_FIRST)


@router.post("/orders", status_code=201)
def create_order(data: Order):
    order_id = database.create_document("order", data)
    return database.get_document("order", order_id)


@router.put("/orders/{order_id}")
def update_order(order_id: str, data: OrderUpdate):
    return _update_or_404("order", order_id, data.model_dump(exclude_unset=True), "Order")


@router.delete("/orders/{order_id}")
def delete_order(order_id: str):
    return _delete_or_404("order", order_id, "Order")


# Reviews

@router.get("/reviews")
def list_reviews():
    return database.get_documents("review", sort=database.NEWEST_FIRST)


@router.put("/reviews/{review_id}")
def update_review(review_id: str, data: ReviewUpdate):
    return _update_or_404("review", review_id, data.model_dump(exclude_unset=True), "Review")


@router.delete("/reviews/{review_id}")
def delete_review(review_id: str):
    return _delete_or_404("review", review_id, "Review")


# Users

class RoleIn(BaseModel):
    role: Role


@router.get("/users")
def list_users():
    return database.get_documents(ACCOUNTS, sort=database.NEWEST_FIRST)


@router.put("/users/{user_id}/role")
def change_user_role(user_id: str, data: RoleIn, auth: AuthContext = Depends(require_admin),
                     functions: FunctionsClient = Depends(get_functions_client)):
    try:
        return functions.invoke("update-user-role", {"userId": user_id, "newRole": data.role},
                                access_token=auth.access_token)
    except FunctionError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=exc.message)


# Site settings

@router.get("/settings")
def get_settings():
    return database.find_document("sitesettings", {}) or {}


@router.put("/settings")
def save_settings(data: SiteSettings):
    settings = database.upsert_singleton("sitesettings", data)
    logger.info("Saved site settings")
    return settings


# Analytics

@router.get("/analytics")
def analytics():
    orders = database.get_documents("order")
    by_status = {status: 0 for status in ("pending", "completed", "cancelled")}
    for o in orders:
        by_status[o.get("status", "pending")] = by_status.get(o.get("status", "pending"), 0) + 1
    return {
        "users": database.db[USERS].count_documents({}),
        "products": database.db["product"].count_documents({}),
        "orders": len(orders),
        "revenue": round(sum(float(o.get("total") or 0) for o in orders), 2),
        "ordersByStatus": by_status,
    }
