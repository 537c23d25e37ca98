import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.adapters.payment_mirror import PaymentMirror, PaymentMirrorError, get_payment_mirror
from app.auth import AdminUser, require_admin
from app.db import get_db
from app.models.product import ProductCategory, ProductValidationError, StockStatus
from app.repositories.product_repo import DuplicateSkuError
from app.schemas.product_schema import ProductCreate, ProductOut, ProductQuery, ProductUpdate
from app.services.product_service import (
    STAGE_CREATING_MIRROR,
    STAGE_DEACTIVATING_MIRROR,
    STAGE_UPDATING_MIRROR,
    ProductService,
)

log = logging.getLogger("routes.catalogue")

router = APIRouter(tags=["catalogue"])

_MIRROR_FAILURES = {
    STAGE_CREATING_MIRROR: "payment mirror creation failed",
    STAGE_UPDATING_MIRROR: "payment mirror update failed",
    STAGE_DEACTIVATING_MIRROR: "payment mirror deactivation failed",
}


def _not_found():
    return JSONResponse(status_code=404, content={"error": "Product not found"})


def _error_response(error: str, e: Exception) -> JSONResponse:
    """Translate a service failure into a status code and a client-safe body."""
    stage = getattr(e, "stage", None)
    if isinstance(e, (ProductValidationError, DuplicateSkuError)):
        return JSONResponse(status_code=400, content={"error": error, "details": str(e)})
    if isinstance(e, PaymentMirrorError):
        reason = _MIRROR_FAILURES.get(stage, "payment mirror request failed")
        log.warning("%s (%s): %s", error, stage, e)
        return JSONResponse(status_code=400, content={"error": error, "details": f"{reason}: {e}"})
    log.exception("%s (stage=%s)", error, stage)
    return JSONResponse(status_code=500, content={"error": error, "details": "Internal server error"})


@router.get("", summary="List products")
def list_products(
    category: Optional[ProductCategory] = Query(None),
    stock_status: Optional[StockStatus] = Query(None, alias="stockStatus"),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    search: Optional[str] = Query(None, description="free-text search"),
    sort_by: Literal["price", "createdAt", "name"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
):
    params = ProductQuery(
        category=category,
        stock_status=stock_status,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    try:
        products = ProductService(db, mirror).list(params)
    except Exception as e:
        return _error_response("Failed to fetch products", e)
    return [ProductOut.from_model(p).to_json() for p in products]


@router.get("/{product_id}", summary="Get product by id")
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
):
    p = ProductService(db, mirror).get(product_id)
    if not p:
        return _not_found()
    return ProductOut.from_model(p).to_json()


@router.post("", status_code=201, summary="Create product")
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
    admin: AdminUser = Depends(require_admin),
):
    try:
        p = ProductService(db, mirror).create(payload)
    except Exception as e:
        return _error_response("Failed to create product", e)
    log.info("product %s created by %s", p.id, admin.sub)
    return ProductOut.from_model(p).to_json()


@router.patch("/{product_id}", summary="Update product")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
    admin: AdminUser = Depends(require_admin),
):
    try:
        p = ProductService(db, mirror).update(product_id, payload)
    except Exception as e:
        return _error_response("Failed to update product", e)
    if not p:
        return _not_found()
    return ProductOut.from_model(p).to_json()


@router.delete("/{product_id}", summary="Soft delete product")
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
    admin: AdminUser = Depends(require_admin),
):
    try:
        deleted = ProductService(db, mirror).soft_delete(product_id)
    except Exception as e:
        return _error_response("Failed to delete product", e)
    if not deleted:
        return _not_found()
    return {"message": "Product deleted successfully"}


@router.delete("/{product_id}/hard", summary="Permanently delete product")
def hard_delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
    admin: AdminUser = Depends(require_admin),
):
    try:
        deleted = ProductService(db, mirror).hard_delete(product_id)
    except Exception as e:
        return _error_response("Failed to permanently delete product", e)
    if not deleted:
        return _not_found()
    return {"message": "Product permanently deleted"}
