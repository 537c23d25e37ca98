import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from app.adapters.payment_mirror import PaymentMirror, is_active
from app.models.product import Product, StockStatus
from app.repositories.product_repo import DuplicateSkuError, ProductRepository
from app.schemas.product_schema import ProductCreate, ProductQuery, ProductUpdate

log = logging.getLogger("product_service")

STAGE_VALIDATING = "validating"
STAGE_CREATING_MIRROR = "creating mirror"
STAGE_UPDATING_MIRROR = "updating mirror"
STAGE_DEACTIVATING_MIRROR = "deactivating mirror"
STAGE_PERSISTING = "persisting record"


@contextmanager
def sync_stage(label: str):
    """
    Tag any exception escaping the block with the stage it failed in and let
    it propagate unchanged. The innermost stage wins.
    """
    try:
        yield
    except Exception as e:
        if getattr(e, "stage", None) is None:
            e.stage = label
        raise


class ProductService:
    """
    Keeps a catalog record and its payment mirror record in step.

    The two systems share no transaction. Writes go to the mirror first and
    the store second; a failure in between is reported to the caller and
    logged, never compensated. Nothing is retried.
    """

    def __init__(self, db: Session, mirror: PaymentMirror):
        self.db = db
        self.repo = ProductRepository(db)
        self.mirror = mirror

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def get(self, product_id: str) -> Optional[Product]:
        return self.repo.get(product_id)

    def list(self, params: ProductQuery) -> List[Product]:
        return self.repo.list(params)

    def create(self, data: ProductCreate) -> Product:
        with sync_stage(STAGE_VALIDATING):
            # cheap guard against minting a mirror record for a SKU the store will refuse;
            # a concurrent create can still slip past it and is caught at persistence
            if self.repo.get_by_sku(data.sku):
                raise DuplicateSkuError(data.sku)

        log.info("creating mirror product for sku=%s", data.sku)
        with sync_stage(STAGE_CREATING_MIRROR):
            mirrored = self.mirror.create_product(data.model_dump(mode="json", by_alias=True))

        log.info("persisting product sku=%s (mirror=%s)", data.sku, mirrored["id"])
        try:
            with sync_stage(STAGE_PERSISTING):
                return self.repo.add(
                    data.model_dump(by_alias=True),
                    payment_product_ref=mirrored["id"],
                    payment_price_ref=mirrored["default_price"],
                )
        except Exception:
            log.error(
                "store write failed for sku=%s; mirror product %s is orphaned",
                data.sku,
                mirrored["id"],
                exc_info=True,
            )
            raise

    def update(self, product_id: str, data: ProductUpdate) -> Optional[Product]:
        product = self.repo.get(product_id)
        if not product:
            return None

        changes = data.changes()
        if not changes:
            return product

        with sync_stage(STAGE_VALIDATING):
            # the mirror is keyed by SKU; a rename onto a taken SKU must not reach it
            if "sku" in changes:
                holder = self.repo.get_by_sku(changes["sku"])
                if holder is not None and holder.id != product.id:
                    raise DuplicateSkuError(changes["sku"])

        mirror_changes = data.changes(mode="json")
        # the shipping box is rebuilt from both values, so send the stored counterpart along
        if "dimensions" in mirror_changes and "weight" not in mirror_changes:
            mirror_changes["weight"] = product.weight
        elif "weight" in mirror_changes and "dimensions" not in mirror_changes:
            mirror_changes["dimensions"] = product.dimensions

        status = mirror_changes.get("stockStatus", StockStatus(product.stock_status).value)
        sku = product.sku

        log.info("updating mirror product for sku=%s fields=%s", sku, sorted(changes))
        with sync_stage(STAGE_UPDATING_MIRROR):
            mirrored = self.mirror.update_product(sku, mirror_changes, active=is_active(status))

        try:
            with sync_stage(STAGE_PERSISTING):
                product.payment_product_ref = mirrored["id"]
                if "price" in changes:
                    product.payment_price_ref = mirrored["default_price"]
                return self.repo.update(product, changes)
        except Exception:
            log.error(
                "store write failed for sku=%s after mirror update; mirror %s is ahead of the store",
                sku,
                mirrored["id"],
                exc_info=True,
            )
            raise

    def soft_delete(self, product_id: str) -> bool:
        product = self.repo.get(product_id)
        if not product:
            return False

        # the mirror record is archived, never removed, to keep price history
        with sync_stage(STAGE_DEACTIVATING_MIRROR):
            self.mirror.deactivate(product.sku)

        with sync_stage(STAGE_PERSISTING):
            product.deleted_at = self._now()
            product.stock_status = StockStatus.DISCONTINUED
            self.repo.save(product)
        log.info("soft-deleted product %s (sku=%s)", product.id, product.sku)
        return True

    def hard_delete(self, product_id: str) -> bool:
        """Remove the store record only; the mirror is left as it is."""
        removed = self.repo.delete(product_id)
        if removed:
            log.info("hard-deleted product %s", product_id)
        return removed
