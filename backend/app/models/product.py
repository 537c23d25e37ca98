import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.orm import relationship, validates

from app.db import Base


class ProductCategory(str, enum.Enum):
    ROMAN = "ROMAN"
    GREEK = "GREEK"
    BUST = "BUST"


class StockStatus(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRE_ORDER = "PRE_ORDER"
    DISCONTINUED = "DISCONTINUED"


# relative weights of the fields matched by free-text search
SEARCH_WEIGHTS = {
    "name": 10,
    "tags": 5,
    "material_primary": 3,
    "description": 1,
}


class ProductValidationError(ValueError):
    """Raised when a product would be persisted in an inconsistent state."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class ProductTag(Base):
    __tablename__ = "product_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(
        String(32), ForeignKey("products.id"), nullable=False, index=True
    )
    tag = Column(String(64), nullable=False, index=True)

    product = relationship("Product", back_populates="tag_rows")


class Product(Base):
    __tablename__ = "products"

    id = Column(String(32), primary_key=True, default=_new_id)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(256), nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(Enum(ProductCategory, native_enum=False, length=16), nullable=False, index=True)
    price = Column(Float, nullable=False, index=True)
    stock_status = Column(Enum(StockStatus, native_enum=False, length=16), nullable=False, index=True)

    # {"height", "width", "depth", "unit": INCHES|CM}
    dimensions = Column(JSON, nullable=False)
    # {"value", "unit": LBS|KG}
    weight = Column(JSON, nullable=False)

    material_primary = Column(String(128), nullable=False)
    material_finish = Column(String(128), nullable=True)
    material_color = Column(String(64), nullable=True)

    edition_is_limited = Column(Boolean, nullable=False, default=False)
    edition_run_size = Column(Integer, nullable=False)
    edition_available_quantity = Column(Integer, nullable=False)
    edition_sold_count = Column(Integer, nullable=False, default=0)
    edition_mold_creation_date = Column(Date, nullable=True)

    images_thumbnail = Column(String(1024), nullable=False)
    images_main = Column(JSON, nullable=False, default=list)
    images_three_sixty = Column(JSON, nullable=True)

    payment_product_ref = Column(String(128), nullable=True)
    payment_price_ref = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    tag_rows = relationship(
        "ProductTag",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductTag.id",
    )
    tags = association_proxy("tag_rows", "tag", creator=lambda t: ProductTag(tag=t))

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("edition_run_size >= 1", name="ck_products_run_size_positive"),
        CheckConstraint(
            "edition_available_quantity >= 0 AND edition_sold_count >= 0",
            name="ck_products_edition_counts_non_negative",
        ),
        CheckConstraint(
            "edition_available_quantity + edition_sold_count = edition_run_size",
            name="ck_products_edition_balance",
        ),
        Index("ix_products_category_stock_status", "category", "stock_status"),
        Index("ix_products_price_category", "price", "category"),
    )

    @validates("sku")
    def _normalize_sku(self, key, value):
        if value is None:
            return value
        value = value.strip().upper()
        if not value:
            raise ProductValidationError("sku", "SKU must not be blank")
        return value

    def set_edition(self, edition: dict):
        """Replace the whole edition sub-object; partial edition writes are not merged."""
        self.edition_is_limited = bool(edition.get("isLimited", False))
        self.edition_run_size = edition.get("runSize")
        self.edition_available_quantity = edition.get("availableQuantity")
        self.edition_sold_count = edition.get("soldCount", 0)
        self.edition_mold_creation_date = edition.get("moldCreationDate")

    def set_material(self, material: dict):
        self.material_primary = material.get("primary")
        self.material_finish = material.get("finish")
        self.material_color = material.get("color")

    def set_images(self, images: dict):
        self.images_thumbnail = images.get("thumbnail")
        self.images_main = list(images.get("main") or [])
        three_sixty = images.get("threeSixty")
        self.images_three_sixty = list(three_sixty) if three_sixty is not None else None

    def edition_dict(self) -> dict:
        return {
            "isLimited": self.edition_is_limited,
            "runSize": self.edition_run_size,
            "availableQuantity": self.edition_available_quantity,
            "soldCount": self.edition_sold_count,
            "moldCreationDate": self.edition_mold_creation_date,
        }

    def material_dict(self) -> dict:
        return {
            "primary": self.material_primary,
            "finish": self.material_finish,
            "color": self.material_color,
        }

    def images_dict(self) -> dict:
        return {
            "thumbnail": self.images_thumbnail,
            "main": list(self.images_main or []),
            "threeSixty": list(self.images_three_sixty) if self.images_three_sixty is not None else None,
        }

    def check_invariants(self):
        if self.price is None or self.price < 0:
            raise ProductValidationError("price", "price must be a non-negative number")

        counts = {
            "edition.runSize": self.edition_run_size,
            "edition.availableQuantity": self.edition_available_quantity,
            "edition.soldCount": self.edition_sold_count,
        }
        for field, value in counts.items():
            if value is None or isinstance(value, bool) or not isinstance(value, int):
                raise ProductValidationError(field, "must be a whole number")
        if self.edition_run_size < 1:
            raise ProductValidationError("edition.runSize", "run size must be at least 1")
        if self.edition_available_quantity < 0:
            raise ProductValidationError("edition.availableQuantity", "must not be negative")
        if self.edition_sold_count < 0:
            raise ProductValidationError("edition.soldCount", "must not be negative")
        if self.edition_available_quantity + self.edition_sold_count != self.edition_run_size:
            raise ProductValidationError(
                "edition",
                "Available quantity plus sold count must equal run size",
            )

    def __repr__(self):
        return f"<Product sku={self.sku} name={self.name}>"


@event.listens_for(Product, "before_insert")
@event.listens_for(Product, "before_update")
def _validate_before_write(mapper, connection, target):
    target.check_invariants()
