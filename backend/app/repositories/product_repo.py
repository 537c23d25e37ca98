import logging
from typing import Dict, List, Optional

from sqlalchemy import case, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.product import SEARCH_WEIGHTS, Product, ProductTag, ProductValidationError
from app.schemas.product_schema import ProductQuery

log = logging.getLogger("product_repo")

SORT_COLUMNS = {
    "price": Product.price,
    "createdAt": Product.created_at,
    "name": Product.name,
}

# camelCase payload keys stored as a single column
_SCALAR_FIELDS = {
    "sku": "sku",
    "name": "name",
    "description": "description",
    "category": "category",
    "price": "price",
    "stockStatus": "stock_status",
    "dimensions": "dimensions",
    "weight": "weight",
}


class DuplicateSkuError(Exception):
    def __init__(self, sku: str):
        super().__init__(f"A product with SKU {sku} already exists")
        self.sku = sku


def apply_fields(product: Product, fields: Dict) -> Product:
    """Copy camelCase payload fields onto the model; sub-objects replace their stored values."""
    for key, attr in _SCALAR_FIELDS.items():
        if key in fields:
            setattr(product, attr, fields[key])
    if "material" in fields:
        product.set_material(fields["material"])
    if "edition" in fields:
        product.set_edition(fields["edition"])
    if "images" in fields:
        product.set_images(fields["images"])
    if "tags" in fields:
        product.tags = list(fields["tags"] or [])
    return product


def _like(term: str) -> str:
    # search terms are literal text, not LIKE patterns
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _term_filter(term: str):
    like = _like(term)
    return or_(
        Product.name.ilike(like, escape="\\"),
        Product.tag_rows.any(ProductTag.tag.ilike(like, escape="\\")),
        Product.material_primary.ilike(like, escape="\\"),
        Product.description.ilike(like, escape="\\"),
    )


def _relevance(terms: List[str]):
    score = None
    for term in terms:
        like = _like(term)
        parts = [
            case((Product.name.ilike(like, escape="\\"), SEARCH_WEIGHTS["name"]), else_=0),
            case((Product.tag_rows.any(ProductTag.tag.ilike(like, escape="\\")), SEARCH_WEIGHTS["tags"]), else_=0),
            case((Product.material_primary.ilike(like, escape="\\"), SEARCH_WEIGHTS["material_primary"]), else_=0),
            case((Product.description.ilike(like, escape="\\"), SEARCH_WEIGHTS["description"]), else_=0),
        ]
        for part in parts:
            score = part if score is None else score + part
    return score


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: str) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def get_by_sku(self, sku: str) -> Optional[Product]:
        return self.db.query(Product).filter(Product.sku == sku.strip().upper()).first()

    def list(self, params: ProductQuery) -> List[Product]:
        """
        Filters are AND-combined; a missing parameter leaves that field
        unconstrained. Soft-deleted rows are returned like any other.
        """
        query = self.db.query(Product)
        if params.category:
            query = query.filter(Product.category == params.category)
        if params.stock_status:
            query = query.filter(Product.stock_status == params.stock_status)
        if params.min_price is not None:
            query = query.filter(Product.price >= params.min_price)
        if params.max_price is not None:
            query = query.filter(Product.price <= params.max_price)

        terms = params.search.split() if params.search else []
        if terms:
            # any term may match, as a text index would
            query = query.filter(or_(*[_term_filter(t) for t in terms]))

        column = SORT_COLUMNS[params.sort_by]
        descending = params.sort_order == "desc"
        order = [column.desc() if descending else column.asc()]
        if terms:
            order.append(_relevance(terms).desc())
        # stable pages: ties broken by id, in the same direction as the sort
        order.append(Product.id.desc() if descending else Product.id.asc())

        return (
            query.order_by(*order)
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
            .all()
        )

    def all_skus(self) -> List[str]:
        return [sku for (sku,) in self.db.query(Product.sku).all()]

    def add(self, fields: Dict, payment_product_ref: str = None, payment_price_ref: str = None) -> Product:
        product = apply_fields(Product(), fields)
        product.payment_product_ref = payment_product_ref
        product.payment_price_ref = payment_price_ref
        self.db.add(product)
        self.save(product)
        return product

    def update(self, product: Product, fields: Dict) -> Product:
        apply_fields(product, fields)
        self.save(product)
        return product

    def save(self, product: Product):
        """
        Commit pending changes. On any failure the session is rolled back so
        the stored record is left exactly as it was.
        """
        sku = product.sku
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if "sku" in str(e.orig).lower():
                raise DuplicateSkuError(sku) from e
            raise ProductValidationError("product", f"constraint violated: {e.orig}") from e
        except ProductValidationError:
            self.db.rollback()
            raise
        self.db.refresh(product)

    def delete(self, product_id: str) -> bool:
        product = self.get(product_id)
        if not product:
            return False
        self.db.delete(product)
        self.db.commit()
        return True
