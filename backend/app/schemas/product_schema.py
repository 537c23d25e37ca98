# backend/app/schemas/product_schema.py
from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.models.product import Product, ProductCategory, StockStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Dimensions(CamelModel):
    height: float = Field(..., ge=0)
    width: float = Field(..., ge=0)
    depth: float = Field(..., ge=0)
    unit: Literal["INCHES", "CM"]


class Weight(CamelModel):
    value: float = Field(..., ge=0)
    unit: Literal["LBS", "KG"]


class Material(CamelModel):
    primary: str = Field(..., min_length=1)
    finish: Optional[str] = None
    color: Optional[str] = None


class Edition(CamelModel):
    is_limited: bool
    run_size: int = Field(..., ge=1)
    available_quantity: int = Field(..., ge=0)
    sold_count: int = Field(0, ge=0)
    mold_creation_date: Optional[date] = None

    @model_validator(mode="after")
    def _balanced(self):
        if self.available_quantity + self.sold_count != self.run_size:
            raise ValueError("Available quantity plus sold count must equal run size")
        return self


class Images(CamelModel):
    thumbnail: str = Field(..., min_length=1)
    main: List[str]
    three_sixty: Optional[List[str]] = None


def _normalize_sku(value: str) -> str:
    value = value.strip().upper()
    if not value:
        raise ValueError("SKU must not be blank")
    return value


Sku = Annotated[str, AfterValidator(_normalize_sku)]


class _ProductFields(CamelModel):
    def changes(self, mode: str = "python") -> dict:
        """
        Explicitly supplied top-level fields, keyed by their camelCase name.
        Nested objects are dumped whole so a sub-object always replaces its
        stored counterpart.
        """
        out = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            key = type(self).model_fields[name].alias or name
            if isinstance(value, BaseModel):
                value = value.model_dump(mode=mode, by_alias=True)
            elif mode == "json" and hasattr(value, "value"):
                value = value.value
            out[key] = value
        return out


class ProductCreate(_ProductFields):
    sku: Sku
    name: str = Field(..., min_length=1)
    description: str
    category: ProductCategory
    price: float = Field(..., ge=0)
    stock_status: StockStatus
    dimensions: Dimensions
    weight: Weight
    material: Material
    edition: Edition
    images: Images
    tags: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v):
        return v.strip()


class ProductUpdate(_ProductFields):
    sku: Optional[Sku] = None
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, ge=0)
    stock_status: Optional[StockStatus] = None
    dimensions: Optional[Dimensions] = None
    weight: Optional[Weight] = None
    material: Optional[Material] = None
    edition: Optional[Edition] = None
    images: Optional[Images] = None
    tags: Optional[List[str]] = None

    @model_validator(mode="after")
    def _no_explicit_nulls(self):
        # tags is the only optional field on a stored product
        for name in self.model_fields_set:
            if name != "tags" and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} may not be null")
        return self


class ProductOut(CamelModel):
    id: str
    sku: str
    name: str
    description: str
    category: ProductCategory
    price: float
    stock_status: StockStatus
    dimensions: Dimensions
    weight: Weight
    material: Material
    edition: Edition
    images: Images
    tags: List[str] = []
    payment_product_ref: Optional[str] = None
    payment_price_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, p: Product) -> "ProductOut":
        return cls(
            id=str(p.id),
            sku=p.sku,
            name=p.name,
            description=p.description,
            category=p.category,
            price=p.price,
            stock_status=p.stock_status,
            dimensions=p.dimensions,
            weight=p.weight,
            material=p.material_dict(),
            edition=p.edition_dict(),
            images=p.images_dict(),
            tags=list(p.tags),
            payment_product_ref=p.payment_product_ref,
            payment_price_ref=p.payment_price_ref,
            created_at=p.created_at,
            updated_at=p.updated_at,
            deleted_at=p.deleted_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ProductQuery(CamelModel):
    category: Optional[ProductCategory] = None
    stock_status: Optional[StockStatus] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    search: Optional[str] = None
    sort_by: Literal["price", "createdAt", "name"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1)
