import json
import logging
import threading
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional
from uuid import uuid4

log = logging.getLogger("payment_mirror")

# bump when the layout of the metadata bag changes so readers can detect drift
METADATA_SCHEMA_VERSION = "1"

# product fields stored as JSON strings in the mirror's flat metadata map
SERIALIZED_FIELDS = ("dimensions", "weight", "material", "edition")

STATEMENT_DESCRIPTOR_MAX = 22
UNIT_LABEL = "sculpture"

_CM_PER_INCH = Decimal("2.54")
_OUNCES_PER = {"LBS": Decimal("16"), "KG": Decimal("35.27396195")}


class PaymentMirrorError(Exception):
    """Raised when the payment platform rejects a call or cannot be reached."""
    pass


class MirrorRecordNotFound(PaymentMirrorError):
    def __init__(self, sku: str):
        super().__init__(f"No mirror record found for SKU: {sku}")
        self.sku = sku


class DuplicateMirrorRecord(PaymentMirrorError):
    def __init__(self, sku: str, ids: List[str]):
        super().__init__(f"Multiple mirror records found for SKU {sku}: {', '.join(ids)}")
        self.sku = sku
        self.ids = ids


def to_minor_units(price: float) -> int:
    """Major currency units to integer minor units, rounding half away from zero."""
    return int((Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _dumps(value) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def build_metadata(product: Dict, environment: str) -> Dict[str, str]:
    """
    Full metadata bag for a new mirror product. `product` is the camelCase,
    JSON-safe representation of the catalog record.
    """
    metadata = {
        "schema_version": METADATA_SCHEMA_VERSION,
        "sku": product["sku"],
        "environment": environment,
        "category": product["category"],
    }
    for field in SERIALIZED_FIELDS:
        metadata[field] = _dumps(product[field])
    return metadata


def metadata_changes(changes: Dict) -> Dict[str, str]:
    """Metadata keys touched by a partial update; untouched keys are left as they are."""
    metadata = {}
    if "sku" in changes:
        metadata["sku"] = changes["sku"]
    if "category" in changes:
        metadata["category"] = changes["category"]
    for field in SERIALIZED_FIELDS:
        if field in changes:
            metadata[field] = _dumps(changes[field])
    if metadata:
        metadata["schema_version"] = METADATA_SCHEMA_VERSION
    return metadata


def package_dimensions(dimensions: Dict, weight: Dict) -> Dict[str, float]:
    """Shipping box for the mirror, which expects inches and ounces."""
    def _inches(v):
        v = Decimal(str(v))
        if dimensions["unit"] == "CM":
            v = v / _CM_PER_INCH
        return float(v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    ounces = Decimal(str(weight["value"])) * _OUNCES_PER[weight["unit"]]
    return {
        "height": _inches(dimensions["height"]),
        "width": _inches(dimensions["width"]),
        "length": _inches(dimensions["depth"]),
        "weight": float(ounces.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
    }


def statement_descriptor(material_primary: str) -> Optional[str]:
    # the platform refuses descriptors shorter than 5 chars or containing <>\'"
    cleaned = "".join(c for c in material_primary if c not in "<>\\'\"").strip()
    cleaned = cleaned[:STATEMENT_DESCRIPTOR_MAX].upper()
    if len(cleaned) < 5:
        return None
    return cleaned


def is_active(stock_status: str) -> bool:
    return stock_status != "DISCONTINUED"


class PaymentMirror(ABC):
    """
    The payment platform's copy of the catalog. It has no foreign key back to
    the store; records are joined on the `sku` metadata value.

    Products are returned as plain dicts with at least
    id, name, description, active, default_price and metadata.
    """

    def __init__(self, currency: str = "usd", environment: str = "development"):
        self.currency = currency
        self.environment = environment

    @abstractmethod
    def create_product(self, product: Dict) -> Dict:
        """Create the mirror product together with its default price."""
        pass

    @abstractmethod
    def update_product(self, sku: str, changes: Dict, active: bool) -> Dict:
        """
        Apply a partial update. A `price` in `changes` always creates a new
        price which becomes the default; existing prices are never edited.
        """
        pass

    @abstractmethod
    def deactivate(self, sku: str) -> Dict:
        pass

    @abstractmethod
    def get_price(self, price_id: str) -> Dict:
        pass

    @abstractmethod
    def search_by_sku(self, sku: str) -> List[Dict]:
        """Every mirror product, active or not, whose metadata sku equals `sku` exactly."""
        pass

    @abstractmethod
    def list_skus(self) -> List[str]:
        """metadata.sku of every mirror product, duplicates included."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        pass

    def find_by_sku(self, sku: str) -> Dict:
        matches = self.search_by_sku(sku)
        if not matches:
            raise MirrorRecordNotFound(sku)
        if len(matches) > 1:
            raise DuplicateMirrorRecord(sku, [m["id"] for m in matches])
        return matches[0]

    def _creation_params(self, product: Dict) -> Dict:
        params = {
            "name": product["name"],
            "description": product["description"],
            "metadata": build_metadata(product, self.environment),
            "default_price_data": {
                "currency": self.currency,
                "unit_amount": to_minor_units(product["price"]),
                "tax_behavior": "exclusive",
            },
            "shippable": True,
            "package_dimensions": package_dimensions(product["dimensions"], product["weight"]),
            "unit_label": UNIT_LABEL,
            "active": is_active(product["stockStatus"]),
        }
        descriptor = statement_descriptor(product["material"]["primary"])
        if descriptor:
            params["statement_descriptor"] = descriptor
        if self.environment == "production":
            params["images"] = product["images"]["main"]
        return params

    def _update_params(self, changes: Dict, active: bool) -> Dict:
        params = {"active": active}
        if "name" in changes:
            params["name"] = changes["name"]
        if "description" in changes:
            params["description"] = changes["description"]
        if self.environment == "production" and "images" in changes:
            params["images"] = changes["images"]["main"]
        metadata = metadata_changes(changes)
        if metadata:
            params["metadata"] = metadata
        # rebuilding the box needs both; callers send the stored counterpart alongside a change
        if "dimensions" in changes and "weight" in changes:
            params["package_dimensions"] = package_dimensions(changes["dimensions"], changes["weight"])
        if "material" in changes:
            descriptor = statement_descriptor(changes["material"]["primary"])
            if descriptor:
                params["statement_descriptor"] = descriptor
        return params


class InMemoryPaymentMirror(PaymentMirror):
    """
    Process-local mirror used for development, tests and the health probe.
    Mirrors the platform's behaviour closely enough for the sync service:
    metadata updates merge, prices are immutable, nothing is ever removed.
    """

    def __init__(self, currency: str = "usd", environment: str = "development"):
        super().__init__(currency=currency, environment=environment)
        self.products: Dict[str, Dict] = {}
        self.prices: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def _new_price(self, product_id: str, unit_amount: int, tax_behavior: str) -> Dict:
        price = {
            "id": f"price_{uuid4().hex[:24]}",
            "product": product_id,
            "currency": self.currency,
            "unit_amount": unit_amount,
            "tax_behavior": tax_behavior,
            "active": True,
        }
        self.prices[price["id"]] = price
        return price

    def create_product(self, product: Dict) -> Dict:
        params = self._creation_params(product)
        price_data = params.pop("default_price_data")
        with self._lock:
            record = dict(params)
            record["id"] = f"prod_{uuid4().hex[:14]}"
            record["metadata"] = dict(params["metadata"])
            price = self._new_price(record["id"], price_data["unit_amount"], price_data["tax_behavior"])
            record["default_price"] = price["id"]
            self.products[record["id"]] = record
            log.debug("created mirror product %s for sku=%s", record["id"], product["sku"])
            return dict(record)

    def update_product(self, sku: str, changes: Dict, active: bool) -> Dict:
        existing = self.find_by_sku(sku)
        params = self._update_params(changes, active)
        with self._lock:
            record = self.products[existing["id"]]
            if "price" in changes:
                price = self._new_price(record["id"], to_minor_units(changes["price"]), "exclusive")
                record["default_price"] = price["id"]
            metadata = params.pop("metadata", None)
            if metadata:
                record["metadata"].update(metadata)
            record.update(params)
            return dict(record)

    def deactivate(self, sku: str) -> Dict:
        existing = self.find_by_sku(sku)
        with self._lock:
            record = self.products[existing["id"]]
            record["active"] = False
            return dict(record)

    def get_price(self, price_id: str) -> Dict:
        price = self.prices.get(price_id)
        if price is None:
            raise PaymentMirrorError(f"No such price: {price_id}")
        return dict(price)

    def search_by_sku(self, sku: str) -> List[Dict]:
        with self._lock:
            return [dict(p) for p in self.products.values() if p["metadata"].get("sku") == sku]

    def list_skus(self) -> List[str]:
        with self._lock:
            return [p["metadata"].get("sku") for p in self.products.values()]

    def health_check(self) -> bool:
        return True


_mirror: Optional[PaymentMirror] = None
_mirror_lock = threading.Lock()


def get_payment_mirror() -> PaymentMirror:
    """
    Process-wide mirror chosen by PAYMENT_MIRROR_BACKEND. Used as a FastAPI
    dependency so tests can swap it through app.dependency_overrides.
    """
    global _mirror
    from app.config import settings

    with _mirror_lock:
        if _mirror is None:
            backend = settings.PAYMENT_MIRROR_BACKEND.lower()
            if backend == "stripe":
                from app.adapters.stripe_mirror import StripePaymentMirror

                _mirror = StripePaymentMirror(
                    api_key=settings.STRIPE_SECRET_KEY,
                    currency=settings.STRIPE_CURRENCY,
                    environment=settings.APP_ENVIRONMENT,
                )
            elif backend == "memory":
                if settings.APP_ENVIRONMENT == "production":
                    log.warning(
                        "PAYMENT_MIRROR_BACKEND=memory in production: mirror records live in process "
                        "memory and are lost on restart; set PAYMENT_MIRROR_BACKEND=stripe"
                    )
                _mirror = InMemoryPaymentMirror(
                    currency=settings.STRIPE_CURRENCY,
                    environment=settings.APP_ENVIRONMENT,
                )
            else:
                raise ValueError(f"Unknown PAYMENT_MIRROR_BACKEND: {settings.PAYMENT_MIRROR_BACKEND}")
            log.info("payment mirror backend: %s", backend)
        return _mirror
