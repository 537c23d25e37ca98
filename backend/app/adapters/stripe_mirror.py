import logging
from typing import Dict, List, Optional

import stripe

from app.adapters.payment_mirror import (
    PaymentMirror,
    PaymentMirrorError,
    to_minor_units,
)

log = logging.getLogger("payment_mirror.stripe")


def _as_dict(obj) -> Dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _product_dict(product) -> Dict:
    default_price = product["default_price"]
    if default_price is not None and not isinstance(default_price, str):
        # expanded price object
        default_price = default_price["id"]
    return {
        "id": product["id"],
        "name": product["name"],
        "description": product["description"],
        "active": product["active"],
        "default_price": default_price,
        "metadata": _as_dict(product["metadata"]),
    }


class StripePaymentMirror(PaymentMirror):
    """
    Payment mirror backed by Stripe products and prices.

    Every SDK error is re-raised as PaymentMirrorError with the original as
    its cause. Stripe's search index is eventually consistent, so a product
    created moments ago may not be found by SKU yet.
    """

    def __init__(self, api_key: Optional[str], currency: str = "usd", environment: str = "development"):
        super().__init__(currency=currency, environment=environment)
        if not api_key:
            raise PaymentMirrorError("STRIPE_SECRET_KEY must be defined for the stripe mirror backend")
        self.api_key = api_key

    def create_product(self, product: Dict) -> Dict:
        params = self._creation_params(product)
        try:
            created = stripe.Product.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            log.error("Error creating Stripe product for sku=%s: %s", product["sku"], e)
            raise PaymentMirrorError(f"Failed to create Stripe product: {e.user_message or e}") from e
        return _product_dict(created)

    def update_product(self, sku: str, changes: Dict, active: bool) -> Dict:
        existing = self.find_by_sku(sku)
        params = self._update_params(changes, active)
        try:
            if "price" in changes:
                price = stripe.Price.create(
                    api_key=self.api_key,
                    product=existing["id"],
                    currency=self.currency,
                    unit_amount=to_minor_units(changes["price"]),
                    tax_behavior="exclusive",
                )
                params["default_price"] = price["id"]
            updated = stripe.Product.modify(existing["id"], api_key=self.api_key, **params)
        except stripe.StripeError as e:
            log.error("Error updating Stripe product %s (sku=%s): %s", existing["id"], sku, e)
            raise PaymentMirrorError(f"Failed to update Stripe product: {e.user_message or e}") from e
        return _product_dict(updated)

    def deactivate(self, sku: str) -> Dict:
        existing = self.find_by_sku(sku)
        try:
            updated = stripe.Product.modify(existing["id"], api_key=self.api_key, active=False)
        except stripe.StripeError as e:
            log.error("Error archiving Stripe product %s (sku=%s): %s", existing["id"], sku, e)
            raise PaymentMirrorError(f"Failed to archive Stripe product: {e.user_message or e}") from e
        return _product_dict(updated)

    def get_price(self, price_id: str) -> Dict:
        try:
            price = stripe.Price.retrieve(price_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise PaymentMirrorError(f"Failed to retrieve Stripe price {price_id}: {e}") from e
        return {
            "id": price["id"],
            "product": price["product"],
            "currency": price["currency"],
            "unit_amount": price["unit_amount"],
            "tax_behavior": price["tax_behavior"],
            "active": price["active"],
        }

    def search_by_sku(self, sku: str) -> List[Dict]:
        # SKUs are stored uppercase; quotes would break out of the query string
        escaped = sku.replace("\\", "\\\\").replace("'", "\\'")
        try:
            result = stripe.Product.search(api_key=self.api_key, query=f"metadata['sku']:'{escaped}'")
        except stripe.StripeError as e:
            log.error("Error finding Stripe product by sku=%s: %s", sku, e)
            raise PaymentMirrorError(f"Failed to find Stripe product: {e}") from e
        return [_product_dict(p) for p in result["data"]]

    def list_skus(self) -> List[str]:
        try:
            page = stripe.Product.list(api_key=self.api_key, limit=100)
            return [_as_dict(p["metadata"]).get("sku") for p in page.auto_paging_iter()]
        except stripe.StripeError as e:
            raise PaymentMirrorError(f"Failed to list Stripe products: {e}") from e

    def health_check(self) -> bool:
        try:
            stripe.Product.list(api_key=self.api_key, limit=1)
            return True
        except stripe.StripeError:
            log.warning("Stripe health check failed", exc_info=True)
            return False
