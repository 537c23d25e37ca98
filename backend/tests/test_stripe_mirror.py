import pytest
import stripe

from app.adapters.payment_mirror import (
    METADATA_SCHEMA_VERSION,
    DuplicateMirrorRecord,
    MirrorRecordNotFound,
    PaymentMirrorError,
)
from app.adapters.stripe_mirror import StripePaymentMirror
from app.schemas.product_schema import ProductCreate, ProductUpdate

from conftest import product_payload


def _product(id="prod_1", sku="ROM-001", default_price="price_1", active=True, **extra):
    record = {
        "id": id,
        "name": "Augustus of Prima Porta",
        "description": "Marble statue",
        "active": active,
        "default_price": default_price,
        "metadata": {"sku": sku},
    }
    record.update(extra)
    return record


class FakeStripe:
    """Records every SDK call and answers with canned Stripe objects."""

    def __init__(self, monkeypatch, found=None):
        self.calls = []
        self.found = [_product()] if found is None else found
        monkeypatch.setattr(stripe.Product, "create", self.product_create)
        monkeypatch.setattr(stripe.Product, "modify", self.product_modify)
        monkeypatch.setattr(stripe.Product, "search", self.product_search)
        monkeypatch.setattr(stripe.Product, "list", self.product_list)
        monkeypatch.setattr(stripe.Price, "create", self.price_create)
        monkeypatch.setattr(stripe.Price, "retrieve", self.price_retrieve)

    def product_create(self, **kwargs):
        self.calls.append(("Product.create", kwargs))
        return _product(name=kwargs["name"], metadata=kwargs["metadata"], active=kwargs["active"])

    def product_modify(self, id, **kwargs):
        self.calls.append(("Product.modify", dict(kwargs, id=id)))
        return _product(id=id, default_price=kwargs.get("default_price", "price_1"), active=kwargs["active"])

    def product_search(self, **kwargs):
        self.calls.append(("Product.search", kwargs))
        return {"data": self.found}

    def product_list(self, **kwargs):
        self.calls.append(("Product.list", kwargs))
        return _Page(self.found)

    def price_create(self, **kwargs):
        self.calls.append(("Price.create", kwargs))
        return {"id": "price_2", "product": kwargs["product"]}

    def price_retrieve(self, id, **kwargs):
        self.calls.append(("Price.retrieve", dict(kwargs, id=id)))
        return {
            "id": id,
            "product": "prod_1",
            "currency": "usd",
            "unit_amount": 25000,
            "tax_behavior": "exclusive",
            "active": True,
        }

    def named(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]


class _Page:
    def __init__(self, items):
        self.items = items

    def auto_paging_iter(self):
        return iter(self.items)


def _raise(error):
    def boom(*args, **kwargs):
        raise error

    return boom


@pytest.fixture
def stripe_mirror():
    return StripePaymentMirror(api_key="sk_test_123", currency="usd")


def _payload(**overrides):
    return ProductCreate.model_validate(product_payload(**overrides)).model_dump(mode="json", by_alias=True)


def test_requires_secret_key():
    with pytest.raises(PaymentMirrorError):
        StripePaymentMirror(api_key=None)


def test_create_sends_price_box_and_metadata(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch)
    created = stripe_mirror.create_product(_payload(price=250.0))

    (params,) = fake.named("Product.create")
    assert params["api_key"] == "sk_test_123"
    assert params["default_price_data"] == {"currency": "usd", "unit_amount": 25000, "tax_behavior": "exclusive"}
    assert params["shippable"] is True
    assert set(params["package_dimensions"]) == {"height", "length", "width", "weight"}
    assert params["metadata"]["sku"] == "ROM-001"
    assert params["metadata"]["schema_version"] == METADATA_SCHEMA_VERSION
    assert "images" not in params
    assert created["id"] == "prod_1"
    assert created["default_price"] == "price_1"


def test_expanded_default_price_is_reduced_to_id(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch, found=[_product(default_price={"id": "price_9", "unit_amount": 100})])
    assert stripe_mirror.find_by_sku("ROM-001")["default_price"] == "price_9"
    assert fake.named("Product.search")


def test_update_price_creates_new_price_and_swaps_default(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch)
    changes = ProductUpdate(price=275.5, name="Augustus").changes(mode="json")
    updated = stripe_mirror.update_product("ROM-001", changes, active=True)

    (price,) = fake.named("Price.create")
    assert price == {
        "api_key": "sk_test_123",
        "product": "prod_1",
        "currency": "usd",
        "unit_amount": 27550,
        "tax_behavior": "exclusive",
    }
    (modify,) = fake.named("Product.modify")
    assert modify["id"] == "prod_1"
    assert modify["default_price"] == "price_2"
    assert modify["name"] == "Augustus"
    assert modify["active"] is True
    assert updated["default_price"] == "price_2"


def test_update_without_price_leaves_prices_alone(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch)
    stripe_mirror.update_product("ROM-001", ProductUpdate(name="Renamed").changes(mode="json"), active=False)
    assert fake.named("Price.create") == []
    (modify,) = fake.named("Product.modify")
    assert "default_price" not in modify
    assert modify["active"] is False


def test_deactivate_archives(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch)
    result = stripe_mirror.deactivate("ROM-001")
    (modify,) = fake.named("Product.modify")
    assert modify == {"id": "prod_1", "api_key": "sk_test_123", "active": False}
    assert result["active"] is False


def test_search_query_escapes_quotes(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch, found=[])
    assert stripe_mirror.search_by_sku("O'NEIL\\1") == []
    (search,) = fake.named("Product.search")
    assert search["query"] == "metadata['sku']:'O\\'NEIL\\\\1'"


def test_lookup_not_found_and_duplicates(stripe_mirror, monkeypatch):
    FakeStripe(monkeypatch, found=[])
    with pytest.raises(MirrorRecordNotFound):
        stripe_mirror.deactivate("ROM-001")

    FakeStripe(monkeypatch, found=[_product(id="prod_1"), _product(id="prod_2")])
    with pytest.raises(DuplicateMirrorRecord):
        stripe_mirror.update_product("ROM-001", {"name": "x"}, active=True)


def test_get_price(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch)
    assert stripe_mirror.get_price("price_1")["unit_amount"] == 25000
    assert fake.named("Price.retrieve") == [{"id": "price_1", "api_key": "sk_test_123"}]


def test_list_skus_pages_through_products(stripe_mirror, monkeypatch):
    fake = FakeStripe(monkeypatch, found=[_product(sku="A"), _product(sku="B")])
    assert stripe_mirror.list_skus() == ["A", "B"]
    assert fake.named("Product.list") == [{"api_key": "sk_test_123", "limit": 100}]


def test_sdk_errors_become_mirror_errors(stripe_mirror, monkeypatch):
    FakeStripe(monkeypatch)
    monkeypatch.setattr(stripe.Product, "create", _raise(stripe.InvalidRequestError("bad name", "name")))
    with pytest.raises(PaymentMirrorError) as exc:
        stripe_mirror.create_product(_payload())
    assert str(exc.value).startswith("Failed to create Stripe product")
    assert isinstance(exc.value.__cause__, stripe.StripeError)

    monkeypatch.setattr(stripe.Product, "modify", _raise(stripe.APIConnectionError("network down")))
    with pytest.raises(PaymentMirrorError) as exc:
        stripe_mirror.deactivate("ROM-001")
    assert isinstance(exc.value.__cause__, stripe.APIConnectionError)

    monkeypatch.setattr(stripe.Product, "search", _raise(stripe.APIConnectionError("network down")))
    with pytest.raises(PaymentMirrorError):
        stripe_mirror.search_by_sku("ROM-001")


def test_health_check(stripe_mirror, monkeypatch):
    FakeStripe(monkeypatch)
    assert stripe_mirror.health_check() is True
    monkeypatch.setattr(stripe.Product, "list", _raise(stripe.APIConnectionError("network down")))
    assert stripe_mirror.health_check() is False
