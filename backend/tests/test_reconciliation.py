from app.repositories.product_repo import ProductRepository
from app.schemas.product_schema import ProductCreate
from app.services.product_service import ProductService
from app.services.reconciliation_service import ReconciliationService

from conftest import product_payload


def _create(svc, **overrides):
    return svc.create(ProductCreate.model_validate(product_payload(**overrides)))


def test_in_sync(db, mirror):
    svc = ProductService(db, mirror)
    _create(svc, sku="A")
    _create(svc, sku="B")
    report = ReconciliationService(db, mirror).report()
    assert report["in_sync"] is True
    assert report["store_count"] == 2
    assert report["mirror_count"] == 2


def test_reports_drift_without_fixing(db, mirror):
    svc = ProductService(db, mirror)
    _create(svc, sku="A")
    hard = _create(svc, sku="B")
    svc.hard_delete(hard.id)
    # store row with no mirror counterpart
    ProductRepository(db).add(ProductCreate.model_validate(product_payload(sku="C")).model_dump(by_alias=True))
    # two mirror records for one SKU
    mirror.create_product(ProductCreate.model_validate(product_payload(sku="A")).model_dump(mode="json", by_alias=True))

    report = ReconciliationService(db, mirror).log_drift()
    assert report["in_sync"] is False
    assert report["missing_in_mirror"] == ["C"]
    assert report["orphaned_in_mirror"] == ["B"]
    assert report["duplicated_in_mirror"] == ["A"]
    assert len(mirror.search_by_sku("B")) == 1


def test_admin_endpoint(client, admin_headers):
    client.post("/api/products", json=product_payload(sku="A"), headers=admin_headers)
    res = client.get("/api/admin/reconciliation", headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["in_sync"] is True


def test_admin_endpoint_requires_admin(client):
    assert client.get("/api/admin/reconciliation").status_code == 401
