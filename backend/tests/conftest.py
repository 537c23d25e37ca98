import os

# must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_catalog.db")
os.environ.setdefault("PAYMENT_MIRROR_BACKEND", "memory")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret")

import copy

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.adapters.payment_mirror import InMemoryPaymentMirror, get_payment_mirror
from app.auth import get_management_client
from app.config import settings
from app.db import SessionLocal, init_db
from app.main import app

BASE_PRODUCT = {
    "sku": "rom-001",
    "name": "Augustus of Prima Porta",
    "description": "Cast marble emperor in military dress",
    "category": "ROMAN",
    "price": 250.0,
    "stockStatus": "IN_STOCK",
    "dimensions": {"height": 24, "width": 10, "depth": 8, "unit": "INCHES"},
    "weight": {"value": 18.5, "unit": "LBS"},
    "material": {"primary": "Cast marble", "finish": "Polished", "color": "White"},
    "edition": {"isLimited": True, "runSize": 10, "availableQuantity": 10, "soldCount": 0},
    "images": {"thumbnail": "/uploads/products/rom-001-thumb.jpg", "main": ["/uploads/products/rom-001-1.jpg"]},
    "tags": ["emperor", "marble"],
}


def product_payload(**overrides):
    payload = copy.deepcopy(BASE_PRODUCT)
    payload.update(overrides)
    return payload


def make_token(sub="auth0|admin-1", roles=("admin",), **claims):
    body = {"sub": sub}
    if roles is not None:
        body[settings.AUTH_ROLES_CLAIM] = list(roles)
    body.update(claims)
    return jwt.encode(body, settings.AUTH_SECRET_KEY, algorithm=settings.AUTH_ALGORITHM)


@pytest.fixture(autouse=True)
def fresh_db():
    init_db(reset=True)
    yield


@pytest.fixture
def mirror():
    m = InMemoryPaymentMirror()
    app.dependency_overrides[get_payment_mirror] = lambda: m
    app.dependency_overrides[get_management_client] = lambda: None
    yield m
    app.dependency_overrides.clear()


@pytest.fixture
def client(mirror):
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
