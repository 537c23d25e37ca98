#!/usr/bin/env python3
"""
Seed the catalog from a JSON file through the sync service, so every seeded
product gets its payment mirror record and references.

The file holds a list of product payloads in the API's camelCase shape, or an
object with a "products" list. SKUs already in the store are skipped.

Usage:
    python scripts/seed_products.py --file scripts/catalog.json
"""
import argparse
import json
import logging
import os
import sys

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from pydantic import ValidationError

from app.adapters.payment_mirror import PaymentMirrorError, get_payment_mirror
from app.config import settings
from app.db import SessionLocal, init_db
from app.logging_config import configure_logging
from app.models.product import ProductValidationError
from app.repositories.product_repo import DuplicateSkuError, ProductRepository
from app.schemas.product_schema import ProductCreate
from app.services.product_service import ProductService

log = logging.getLogger("seed")

DEFAULT_SOURCE = os.path.join(os.path.dirname(__file__), "catalog.json")


def load_entries(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("products", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of products")
    return data


def seed(entries: list) -> dict:
    db = SessionLocal()
    created, skipped, failed = 0, 0, 0
    try:
        svc = ProductService(db, get_payment_mirror())
        repo = ProductRepository(db)
        for entry in entries:
            try:
                payload = ProductCreate.model_validate(entry)
            except ValidationError as e:
                log.error("invalid entry %s: %s", entry.get("sku"), e)
                failed += 1
                continue
            if repo.get_by_sku(payload.sku):
                skipped += 1
                continue
            try:
                svc.create(payload)
                created += 1
            except (ProductValidationError, DuplicateSkuError, PaymentMirrorError) as e:
                log.error("failed to seed %s at stage %s: %s", payload.sku, getattr(e, "stage", None), e)
                failed += 1
    finally:
        db.close()
    return {"created": created, "skipped": skipped, "failed": failed}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed the statuary catalog")
    parser.add_argument("--file", default=DEFAULT_SOURCE, help="JSON file with product payloads")
    args = parser.parse_args(argv)

    configure_logging(settings.LOG_LEVEL)
    init_db()
    result = seed(load_entries(args.file))
    log.info("seed finished: %s", result)
    return 1 if result["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
