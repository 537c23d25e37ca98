import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy.orm import Session

from app.adapters.payment_mirror import PaymentMirror
from app.repositories.product_repo import ProductRepository

log = logging.getLogger("reconciliation")


class ReconciliationService:
    """
    Compares store SKUs with the mirror's metadata.sku values.
    Read-only: drift is reported and logged, never repaired.
    """

    def __init__(self, db: Session, mirror: PaymentMirror):
        self.repo = ProductRepository(db)
        self.mirror = mirror

    def report(self) -> Dict:
        store_skus = set(self.repo.all_skus())
        mirror_counts = Counter(sku for sku in self.mirror.list_skus() if sku)
        mirror_skus = set(mirror_counts)

        report = {
            "checked_at": datetime.now(timezone.utc).isoformat(),
            "store_count": len(store_skus),
            "mirror_count": sum(mirror_counts.values()),
            "missing_in_mirror": sorted(store_skus - mirror_skus),
            "orphaned_in_mirror": sorted(mirror_skus - store_skus),
            "duplicated_in_mirror": sorted(sku for sku, n in mirror_counts.items() if n > 1),
        }
        report["in_sync"] = not (
            report["missing_in_mirror"] or report["orphaned_in_mirror"] or report["duplicated_in_mirror"]
        )
        return report

    def log_drift(self) -> Dict:
        report = self.report()
        if report["in_sync"]:
            log.info("store and mirror in sync (%d products)", report["store_count"])
        else:
            log.warning(
                "mirror drift: missing=%s orphaned=%s duplicated=%s",
                report["missing_in_mirror"],
                report["orphaned_in_mirror"],
                report["duplicated_in_mirror"],
            )
        return report
