import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.adapters.payment_mirror import PaymentMirror, PaymentMirrorError, get_payment_mirror
from app.auth import AdminUser, require_admin
from app.db import get_db
from app.services.reconciliation_service import ReconciliationService

log = logging.getLogger("routes.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/reconciliation", summary="Compare catalog SKUs with the payment mirror")
def reconciliation_report(
    db: Session = Depends(get_db),
    mirror: PaymentMirror = Depends(get_payment_mirror),
    admin: AdminUser = Depends(require_admin),
):
    svc = ReconciliationService(db, mirror)
    try:
        return svc.report()
    except PaymentMirrorError as e:
        log.warning("reconciliation report failed: %s", e)
        raise HTTPException(status_code=502, detail=f"Payment mirror unavailable: {e}")
