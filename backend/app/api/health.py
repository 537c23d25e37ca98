import logging

from app.adapters.payment_mirror import PaymentMirror, get_payment_mirror
from app.db import engine
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

log = logging.getLogger("health")

router = APIRouter()


@router.get("/health", tags=["health"])
def health(mirror: PaymentMirror = Depends(get_payment_mirror)):
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except SQLAlchemyError:
        log.warning("database health check failed", exc_info=True)

    mirror_ok = mirror.health_check()

    return {
        "status": "ok" if db_ok and mirror_ok else "degraded",
        "db": db_ok,
        "payment_mirror": mirror_ok,
    }
