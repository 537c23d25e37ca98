import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.adapters.payment_mirror import PaymentMirrorError, get_payment_mirror
from app.api.health import router as health_router
from app.api.routes_admin import router as admin_router
from app.api.routes_catalogue import router as catalogue_router
from app.config import settings
from app.db import SessionLocal, init_db
from app.logging_config import configure_logging
from app.services.reconciliation_service import ReconciliationService

log = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup; a store that cannot be reached aborts here
    configure_logging(settings.LOG_LEVEL)
    init_db(reset=settings.RESET_DB)

    scheduler = None
    if settings.RECONCILE_INTERVAL_SECONDS > 0:
        scheduler = BackgroundScheduler()

        def drift_job():
            db = SessionLocal()
            try:
                ReconciliationService(db, get_payment_mirror()).log_drift()
            except PaymentMirrorError:
                log.warning("drift report skipped: payment mirror unavailable", exc_info=True)
            finally:
                db.close()

        scheduler.add_job(
            drift_job, "interval", seconds=settings.RECONCILE_INTERVAL_SECONDS, id="mirror_drift_report"
        )
        scheduler.start()

    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Statuary Catalog - Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(catalogue_router, prefix="/api/products", tags=["catalogue"])

app.include_router(admin_router, tags=["admin"])
