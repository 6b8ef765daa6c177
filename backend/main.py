"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import accounts, lots, prices, reconciliation, sync_errors
from config import settings
from database import get_session_local, init_db
from logging_config import setup_logging
from services.ledger_service import LedgerService
from services.sync_error_service import SyncErrorService

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, prune old sync errors and optionally reconcile."""
    init_db()
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        cleared = SyncErrorService.clear_old_errors(db, settings.SYNC_ERROR_RETENTION_DAYS)
        db.commit()
        if cleared:
            logger.info("Pruned %d resolved sync errors", cleared)
    except Exception:
        db.rollback()
        logger.warning("Sync error pruning failed on startup", exc_info=True)

    if settings.RECONCILE_ON_STARTUP:
        try:
            report = LedgerService(use_oracle=False).run_reconciliation(db)
            for check in report.checks:
                if not check.passed:
                    logger.warning("Startup reconciliation: %s", check.message)
            for discrepancy in report.discrepancies:
                logger.warning("Startup reconciliation: %s", discrepancy.message)
        except Exception:
            logger.warning("Startup reconciliation failed", exc_info=True)
    db.close()
    yield


app = FastAPI(
    title="Portfolio Ledger",
    description="Holdings reconstruction, FIFO tax lots and reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(accounts.router)
app.include_router(lots.router)
app.include_router(prices.router)
app.include_router(reconciliation.router)
app.include_router(sync_errors.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=settings.DEBUG)
