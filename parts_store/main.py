"""
Parts Store
FastAPI application entry point

- Reservation reclaim scheduler with heartbeat metrics
- Error sanitization middleware
- Health endpoint with DB ping, sweep heartbeat and reservation stats
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from sqlalchemy import text

from parts_store import __version__
from parts_store.api.routes import admin_shipping, cart, shipping
from parts_store.core.config import settings
from parts_store.core.database import AsyncSessionLocal, engine
from parts_store.core.error_handler import ErrorSanitizationMiddleware, register_exception_handlers
from parts_store.core.utils import utcnow
from parts_store.jobs.reservation_reclaim import reclaim_scheduler
from parts_store.services.reservations import ReservationManager, ensure_supported_dialect

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check the database dialect, then start and stop the reservation reclaim scheduler."""
    # Refuse to boot on a database without ON CONFLICT upserts
    ensure_supported_dialect(engine.dialect.name)

    if settings.RESERVATION_SWEEP_ENABLED:
        await reclaim_scheduler.start()
        logger.info("Reservation reclaim scheduler ENABLED")
    else:
        logger.info("Reservation reclaim scheduler DISABLED via config")

    yield

    await reclaim_scheduler.stop()


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="Cart reservations for last-unit stock and multi-carrier shipping estimates.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check and monitoring endpoints"},
        {"name": "Cart", "description": "Shopping cart and last-unit reservations"},
        {"name": "Shipping", "description": "Shipping estimates"},
        {"name": "Admin", "description": "Carrier pricing and shipping terms management"},
    ],
)

register_exception_handlers(app)

# Error sanitization (catches unhandled exceptions)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
app.include_router(shipping.router, prefix="/api", tags=["Shipping"])
app.include_router(admin_shipping.router, prefix="/api", tags=["Admin"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": __version__,
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with DB ping, sweep heartbeat and reservation stats.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "reservation_sweep": {
            **reclaim_scheduler.heartbeat,
            "running": reclaim_scheduler.running,
        },
        "reservations": None,
        "timestamp": utcnow().isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
            health_status["database"] = "connected"
            health_status["reservations"] = await ReservationManager(db).get_reservation_stats()
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(
        "parts_store.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=settings.DEBUG,
    )
