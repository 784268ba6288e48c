"""
Hare POS: FastAPI application entry point.

Main application module with lifespan management, middleware configuration,
error mapping and router registration. Startup wires logging and the
scheduler; shutdown closes open POS sessions (flushing pending saves) and
the Redis connection.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from hare_pos.middleware.request_logging import RequestLoggingMiddleware
from hare_pos.routers import health, inventory, orders, reports, session
from hare_pos.scheduler.cron_tasks import configure_scheduler, shutdown_scheduler, start_scheduler
from hare_pos.services.cache_service import cache_service
from hare_pos.services.session_service import session_service
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import (
    AuthenticationError,
    InsufficientStockError,
    NotFoundError,
    OrgResolutionError,
    PersistenceError,
    PosError,
    ValidationError,
)
from hare_pos.utils.structured_logging import configure_logging

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Rate Limiting
# -------------------------------------------------

def get_rate_limit_key(request: Request) -> str:
    """Rate limit key based on client IP."""
    return get_remote_address(request)

limiter = Limiter(key_func=get_rate_limit_key)


# -------------------------------------------------
# Lifespan
# -------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.is_ready = False
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    async def background_startup():
        try:
            configure_scheduler()
            start_scheduler()
        except Exception as e:
            logger.warning(f"Scheduler failed: {e}")

        try:
            await cache_service.ping()
            logger.info("Redis reachable")
        except Exception as e:
            logger.warning(f"Redis unavailable, realtime push disabled until it returns: {e}")

        app.state.is_ready = True
        logger.info("Application is READY to accept traffic")

    startup_task = asyncio.create_task(background_startup())

    yield

    logger.info("Shutting down application")
    if not startup_task.done():
        startup_task.cancel()

    try:
        shutdown_scheduler()
    except Exception as e:
        logger.warning(f"Scheduler shutdown error: {e}")

    await session_service.close_all()
    await cache_service.close()
    logger.info(f"Shut down {settings.APP_NAME}")


# -------------------------------------------------
# FastAPI App
# -------------------------------------------------

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# -------------------------------------------------
# Middleware
# -------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# -------------------------------------------------
# Error mapping
# -------------------------------------------------

ERROR_STATUS = {
    AuthenticationError: 401,
    OrgResolutionError: 403,
    NotFoundError: 404,
    ValidationError: 422,
}


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError):
    if isinstance(exc, PersistenceError):
        logger.error(f"Backend failure on {request.method} {request.url.path}: {exc.code} {exc.message}")
        return JSONResponse(status_code=502, content={"detail": "Backend request failed, please retry"})

    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    content = {"detail": exc.message}
    if isinstance(exc, InsufficientStockError):
        content["shortfalls"] = [s.to_dict() for s in exc.shortfalls]
    return JSONResponse(status_code=status_code, content=content)


# -------------------------------------------------
# Routers
# -------------------------------------------------

app.include_router(health.router, tags=["Health"])
app.include_router(session.router, prefix="/api", tags=["Session"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(orders.cart_router, prefix="/api/cart", tags=["Cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])


# -------------------------------------------------
# Root
# -------------------------------------------------

@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"{settings.APP_NAME} v{settings.APP_VERSION} is running",
        "docs": "/docs",
    }
