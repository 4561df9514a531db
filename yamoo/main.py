import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from yamoo import models  # noqa: F401  (registers tables on Base.metadata)
from yamoo.config import APP_ENV, CORS_ORIGINS, DATABASE_URL, LOG_LEVEL, TRUSTED_HOSTS
from yamoo.database import Base, SessionLocal, engine
from yamoo.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware, setup_logging
from yamoo.rate_limit import limiter
from yamoo.routers import admin, billing, cron, subscriptions
from yamoo.services.notification import is_n8n_notification_enabled

logger = logging.getLogger("yamoo")

_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _start_time
    _start_time = time.time()

    setup_logging(LOG_LEVEL)
    db_type = DATABASE_URL.split("://")[0] if "://" in DATABASE_URL else "unknown"
    logger.info(
        "Starting YAMOO billing (env=%s, db_type=%s, n8n_notifications=%s)",
        APP_ENV, db_type, is_n8n_notification_enabled(),
    )

    Base.metadata.create_all(bind=engine)
    logger.info("Database ready")

    yield
    logger.info("Shutting down YAMOO billing")


app = FastAPI(title="YAMOO 구독 결제", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Middleware (order matters: last added = first executed)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if TRUSTED_HOSTS:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=TRUSTED_HOSTS)

app.include_router(billing.router)
app.include_router(subscriptions.router)
app.include_router(admin.router)
app.include_router(cron.router)


@app.get("/api/health")
def health_check():
    db_status = "connected"
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
    except Exception:
        db_status = "disconnected"

    return {
        "status": "healthy" if db_status == "connected" else "unhealthy",
        "database": db_status,
        "environment": APP_ENV,
        "uptime_seconds": round(time.time() - _start_time, 1),
    }
