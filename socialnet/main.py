"""
SocialNet API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .database import engine, Base, SessionLocal
from .deps import get_push_gateway
from .logging_config import api_logger
from .middleware import RequestContextMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from .limiter import limiter
from .responses import api_exception_handler, validation_exception_handler, unhandled_exception_handler
from .routes import (
    auth_router,
    users_router,
    follows_router,
    posts_router,
    comments_router,
    notifications_router,
    tracking_router,
    voice_calls_router,
    admin_router,
    admin_notifications_router,
    admin_tracking_router,
)
from .worker.scheduler import NotificationScheduler

settings = get_settings()

# Create tables (in production, use migrations instead)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the background scheduler with the app and stop it on shutdown."""
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = NotificationScheduler(SessionLocal, get_push_gateway(), settings)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.stop()
        api_logger.info("Stopped scheduler on shutdown")


app = FastAPI(
    title="SocialNet API",
    description="Backend API for the SocialNet mobile app",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Response envelope for errors
app.add_exception_handler(StarletteHTTPException, api_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware (only in debug mode)
if settings.debug:
    app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,
)

# Outermost, so every log line of a request carries its id
app.add_middleware(RequestContextMiddleware)

# Routes
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(follows_router)
app.include_router(posts_router)
app.include_router(comments_router)
app.include_router(notifications_router)
app.include_router(tracking_router)
app.include_router(voice_calls_router)
app.include_router(admin_router)
app.include_router(admin_notifications_router)
app.include_router(admin_tracking_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": "1.0.0",
        "scheduler": scheduler.status() if scheduler else {"running": False},
    }


@app.get("/")
def root():
    return {
        "message": "SocialNet API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
