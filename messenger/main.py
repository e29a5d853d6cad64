"""
Messenger Backend - Main FastAPI Application
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from messenger.config import settings
from messenger.api.routes import conversations, debug, media, users
from messenger.errors import (
    Conflict,
    FetchFailed,
    MediaUploadFailed,
    MediaUrlFailed,
    NotFound,
    StoreError,
    WriteFailed,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STORE_ERROR_STATUS = {
    NotFound: 404,
    Conflict: 409,
    FetchFailed: 502,
    WriteFailed: 502,
    MediaUploadFailed: 502,
    MediaUrlFailed: 502,
}


# Define lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Store backend: {settings.STORE_BACKEND}")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")


# Create FastAPI application with lifespan
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Messenger Backend API - conversations, messages and user directory",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
    """Map storage failures that escaped a route to HTTP errors"""
    status_code = next(
        (code for error_type, code in STORE_ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": type(exc).__name__,
            "message": str(exc) if settings.DEBUG else "A storage error occurred",
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred",
        },
    )


app.include_router(users.router)
app.include_router(conversations.router)
app.include_router(media.router)

# Include debug router in debug mode
if settings.DEBUG:
    app.include_router(debug.router)


# Health check endpoint
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API health check"""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check endpoint"""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "debug_mode": settings.DEBUG,
        "store_backend": settings.STORE_BACKEND,
        "firebase_configured": bool(
            settings.FIREBASE_CREDENTIALS_JSON or settings.FIREBASE_DATABASE_URL
        ),
        "reconcile_on_read": settings.RECONCILE_ON_READ,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "messenger.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG
    )
