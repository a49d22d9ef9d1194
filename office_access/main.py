"""
Office Access Service API
Main application file
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from office_access.core.clock import isoformat, utcnow
from office_access.core.config import settings
from office_access.core.database import engine, Base, SessionLocal, test_database_connection
from office_access.core.errors import register_exception_handlers
from office_access.routers import access, passcode, user
from office_access.services.maintenance import MaintenanceLoop

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format=settings.log_format
)
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI Application
# ============================================================================

docs_url = "/docs" if not settings.is_production else None
redoc_url = "/redoc" if not settings.is_production else None

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Office access back office: passcode issuance, device-side validation and the access ledger",
    docs_url=docs_url,
    redoc_url=redoc_url,
)

register_exception_handlers(app)

maintenance_loop = MaintenanceLoop(SessionLocal)

# ============================================================================
# CORS Configuration
# ============================================================================

origins = settings.cors_origins
# Wildcard origins cannot be combined with credentials
allow_credentials = origins != ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# Root & Health Endpoints
# ============================================================================

@app.get("/", tags=["Root"])
def root():
    """Root endpoint - API information"""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "documentation": docs_url,
        "endpoints": {
            "health": "/health",
            "access": "/api/access",
            "passcodes": "/api/passcodes",
            "users": "/api/users",
        }
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for API monitoring"""
    database_ok = test_database_connection()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "connected" if database_ok else "unreachable",
        "version": settings.app_version,
        "environment": settings.ENVIRONMENT,
        "maintenance": "running" if maintenance_loop.running else "stopped",
        "timestamp": isoformat(utcnow()),
    }

# ============================================================================
# Event Handlers
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Actions to perform on application startup"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split(':', 1)[0]}")
    logger.info(f"CORS Origins: {', '.join(origins)}")
    logger.info(f"JWT Expiration: {settings.JWT_EXPIRATION_HOURS} hours")
    logger.info("=" * 60)

    # Create database tables if they don't exist
    try:
        logger.info("Ensuring database tables exist...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.warning("Application will continue, but database operations may fail")

    if settings.maintenance_enabled:
        maintenance_loop.start()
    else:
        logger.info("Maintenance loop disabled")


@app.on_event("shutdown")
async def shutdown_event():
    """Actions to perform on application shutdown"""
    logger.info("=" * 60)
    logger.info(f"Shutting down {settings.app_name}")
    logger.info("=" * 60)

    await maintenance_loop.stop()

# ============================================================================
# Router Registration
# ============================================================================

logger.info("Registering API routers...")
app.include_router(access.router)  # Device validation and access ledger
app.include_router(passcode.router)  # Passcode administration
app.include_router(user.router)  # User management
logger.info("All routers registered successfully")
