"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, migration
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import dispose_engine
from core.logging import setup_logging
from migration.scheduler import LedgerRefreshScheduler
from migration.service import create_migration_service
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Ledger Migration API",
    description="Moves tenant accounting data from the legacy SQL Server into PostgreSQL",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(migration.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Ledger Migration API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    logger.info(f"Source: {settings.MSSQL_SERVER}/{settings.MSSQL_DATABASE}")

    service = create_migration_service(settings)
    app.state.migration_service = service

    scheduler = LedgerRefreshScheduler(service, settings)
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Ledger Migration API")
    app.state.scheduler.stop()
    await app.state.migration_service.close()
    await dispose_engine()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Ledger Migration API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "tenants": "/migration/tenants",
            "audit_tables": "/migration/audit-tables",
            "start": "/migration/start",
            "status": "/migration/status",
            "stop": "/migration/stop",
            "history": "/migration/history"
        }
    }
