"""
Health check endpoint with destination, source and migration status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_migration_service
from migration.service import MigrationService
from schemas.api import HealthCheckResponse
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    service: MigrationService = Depends(get_migration_service),
):
    """
    Health check endpoint.

    Returns:
    - Destination database connectivity
    - Source connectivity with the classified error code when it fails
    - The active migration, if any
    """

    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    source_connected, source_error_code = await service.check_source()

    # Status calculation is handled by the validator in HealthCheckResponse
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        source_connected=source_connected,
        source_error_code=source_error_code,
        active_migration=service.get_status(),
    )
