"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from migration.service import MigrationService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Destination database session for the request"""
    async with async_session_maker() as session:
        yield session


def get_migration_service(request: Request) -> MigrationService:
    """The process-wide migration service created at startup"""
    return request.app.state.migration_service
