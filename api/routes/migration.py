"""
Migration endpoints: introspection, start/stop, status polling and history
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import List, Optional
from datetime import date
from api.dependencies import get_migration_service
from core.exceptions import (
    IntrospectionError,
    InvalidMigrationScopeError,
    NoActiveMigrationError,
    SourceConnectionError,
)
from migration.service import MigrationService
from schemas.api import (
    AuditTablesResponse,
    MigrationHistoryDetail,
    MigrationHistoryInfo,
    MigrationHistoryResponse,
    MigrationStatusResponse,
    StartMigrationRequest,
    StartMigrationResponse,
    StopMigrationResponse,
    TenantListResponse,
)
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/migration", tags=["Migration"])


def _source_unavailable(e: SourceConnectionError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"code": e.code, "message": e.message, "hint": e.hint, "retryable": e.retryable}
    )


# ============================================================================
# Introspection
# ============================================================================

@router.get("/tenants", response_model=TenantListResponse)
async def list_tenants(
    postings_period_from: Optional[date] = Query(None, description="Only rows posted on or after this date"),
    postings_period_to: Optional[date] = Query(None, description="Only rows posted on or before this date"),
    tenant_code: Optional[List[int]] = Query(None, description="Restrict to these tenant codes"),
    service: MigrationService = Depends(get_migration_service),
):
    """Tenants of the source general ledger with record counts"""
    try:
        tenants = await service.list_tenants(postings_period_from, postings_period_to, tenant_code)
    except SourceConnectionError as e:
        raise _source_unavailable(e)
    except IntrospectionError as e:
        logger.error(f"Tenant listing failed: {e}")
        raise HTTPException(status_code=502, detail=e.message)

    return TenantListResponse(tenants=tenants)


@router.get("/audit-tables", response_model=AuditTablesResponse)
async def list_audit_tables(service: MigrationService = Depends(get_migration_service)):
    """Whitelisted audit tables with record counts (0 when a count fails)"""
    try:
        tables = await service.list_candidate_tables()
    except SourceConnectionError as e:
        raise _source_unavailable(e)

    return AuditTablesResponse(audit_tables=tables)


# ============================================================================
# Run control
# ============================================================================

@router.post("/start", response_model=StartMigrationResponse)
async def start_migration(
    body: StartMigrationRequest,
    request: Request,
    service: MigrationService = Depends(get_migration_service),
):
    """
    Start a migration in the background.

    Responses:
    - 200 accepted=true with the initial status snapshot
    - 200 accepted=false with a reason when another run is active
    - 400 when the scope does not fit the migration type
    - 503 with the classified connection code when the source is unreachable
    """
    request_id = getattr(request.state, "request_id", None)
    logger.info(f"[{request_id}] Start requested: {body.type.value} tenant={body.tenant_code} table={body.table_name}")

    try:
        result = await service.start_migration(body.to_request())
    except InvalidMigrationScopeError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except SourceConnectionError as e:
        raise _source_unavailable(e)

    if not result.accepted:
        return StartMigrationResponse(
            accepted=False,
            message="Migration not started",
            reason=result.reason,
            status=result.status,
        )

    return StartMigrationResponse(
        accepted=True,
        run_id=result.run_id,
        message=f"Migration {result.run_id} started",
        status=result.status,
    )


@router.get("/status", response_model=MigrationStatusResponse)
async def get_status(service: MigrationService = Depends(get_migration_service)):
    """Current run, or the last one while it is still retained"""
    return MigrationStatusResponse(migration=service.get_status())


@router.post("/stop", response_model=StopMigrationResponse)
async def stop_migration(service: MigrationService = Depends(get_migration_service)):
    """Ask the active run to stop after its current batch"""
    try:
        run = service.stop_migration()
    except NoActiveMigrationError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return StopMigrationResponse(accepted=True, message=f"Migration {run.run_id} is stopping")


# ============================================================================
# History
# ============================================================================

@router.get("/history", response_model=MigrationHistoryResponse)
async def list_history(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: MigrationService = Depends(get_migration_service),
):
    """Persisted runs, newest first"""
    runs, total = await service.list_history(limit=limit, offset=offset)
    return MigrationHistoryResponse(
        migrations=[MigrationHistoryInfo.model_validate(run) for run in runs],
        total=total,
    )


@router.get("/history/{run_id}", response_model=MigrationHistoryDetail)
async def get_history(run_id: str, service: MigrationService = Depends(get_migration_service)):
    """One persisted run with its logged failures"""
    run = await service.get_history(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Migration {run_id} not found")
    return MigrationHistoryDetail.model_validate(run)
