"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime
from models.base import MigrationType, MigrationStatus
from schemas.migration import TenantInfo, CandidateTable, MigrationRun, MigrationRequest


# ============================================================================
# Introspection Schemas
# ============================================================================

class TenantListResponse(BaseModel):
    """Tenants of the source ledger"""
    tenants: List[TenantInfo] = Field(default_factory=list)


class AuditTablesResponse(BaseModel):
    """Whitelisted audit tables with record counts"""
    audit_tables: List[CandidateTable] = Field(default_factory=list)


# ============================================================================
# Migration Control Schemas
# ============================================================================

class StartMigrationRequest(BaseModel):
    """Body of POST /migration/start"""
    type: MigrationType = Field(..., description="Migration variant")
    tenant_code: Optional[int] = Field(None, description="Source tenant code")
    company_id: Optional[int] = Field(None, description="Destination company that owns the rows")
    table_name: Optional[str] = Field(None, description="Source table for table-scoped variants")
    company_tin: Optional[str] = Field(None, description="Company tax id for external imports")
    batch_size: Optional[int] = Field(None, ge=1, le=10000, description="Rows per destination write")

    def to_request(self) -> MigrationRequest:
        return MigrationRequest(
            migration_type=self.type,
            tenant_code=self.tenant_code,
            company_id=self.company_id,
            table_name=self.table_name,
            company_tin=self.company_tin,
            batch_size=self.batch_size,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "type": "full-ledger-import",
                "tenant_code": 5,
                "company_id": 1,
                "batch_size": 1000
            }
        }


class StartMigrationResponse(BaseModel):
    """Immediate acknowledgement of a start request"""
    accepted: bool
    run_id: Optional[str] = None
    message: str
    reason: Optional[str] = None
    status: Optional[MigrationRun] = None


class StopMigrationResponse(BaseModel):
    """Result of a stop request"""
    accepted: bool
    message: str
    reason: Optional[str] = None


class MigrationStatusResponse(BaseModel):
    """Current (or most recently finished) run, if any"""
    migration: Optional[MigrationRun] = None


# ============================================================================
# History Schemas
# ============================================================================

class MigrationErrorInfo(BaseModel):
    """A persisted row/batch failure"""
    recorded_at: datetime
    table_name: Optional[str] = None
    record_ref: Optional[str] = None
    message: str

    class Config:
        from_attributes = True


class MigrationHistoryInfo(BaseModel):
    """A persisted migration run"""
    run_id: str
    migration_type: MigrationType
    status: MigrationStatus
    tenant_code: Optional[int] = None
    company_id: Optional[int] = None
    table_name: Optional[str] = None
    batch_size: int
    total_records: int = 0
    processed_records: int = 0
    success_count: int = 0
    error_count: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class MigrationHistoryDetail(MigrationHistoryInfo):
    """A persisted migration run with its logged failures"""
    errors: List[MigrationErrorInfo] = Field(default_factory=list)


class MigrationHistoryResponse(BaseModel):
    """Page of persisted runs"""
    migrations: List[MigrationHistoryInfo] = Field(default_factory=list)
    total: int = 0


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    source_connected: bool = False
    source_error_code: Optional[str] = None
    active_migration: Optional[MigrationRun] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    # Declared last so the validator sees the connectivity fields
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if not values.get("source_connected", False):
            return "degraded"
        return "healthy"
