"""
Pydantic schemas for migration runs and introspected source metadata
"""

from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime
from models.base import MigrationType, MigrationStatus


class TenantInfo(BaseModel):
    """One tenant of the source ledger with its record count"""
    tenant_code: int
    tenant_name: str
    record_count: int = 0


class CandidateTable(BaseModel):
    """A whitelisted source table with its record count (0 when unavailable)"""
    table_name: str
    record_count: int = 0


class ColumnDescriptor(BaseModel):
    """Source column metadata, in source ordinal order"""
    name: str
    data_type: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    ordinal: int = 0

    @validator("data_type", pre=True)
    def normalize_type(cls, v):
        return str(v).lower() if v is not None else ""


class MigrationRequest(BaseModel):
    """
    Requested migration type and scope.

    Scope requirements differ per type and are checked by the orchestrators:
    - ledger variants need tenant_code and company_id
    - audit-schema-migration needs table_name
    - external-table-import needs table_name, company_id and company_tin
    """
    migration_type: MigrationType
    tenant_code: Optional[int] = None
    company_id: Optional[int] = None
    table_name: Optional[str] = Field(None, max_length=128)
    company_tin: Optional[str] = Field(None, max_length=64)
    batch_size: Optional[int] = Field(None, ge=1)

    @validator("table_name", "company_tin")
    def strip_blank(cls, v):
        if v is not None:
            v = v.strip()
            if not v:
                return None
        return v


class MigrationRun(BaseModel):
    """
    A transient, process-wide record of one in-flight or finished migration.

    Mutated in place by the status registry; callers only ever receive copies.
    """
    run_id: str
    migration_type: MigrationType
    tenant_code: Optional[int] = None
    company_id: Optional[int] = None
    table_name: Optional[str] = None
    batch_size: int

    status: MigrationStatus = MigrationStatus.PENDING
    total_records: int = 0
    processed_records: int = 0
    success_count: int = 0
    error_count: int = 0
    progress: float = 0.0

    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def recompute_progress(self) -> None:
        if self.total_records > 0:
            self.progress = round(min(100.0, self.processed_records / self.total_records * 100), 2)
        else:
            self.progress = 0.0
