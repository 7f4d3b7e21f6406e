"""
Pydantic schemas for domain snapshots and API payloads.

Modules:
    migration: MigrationRun snapshots, MigrationRequest scopes and introspected
        source metadata (TenantInfo, CandidateTable, ColumnDescriptor)
    api: HTTP request/response models
"""

from schemas.migration import (
    TenantInfo,
    CandidateTable,
    ColumnDescriptor,
    MigrationRequest,
    MigrationRun,
)

__all__ = [
    "TenantInfo",
    "CandidateTable",
    "ColumnDescriptor",
    "MigrationRequest",
    "MigrationRun",
]
