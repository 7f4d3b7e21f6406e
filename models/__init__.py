"""
SQLAlchemy ORM models for the engine's own bookkeeping tables.

The migrated destination tables (journal_entries, general_ledger, audit.*,
rs.*) belong to the product schema and are not modelled here.

Models:
    base: Base declarative class and shared enums (MigrationType, MigrationStatus)
    migration_history: One row per migration run with counters and timing
    migration_error: Individual row/batch failures of a run

Usage:
    from models import MigrationHistory, MigrationErrorRecord
    from models.base import MigrationType, MigrationStatus

Relationships:
    - MigrationHistory → MigrationErrorRecord (one-to-many by run_id)
"""

from models.base import Base, MigrationType, MigrationStatus
from models.migration_history import MigrationHistory
from models.migration_error import MigrationErrorRecord

__all__ = [
    "Base",
    "MigrationType",
    "MigrationStatus",
    "MigrationHistory",
    "MigrationErrorRecord",
]
