from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class MigrationType(str, enum.Enum):
    """Migration variants"""
    FULL_LEDGER_IMPORT = "full-ledger-import"
    INCREMENTAL_LEDGER_UPDATE = "incremental-ledger-update"
    AUDIT_TABLE_EXPORT = "audit-table-export"
    AUDIT_SCHEMA_MIGRATION = "audit-schema-migration"
    FULL_AUDIT_EXPORT = "full-audit-export"
    EXTERNAL_TABLE_IMPORT = "external-table-import"


class MigrationStatus(str, enum.Enum):
    """Migration run status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.STOPPED)

    @property
    def is_active(self) -> bool:
        return self in (MigrationStatus.PENDING, MigrationStatus.RUNNING)
