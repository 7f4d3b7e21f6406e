"""
Migration variants built on top of the batch transfer engine.

Each orchestrator validates the request scope and turns it into one or more
TransferPlans. The fixed-schema variants (ledger import/update) use the
static GeneralLedger mapping; the dynamic variants discover source columns
through the introspector and confirm the destination through the schema
oracle before anything is streamed.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
import asyncio
import logging

from core.config import Settings
from core.exceptions import (
    DestinationSchemaError,
    IntrospectionError,
    InvalidMigrationScopeError,
    MigrationException,
)
from migration.engine import TransferPlan, WriteMode
from migration.ledger import (
    JOURNAL_ENTRIES_TABLE,
    JOURNAL_ENTRY_COLUMNS,
    JOURNAL_KEY_COLUMNS,
    ledger_count,
    ledger_select,
    to_journal_entry,
    to_journal_update,
)
from migration.loaders.postgres_loader import DestinationTable, SchemaOracle
from migration.source.introspector import SchemaIntrospector
from migration.transformers.translator import (
    AUDIT_TABLES,
    RowTranslator,
    ensure_allowed,
    qualified_source_name,
    quote_source_identifier,
    translate_table_name,
    validate_identifier,
)
from models.base import MigrationType
from schemas.migration import ColumnDescriptor, MigrationRequest

logger = logging.getLogger(__name__)


AUDIT_SCHEMA = "audit"
GENERAL_LEDGER_TABLE = "GeneralLedger"
GENERAL_LEDGER_EXPORT_TABLE = "general_ledger"


class MigrationOrchestrator(ABC):
    """Base class for all migration variants"""

    migration_type: MigrationType

    def __init__(
        self,
        introspector: SchemaIntrospector,
        oracle: SchemaOracle,
        settings: Settings,
    ):
        self.introspector = introspector
        self.oracle = oracle
        self.settings = settings

    @property
    def default_batch_size(self) -> int:
        return self.settings.MIGRATION_BATCH_SIZE

    def batch_size(self, request: MigrationRequest) -> int:
        return min(request.batch_size or self.default_batch_size, self.settings.MAX_BATCH_SIZE)

    def company_id(self, request: MigrationRequest) -> int:
        if request.company_id is not None:
            return request.company_id
        return self.settings.DEFAULT_COMPANY_ID

    @abstractmethod
    def validate_scope(self, request: MigrationRequest) -> None:
        """Raise InvalidMigrationScopeError if the request cannot run"""
        pass

    @abstractmethod
    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        """Build the transfer plans for a validated request"""
        pass

    def _require(self, request: MigrationRequest, *fields: str) -> None:
        missing = [f for f in fields if getattr(request, f) is None]
        if missing:
            raise InvalidMigrationScopeError(
                f"{self.migration_type.value} requires: {', '.join(missing)}",
                context={"migration_type": self.migration_type.value, "missing": missing}
            )

    async def _describe(self, table_name: str, schema: str) -> List[ColumnDescriptor]:
        columns = await asyncio.to_thread(self.introspector.describe_columns, table_name, schema)
        if not columns:
            raise IntrospectionError(
                f"Source table {schema}.{table_name} has no columns or does not exist",
                context={"table_name": table_name, "schema": schema}
            )
        return columns


# ============================================================================
# Fixed-schema ledger variants
# ============================================================================

class FullLedgerImport(MigrationOrchestrator):
    """GeneralLedger rows of one tenant -> journal_entries (skip duplicates)"""

    migration_type = MigrationType.FULL_LEDGER_IMPORT

    def validate_scope(self, request: MigrationRequest) -> None:
        self._require(request, "tenant_code", "company_id")

    def _target(self) -> DestinationTable:
        return DestinationTable(JOURNAL_ENTRIES_TABLE, list(JOURNAL_ENTRY_COLUMNS))

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        tenant_code = request.tenant_code
        company_id = request.company_id

        def translate(row, ordinal):
            return to_journal_entry(row, ordinal, tenant_code, company_id)

        return [
            TransferPlan(
                label=GENERAL_LEDGER_TABLE,
                source_query=ledger_select(),
                count_query=ledger_count(),
                params={"tenant_code": tenant_code},
                target=self._target(),
                translate=translate,
                batch_size=self.batch_size(request),
            )
        ]


class IncrementalLedgerUpdate(FullLedgerImport):
    """
    Re-read GeneralLedger and update journal_entries in place.

    Rows are matched on (company_id, entry_number). The entry number is
    derived from the row's position in the ordered stream, so the update is
    only correct while the source ordering is stable.
    """

    migration_type = MigrationType.INCREMENTAL_LEDGER_UPDATE

    def _target(self) -> DestinationTable:
        columns = [
            c for c in JOURNAL_ENTRY_COLUMNS
            if c not in ("reference", "user_id", "is_posted")
        ]
        return DestinationTable(JOURNAL_ENTRIES_TABLE, columns)

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        tenant_code = request.tenant_code
        company_id = request.company_id

        def translate(row, ordinal):
            return to_journal_update(row, ordinal, tenant_code, company_id)

        return [
            TransferPlan(
                label=GENERAL_LEDGER_TABLE,
                source_query=ledger_select(),
                count_query=ledger_count(),
                params={"tenant_code": tenant_code},
                target=self._target(),
                translate=translate,
                mode=WriteMode.UPDATE_BY_KEY,
                key_columns=JOURNAL_KEY_COLUMNS,
                batch_size=self.batch_size(request),
            )
        ]


# ============================================================================
# Dynamic-schema variants
# ============================================================================

def _select_columns(columns: List[ColumnDescriptor]) -> str:
    return ", ".join(quote_source_identifier(c.name) for c in columns)


class AuditTableExport(MigrationOrchestrator):
    """Tenant-scoped audit.GeneralLedger -> general_ledger with provenance columns"""

    migration_type = MigrationType.AUDIT_TABLE_EXPORT

    def validate_scope(self, request: MigrationRequest) -> None:
        self._require(request, "tenant_code", "company_id")

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        columns = await self._describe(GENERAL_LEDGER_TABLE, AUDIT_SCHEMA)
        translator = RowTranslator(
            columns,
            prefix={"company_id": request.company_id},
            suffix={
                "source_system": "MSSQL",
                "migrated_at": datetime.utcnow(),
                "migration_batch_id": run_id,
            },
        )
        target = DestinationTable(GENERAL_LEDGER_EXPORT_TABLE, translator.column_names)
        await self.oracle.require(target)

        source = qualified_source_name(AUDIT_SCHEMA, GENERAL_LEDGER_TABLE)
        order_by = "PostingsPeriod, TenantCode"
        return [
            TransferPlan(
                label=f"{AUDIT_SCHEMA}.{GENERAL_LEDGER_TABLE}",
                source_query=(
                    f"SELECT {_select_columns(columns)} FROM {source} "
                    f"WHERE TenantCode = :tenant_code ORDER BY {order_by}"
                ),
                count_query=f"SELECT COUNT(*) FROM {source} WHERE TenantCode = :tenant_code",
                params={"tenant_code": request.tenant_code},
                target=target,
                translate=translator.translate,
                batch_size=self.batch_size(request),
            )
        ]


class AuditSchemaMigration(MigrationOrchestrator):
    """One whitelisted audit.<Table> -> audit.<snake_table> owned by company_code"""

    migration_type = MigrationType.AUDIT_SCHEMA_MIGRATION

    @property
    def default_batch_size(self) -> int:
        return self.settings.AUDIT_BATCH_SIZE

    def validate_scope(self, request: MigrationRequest) -> None:
        self._require(request, "table_name")
        try:
            ensure_allowed(request.table_name, AUDIT_TABLES, "audit table")
        except MigrationException as e:
            raise InvalidMigrationScopeError(e.message, context={"table_name": request.table_name})

    async def plan_table(
        self,
        table_name: str,
        company_code: int,
        batch_size: int,
        total: Optional[int] = None,
    ) -> TransferPlan:
        columns = await self._describe(table_name, AUDIT_SCHEMA)
        translator = RowTranslator(columns, prefix={"company_code": company_code})
        target = DestinationTable(
            translate_table_name(table_name),
            translator.column_names,
            schema=AUDIT_SCHEMA,
        )
        await self.oracle.require(target)

        source = qualified_source_name(AUDIT_SCHEMA, table_name)
        order_by = " ORDER BY TenantCode" if any(c.name == "TenantCode" for c in columns) else ""
        return TransferPlan(
            label=table_name,
            source_query=f"SELECT {_select_columns(columns)} FROM {source}{order_by}",
            count_query=f"SELECT COUNT(*) FROM {source}",
            target=target,
            translate=translator.translate,
            batch_size=batch_size,
            total=total,
        )

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        plan = await self.plan_table(
            request.table_name,
            self.company_id(request),
            self.batch_size(request),
        )
        return [plan]


class FullAuditExport(AuditSchemaMigration):
    """Every whitelisted audit table with rows, sequentially, in one run"""

    migration_type = MigrationType.FULL_AUDIT_EXPORT

    def validate_scope(self, request: MigrationRequest) -> None:
        pass

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        candidates = await asyncio.to_thread(
            self.introspector.list_candidate_tables, AUDIT_TABLES, AUDIT_SCHEMA
        )
        plans = []
        for candidate in candidates:
            if candidate.record_count == 0:
                continue
            try:
                plan = await self.plan_table(
                    candidate.table_name,
                    self.company_id(request),
                    self.batch_size(request),
                    total=candidate.record_count,
                )
            except (DestinationSchemaError, IntrospectionError) as e:
                logger.warning(f"Skipping audit table {candidate.table_name}: {e.message}")
                continue
            plans.append(plan)

        logger.info(f"Full audit export: {len(plans)} of {len(candidates)} tables have data to move")
        return plans


class ExternalTableImport(MigrationOrchestrator):
    """Any table of the external source schema -> rs.<lowercase table>"""

    migration_type = MigrationType.EXTERNAL_TABLE_IMPORT

    def validate_scope(self, request: MigrationRequest) -> None:
        self._require(request, "table_name", "company_id", "company_tin")
        try:
            validate_identifier(request.table_name, "table")
        except MigrationException as e:
            raise InvalidMigrationScopeError(e.message, context={"table_name": request.table_name})

    async def prepare(self, request: MigrationRequest, run_id: str) -> List[TransferPlan]:
        schema = self.settings.EXTERNAL_SOURCE_SCHEMA
        table_name = request.table_name

        exists = await asyncio.to_thread(self.introspector.table_exists, table_name, schema)
        if not exists:
            raise IntrospectionError(
                f"Source table {schema}.{table_name} does not exist",
                context={"table_name": table_name, "schema": schema}
            )

        columns = await self._describe(table_name, schema)
        translator = RowTranslator(
            columns,
            prefix={"company_id": request.company_id, "company_tin": request.company_tin},
            column_namer=str.lower,
        )
        target = DestinationTable(
            table_name.lower(),
            translator.column_names,
            schema=self.settings.EXTERNAL_DESTINATION_SCHEMA,
        )
        await self.oracle.require(target)

        source = qualified_source_name(schema, table_name)
        return [
            TransferPlan(
                label=f"{schema}.{table_name}",
                source_query=f"SELECT {_select_columns(columns)} FROM {source}",
                count_query=f"SELECT COUNT(*) FROM {source}",
                target=target,
                translate=translator.translate,
                batch_size=self.batch_size(request),
            )
        ]


ORCHESTRATORS = (
    FullLedgerImport,
    IncrementalLedgerUpdate,
    AuditTableExport,
    AuditSchemaMigration,
    FullAuditExport,
    ExternalTableImport,
)


def build_orchestrators(
    introspector: SchemaIntrospector,
    oracle: SchemaOracle,
    settings: Settings,
) -> Dict[MigrationType, MigrationOrchestrator]:
    return {
        cls.migration_type: cls(introspector, oracle, settings)
        for cls in ORCHESTRATORS
    }
