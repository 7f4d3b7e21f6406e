"""
Unit tests for the migration variants (scope checks and transfer plans)
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from core.exceptions import (
    DestinationSchemaError,
    IntrospectionError,
    InvalidMigrationScopeError,
)
from migration.engine import WriteMode
from migration.orchestrators import (
    AuditSchemaMigration,
    AuditTableExport,
    ExternalTableImport,
    FullAuditExport,
    FullLedgerImport,
    IncrementalLedgerUpdate,
    build_orchestrators,
)
from models.base import MigrationType
from schemas.migration import CandidateTable, ColumnDescriptor, MigrationRequest


def column(name, data_type="nvarchar", max_length=None, ordinal=0):
    return ColumnDescriptor(name=name, data_type=data_type, max_length=max_length, ordinal=ordinal)


SUMMARY_COLUMNS = [
    column("TenantCode", "int", ordinal=1),
    column("AccountCode", ordinal=2),
    column("IsClosed", "binary", max_length=1, ordinal=3),
]


@pytest.fixture
def introspector():
    mock = MagicMock()
    mock.describe_columns.return_value = SUMMARY_COLUMNS
    mock.table_exists.return_value = True
    return mock


@pytest.fixture
def oracle():
    mock = MagicMock()
    mock.require = AsyncMock()
    return mock


def request(migration_type, **scope):
    return MigrationRequest(migration_type=migration_type, **scope)


class TestScopeValidation:
    """Requests that must be rejected before anything runs"""

    @pytest.mark.parametrize("cls,migration_type,scope", [
        (FullLedgerImport, MigrationType.FULL_LEDGER_IMPORT, {"tenant_code": 5}),
        (IncrementalLedgerUpdate, MigrationType.INCREMENTAL_LEDGER_UPDATE, {"company_id": 1}),
        (AuditTableExport, MigrationType.AUDIT_TABLE_EXPORT, {}),
        (AuditSchemaMigration, MigrationType.AUDIT_SCHEMA_MIGRATION, {}),
        (ExternalTableImport, MigrationType.EXTERNAL_TABLE_IMPORT,
         {"table_name": "Invoices", "company_id": 1}),
    ])
    def test_missing_scope(self, cls, migration_type, scope, introspector, oracle, test_settings):
        orchestrator = cls(introspector, oracle, test_settings)

        with pytest.raises(InvalidMigrationScopeError):
            orchestrator.validate_scope(request(migration_type, **scope))

    def test_audit_table_outside_whitelist(self, introspector, oracle, test_settings):
        orchestrator = AuditSchemaMigration(introspector, oracle, test_settings)

        with pytest.raises(InvalidMigrationScopeError, match="allowed list"):
            orchestrator.validate_scope(
                request(MigrationType.AUDIT_SCHEMA_MIGRATION, table_name="Users")
            )

    def test_external_table_name_injection(self, introspector, oracle, test_settings):
        orchestrator = ExternalTableImport(introspector, oracle, test_settings)

        with pytest.raises(InvalidMigrationScopeError):
            orchestrator.validate_scope(request(
                MigrationType.EXTERNAL_TABLE_IMPORT,
                table_name="Invoices; DROP TABLE x",
                company_id=1,
                company_tin="204567890",
            ))

    def test_full_audit_export_needs_nothing(self, introspector, oracle, test_settings):
        FullAuditExport(introspector, oracle, test_settings).validate_scope(
            request(MigrationType.FULL_AUDIT_EXPORT)
        )

    def test_registry_covers_every_type(self, introspector, oracle, test_settings):
        orchestrators = build_orchestrators(introspector, oracle, test_settings)
        assert set(orchestrators) == set(MigrationType)


class TestLedgerPlans:
    """Fixed GeneralLedger mapping"""

    @pytest.mark.asyncio
    async def test_full_import_plan(self, introspector, oracle, test_settings, ledger_row):
        orchestrator = FullLedgerImport(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.FULL_LEDGER_IMPORT, tenant_code=5, company_id=42),
            "full-ledger-import_1",
        )

        assert plan.mode == WriteMode.INSERT_SKIP_CONFLICT
        assert plan.params == {"tenant_code": 5}
        assert plan.target.name == "journal_entries"
        assert plan.batch_size == test_settings.MIGRATION_BATCH_SIZE
        record = plan.translate(ledger_row, 1)
        assert record["company_id"] == 42
        assert record["entry_number"] == "GL-5-000001"

    @pytest.mark.asyncio
    async def test_incremental_update_plan(self, introspector, oracle, test_settings):
        orchestrator = IncrementalLedgerUpdate(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.INCREMENTAL_LEDGER_UPDATE, tenant_code=5, company_id=42),
            "incremental-ledger-update_1",
        )

        assert plan.mode == WriteMode.UPDATE_BY_KEY
        assert plan.key_columns == ("company_id", "entry_number")
        assert "reference" not in plan.target.columns
        assert "is_posted" not in plan.target.columns

    @pytest.mark.asyncio
    async def test_batch_size_is_capped(self, introspector, oracle, test_settings):
        orchestrator = FullLedgerImport(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.FULL_LEDGER_IMPORT, tenant_code=5, company_id=1,
                    batch_size=10 ** 6),
            "full-ledger-import_1",
        )

        assert plan.batch_size == test_settings.MAX_BATCH_SIZE


class TestDynamicPlans:
    """Introspected tables"""

    @pytest.mark.asyncio
    async def test_audit_schema_migration_plan(self, introspector, oracle, test_settings):
        orchestrator = AuditSchemaMigration(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.AUDIT_SCHEMA_MIGRATION, table_name="AccountsSummary", company_id=9),
            "audit-schema-migration_1",
        )

        assert plan.target.qualified_name == "audit.accounts_summary"
        assert plan.target.columns == ["company_code", "tenant_code", "account_code", "is_closed"]
        assert plan.source_query == (
            "SELECT TenantCode, AccountCode, IsClosed FROM audit.AccountsSummary ORDER BY TenantCode"
        )
        assert plan.batch_size == test_settings.AUDIT_BATCH_SIZE
        oracle.require.assert_awaited_once_with(plan.target)

        record = plan.translate({"TenantCode": 5, "AccountCode": "1410", "IsClosed": b"\x01"}, 1)
        assert record == {"company_code": 9, "tenant_code": 5, "account_code": "1410", "is_closed": True}

    @pytest.mark.asyncio
    async def test_audit_schema_migration_defaults_company(self, introspector, oracle, test_settings):
        orchestrator = AuditSchemaMigration(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.AUDIT_SCHEMA_MIGRATION, table_name="AccountsSummary"),
            "audit-schema-migration_1",
        )

        assert plan.translate({}, 1)["company_code"] == test_settings.DEFAULT_COMPANY_ID

    @pytest.mark.asyncio
    async def test_missing_destination_aborts(self, introspector, oracle, test_settings):
        oracle.require.side_effect = DestinationSchemaError("Destination table audit.analytics does not exist")
        orchestrator = AuditSchemaMigration(introspector, oracle, test_settings)

        with pytest.raises(DestinationSchemaError):
            await orchestrator.prepare(
                request(MigrationType.AUDIT_SCHEMA_MIGRATION, table_name="Analytics"),
                "audit-schema-migration_1",
            )

    @pytest.mark.asyncio
    async def test_empty_description_is_an_error(self, introspector, oracle, test_settings):
        introspector.describe_columns.return_value = []
        orchestrator = AuditSchemaMigration(introspector, oracle, test_settings)

        with pytest.raises(IntrospectionError):
            await orchestrator.prepare(
                request(MigrationType.AUDIT_SCHEMA_MIGRATION, table_name="Analytics"),
                "audit-schema-migration_1",
            )

    @pytest.mark.asyncio
    async def test_full_audit_export_skips_empty_and_broken_tables(self, introspector, oracle, test_settings):
        introspector.list_candidate_tables.return_value = [
            CandidateTable(table_name="1690Stock", record_count=10),
            CandidateTable(table_name="AccountsSummary", record_count=0),
            CandidateTable(table_name="Analytics", record_count=4),
            CandidateTable(table_name="SalaryExpense", record_count=7),
        ]

        async def require(target):
            if target.name == "analytics":
                raise DestinationSchemaError("Destination table audit.analytics does not exist")

        oracle.require.side_effect = require
        orchestrator = FullAuditExport(introspector, oracle, test_settings)

        plans = await orchestrator.prepare(request(MigrationType.FULL_AUDIT_EXPORT), "full-audit-export_1")

        assert [p.label for p in plans] == ["1690Stock", "SalaryExpense"]
        assert [p.total for p in plans] == [10, 7]
        assert plans[0].source_query.endswith("FROM audit.[1690Stock] ORDER BY TenantCode")

    @pytest.mark.asyncio
    async def test_audit_table_export_plan(self, introspector, oracle, test_settings):
        orchestrator = AuditTableExport(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.AUDIT_TABLE_EXPORT, tenant_code=5, company_id=3),
            "audit-table-export_1",
        )

        assert plan.target.name == "general_ledger"
        assert plan.target.columns[0] == "company_id"
        assert plan.target.columns[-3:] == ["source_system", "migrated_at", "migration_batch_id"]
        assert "WHERE TenantCode = :tenant_code" in plan.source_query
        record = plan.translate({"TenantCode": 5}, 1)
        assert record["source_system"] == "MSSQL"
        assert record["migration_batch_id"] == "audit-table-export_1"

    @pytest.mark.asyncio
    async def test_external_import_plan(self, introspector, oracle, test_settings):
        introspector.describe_columns.return_value = [
            column("InvoiceNo", ordinal=1),
            column("TotalAmount", "decimal", ordinal=2),
        ]
        orchestrator = ExternalTableImport(introspector, oracle, test_settings)

        [plan] = await orchestrator.prepare(
            request(MigrationType.EXTERNAL_TABLE_IMPORT, table_name="Invoices",
                    company_id=3, company_tin="204567890"),
            "external-table-import_1",
        )

        assert plan.target.qualified_name == "rs.invoices"
        assert plan.target.columns == ["company_id", "company_tin", "invoiceno", "totalamount"]
        introspector.table_exists.assert_called_once_with("Invoices", "dbo")

    @pytest.mark.asyncio
    async def test_external_import_missing_source_table(self, introspector, oracle, test_settings):
        introspector.table_exists.return_value = False
        orchestrator = ExternalTableImport(introspector, oracle, test_settings)

        with pytest.raises(IntrospectionError, match="does not exist"):
            await orchestrator.prepare(
                request(MigrationType.EXTERNAL_TABLE_IMPORT, table_name="Invoices",
                        company_id=3, company_tin="204567890"),
                "external-table-import_1",
            )
        oracle.require.assert_not_called()
