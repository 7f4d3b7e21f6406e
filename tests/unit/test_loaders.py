"""
Unit tests for the PostgreSQL loader and schema oracle
"""

import pytest
from unittest.mock import AsyncMock
from sqlalchemy.dialects import postgresql
from core.exceptions import DestinationSchemaError, IdentifierNotAllowedError
from migration.loaders.postgres_loader import (
    DestinationTable,
    PostgresLoader,
    SchemaOracle,
)
from tests.conftest import FakeSession


def compile_pg(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestStatements:
    """Generated SQL"""

    def test_insert_skips_conflicts(self):
        target = DestinationTable("accounts_summary", ["company_code", "tenant_code"], schema="audit")
        sql = compile_pg(PostgresLoader.build_insert(target, [
            {"company_code": 1, "tenant_code": 5},
            {"company_code": 1, "tenant_code": 6},
        ]))

        assert sql.startswith("INSERT INTO audit.accounts_summary (company_code, tenant_code) VALUES")
        assert "ON CONFLICT DO NOTHING" in sql

    def test_digit_leading_table_is_quoted(self):
        target = DestinationTable("1690_stock", ["company_code"], schema="audit")
        sql = compile_pg(PostgresLoader.build_insert(target, [{"company_code": 1}]))
        assert 'audit."1690_stock"' in sql

    def test_update_is_keyed_by_natural_key(self):
        target = DestinationTable("journal_entries", ["company_id", "entry_number", "description"])
        sql = compile_pg(PostgresLoader.build_update(
            target,
            {"company_id": 1, "entry_number": "GL-5-000001", "description": "x"},
            ("company_id", "entry_number"),
        ))

        assert sql.startswith("UPDATE journal_entries SET description=")
        assert "journal_entries.company_id = " in sql
        assert "journal_entries.entry_number = " in sql

    def test_unsafe_target_rejected(self):
        with pytest.raises(IdentifierNotAllowedError):
            DestinationTable("journal_entries; DROP", ["id"])
        with pytest.raises(IdentifierNotAllowedError):
            DestinationTable("journal_entries", ["bad column"])


class TestInsertRows:
    """Batch insertion with failure isolation"""

    @pytest.mark.asyncio
    async def test_batch_in_one_statement(self):
        session = FakeSession()
        loader = PostgresLoader(lambda: session)
        target = DestinationTable("t", ["id"])

        result = await loader.insert_rows(target, [{"id": i} for i in range(10)])

        assert result.succeeded == 10
        assert result.failed == 0
        assert len(session.executed) == 1

    @pytest.mark.asyncio
    async def test_split_under_bind_parameter_limit(self):
        session = FakeSession()
        loader = PostgresLoader(lambda: session)
        # 10000 columns -> 3 rows per statement
        target = DestinationTable("wide", [f"c{i}" for i in range(10000)])
        assert PostgresLoader.rows_per_statement(target) == 3

        result = await loader.insert_rows(target, [{"c0": i} for i in range(7)])

        assert result.succeeded == 7
        assert len(session.executed) == 3

    @pytest.mark.asyncio
    async def test_failed_batch_is_retried_row_by_row(self):
        # call 1 = batch insert, calls 2..4 = one per row; the second row is bad
        session = FakeSession(failing_calls={1, 3})
        loader = PostgresLoader(lambda: session)
        target = DestinationTable("t", ["id"])

        result = await loader.insert_rows(
            target,
            [{"id": 1}, {"id": 2}, {"id": 3}],
            record_refs=["t#1", "t#2", "t#3"],
        )

        assert result.succeeded == 2
        assert result.failed == 1
        assert result.errors[0].record_ref == "t#2"
        assert result.errors[0].record == {"id": 2}
        assert session.nested_count == 3

    @pytest.mark.asyncio
    async def test_failed_batch_without_isolation(self):
        session = FakeSession(failing_calls={1})
        loader = PostgresLoader(lambda: session, isolate_failures=False)
        target = DestinationTable("t", ["id"])

        result = await loader.insert_rows(target, [{"id": 1}, {"id": 2}])

        assert result.succeeded == 0
        assert result.failed == 2
        assert len(session.executed) == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        session = FakeSession()
        loader = PostgresLoader(lambda: session)

        result = await loader.insert_rows(DestinationTable("t", ["id"]), [])

        assert result.attempted == 0
        assert session.executed == []


class TestUpdateRows:
    """Incremental updates"""

    @pytest.mark.asyncio
    async def test_one_statement_per_row(self):
        session = FakeSession(failing_calls={2})
        loader = PostgresLoader(lambda: session)
        target = DestinationTable("journal_entries", ["company_id", "entry_number", "description"])
        records = [
            {"company_id": 1, "entry_number": f"GL-5-{i:06d}", "description": "x"}
            for i in range(1, 4)
        ]

        result = await loader.update_rows(target, records, ("company_id", "entry_number"))

        assert len(session.executed) == 3
        assert result.succeeded == 2
        assert result.failed == 1


class TestSchemaOracle:
    """Destination existence checks"""

    @pytest.mark.asyncio
    async def test_missing_table(self):
        oracle = SchemaOracle(engine=None)
        oracle.get_columns = AsyncMock(return_value=None)

        with pytest.raises(DestinationSchemaError, match="does not exist"):
            await oracle.require(DestinationTable("accounts_summary", ["company_code"], schema="audit"))

    @pytest.mark.asyncio
    async def test_missing_columns(self):
        oracle = SchemaOracle(engine=None)
        oracle.get_columns = AsyncMock(return_value=["company_code", "tenant_code"])

        with pytest.raises(DestinationSchemaError) as exc_info:
            await oracle.require(DestinationTable("x", ["company_code", "tenant_code", "balance"]))

        assert exc_info.value.context["missing_columns"] == ["balance"]

    @pytest.mark.asyncio
    async def test_all_present(self):
        oracle = SchemaOracle(engine=None)
        oracle.get_columns = AsyncMock(return_value=["id", "company_code", "tenant_code"])

        await oracle.require(DestinationTable("x", ["company_code", "tenant_code"]))
