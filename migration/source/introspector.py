"""
Read-only metadata queries against the legacy source
"""

from typing import Any, Dict, List, Optional, Sequence
from datetime import date
import logging

from sqlalchemy import bindparam, text

from core.exceptions import IntrospectionError
from migration.source.connector import SourceConnector
from migration.transformers.translator import (
    AUDIT_TABLES,
    qualified_source_name,
    validate_identifier,
)
from schemas.migration import CandidateTable, ColumnDescriptor, TenantInfo

logger = logging.getLogger(__name__)


LEDGER_TABLE = "GeneralLedger"


class SchemaIntrospector:
    """
    Lists tenants and candidate tables, describes columns and counts rows.

    All methods are synchronous (blocking driver calls); async callers go
    through asyncio.to_thread. Every query is idempotent.
    """

    def __init__(self, connector: SourceConnector, ledger_schema: str = "dbo"):
        self.connector = connector
        self.ledger_schema = ledger_schema

    def list_tenants(
        self,
        postings_period_from: Optional[date] = None,
        postings_period_to: Optional[date] = None,
        tenant_codes: Optional[Sequence[int]] = None,
    ) -> List[TenantInfo]:
        """Group the general ledger by tenant, optionally filtered."""
        conditions = []
        params: Dict[str, Any] = {}

        if postings_period_from is not None:
            conditions.append("PostingsPeriod >= :period_from")
            params["period_from"] = postings_period_from
        if postings_period_to is not None:
            conditions.append("PostingsPeriod <= :period_to")
            params["period_to"] = postings_period_to
        if tenant_codes:
            conditions.append("TenantCode IN :tenant_codes")
            params["tenant_codes"] = list(tenant_codes)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = text(
            f"""
            SELECT TenantCode AS tenant_code,
                   MAX(TenantName) AS tenant_name,
                   COUNT(*) AS record_count
            FROM {qualified_source_name(self.ledger_schema, LEDGER_TABLE)}
            {where}
            GROUP BY TenantCode
            ORDER BY TenantCode
            """
        )
        if tenant_codes:
            query = query.bindparams(bindparam("tenant_codes", expanding=True))

        rows = self.connector.fetch_all(query, params)
        tenants = [
            TenantInfo(
                tenant_code=row["tenant_code"],
                tenant_name=row["tenant_name"] or f"Tenant {row['tenant_code']}",
                record_count=row["record_count"] or 0,
            )
            for row in rows
        ]
        logger.info(f"Found {len(tenants)} tenants in source ledger")
        return tenants

    def list_candidate_tables(
        self,
        table_names: Sequence[str] = AUDIT_TABLES,
        schema: str = "audit",
    ) -> List[CandidateTable]:
        """
        Count rows of every whitelisted table.

        A failing count (typically a missing table) is reported as 0 so one
        bad table never hides the others. An unreachable source raises
        SourceConnectionError instead.
        """
        tables = []
        for table_name in table_names:
            try:
                count = self.count_table(table_name, schema)
            except IntrospectionError as e:
                logger.warning(f"Could not count {schema}.{table_name}, reporting 0: {e.message}")
                count = 0
            tables.append(CandidateTable(table_name=table_name, record_count=count))
        return tables

    def count_table(self, table_name: str, schema: str) -> int:
        validate_identifier(table_name, "table")
        validate_identifier(schema, "schema")
        return self.count_rows(f"SELECT COUNT(*) FROM {qualified_source_name(schema, table_name)}")

    def describe_columns(self, table_name: str, schema: str) -> List[ColumnDescriptor]:
        """Column metadata in ordinal order; empty if the table does not exist."""
        validate_identifier(table_name, "table")
        validate_identifier(schema, "schema")

        rows = self.connector.fetch_all(
            """
            SELECT COLUMN_NAME AS name,
                   DATA_TYPE AS data_type,
                   CHARACTER_MAXIMUM_LENGTH AS max_length,
                   NUMERIC_PRECISION AS numeric_precision,
                   NUMERIC_SCALE AS numeric_scale,
                   ORDINAL_POSITION AS ordinal
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
            ORDER BY ORDINAL_POSITION
            """,
            {"schema": schema, "table_name": table_name},
        )
        return [
            ColumnDescriptor(
                name=row["name"],
                data_type=row["data_type"],
                max_length=row["max_length"],
                precision=row["numeric_precision"],
                scale=row["numeric_scale"],
                ordinal=row["ordinal"],
            )
            for row in rows
        ]

    def table_exists(self, table_name: str, schema: str) -> bool:
        count = self.count_rows(
            """
            SELECT COUNT(*) FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
            """,
            {"schema": schema, "table_name": table_name},
        )
        return count > 0

    def count_rows(self, query, params: Optional[Dict[str, Any]] = None) -> int:
        value = self.connector.scalar(query, params)
        return int(value or 0)
