"""
Write translated rows into PostgreSQL with skip-on-conflict semantics (idempotency)
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from sqlalchemy import and_, column, inspect, table, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from core.exceptions import DestinationSchemaError
from migration.transformers.translator import validate_identifier

logger = logging.getLogger(__name__)

# PostgreSQL wire protocol limit on bind parameters per statement
MAX_BIND_PARAMETERS = 32767


@dataclass
class DestinationTable:
    """Destination table plus the ordered column list every record carries."""
    name: str
    columns: List[str]
    schema: Optional[str] = None

    def __post_init__(self):
        validate_identifier(self.name, "table")
        if self.schema is not None:
            validate_identifier(self.schema, "schema")
        for name in self.columns:
            validate_identifier(name, "column")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def as_table(self):
        # Lightweight construct; the compiler quotes names such as "1690_stock"
        return table(self.name, *[column(c) for c in self.columns], schema=self.schema)


@dataclass
class RowFailure:
    record_ref: Optional[str]
    message: str
    record: Optional[Dict[str, Any]] = None


@dataclass
class WriteResult:
    succeeded: int = 0
    failed: int = 0
    errors: List[RowFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed


class PostgresLoader:
    """
    Load batches into PostgreSQL.

    Ensures:
    - No duplicate rows on repeated runs (INSERT ... ON CONFLICT DO NOTHING)
    - One transaction per batch, split under the bind-parameter limit
    - When a batch fails, rows are retried one by one inside savepoints so
      only the offending rows count as errors
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        isolate_failures: bool = True,
    ):
        self.session_factory = session_factory
        self.isolate_failures = isolate_failures

    @staticmethod
    def rows_per_statement(target: DestinationTable) -> int:
        return max(1, MAX_BIND_PARAMETERS // max(1, len(target.columns)))

    @staticmethod
    def build_insert(target: DestinationTable, records: Sequence[Dict[str, Any]]):
        """Multi-row INSERT that silently skips rows hitting a unique constraint."""
        return insert(target.as_table()).values(list(records)).on_conflict_do_nothing()

    @staticmethod
    def build_update(target: DestinationTable, record: Dict[str, Any], key_columns: Sequence[str]):
        tbl = target.as_table()
        values = {k: v for k, v in record.items() if k not in key_columns}
        condition = and_(*[tbl.c[k] == record[k] for k in key_columns])
        return update(tbl).where(condition).values(**values)

    async def insert_rows(
        self,
        target: DestinationTable,
        records: Sequence[Dict[str, Any]],
        record_refs: Optional[Sequence[str]] = None,
    ) -> WriteResult:
        """
        Insert a batch with skip-on-conflict.

        Args:
            target: Destination table and column list
            records: Translated records keyed by destination column
            record_refs: Optional per-record references used in error reports

        Returns:
            WriteResult with succeeded/failed counts. Rows skipped as
            duplicates count as succeeded.
        """
        if not records:
            return WriteResult()

        step = self.rows_per_statement(target)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for start in range(0, len(records), step):
                        await session.execute(self.build_insert(target, records[start:start + step]))
        except SQLAlchemyError as e:
            logger.warning(
                f"Batch insert into {target.qualified_name} failed ({len(records)} rows): {e}"
            )
            if not self.isolate_failures:
                return WriteResult(
                    failed=len(records),
                    errors=[RowFailure(None, f"Batch insert failed: {e}")]
                )
            return await self._insert_one_by_one(target, records, record_refs)

        logger.debug(f"Inserted {len(records)} rows into {target.qualified_name}")
        return WriteResult(succeeded=len(records))

    async def _insert_one_by_one(
        self,
        target: DestinationTable,
        records: Sequence[Dict[str, Any]],
        record_refs: Optional[Sequence[str]],
    ) -> WriteResult:
        result = WriteResult()
        async with self.session_factory() as session:
            async with session.begin():
                for index, record in enumerate(records):
                    try:
                        async with session.begin_nested():
                            await session.execute(self.build_insert(target, [record]))
                        result.succeeded += 1
                    except SQLAlchemyError as e:
                        result.failed += 1
                        result.errors.append(
                            RowFailure(_ref(record_refs, index), _message(e), record)
                        )

        logger.info(
            f"Row-by-row retry into {target.qualified_name}: "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def update_rows(
        self,
        target: DestinationTable,
        records: Sequence[Dict[str, Any]],
        key_columns: Sequence[str],
        record_refs: Optional[Sequence[str]] = None,
    ) -> WriteResult:
        """
        One UPDATE per record keyed by ``key_columns``, each in its own savepoint.

        A record matching no destination row is not inserted and still counts
        as succeeded.
        """
        result = WriteResult()
        if not records:
            return result

        async with self.session_factory() as session:
            async with session.begin():
                for index, record in enumerate(records):
                    try:
                        async with session.begin_nested():
                            await session.execute(self.build_update(target, record, key_columns))
                        result.succeeded += 1
                    except SQLAlchemyError as e:
                        result.failed += 1
                        result.errors.append(
                            RowFailure(_ref(record_refs, index), _message(e), record)
                        )

        return result


def _message(error: SQLAlchemyError) -> str:
    return str(getattr(error, "orig", None) or error)


def _ref(refs: Optional[Sequence[str]], index: int) -> Optional[str]:
    if refs is None or index >= len(refs):
        return None
    return refs[index]


class SchemaOracle:
    """Confirms destination tables and columns exist before a dynamic run starts."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def get_columns(self, table_name: str, schema: Optional[str] = None) -> Optional[List[str]]:
        """Column names of the table, or None when it does not exist."""

        def _inspect(sync_conn):
            inspector = inspect(sync_conn)
            if not inspector.has_table(table_name, schema=schema):
                return None
            return [c["name"] for c in inspector.get_columns(table_name, schema=schema)]

        async with self.engine.connect() as conn:
            return await conn.run_sync(_inspect)

    async def require(self, target: DestinationTable) -> None:
        existing = await self.get_columns(target.name, target.schema)
        if existing is None:
            raise DestinationSchemaError(
                f"Destination table {target.qualified_name} does not exist",
                context={"table_name": target.qualified_name}
            )

        missing = [c for c in target.columns if c not in set(existing)]
        if missing:
            raise DestinationSchemaError(
                f"Destination table {target.qualified_name} is missing columns: {', '.join(missing)}",
                context={"table_name": target.qualified_name, "missing_columns": missing}
            )
