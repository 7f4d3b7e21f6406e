"""
Streaming batch transfer engine.

Moves rows from source cursors to destination tables with backpressure:
the cursor is paused while a batch is translated and written, then resumed.

State per run:
    Idle -> Streaming -> (Draining | Failed) -> Terminal

Failure policy:
    - a row that fails translation counts as one error, the run continues
    - a failed write counts its rows as errors, the run continues
    - a cursor failure aborts the run (failed, no flush of the buffer)
    - a stop request is honoured between batches; committed batches stay
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union
import asyncio
import logging

from core.exceptions import MigrationException, SourceStreamError, TranslationError
from migration.loaders.postgres_loader import DestinationTable, PostgresLoader, RowFailure, WriteResult
from migration.registry import MigrationStatusRegistry
from migration.source.connector import SourceConnector
from migration.source.introspector import SchemaIntrospector
from schemas.migration import MigrationRun

logger = logging.getLogger(__name__)


class WriteMode(str, Enum):
    INSERT_SKIP_CONFLICT = "insert"
    UPDATE_BY_KEY = "update"


ProgressSink = Callable[[MigrationRun, List[RowFailure]], Union[None, Awaitable[None]]]


@dataclass
class TransferPlan:
    """
    One source query streamed into one destination table.

    ``translate(row, ordinal)`` turns a source row (keyed by source column)
    into a destination record keyed by ``target.columns``; ``ordinal`` is the
    1-based position of the row within this plan's stream.
    """
    label: str
    source_query: Any
    count_query: Any
    target: DestinationTable
    translate: Callable[[Dict[str, Any], int], Dict[str, Any]]
    params: Dict[str, Any] = field(default_factory=dict)
    mode: WriteMode = WriteMode.INSERT_SKIP_CONFLICT
    key_columns: Sequence[str] = ()
    batch_size: int = 1000
    total: Optional[int] = None

    def record_ref(self, ordinal: int) -> str:
        return f"{self.label}#{ordinal}"


class BatchTransferEngine:
    """Run one or more TransferPlans sequentially under a single run id."""

    def __init__(
        self,
        connector: SourceConnector,
        introspector: SchemaIntrospector,
        writer: PostgresLoader,
        registry: MigrationStatusRegistry,
        sinks: Optional[List[ProgressSink]] = None,
        fetch_size: int = 500,
    ):
        self.connector = connector
        self.introspector = introspector
        self.writer = writer
        self.registry = registry
        self.sinks = list(sinks or [])
        self.fetch_size = fetch_size

    async def execute(self, run_id: str, plans: Sequence[TransferPlan]) -> Optional[MigrationRun]:
        """
        Drive a run to a terminal state and return its final snapshot.

        Never raises for data-level problems; the outcome is recorded on the
        run in the registry.
        """
        snapshot = self.registry.mark_running(run_id)
        if snapshot is None:
            return self.registry.current()
        await self._emit(snapshot)

        try:
            total = 0
            for plan in plans:
                if plan.total is None:
                    plan.total = await asyncio.to_thread(
                        self.introspector.count_rows, plan.count_query, plan.params
                    )
                total += plan.total
            self.registry.set_total(run_id, total)
            logger.info(f"Run {run_id}: {total} source rows across {len(plans)} table(s)")

            if total == 0:
                return await self.publish(self.registry.complete(run_id))

            for plan in plans:
                if self.registry.is_stopped(run_id):
                    break
                if plan.total == 0:
                    logger.info(f"Run {run_id}: skipping empty source {plan.label}")
                    continue
                await self._transfer(run_id, plan)

        except SourceStreamError as e:
            logger.error(f"Run {run_id}: source cursor failed", extra={"error_context": e.to_dict()})
            return await self.publish(self.registry.fail(run_id, _describe(e)))
        except MigrationException as e:
            return await self.publish(self.registry.fail(run_id, e.message))

        if self.registry.is_stopped(run_id):
            return await self.publish(self.registry.current())
        return await self.publish(self.registry.complete(run_id))

    async def _transfer(self, run_id: str, plan: TransferPlan) -> None:
        logger.info(
            f"Run {run_id}: streaming {plan.label} -> {plan.target.qualified_name} "
            f"in batches of {plan.batch_size}"
        )
        self.registry.set_table(run_id, plan.label)

        stream = await self.connector.stream(
            plan.source_query,
            plan.params,
            fetch_size=min(self.fetch_size, plan.batch_size),
        )
        buffer: List[tuple] = []
        ordinal = 0
        try:
            async for row in stream:
                ordinal += 1
                buffer.append((ordinal, row))
                if len(buffer) >= plan.batch_size:
                    stream.pause()
                    await self._flush(run_id, plan, buffer)
                    buffer = []
                    if self.registry.is_stopped(run_id):
                        logger.info(f"Run {run_id}: stop requested, closing {plan.label} stream")
                        return
                    stream.resume()

            if buffer:
                await self._flush(run_id, plan, buffer)
        finally:
            await stream.close()

    async def _flush(self, run_id: str, plan: TransferPlan, buffer: List[tuple]) -> None:
        """Translate and write one batch, then record it on the run."""
        records = []
        refs = []
        failures: List[RowFailure] = []

        for ordinal, row in buffer:
            ref = plan.record_ref(ordinal)
            try:
                records.append(plan.translate(row, ordinal))
                refs.append(ref)
            except (TranslationError, ValueError, TypeError, KeyError) as e:
                failures.append(RowFailure(ref, f"Translation failed: {e}"))

        try:
            if plan.mode == WriteMode.UPDATE_BY_KEY:
                result = await self.writer.update_rows(plan.target, records, plan.key_columns, refs)
            else:
                result = await self.writer.insert_rows(plan.target, records, refs)
        except Exception as e:
            logger.error(
                f"Run {run_id}: write of {len(records)} rows into {plan.target.qualified_name} failed: {e}",
                extra={"error_context": {"run_id": run_id, "table": plan.label}}
            )
            result = WriteResult(
                failed=len(records),
                errors=[RowFailure(refs[0] if refs else None, f"Batch write failed: {e}")]
            )

        failures.extend(result.errors)
        failed = result.failed + (len(buffer) - len(records))
        snapshot = self.registry.record_batch(run_id, result.succeeded, failed)
        if snapshot is None:
            return

        if failed:
            logger.warning(f"Run {run_id}: {failed} of {len(buffer)} rows failed in {plan.label}")
        logger.info(
            f"Run {run_id}: {snapshot.processed_records}/{snapshot.total_records} "
            f"({snapshot.progress}%) success={snapshot.success_count} errors={snapshot.error_count}"
        )
        await self._emit(snapshot, failures)

    async def publish(self, snapshot: Optional[MigrationRun]) -> Optional[MigrationRun]:
        """Send a terminal (or any) snapshot to every sink and return it."""
        if snapshot is not None:
            await self._emit(snapshot)
        return snapshot

    async def _emit(self, snapshot: MigrationRun, failures: Optional[List[RowFailure]] = None) -> None:
        for sink in self.sinks:
            try:
                outcome = sink(snapshot, failures or [])
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Progress sink {sink!r} failed: {e}")


def _describe(error: MigrationException) -> str:
    if error.original_exception is not None:
        return f"{error.message}: {error.original_exception}"
    return error.message
