"""
Migration service: the single entry point used by the API, the CLI and the scheduler
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import time

from core.config import Settings
from core.database import async_session_maker, engine
from core.logging import run_context
from core.exceptions import (
    MigrationAlreadyRunningError,
    MigrationException,
    NoActiveMigrationError,
    SourceConnectionError,
)
from migration.engine import BatchTransferEngine
from migration.history import MigrationHistoryRecorder
from migration.loaders.postgres_loader import PostgresLoader, SchemaOracle
from migration.orchestrators import MigrationOrchestrator, build_orchestrators
from migration.registry import MigrationStatusRegistry
from migration.source.connector import SourceConnector
from migration.source.introspector import SchemaIntrospector
from models.migration_history import MigrationHistory
from schemas.migration import CandidateTable, MigrationRequest, MigrationRun, TenantInfo

logger = logging.getLogger(__name__)


@dataclass
class StartResult:
    accepted: bool
    run_id: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[MigrationRun] = None


class MigrationService:
    """
    Validates requests, owns the single-active-run rule and runs migrations
    as background tasks.

    Usage:
        service = create_migration_service(settings)
        result = await service.start_migration(request)
        ...
        service.get_status()
    """

    def __init__(
        self,
        connector: SourceConnector,
        writer: PostgresLoader,
        oracle: SchemaOracle,
        settings: Settings,
        registry: Optional[MigrationStatusRegistry] = None,
        history: Optional[MigrationHistoryRecorder] = None,
        introspector: Optional[SchemaIntrospector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.connector = connector
        self.registry = registry or MigrationStatusRegistry(settings.MIGRATION_STATUS_RETENTION_SECONDS)
        self.history = history
        self.introspector = introspector or SchemaIntrospector(connector)
        self.orchestrators = build_orchestrators(self.introspector, oracle, settings)
        self.engine = BatchTransferEngine(
            connector,
            self.introspector,
            writer,
            self.registry,
            sinks=[history] if history is not None else [],
            fetch_size=settings.SOURCE_FETCH_SIZE,
        )
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    # ========================================================================
    # Introspection
    # ========================================================================

    async def list_tenants(
        self,
        postings_period_from: Optional[date] = None,
        postings_period_to: Optional[date] = None,
        tenant_codes: Optional[Sequence[int]] = None,
    ) -> List[TenantInfo]:
        return await asyncio.to_thread(
            self.introspector.list_tenants,
            postings_period_from,
            postings_period_to,
            tenant_codes,
        )

    async def list_candidate_tables(self) -> List[CandidateTable]:
        return await asyncio.to_thread(self.introspector.list_candidate_tables)

    async def check_source(self) -> Tuple[bool, Optional[str]]:
        """(connected, error code) for health reporting"""
        try:
            await self.connector.open_async()
        except SourceConnectionError as e:
            return False, e.code
        return True, None

    # ========================================================================
    # Run control
    # ========================================================================

    def _orchestrator(self, request: MigrationRequest) -> MigrationOrchestrator:
        orchestrator = self.orchestrators[request.migration_type]
        orchestrator.validate_scope(request)
        return orchestrator

    def _new_run(self, request: MigrationRequest, orchestrator: MigrationOrchestrator) -> MigrationRun:
        run_id = f"{request.migration_type.value}_{int(self._clock() * 1000)}"
        return MigrationRun(
            run_id=run_id,
            migration_type=request.migration_type,
            tenant_code=request.tenant_code,
            company_id=request.company_id,
            table_name=request.table_name,
            batch_size=orchestrator.batch_size(request),
        )

    async def start_migration(self, request: MigrationRequest) -> StartResult:
        """
        Accept a migration and run it in the background.

        Raises:
            InvalidMigrationScopeError: the scope does not fit the type
            SourceConnectionError: the source cannot be opened (no run is created)

        Returns:
            StartResult; accepted=False when another run is active
        """
        orchestrator = self._orchestrator(request)

        current = self.registry.current()
        if current is not None and current.is_active:
            return StartResult(
                accepted=False,
                reason=f"Migration {current.run_id} is already {current.status.value}",
                status=current,
            )

        await self.connector.open_async()

        run = self._new_run(request, orchestrator)
        if not self.registry.try_start(run):
            current = self.registry.current()
            return StartResult(
                accepted=False,
                reason="Another migration started concurrently",
                status=current,
            )

        logger.info(f"Accepted migration {run.run_id}")
        await self.engine.publish(self.registry.current())

        task = asyncio.create_task(self._execute(run.run_id, orchestrator, request))
        self._tasks[run.run_id] = task
        task.add_done_callback(lambda t, run_id=run.run_id: self._tasks.pop(run_id, None))

        return StartResult(accepted=True, run_id=run.run_id, status=self.registry.current())

    async def run_migration(self, request: MigrationRequest) -> Optional[MigrationRun]:
        """Start a migration and wait for it to finish (CLI, scheduler)."""
        result = await self.start_migration(request)
        if not result.accepted:
            raise MigrationAlreadyRunningError(result.reason or "A migration is already running")

        task = self._tasks.get(result.run_id)
        if task is not None:
            return await task
        return self.registry.current()

    async def _execute(
        self,
        run_id: str,
        orchestrator: MigrationOrchestrator,
        request: MigrationRequest,
    ) -> Optional[MigrationRun]:
        with run_context(run_id):
            try:
                try:
                    plans = await orchestrator.prepare(request, run_id)
                except MigrationException as e:
                    logger.error(f"Could not prepare {run_id}: {e}", extra={"error_context": e.to_dict()})
                    return await self.engine.publish(self.registry.fail(run_id, e.message))

                return await self.engine.execute(run_id, plans)
            except asyncio.CancelledError:
                self.registry.stop(run_id)
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in migration {run_id}")
                return await self.engine.publish(self.registry.fail(run_id, f"Unexpected error: {e}"))

    def get_status(self) -> Optional[MigrationRun]:
        return self.registry.current()

    def stop_migration(self) -> MigrationRun:
        """
        Request a cooperative stop; the engine halts after the current batch.

        Raises:
            NoActiveMigrationError: nothing is pending or running
        """
        stopped = self.registry.stop()
        if stopped is None:
            raise NoActiveMigrationError("No migration is currently running")
        return stopped

    # ========================================================================
    # History
    # ========================================================================

    async def list_history(self, limit: int = 20, offset: int = 0) -> Tuple[List[MigrationHistory], int]:
        if self.history is None:
            return [], 0
        return await self.history.list_runs(limit=limit, offset=offset)

    async def get_history(self, run_id: str) -> Optional[MigrationHistory]:
        if self.history is None:
            return None
        return await self.history.get_run(run_id)

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def close(self) -> None:
        """Stop the active run, wait for its task, then dispose the source pool."""
        if self.registry.is_active():
            self.registry.stop()

        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await asyncio.to_thread(self.connector.close)


def create_migration_service(settings: Settings) -> MigrationService:
    """Wire the service against the configured source and destination."""
    return MigrationService(
        connector=SourceConnector(settings),
        writer=PostgresLoader(async_session_maker, settings.MIGRATION_ISOLATE_FAILED_ROWS),
        oracle=SchemaOracle(engine),
        settings=settings,
        history=MigrationHistoryRecorder(async_session_maker, settings.MIGRATION_MAX_LOGGED_ERRORS),
    )
