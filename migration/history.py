"""
Persist migration runs and their row failures (best effort)
"""

from typing import Callable, Dict, List, Optional
from datetime import datetime
import logging

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from migration.loaders.postgres_loader import RowFailure
from models.migration_error import MigrationErrorRecord
from models.migration_history import MigrationHistory
from schemas.migration import MigrationRun

logger = logging.getLogger(__name__)


class MigrationHistoryRecorder:
    """
    Progress sink that mirrors every run snapshot into migration_history.

    Each snapshot is upserted on run_id, so the first call inserts and every
    later call updates. Row failures go to migration_errors, capped per run.
    Database errors are logged and swallowed: history must never break a run.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        max_logged_errors: int = 100,
    ):
        self.session_factory = session_factory
        self.max_logged_errors = max_logged_errors
        self._logged_errors: Dict[str, int] = {}

    async def __call__(self, snapshot: MigrationRun, failures: Optional[List[RowFailure]] = None) -> None:
        await self.record(snapshot, failures or [])

    async def record(self, snapshot: MigrationRun, failures: List[RowFailure]) -> None:
        values = {
            "run_id": snapshot.run_id,
            "migration_type": snapshot.migration_type,
            "status": snapshot.status,
            "tenant_code": snapshot.tenant_code,
            "company_id": snapshot.company_id,
            "table_name": snapshot.table_name,
            "batch_size": snapshot.batch_size,
            "started_at": snapshot.start_time,
            "completed_at": snapshot.end_time,
            "duration_seconds": (
                (snapshot.end_time - snapshot.start_time).total_seconds()
                if snapshot.end_time else None
            ),
            "total_records": snapshot.total_records,
            "processed_records": snapshot.processed_records,
            "success_count": snapshot.success_count,
            "error_count": snapshot.error_count,
            "error_message": snapshot.error_message,
            "updated_at": datetime.utcnow(),
        }

        stmt = insert(MigrationHistory).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["run_id"],
            set_={k: stmt.excluded[k] for k in values if k not in ("run_id", "started_at")}
        )

        try:
            async with self.session_factory() as session:
                await session.execute(stmt)
                for failure in self._take_failures(snapshot, failures):
                    session.add(MigrationErrorRecord(
                        run_id=snapshot.run_id,
                        table_name=snapshot.table_name,
                        record_ref=failure.record_ref,
                        message=failure.message,
                        record_data=jsonable_encoder(failure.record) if failure.record else None,
                    ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not record history for run {snapshot.run_id}: {e}")

        if snapshot.is_terminal:
            self._logged_errors.pop(snapshot.run_id, None)

    def _take_failures(self, snapshot: MigrationRun, failures: List[RowFailure]) -> List[RowFailure]:
        logged = self._logged_errors.get(snapshot.run_id, 0)
        room = max(0, self.max_logged_errors - logged)
        taken = failures[:room]
        self._logged_errors[snapshot.run_id] = logged + len(taken)
        return taken

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_runs(self, limit: int = 20, offset: int = 0) -> tuple:
        """Newest runs first, without their error rows. Returns (runs, total)."""
        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(MigrationHistory))
            result = await session.execute(
                select(MigrationHistory)
                .order_by(MigrationHistory.started_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def get_run(self, run_id: str) -> Optional[MigrationHistory]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MigrationHistory)
                .options(selectinload(MigrationHistory.errors))
                .where(MigrationHistory.run_id == run_id)
            )
            return result.scalar_one_or_none()
