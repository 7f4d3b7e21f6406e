import logging
from typing import Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import Settings
from core.exceptions import MigrationException
from migration.service import MigrationService
from models.base import MigrationType
from schemas.migration import MigrationRequest

logger = logging.getLogger(__name__)


class LedgerRefreshScheduler:
    """Periodic incremental ledger update for the configured tenants"""

    def __init__(self, service: MigrationService, settings: Settings):
        self.service = service
        self.interval_minutes = settings.LEDGER_REFRESH_INTERVAL_MINUTES
        self.tenants: Dict[int, int] = dict(settings.LEDGER_REFRESH_TENANTS)
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0 and bool(self.tenants)

    async def run_refresh_job(self):
        """Job to refresh journal entries of every configured tenant"""
        logger.info(f"Scheduler: Starting ledger refresh for {len(self.tenants)} tenant(s)")

        for tenant_code, company_id in self.tenants.items():
            if self.service.registry.is_active():
                logger.info("Scheduler: Another migration is active, skipping this cycle")
                return

            request = MigrationRequest(
                migration_type=MigrationType.INCREMENTAL_LEDGER_UPDATE,
                tenant_code=tenant_code,
                company_id=company_id,
            )
            try:
                run = await self.service.run_migration(request)
                if run is not None:
                    logger.info(
                        f"Scheduler: Tenant {tenant_code} refresh {run.status.value} "
                        f"({run.success_count} updated, {run.error_count} errors)"
                    )
            except MigrationException as e:
                logger.error(f"Scheduler: Refresh of tenant {tenant_code} failed - {e.message}")

    def start(self):
        """Start the scheduler if refresh is configured"""
        if not self.enabled:
            logger.info("Ledger refresh scheduler disabled")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_refresh_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="ledger_refresh_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Ledger refresh scheduler started (every {self.interval_minutes} min)")

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Ledger refresh scheduler stopped")
