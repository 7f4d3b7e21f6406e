import pytest
from unittest.mock import AsyncMock, MagicMock
from core.exceptions import SourceTimeoutError
from migration.scheduler import LedgerRefreshScheduler
from models.base import MigrationStatus, MigrationType
from schemas.migration import MigrationRun


@pytest.fixture
def service():
    mock = MagicMock()
    mock.registry.is_active.return_value = False
    mock.run_migration = AsyncMock(return_value=MigrationRun(
        run_id="incremental-ledger-update_1",
        migration_type=MigrationType.INCREMENTAL_LEDGER_UPDATE,
        batch_size=1000,
        status=MigrationStatus.COMPLETED,
    ))
    return mock


@pytest.fixture
def refresh_settings(test_settings):
    test_settings.LEDGER_REFRESH_INTERVAL_MINUTES = 15
    test_settings.LEDGER_REFRESH_TENANTS = {5: 1, 7: 2}
    return test_settings


def test_scheduler_disabled_by_default(service, test_settings):
    scheduler = LedgerRefreshScheduler(service, test_settings)

    scheduler.start()

    assert scheduler.enabled is False
    assert scheduler.scheduler is None
    scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_registers_refresh_job(service, refresh_settings):
    scheduler = LedgerRefreshScheduler(service, refresh_settings)

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("ledger_refresh_job")
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_refresh_job_updates_every_tenant(service, refresh_settings):
    scheduler = LedgerRefreshScheduler(service, refresh_settings)

    await scheduler.run_refresh_job()

    requests = [c.args[0] for c in service.run_migration.await_args_list]
    assert [(r.tenant_code, r.company_id) for r in requests] == [(5, 1), (7, 2)]
    assert all(r.migration_type == MigrationType.INCREMENTAL_LEDGER_UPDATE for r in requests)


@pytest.mark.asyncio
async def test_refresh_job_skips_when_busy(service, refresh_settings):
    service.registry.is_active.return_value = True
    scheduler = LedgerRefreshScheduler(service, refresh_settings)

    await scheduler.run_refresh_job()

    service.run_migration.assert_not_awaited()


@pytest.mark.asyncio
async def test_refresh_job_continues_after_tenant_failure(service, refresh_settings):
    service.run_migration.side_effect = [SourceTimeoutError("Login timeout expired"), None]
    scheduler = LedgerRefreshScheduler(service, refresh_settings)

    await scheduler.run_refresh_job()

    assert service.run_migration.await_count == 2
