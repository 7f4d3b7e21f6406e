"""
Migration engine components for moving legacy SQL Server data into PostgreSQL.

This package contains everything between the source cursor and the destination
tables:

Modules:
    service: Entry point used by the API, the CLI and the scheduler
    engine: Streaming batch transfer with backpressure and failure isolation
    orchestrators: Migration variants that turn a request into transfer plans
    registry: Process-wide status of the single active run
    history: Persistence of run snapshots and row failures
    ledger: Fixed GeneralLedger -> journal_entries mapping
    scheduler: APScheduler integration for periodic ledger refresh

Subpackages:
    source: SQL Server connector, row stream and schema introspector
    transformers: Name and value translation to destination conventions
    loaders: PostgreSQL writers and destination schema checks

Architecture:
    Every variant runs the same pipeline:

    1. Count - total source rows for progress reporting
    2. Stream - pull rows through a server-side cursor, pausing at batch size
    3. Write - insert (skip duplicates) or update one batch per transaction

    A failing row is recorded and skipped; a failing cursor fails the run.

Usage:
    from migration.service import create_migration_service
    from schemas.migration import MigrationRequest

Example:
    service = create_migration_service(settings)

    run = await service.run_migration(MigrationRequest(
        migration_type=MigrationType.FULL_LEDGER_IMPORT,
        tenant_code=5,
        company_id=1,
    ))

    print(f"Migrated {run.success_count} of {run.total_records} rows")

Error Handling:
    All components raise exceptions from core.exceptions. Source connection
    failures are classified into ESOCKET, ELOGIN, ETIMEOUT and EINSTLOOKUP.
"""

__all__ = [
    "MigrationService",
    "BatchTransferEngine",
    "MigrationStatusRegistry",
    "MigrationHistoryRecorder",
    "LedgerRefreshScheduler",
]
