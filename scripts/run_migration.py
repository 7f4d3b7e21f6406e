"""
Run one migration from the command line and wait for it to finish

Examples:
    python scripts/run_migration.py --list-tenants
    python scripts/run_migration.py --type full-ledger-import --tenant-code 5 --company-id 1
    python scripts/run_migration.py --type audit-schema-migration --table-name AccountsSummary
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import dispose_engine
from core.exceptions import MigrationException, SourceConnectionError
from core.logging import setup_logging
from migration.service import create_migration_service
from models.base import MigrationStatus, MigrationType
from schemas.migration import MigrationRequest

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate legacy SQL Server data into PostgreSQL")
    parser.add_argument("--type", choices=[t.value for t in MigrationType], help="Migration variant")
    parser.add_argument("--tenant-code", type=int)
    parser.add_argument("--company-id", type=int)
    parser.add_argument("--table-name")
    parser.add_argument("--company-tin")
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("--list-tenants", action="store_true", help="Print source tenants and exit")
    parser.add_argument("--list-audit-tables", action="store_true", help="Print audit tables and exit")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Returns the process exit code"""
    service = create_migration_service(settings)
    try:
        if args.list_tenants:
            for tenant in await service.list_tenants():
                print(f"{tenant.tenant_code}\t{tenant.tenant_name}\t{tenant.record_count}")
            return 0

        if args.list_audit_tables:
            for table in await service.list_candidate_tables():
                print(f"{table.table_name}\t{table.record_count}")
            return 0

        if not args.type:
            logger.error("--type is required unless listing")
            return 2

        request = MigrationRequest(
            migration_type=MigrationType(args.type),
            tenant_code=args.tenant_code,
            company_id=args.company_id,
            table_name=args.table_name,
            company_tin=args.company_tin,
            batch_size=args.batch_size,
        )
        result = await service.run_migration(request)

    except SourceConnectionError as e:
        logger.error(f"[{e.code}] {e.message}")
        return 3
    except MigrationException as e:
        logger.error(str(e))
        return 1
    finally:
        await service.close()
        await dispose_engine()

    if result is None:
        return 1

    logger.info(
        f"Migration {result.run_id} {result.status.value}: "
        f"{result.processed_records}/{result.total_records} processed, "
        f"{result.success_count} succeeded, {result.error_count} failed"
    )
    return 0 if result.status == MigrationStatus.COMPLETED else 1


if __name__ == "__main__":
    args = parse_args()
    setup_logging(args.log_level)
    sys.exit(asyncio.run(run(args)))
