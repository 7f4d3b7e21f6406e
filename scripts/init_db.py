"""
Prepare the destination database for migrations

Creates the engine's bookkeeping tables (migration_history, migration_errors)
and reports which migration targets are missing. Product tables such as
journal_entries or audit.* are never created here.

    python scripts/init_db.py
    python scripts/init_db.py --check-only
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import dispose_engine, engine
from core.exceptions import DestinationSchemaError
from core.logging import setup_logging
from migration.ledger import JOURNAL_ENTRIES_TABLE, JOURNAL_ENTRY_COLUMNS
from migration.loaders.postgres_loader import DestinationTable, SchemaOracle
from migration.transformers.translator import TABLE_NAME_MAP
from models.base import Base
from models.migration_history import MigrationHistory
from models.migration_error import MigrationErrorRecord

logger = logging.getLogger(__name__)


async def create_bookkeeping_tables():
    async with engine.begin() as conn:
        await conn.run_sync(
            Base.metadata.create_all,
            tables=[MigrationHistory.__table__, MigrationErrorRecord.__table__],
        )
    logger.info(
        f"Bookkeeping tables ready: {MigrationHistory.__tablename__}, "
        f"{MigrationErrorRecord.__tablename__}"
    )


async def report_targets() -> int:
    """Log every missing migration target; returns how many are missing"""
    oracle = SchemaOracle(engine)
    missing = 0

    try:
        await oracle.require(DestinationTable(JOURNAL_ENTRIES_TABLE, list(JOURNAL_ENTRY_COLUMNS)))
    except DestinationSchemaError as e:
        logger.warning(e.message)
        missing += 1

    for source_name, table_name in TABLE_NAME_MAP.items():
        if await oracle.get_columns(table_name, "audit") is None:
            logger.warning(f"audit.{table_name} is missing; {source_name} cannot be migrated")
            missing += 1

    logger.info(f"Destination check finished: {missing} target table(s) missing")
    return missing


async def init_database(check_only: bool = False) -> int:
    logger.info("Connecting to destination database...")
    try:
        if not check_only:
            await create_bookkeeping_tables()
        await report_targets()
    finally:
        await dispose_engine()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Prepare the destination database")
    parser.add_argument("--check-only", action="store_true", help="Only report missing target tables")
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(init_database(args.check_only)))
