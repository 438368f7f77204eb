#!/usr/bin/env python3
"""
Main entry point: provision the schema, migrate legacy data and warm the cache.
Usage: python -m clanstore
"""

import asyncio
import sys
import uuid

from . import config
from .core.logger import ComponentLogger, correlation_id_context, setup_logging
from .errors import DBQueryError, LegacyDocumentError, SchemaError
from .store import ClanStore

_logger = ComponentLogger("main")

async def run() -> int:
    """
    Start the store once and close it.

    Returns:
        Process exit status
    """
    correlation_id_context.set(uuid.uuid4().hex)
    store = ClanStore.from_config()
    try:
        report = await store.start()
    except (SchemaError, DBQueryError, LegacyDocumentError) as e:
        _logger.critical("startup_failed", error_type=type(e).__name__, error_msg=str(e))
        return 1

    try:
        _logger.info("startup_summary",
            tables=report.tables,
            migration_clans=report.migration.clans if report.migration else 0,
            migration_members=report.migration.members if report.migration else 0,
            migration_errors=len(report.migration.errors) if report.migration else 0,
            cached_players=report.cache.players,
            cached_clans=report.cache.clans,
        )
        return 0 if report.migration is None or report.migration.ok else 2
    finally:
        await store.close()

def main() -> int:
    try:
        setup_logging(config.get_log_level(), config.get_log_file())
    except config.ConfigError as e:
        setup_logging()
        _logger.critical("config_initialization_failed", error_msg=str(e))
        return 1
    return asyncio.run(run())

if __name__ == "__main__":
    sys.exit(main())
