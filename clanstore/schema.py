"""
Schema Provisioner - Idempotent creation of the clan directory tables.

Every statement is CREATE TABLE IF NOT EXISTS, so running against an already
provisioned database changes nothing. Tables are created in a fixed order.
Any DDL failure aborts startup through SchemaError.
"""

from typing import List, Tuple

from .core.logger import ComponentLogger
from .db import ConnectionPool
from .errors import DBQueryError, SchemaError

_logger = ComponentLogger("schema")

TABLES: Tuple[Tuple[str, str], ...] = (
    ("clans", """
        CREATE TABLE IF NOT EXISTS clans (
            name VARCHAR(36) PRIMARY KEY,
            founder VARCHAR(36),
            leader VARCHAR(36),
            money DOUBLE,
            privacy VARCHAR(12)
        )
    """),
    ("clan_users", """
        CREATE TABLE IF NOT EXISTS clan_users (
            clan VARCHAR(36),
            username VARCHAR(36),
            PRIMARY KEY (clan, username)
        )
    """),
    ("alliances", """
        CREATE TABLE IF NOT EXISTS alliances (
            clan1 VARCHAR(36),
            clan2 VARCHAR(36),
            friendly_fire BOOLEAN DEFAULT FALSE,
            PRIMARY KEY (clan1, clan2)
        )
    """),
    ("friendlyfire", """
        CREATE TABLE IF NOT EXISTS friendlyfire (
            clan VARCHAR(36) PRIMARY KEY,
            enabled BOOLEAN
        )
    """),
    ("banned_clans", """
        CREATE TABLE IF NOT EXISTS banned_clans (
            name VARCHAR(36) PRIMARY KEY,
            reason TEXT
        )
    """),
    ("reports", """
        CREATE TABLE IF NOT EXISTS reports (
            id INT AUTO_INCREMENT PRIMARY KEY,
            clan VARCHAR(36),
            reason TEXT
        )
    """),
    ("economy_players", """
        CREATE TABLE IF NOT EXISTS economy_players (
            player VARCHAR(36) PRIMARY KEY,
            balance DOUBLE
        )
    """),
    ("player_clan_history", """
        CREATE TABLE IF NOT EXISTS player_clan_history (
            uuid VARCHAR(36) NOT NULL,
            name VARCHAR(16),
            current_clan VARCHAR(32),
            history TEXT,
            PRIMARY KEY (uuid)
        )
    """),
    ("clan_invites", """
        CREATE TABLE IF NOT EXISTS clan_invites (
            clan VARCHAR(36),
            username VARCHAR(36),
            invite_time BIGINT NOT NULL DEFAULT 0,
            PRIMARY KEY (clan, username)
        )
    """),
    ("pending_alliances", """
        CREATE TABLE IF NOT EXISTS pending_alliances (
            requester VARCHAR(36),
            target VARCHAR(36),
            PRIMARY KEY (requester, target)
        )
    """),
    ("friendlyfire_allies", """
        CREATE TABLE IF NOT EXISTS friendlyfire_allies (
            clan VARCHAR(36) PRIMARY KEY,
            enabled BOOLEAN
        )
    """),
)

TABLE_NAMES: Tuple[str, ...] = tuple(name for name, _ in TABLES)

async def ensure_schema(pool: ConnectionPool) -> List[str]:
    """
    Create every missing table, leaving existing tables and rows untouched.

    Args:
        pool: Started connection pool

    Returns:
        Names of the tables provisioned, in creation order

    Raises:
        SchemaError: If any DDL statement fails
        PoolExhausted: If no connection is available
    """
    provisioned: List[str] = []
    async with pool.acquire() as conn:
        for table, ddl in TABLES:
            try:
                await pool.execute(conn, ddl)
            except DBQueryError as e:
                cause = e.__cause__ or e
                _logger.critical("table_provisioning_failed",
                    table=table,
                    error_type=type(cause).__name__,
                    error_msg=str(cause),
                )
                raise SchemaError(table, cause) from e
            provisioned.append(table)

    _logger.info("schema_ready", table_count=len(provisioned))
    return provisioned
