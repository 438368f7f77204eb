"""
Legacy Migrator - One-time import of YAML clan records into the relational store.

Every clan and membership row is written with REPLACE, one independent
statement on its own borrowed connection each, so a partial run followed
by a retry converges to the same rows. Memberships missing from the document are never deleted.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping

from .core.logger import ComponentLogger
from .db import ConnectionPool
from .errors import DBQueryError, MigrationRowError
from .legacy import CLANS_SECTION, YamlDocumentStore
from .models import ClanRecord

_logger = ComponentLogger("migration")

UPSERT_CLAN = "REPLACE INTO clans (name, founder, leader, money, privacy) VALUES (%s, %s, %s, %s, %s)"
UPSERT_MEMBER = "REPLACE INTO clan_users (clan, username) VALUES (%s, %s)"

@dataclass
class MigrationReport:
    """Outcome of one migration pass."""

    clans: int = 0
    members: int = 0
    skipped: bool = False
    errors: List[MigrationRowError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

class LegacyMigrator:
    """Copies clans and memberships from a legacy document into the database."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def migrate(self, document: Mapping[str, Any]) -> MigrationReport:
        """
        Upsert every clan and membership found under the "Clans" section.

        Args:
            document: Legacy document tree

        Returns:
            MigrationReport; row failures, including pool exhaustion, are collected, not raised
        """
        clans = document.get(CLANS_SECTION)
        if not clans:
            _logger.info("migration_skipped", reason="no_clans_section")
            return MigrationReport(skipped=True)

        if not isinstance(clans, Mapping):
            _logger.error("migration_invalid_section", section_type=type(clans).__name__)
            report = MigrationReport()
            report.errors.append(
                MigrationRowError(CLANS_SECTION, ValueError("Clans section is not a mapping"))
            )
            return report

        report = MigrationReport()
        _logger.info("migration_started", clan_count=len(clans))

        for name, node in clans.items():
            try:
                record = ClanRecord.from_legacy(name, node)
            except ValueError as e:
                self._record_error(report, MigrationRowError(str(name), e))
                continue

            try:
                await self.pool.run_query(UPSERT_CLAN, record.as_row())
                report.clans += 1
            except DBQueryError as e:
                self._record_error(report, MigrationRowError(record.name, e))

            for user in record.users:
                try:
                    await self.pool.run_query(UPSERT_MEMBER, (record.name, user))
                    report.members += 1
                except DBQueryError as e:
                    self._record_error(report, MigrationRowError(record.name, e, user=user))

        if report.ok:
            _logger.info("migration_completed", clans=report.clans, members=report.members)
        else:
            _logger.warning("migration_partial",
                clans=report.clans,
                members=report.members,
                failed_rows=len(report.errors),
            )
        return report

    async def migrate_and_clear(self, store: YamlDocumentStore) -> MigrationReport:
        """
        Migrate the store's document, then drop its "Clans" section and save.

        The legacy file is left untouched unless every row was migrated, so the
        next startup retries the whole pass.

        Raises:
            LegacyDocumentError: If the cleared document cannot be saved
        """
        report = await self.migrate(store.document)
        if report.skipped:
            return report

        if report.ok:
            store.clear_section(CLANS_SECTION)
            store.save()
            _logger.info("legacy_clans_cleared", file_path=store.path)
        else:
            _logger.warning("legacy_clans_kept",
                file_path=store.path,
                reason="partial_migration",
            )
        return report

    @staticmethod
    def _record_error(report: MigrationReport, error: MigrationRowError) -> None:
        report.errors.append(error)
        _logger.error("migration_row_failed",
            clan=error.clan,
            user=error.user,
            error_type=type(error.cause).__name__,
            error_msg=str(error.cause),
        )
