"""Schema migrations for the Tally database.

Scripts live in tally/migrations/ as NNN_description.sql and are applied in
version order on the write connection. Each script records its own version
in ``_schema_version``. A database stamped with a version this build does
not ship is refused rather than written to.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from tally.storage.database import Database

logger = logging.getLogger(__name__)

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.*\.sql$")
MIGRATION_DIR = Path(__file__).parent.parent / "migrations"


class SchemaError(RuntimeError):
    """The database schema cannot be brought to this build's version."""


def discover_migrations(migration_dir: Path = MIGRATION_DIR) -> list[tuple[int, str, str]]:
    """(version, filename, sql) for every script, ordered by version."""
    if not migration_dir.exists():
        logger.warning("Migration directory not found: %s", migration_dir)
        return []

    found: dict[int, tuple[int, str, str]] = {}
    for sql_file in migration_dir.glob("*.sql"):
        match = MIGRATION_PATTERN.match(sql_file.name)
        if not match:
            continue
        version = int(match.group(1))
        if version in found:
            raise SchemaError(
                f"Duplicate migration version {version}: "
                f"{found[version][1]}, {sql_file.name}"
            )
        found[version] = (version, sql_file.name, sql_file.read_text())
    return [found[v] for v in sorted(found)]


def pending_migrations(db: Database, migration_dir: Path = MIGRATION_DIR) -> list[str]:
    """Filenames of scripts not yet applied to *db*."""
    current = db.schema_version()
    return [name for version, name, _ in discover_migrations(migration_dir) if version > current]


def apply_migrations(db: Database, migration_dir: Path = MIGRATION_DIR) -> int:
    """Apply pending scripts. Returns the resulting schema version."""
    migrations = discover_migrations(migration_dir)
    current = db.schema_version()
    latest = migrations[-1][0] if migrations else 0

    if current > latest:
        raise SchemaError(
            f"{db.path} is at schema version {current}, newer than this "
            f"build supports ({latest}); upgrade tally"
        )

    for version, name, sql in migrations:
        if version <= current:
            continue
        logger.info("Applying migration %s (v%d -> v%d)", name, current, version)
        try:
            db.executescript(sql)
        except Exception as e:
            logger.error("Migration %s failed: %s", name, e)
            raise SchemaError(f"Migration {name} failed: {e}") from e
        current = version

    return current


def ensure_schema(db: Database) -> int:
    """Bring *db* up to date, logging only when something changed."""
    before = db.schema_version()
    after = apply_migrations(db)
    if after != before:
        logger.info("Schema version %d -> %d for %s", before, after, db)
    return after
