"""SQLite catalog of components, specification templates and compatibility rules.

The database is built from the JSON seed on first use when the file is missing.
"""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..config import CATALOG_DATA_DIR, CATALOG_DB_PATH, CATALOG_SEED_FILE, MAX_BATCH_SIZE
from ..models import CompatibilityRule, Component, SpecValue, SpecificationTemplate
from .schema import build_catalog, rule_from_record, template_from_record

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogDatabase",
    "SQLiteRepository",
    "get_db",
    "close_db",
]


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" * len(values))


def _spec_value_from_row(row: sqlite3.Row) -> SpecValue:
    boolean = row["value_boolean"]
    return SpecValue(
        name=row["name"],
        raw=row["value"],
        template_id=row["template_id"],
        value_number=row["value_number"],
        value_boolean=None if boolean is None else bool(boolean),
        value_enum=row["value_enum"],
        value_text=row["value_text"],
    )


class CatalogDatabase:
    """SQLite-backed catalog.

    Thread safety: Uses WAL mode + check_same_thread=False.
    Concurrent reads are safe; the _conn_lock protects lazy initialization.
    """

    def __init__(self, db_path: Path | None = None, seed_path: Path | None = None):
        self.db_path = db_path or CATALOG_DB_PATH
        self.seed_path = seed_path or CATALOG_DATA_DIR / CATALOG_SEED_FILE
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _ensure_db(self) -> sqlite3.Connection:
        """Ensure database exists, build if missing. Thread-safe."""
        if self._conn is not None:
            return self._conn

        with self._conn_lock:
            # Double-check after acquiring lock
            if self._conn is None:
                if not self.db_path.exists():
                    logger.info(f"Catalog not found at {self.db_path}, building from {self.seed_path}...")
                    build_catalog(self.seed_path, self.db_path)

                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._conn = conn
            return self._conn

    def close(self) -> None:
        """Close database connection. Thread-safe."""
        with self._conn_lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def get_category(self, slug_or_id: str) -> dict[str, Any] | None:
        """Look up a category by id or slug (case-insensitive)."""
        conn = self._ensure_db()
        row = conn.execute(
            "SELECT id, slug, name FROM categories WHERE id = ? OR lower(slug) = lower(?)",
            [slug_or_id, slug_or_id],
        ).fetchone()
        return dict(row) if row else None

    def get_components_batch(self, ids: list[str]) -> dict[str, Component | None]:
        """Get multiple components with their specifications in a single query each.

        Returns:
            Dict mapping id to Component (or None if not found).

        Raises:
            ValueError: If more than MAX_BATCH_SIZE ids are provided.
        """
        if not ids:
            return {}
        if len(ids) > MAX_BATCH_SIZE:
            raise ValueError(
                f"Batch size {len(ids)} exceeds maximum of {MAX_BATCH_SIZE}. "
                "Split into smaller batches."
            )

        conn = self._ensure_db()
        unique_ids = list(dict.fromkeys(ids))
        rows = conn.execute(
            f"""SELECT c.id, c.title, c.category_id, cat.slug
                FROM components c LEFT JOIN categories cat ON cat.id = c.category_id
                WHERE c.id IN ({_placeholders(unique_ids)})""",
            unique_ids,
        ).fetchall()

        specs: dict[str, dict[str, str]] = {}
        values: dict[str, dict[str, SpecValue]] = {}
        for row in conn.execute(
            f"SELECT * FROM component_specifications WHERE component_id IN ({_placeholders(unique_ids)})",
            unique_ids,
        ):
            specs.setdefault(row["component_id"], {})[row["name"]] = row["value"]
            if row["template_id"]:
                values.setdefault(row["component_id"], {})[row["template_id"]] = _spec_value_from_row(row)

        result: dict[str, Component | None] = {component_id: None for component_id in unique_ids}
        for row in rows:
            result[row["id"]] = Component(
                id=row["id"],
                category=row["slug"] or row["category_id"],
                specifications=specs.get(row["id"], {}),
                title=row["title"],
                category_id=row["category_id"],
                values=values.get(row["id"], {}),
            )
        return result

    def get_rules_between(self, category_ids: list[str]) -> list[CompatibilityRule]:
        """Rules whose primary and secondary categories are both in category_ids."""
        if not category_ids:
            return []
        conn = self._ensure_db()
        unique = list(dict.fromkeys(category_ids))
        rows = conn.execute(
            f"""SELECT * FROM compatibility_rules
                WHERE primary_category_id IN ({_placeholders(unique)})
                  AND secondary_category_id IN ({_placeholders(unique)})
                ORDER BY rowid""",
            unique + unique,
        ).fetchall()
        return [rule_from_record(dict(row)) for row in rows]

    def get_component_ids_by_category(self, category: str) -> list[str]:
        """Ids of every component in a category, given its id or slug."""
        found = self.get_category(category)
        if found is None:
            return []
        conn = self._ensure_db()
        rows = conn.execute(
            "SELECT id FROM components WHERE category_id = ? ORDER BY id",
            [found["id"]],
        ).fetchall()
        return [row["id"] for row in rows]

    def get_templates(self, category_id: str | None = None) -> list[SpecificationTemplate]:
        conn = self._ensure_db()
        if category_id is None:
            rows = conn.execute("SELECT * FROM specification_templates ORDER BY category_id, name").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM specification_templates WHERE category_id = ? ORDER BY name",
                [category_id],
            ).fetchall()
        return [template_from_record(dict(row)) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        """Get catalog statistics."""
        conn = self._ensure_db()
        stats: dict[str, Any] = {}
        for table in ("categories", "specification_templates", "compatibility_rules", "components"):
            stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

        by_category = {}
        for row in conn.execute("SELECT category_id, COUNT(*) AS cnt FROM components GROUP BY category_id"):
            by_category[row["category_id"]] = row["cnt"]
        stats["components_by_category"] = by_category

        by_type = {}
        for row in conn.execute("SELECT rule_type, COUNT(*) AS cnt FROM compatibility_rules GROUP BY rule_type"):
            by_type[row["rule_type"]] = row["cnt"]
        stats["rules_by_type"] = by_type
        return stats


class SQLiteRepository:
    """Async catalog repository over CatalogDatabase.

    Queries run in a worker thread so the event loop is never blocked.
    """

    def __init__(self, db: CatalogDatabase):
        self._db = db

    async def get_components(self, ids: list[str]) -> dict[str, Component | None]:
        return await asyncio.to_thread(self._db.get_components_batch, ids)

    async def get_rules_between(self, category_ids: list[str]) -> list[CompatibilityRule]:
        return await asyncio.to_thread(self._db.get_rules_between, category_ids)

    async def get_component_ids_by_category(self, category_id: str) -> list[str]:
        return await asyncio.to_thread(self._db.get_component_ids_by_category, category_id)


# Global instance with thread safety
_db: CatalogDatabase | None = None
_db_lock = threading.Lock()


def get_db() -> CatalogDatabase:
    """Get or create the global catalog instance (thread-safe)."""
    global _db
    if _db is None:
        with _db_lock:
            # Double-check locking pattern
            if _db is None:
                _db = CatalogDatabase()
    return _db


def close_db() -> None:
    """Close the global catalog instance (thread-safe)."""
    global _db
    with _db_lock:
        if _db:
            _db.close()
            _db = None
