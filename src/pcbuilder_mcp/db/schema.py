"""Catalog schema and seed loader.

The seed is a JSON document with four lists: categories, templates, rules and
components. Component specification values are resolved into their typed form
here, once, using the category's templates.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..models import CompatibilityRule, Component, RuleValidationError, SpecificationTemplate
from ..specs import resolve_spec_value
from ..templates import validate_rule

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE categories (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL
);

CREATE TABLE specification_templates (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL REFERENCES categories(id),
    name TEXT NOT NULL,
    display_name TEXT,
    data_type TEXT NOT NULL DEFAULT 'text',
    enum_values TEXT,
    min_value REAL,
    max_value REAL,
    is_compatibility_key INTEGER NOT NULL DEFAULT 0,
    is_required INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE compatibility_rules (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    primary_category_id TEXT NOT NULL REFERENCES categories(id),
    primary_specification_template_id TEXT NOT NULL REFERENCES specification_templates(id),
    secondary_category_id TEXT NOT NULL REFERENCES categories(id),
    secondary_specification_template_id TEXT NOT NULL REFERENCES specification_templates(id),
    rule_type TEXT NOT NULL CHECK(rule_type IN ('exact_match', 'compatible_values', 'range_check', 'custom')),
    compatible_values TEXT,
    min_value REAL,
    max_value REAL
);

CREATE TABLE components (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    category_id TEXT NOT NULL REFERENCES categories(id)
);

CREATE TABLE component_specifications (
    component_id TEXT NOT NULL REFERENCES components(id),
    name TEXT NOT NULL,
    value TEXT NOT NULL,
    template_id TEXT REFERENCES specification_templates(id),
    value_number REAL,
    value_boolean INTEGER,
    value_enum TEXT,
    value_text TEXT,
    PRIMARY KEY (component_id, name)
);

CREATE INDEX idx_components_category ON components(category_id);
CREATE INDEX idx_rules_primary ON compatibility_rules(primary_category_id);
CREATE INDEX idx_rules_secondary ON compatibility_rules(secondary_category_id);
CREATE INDEX idx_templates_category ON specification_templates(category_id);
"""


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def template_from_record(record: dict[str, Any]) -> SpecificationTemplate:
    """Build a template from a seed record or database row."""
    enum_values = record.get("enum_values")
    if isinstance(enum_values, str):
        enum_values = json.loads(enum_values)
    return SpecificationTemplate(
        id=str(record["id"]),
        category_id=str(record["category_id"]),
        name=str(record["name"]).strip().lower(),
        data_type=record.get("data_type") or "text",
        enum_values=tuple(enum_values) if enum_values else None,
        min_value=_optional_float(record.get("min_value")),
        max_value=_optional_float(record.get("max_value")),
        is_compatibility_key=bool(record.get("is_compatibility_key")),
        is_required=bool(record.get("is_required")),
        display_name=record.get("display_name"),
    )


def rule_from_record(record: dict[str, Any]) -> CompatibilityRule:
    """Build a rule from a seed record or database row.

    compatible_values may be a list or a JSON-encoded list.

    Raises:
        RuleValidationError: If the rule type is invalid
        KeyError: If a required field is missing
    """
    values = record.get("compatible_values")
    if isinstance(values, str):
        values = json.loads(values)
    return CompatibilityRule(
        id=str(record["id"]),
        primary_category_id=str(record["primary_category_id"]),
        secondary_category_id=str(record["secondary_category_id"]),
        primary_specification_template_id=str(record["primary_specification_template_id"]),
        secondary_specification_template_id=str(record["secondary_specification_template_id"]),
        rule_type=str(record["rule_type"]),
        name=record.get("name") or "",
        description=record.get("description") or "",
        compatible_values=tuple(str(v) for v in values) if values else None,
        min_value=_optional_float(record.get("min_value")),
        max_value=_optional_float(record.get("max_value")),
    )


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)


def load_seed(conn: sqlite3.Connection, seed: dict[str, Any]) -> dict[str, int]:
    """Insert a seed document into an empty catalog.

    Invalid rules are skipped with a warning.

    Returns:
        Counts of inserted rows per table plus skipped rules
    """
    for category in seed.get("categories", []):
        conn.execute(
            "INSERT INTO categories (id, slug, name) VALUES (?, ?, ?)",
            [category["id"], category.get("slug") or category["id"], category.get("name") or category["id"]],
        )

    templates = [template_from_record(t) for t in seed.get("templates", [])]
    conn.executemany(
        """INSERT INTO specification_templates
           (id, category_id, name, display_name, data_type, enum_values,
            min_value, max_value, is_compatibility_key, is_required)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                t.id, t.category_id, t.name, t.display_name, t.data_type,
                json.dumps(list(t.enum_values)) if t.enum_values else None,
                t.min_value, t.max_value, int(t.is_compatibility_key), int(t.is_required),
            )
            for t in templates
        ],
    )
    templates_by_id = {t.id: t for t in templates}

    rules: list[CompatibilityRule] = []
    skipped = 0
    for record in seed.get("rules", []):
        try:
            rule = rule_from_record(record)
            validate_rule(rule, templates_by_id)
        except (RuleValidationError, KeyError, ValueError) as e:
            logger.warning(f"Skipping invalid compatibility rule {record.get('id', '?')}: {e}")
            skipped += 1
            continue
        rules.append(rule)

    conn.executemany(
        """INSERT INTO compatibility_rules
           (id, name, description, primary_category_id, primary_specification_template_id,
            secondary_category_id, secondary_specification_template_id, rule_type,
            compatible_values, min_value, max_value)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                r.id, r.name or r.id, r.description, r.primary_category_id,
                r.primary_specification_template_id, r.secondary_category_id,
                r.secondary_specification_template_id, r.rule_type,
                json.dumps(list(r.compatible_values)) if r.compatible_values else None,
                r.min_value, r.max_value,
            )
            for r in rules
        ],
    )

    templates_by_category: dict[str, dict[str, SpecificationTemplate]] = {}
    for t in templates:
        templates_by_category.setdefault(t.category_id, {})[t.name] = t

    spec_rows = []
    component_count = 0
    for record in seed.get("components", []):
        component = Component(
            id=str(record["id"]),
            category=str(record["category_id"]),
            specifications=record.get("specifications") or {},
            title=record.get("title", ""),
        )
        conn.execute(
            "INSERT INTO components (id, title, category_id) VALUES (?, ?, ?)",
            [component.id, component.title, component.category_id],
        )
        component_count += 1
        category_templates = templates_by_category.get(component.category_id, {})
        for name, raw in component.specifications.items():
            value = resolve_spec_value(name, raw, category_templates.get(name))
            spec_rows.append((
                component.id, value.name, value.raw, value.template_id,
                value.value_number,
                None if value.value_boolean is None else int(value.value_boolean),
                value.value_enum, value.value_text,
            ))

    conn.executemany(
        """INSERT INTO component_specifications
           (component_id, name, value, template_id, value_number, value_boolean, value_enum, value_text)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        spec_rows,
    )

    return {
        "categories": len(seed.get("categories", [])),
        "templates": len(templates),
        "rules": len(rules),
        "rules_skipped": skipped,
        "components": component_count,
        "specifications": len(spec_rows),
    }


def build_catalog(seed_path: Path, db_path: Path) -> dict[str, Any]:
    """Build the SQLite catalog from a JSON seed file, replacing any existing file.

    Returns:
        Stats dict with row counts and timing
    """
    start_time = time.time()
    if not seed_path.exists():
        raise FileNotFoundError(f"Catalog seed not found: {seed_path}")

    with open(seed_path) as f:
        seed = json.load(f)

    if db_path.exists():
        db_path.unlink()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        create_schema(conn)
        stats: dict[str, Any] = load_seed(conn, seed)
        conn.commit()
    finally:
        conn.close()

    stats["build_time_seconds"] = round(time.time() - start_time, 2)
    logger.info(f"Built catalog {db_path}: {stats['components']} components, {stats['rules']} rules")
    return stats
