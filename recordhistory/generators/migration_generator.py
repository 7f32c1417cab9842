"""
recordhistory Migration Generator - Alembic scripts for history tables.

Pipeline:
    1. Take the HistorySchema of each versioned class from the registry
    2. Skip history tables that already exist in the target database (when an
       engine is given)
    3. Render an Alembic migration: op.create_table with the (owner, version)
       unique constraint and the owner index; op.drop_table on downgrade
    4. Write it as a numbered script

Output:
    {output_dir}/{sequence}_{slug}.py

``create_history_table(bind)`` on a versioned class (or ``create_all`` on its
MetaData) remains the way to provision tables in development and tests.
"""

from __future__ import annotations

import logging
import re
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from sqlalchemy import Column, Table, UniqueConstraint
from sqlalchemy import inspect as sa_inspect

from recordhistory.db.registry import VersionedRegistry, versioned_registry
from recordhistory.utilities.utils import revision_slug

if TYPE_CHECKING:
    from recordhistory.db.schema import HistorySchema

logger = logging.getLogger("recordhistory.generators.migration_generator")

_SEQUENCE_RE = re.compile(r"^(\d+)_")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_type(col: Column) -> str:
    """SQLAlchemy constructor expression for a column type, e.g. ``sa.String(length=80)``."""
    col_type = col.type
    try:
        generic = col_type.as_generic()
    except NotImplementedError:
        logger.warning(
            f"No generic type for column '{col.name}' ({type(col_type).__name__}), using String"
        )
        return "sa.String()"
    return f"sa.{generic!r}"


def _render_default(col: Column) -> Optional[str]:
    if col.default is None or not getattr(col.default, "is_scalar", False):
        return None
    return repr(col.default.arg)


def _render_column(col: Column) -> str:
    parts = [f"sa.Column({col.name!r}, {_render_type(col)}"]
    if col.primary_key:
        parts.append("primary_key=True")
        if col.autoincrement is True:
            parts.append("autoincrement=True")
    if not col.nullable and not col.primary_key:
        parts.append("nullable=False")
    default = _render_default(col)
    if default is not None:
        parts.append(f"default={default}")
    return ", ".join(parts) + ")"


def _gen_create_table(table: Table) -> str:
    """Generate the op.create_table() call for a history table."""
    lines = [f"    op.create_table(\n        {table.name!r},"]
    for col in table.columns:
        lines.append(f"        {_render_column(col)},")
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint):
            names = ", ".join(repr(c.name) for c in constraint.columns)
            lines.append(f"        sa.UniqueConstraint({names}, name={constraint.name!r}),")
    if table.schema:
        lines.append(f"        schema={table.schema!r},")
    lines.append("    )")
    return "\n".join(lines)


def _gen_indexes(table: Table) -> List[str]:
    """op.create_index() calls for the indexes of a history table."""
    ops: List[str] = []
    schema_arg = f", schema={table.schema!r}" if table.schema else ""
    for index in sorted(table.indexes, key=lambda i: [c.name for c in i.columns]):
        names = [c.name for c in index.columns]
        name = index.name or f"ix_{table.name}_{'_'.join(names)}"
        cols = ", ".join(repr(n) for n in names)
        unique = ", unique=True" if index.unique else ""
        ops.append(f"    op.create_index({name!r}, {table.name!r}, [{cols}]{unique}{schema_arg})")
    return ops


def generate_migration_script(
    schemas: Sequence["HistorySchema"],
    sequence: int = 1,
    description: Optional[str] = None,
) -> str:
    """
    Render one Alembic migration creating the history tables of ``schemas``.

    Returns:
        The migration module source, or "" when ``schemas`` is empty.
    """
    if not schemas:
        return ""

    tables = [schema.history_table for schema in schemas]
    desc = description or "create history tables " + ", ".join(t.name for t in tables)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    revision = f"{timestamp}_{sequence:03d}"

    upgrade_ops: List[str] = []
    downgrade_ops: List[str] = []
    for table in tables:
        upgrade_ops.append(_gen_create_table(table))
        upgrade_ops.extend(_gen_indexes(table))
        schema_arg = f", schema={table.schema!r}" if table.schema else ""
        downgrade_ops.insert(0, f"    op.drop_table({table.name!r}{schema_arg})")

    upgrade_body = "\n\n".join(upgrade_ops)
    downgrade_body = "\n\n".join(downgrade_ops)
    sources = ", ".join(schema.name for schema in schemas)

    script = textwrap.dedent(f'''\
        """
        {desc}

        Revision: {revision}
        Versioned classes: {sources}
        Created: {datetime.now(timezone.utc).isoformat()}

        Generated by the recordhistory migration generator.
        """

        from alembic import op
        import sqlalchemy as sa

        # revision identifiers, used by Alembic.
        revision = "{revision}"
        down_revision = None  # point at the current head before running
        branch_labels = None
        depends_on = None


        def upgrade() -> None:
        {{upgrade_body}}


        def downgrade() -> None:
        {{downgrade_body}}
    ''')
    # Bodies are already indented; keep them out of dedent.
    return script.replace("{upgrade_body}", upgrade_body).replace("{downgrade_body}", downgrade_body)


# ---------------------------------------------------------------------------
# High-level API
# ---------------------------------------------------------------------------

def pending_schemas(
    engine: Any = None,
    registry: Optional[VersionedRegistry] = None,
    classes: Optional[Sequence[type]] = None,
) -> List["HistorySchema"]:
    """
    Schemas whose history table still has to be created.

    Without an engine every selected schema is pending.
    """
    reg = registry or versioned_registry
    if classes:
        schemas = [reg.require(cls) for cls in classes]
    else:
        schemas = reg.all()

    if engine is None:
        return schemas
    inspector = sa_inspect(engine)
    return [
        s for s in schemas
        if not inspector.has_table(s.history_table.name, schema=s.history_table.schema)
    ]


def generate_migration(
    output_dir: str = "migrations/versions",
    classes: Optional[Sequence[type]] = None,
    engine: Any = None,
    registry: Optional[VersionedRegistry] = None,
    description: Optional[str] = None,
    dry_run: bool = False,
) -> Optional[str]:
    """
    Write a migration creating the missing history tables.

    Args:
        output_dir:  Alembic versions directory.
        classes:     Versioned classes to include (defaults to all registered).
        engine:      When given, tables that already exist are left out.
        registry:    VersionedRegistry (defaults to the global one).
        description: Migration description (auto-generated if None).
        dry_run:     Return the script instead of writing it.

    Returns:
        File path of the written script (or the script if dry_run), or None
        when every history table already exists.
    """
    schemas = pending_schemas(engine=engine, registry=registry, classes=classes)
    if not schemas:
        logger.info("No history tables to create")
        return None

    sequence = _next_sequence_number(output_dir)
    script = generate_migration_script(schemas, sequence, description)
    if dry_run:
        return script

    out_path = Path(output_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    slug = revision_slug(description or "_".join(s.history_table.name for s in schemas))
    filepath = out_path / f"{sequence:03d}_{slug}.py"
    filepath.write_text(script, encoding="utf-8")
    logger.info(f"Migration written: {filepath}")
    return str(filepath)


def _next_sequence_number(versions_dir: str) -> int:
    """Number following the highest ``NNN_`` prefix in ``versions_dir`` (1 when empty)."""
    numbers = [
        int(m.group(1))
        for m in (_SEQUENCE_RE.match(p.name) for p in Path(versions_dir).glob("*.py"))
        if m
    ]
    return max(numbers, default=0) + 1
