"""Declarative base, shared column mixins, schema bootstrap and clock helpers."""

from datetime import datetime, timezone

import structlog
from sqlalchemy import DateTime, Enum, MetaData, func, text
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

log = structlog.get_logger("rispipeline.database")

# Naming convention for constraints (Alembic auto-migration friendly)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""

    metadata = MetaData(naming_convention=convention)


class TimestampMixin:
    """Mixin that adds created_at / updated_at columns.

    DAOs that issue Core UPDATE statements set ``updated_at`` explicitly;
    the server default only covers inserts.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def utcnow() -> datetime:
    """Timezone-aware current time. Patched in tests that pin the clock."""
    return datetime.now(timezone.utc)


# ── schema ───────────────────────────────────────────────────────────────


def enum_types() -> list[Enum]:
    """Named PostgreSQL enum types used by the mapped tables, in table order."""
    import rispipeline.models  # noqa: F401  registers every table on Base.metadata

    seen: dict[str, Enum] = {}
    for table in Base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, Enum) and column.type.name:
                seen.setdefault(column.type.name, column.type)
    return list(seen.values())


def create_enum_sql(enum: Enum) -> str:
    """Idempotent ``CREATE TYPE`` for *enum* (models declare ``create_type=False``)."""
    values = ", ".join("'" + value.replace("'", "''") + "'" for value in enum.enums)
    return (
        "DO $$ BEGIN "
        f"  CREATE TYPE {enum.name} AS ENUM ({values}); "
        "EXCEPTION WHEN duplicate_object THEN NULL; END $$;"
    )


async def create_schema(engine: AsyncEngine) -> list[str]:
    """Create enum types and missing tables. Safe to run repeatedly.

    Returns the names of the tables in the metadata.
    """
    enums = enum_types()
    async with engine.begin() as conn:
        for enum in enums:
            await conn.execute(text(create_enum_sql(enum)))
        await conn.run_sync(Base.metadata.create_all)
    tables = [table.name for table in Base.metadata.sorted_tables]
    log.info("database.schema_ready", enums=[e.name for e in enums], tables=tables)
    return tables
