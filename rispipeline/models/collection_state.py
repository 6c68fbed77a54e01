"""collection_states table."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, Integer, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rispipeline.core.database import Base, TimestampMixin

# Independently fetched data sources of a baseline collection.
COLLECTION_SOURCES: tuple[str, ...] = (
    "github_basic",
    "github_prs",
    "github_issues",
    "github_commits",
    "github_releases",
    "npm_metrics",
    "cdn_metrics",
    "ossf_metrics",
)

collection_status_enum = Enum(
    "never",
    "running",
    "succeeded",
    "partial",
    "failed",
    name="collection_status",
    create_type=False,
)


class CollectionState(TimestampMixin, Base):
    __tablename__ = "collection_states"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    repo: Mapped[str] = mapped_column(Text, nullable=False)
    library_name: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        collection_status_enum, nullable=False, server_default=text("'never'")
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_success_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    # source_id -> last error message
    failed_sources: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    completed_sources: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )

    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    stale_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    running_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("owner", "repo", name="uq_collection_states_owner_repo"),
        Index(
            "idx_collection_states_retry",
            "next_retry_at",
            postgresql_where="status IN ('failed', 'partial')",
        ),
        Index(
            "idx_collection_states_stale",
            "stale_since",
            postgresql_where="stale_since IS NOT NULL",
        ),
    )
