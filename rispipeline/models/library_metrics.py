"""library_metrics table — cached activity, derived raw metrics, eligibility."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Double, Index, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rispipeline.core.database import Base, TimestampMixin


class LibraryMetrics(TimestampMixin, Base):
    __tablename__ = "library_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    repo: Mapped[str] = mapped_column(Text, nullable=False)
    library_name: Mapped[str] = mapped_column(Text, nullable=False)

    # raw per-source activity (see engines.collector.activity)
    activity: Mapped[Optional[dict]] = mapped_column(JSONB)
    # LibraryRawMetrics numeric fields
    metrics: Mapped[Optional[dict]] = mapped_column(JSONB)
    collected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # eligibility (admin-maintained, preserved across collections)
    eligibility_status: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'fully_eligible'")
    )
    sponsorship_level: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'none'")
    )
    sponsorship_adjustment: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("1.0")
    )
    eligibility_notes: Mapped[Optional[str]] = mapped_column(Text)
    eligibility_last_reviewed: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )

    __table_args__ = (
        UniqueConstraint("owner", "repo", name="uq_library_metrics_owner_repo"),
        Index("idx_library_metrics_library_name", "library_name"),
    )
