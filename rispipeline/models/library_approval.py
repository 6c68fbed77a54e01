"""library_approvals table."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from rispipeline.core.database import Base, TimestampMixin

APPROVAL_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected")

approval_status_enum = Enum(
    *APPROVAL_STATUSES,
    name="approval_status",
    create_type=False,
)


class LibraryApproval(TimestampMixin, Base):
    __tablename__ = "library_approvals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    repo: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        approval_status_enum, nullable=False, server_default=text("'pending'")
    )
    installation_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Repository snapshot taken at submission, shown to reviewers.
    html_url: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    language: Mapped[Optional[str]] = mapped_column(Text)
    stars: Mapped[Optional[int]] = mapped_column(Integer)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    decided_by: Mapped[Optional[str]] = mapped_column(Text)
    reason: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("owner", "repo", name="uq_library_approvals_owner_repo"),
        Index("idx_library_approvals_status", "status"),
    )
