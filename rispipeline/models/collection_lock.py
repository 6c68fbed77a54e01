"""collection_locks table — named TTL leases (one row per held lock)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from rispipeline.core.database import Base

GLOBAL_COLLECTION_LOCK = "ris_collection"


class CollectionLock(Base):
    __tablename__ = "collection_locks"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    ingestion_id: Mapped[str] = mapped_column(Text, nullable=False)
    started_by: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
