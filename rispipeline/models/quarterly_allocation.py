"""quarterly_allocations table — one cached allocation per period."""

from datetime import datetime

from sqlalchemy import DateTime, Double, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rispipeline.core.database import Base


class QuarterlyAllocation(Base):
    __tablename__ = "quarterly_allocations"

    period: Mapped[str] = mapped_column(Text, primary_key=True)
    total_revenue: Mapped[float] = mapped_column(Double, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
