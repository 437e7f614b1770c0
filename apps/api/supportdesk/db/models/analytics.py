"""Analytics snapshot ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.db.base import Base, JSONType
from supportdesk.db.enums import AnalyticsPeriod
from supportdesk.db.types import enum_type, utcnow


class AnalyticsSnapshot(Base):
    """Aggregated ticket metrics for one organization and period."""

    __tablename__ = "analytics_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "period", "period_start", name="uq_analytics_snapshot_period"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    period: Mapped[AnalyticsPeriod] = mapped_column(
        enum_type(AnalyticsPeriod, name="analytics_period"), nullable=False
    )
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)
    metrics: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    computed_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
