"""Stored work plan ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from workplan.db.base import Base
from workplan.db.types import JSONBCompat


class WorkPlanRecord(Base):
    __tablename__ = "work_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # YYYY-MM-DD of the plan's start time.
    date_key = Column(String(length=10), nullable=False, unique=True, index=True)
    payload = Column(JSONBCompat, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1, server_default=sa_text("1"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
