"""Persistence for accepted work plans, keyed by YYYY-MM-DD."""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from workplan.api.schemas.work_plan import Schedule
from workplan.db.models.work_plan import WorkPlanRecord

logger = logging.getLogger(__name__)

DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class StoredWorkPlan:
    date_key: str
    schedule: Schedule
    version: int


def validate_date_key(date_key: str) -> str:
    if not DATE_KEY_RE.match(date_key):
        raise ValueError(f"Invalid date key {date_key!r}; expected YYYY-MM-DD")
    return date_key


class WorkPlanStore(ABC):
    """Versioned key/value storage for schedules."""

    @abstractmethod
    def save(self, date_key: str, schedule: Schedule) -> StoredWorkPlan:
        """Insert or replace the plan for ``date_key`` and bump its version."""

    @abstractmethod
    def get(self, date_key: str) -> Optional[StoredWorkPlan]:
        ...

    @abstractmethod
    def delete(self, date_key: str) -> bool:
        ...


class InMemoryWorkPlanStore(WorkPlanStore):
    def __init__(self) -> None:
        self._plans: Dict[str, StoredWorkPlan] = {}

    def save(self, date_key: str, schedule: Schedule) -> StoredWorkPlan:
        validate_date_key(date_key)
        previous = self._plans.get(date_key)
        stored = StoredWorkPlan(
            date_key=date_key,
            schedule=schedule.model_copy(deep=True),
            version=previous.version + 1 if previous else 1,
        )
        self._plans[date_key] = stored
        return StoredWorkPlan(date_key=date_key, schedule=stored.schedule.model_copy(deep=True), version=stored.version)

    def get(self, date_key: str) -> Optional[StoredWorkPlan]:
        stored = self._plans.get(date_key)
        if stored is None:
            return None
        return StoredWorkPlan(date_key=date_key, schedule=stored.schedule.model_copy(deep=True), version=stored.version)

    def delete(self, date_key: str) -> bool:
        return self._plans.pop(date_key, None) is not None


class SqlAlchemyWorkPlanStore(WorkPlanStore):
    """Stores each plan as one ``work_plans`` row holding the camelCase JSON payload."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def save(self, date_key: str, schedule: Schedule) -> StoredWorkPlan:
        validate_date_key(date_key)
        payload = schedule.model_dump(mode="json", by_alias=True)
        record = self._record(date_key)
        if record is None:
            record = WorkPlanRecord(date_key=date_key, payload=payload, version=1)
            self.db.add(record)
        else:
            record.payload = payload
            record.version = (record.version or 0) + 1
        self.db.commit()
        self.db.refresh(record)
        logger.info("Stored work plan %s (version %d)", date_key, record.version)
        return StoredWorkPlan(date_key=date_key, schedule=Schedule.model_validate(record.payload), version=record.version)

    def get(self, date_key: str) -> Optional[StoredWorkPlan]:
        record = self._record(date_key)
        if record is None:
            return None
        return StoredWorkPlan(date_key=date_key, schedule=Schedule.model_validate(record.payload), version=record.version)

    def delete(self, date_key: str) -> bool:
        record = self._record(date_key)
        if record is None:
            return False
        self.db.delete(record)
        self.db.commit()
        return True

    def _record(self, date_key: str) -> Optional[WorkPlanRecord]:
        return self.db.scalar(select(WorkPlanRecord).where(WorkPlanRecord.date_key == date_key))
