"""ORM models exposed for metadata discovery."""
from workplan.db.models.work_plan import WorkPlanRecord

__all__ = ["WorkPlanRecord"]
