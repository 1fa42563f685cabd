"""Database utilities and models."""

from workplan.db.base import Base
from workplan.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
