"""SQLAlchemy ORM models."""

from app.models.coverage import CoverageSite
from app.models.settings import SystemSetting

__all__ = [
    "CoverageSite",
    "SystemSetting",
]
