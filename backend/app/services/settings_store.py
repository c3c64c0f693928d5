"""Load and save coverage settings in the app_settings table."""

import logging

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.settings import COVERAGE_SETTINGS_KEY, SystemSetting
from app.schemas.settings import CoverageSettings

logger = logging.getLogger(__name__)


async def load_coverage_settings(db: AsyncSession) -> CoverageSettings:
    """Get coverage settings from the database or use defaults."""
    result = await db.execute(
        select(SystemSetting).where(SystemSetting.key == COVERAGE_SETTINGS_KEY)
    )
    setting = result.scalar()
    if not setting or not isinstance(setting.value, dict):
        return CoverageSettings()

    try:
        return CoverageSettings.model_validate(setting.value)
    except SchemaValidationError as e:
        logger.warning(f"Stored coverage settings are invalid, using defaults: {e}")
        return CoverageSettings()


async def save_coverage_settings(db: AsyncSession, settings: CoverageSettings) -> CoverageSettings:
    """Replace the stored coverage settings document as a whole."""
    result = await db.execute(
        select(SystemSetting).where(SystemSetting.key == COVERAGE_SETTINGS_KEY)
    )
    setting = result.scalar()

    value = settings.model_dump()
    if setting:
        setting.value = value
    else:
        db.add(SystemSetting(key=COVERAGE_SETTINGS_KEY, value=value))

    await db.flush()
    logger.info("Coverage settings saved")
    return settings
