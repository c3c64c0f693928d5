"""Coverage settings endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.settings import CoverageSettings
from app.services.settings_store import load_coverage_settings, save_coverage_settings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/coverage", response_model=CoverageSettings)
async def get_coverage_settings(db: AsyncSession = Depends(get_db)) -> CoverageSettings:
    """Get coverage radius and color settings."""
    return await load_coverage_settings(db)


@router.put("/coverage", response_model=CoverageSettings)
async def update_coverage_settings(
    settings: CoverageSettings,
    db: AsyncSession = Depends(get_db),
) -> CoverageSettings:
    """Replace coverage settings."""
    return await save_coverage_settings(db, settings)
