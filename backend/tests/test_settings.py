"""Tests for application settings and coverage settings."""

import pytest
from pydantic import ValidationError

from app.config import Settings
from app.models.settings import COVERAGE_SETTINGS_KEY, SystemSetting
from app.schemas.settings import CoverageSettings
from app.services.settings_store import load_coverage_settings, save_coverage_settings


class TestSettingsDefaults:
    """Test application configuration."""

    def test_bulk_defaults(self):
        """Bulk import chunking has sane defaults."""
        s = Settings(database_url="sqlite+aiosqlite:///test.db")
        assert s.bulk_chunk_size == 500
        assert s.bulk_chunk_timeout_seconds == 10.0
        assert s.max_rendered_points == 1000

    def test_chunk_size_bounds(self):
        """Chunk size must be at least 1."""
        with pytest.raises(ValidationError):
            Settings(database_url="sqlite+aiosqlite:///test.db", bulk_chunk_size=0)

    def test_log_level_upper_cased(self):
        """Log level names are normalized."""
        s = Settings(database_url="sqlite+aiosqlite:///test.db", log_level=" debug ")
        assert s.log_level == "DEBUG"

    def test_cors_origins_comma_separated(self):
        """CORS origins accept a comma-separated string."""
        s = Settings(
            database_url="sqlite+aiosqlite:///test.db",
            cors_origins="http://a.example, http://b.example",
        )
        assert s.cors_origins == ["http://a.example", "http://b.example"]


class TestCoverageSettings:
    """Test the coverage settings document."""

    def test_defaults(self):
        """FTTH and HFC radii are configured out of the box."""
        s = CoverageSettings()
        assert s.radius_for("FTTH") == 50
        assert s.radius_for("HFC") == 250
        assert s.max_radius == 250

    def test_keys_upper_cased(self):
        """Network type keys are matched upper-cased."""
        s = CoverageSettings(radius_meters={" ftth ": 80}, node_colors={"hfc": "#fff"})
        assert s.radius_meters == {"FTTH": 80}
        assert s.node_colors == {"HFC": "#fff"}
        assert s.radius_for("ftth") == 80

    def test_unknown_type_uses_default(self):
        """Unconfigured network types fall back to the default radius."""
        s = CoverageSettings(default_radius_meters=75)
        assert s.radius_for("WIRELESS") == 75
        assert s.radius_for(None) == 75

    def test_non_positive_radius_rejected(self):
        """A zero radius is rejected."""
        with pytest.raises(ValidationError):
            CoverageSettings(radius_meters={"FTTH": 0})

    def test_opacity_range(self):
        """Opacity is a fraction."""
        with pytest.raises(ValidationError):
            CoverageSettings(opacity=1.5)


class TestSettingsStore:
    """Test loading and saving the stored settings row."""

    async def test_load_defaults_when_missing(self, db):
        """Nothing stored means defaults."""
        assert await load_coverage_settings(db) == CoverageSettings()

    async def test_save_then_load(self, db):
        """Saved settings replace the stored document."""
        await save_coverage_settings(db, CoverageSettings(radius_meters={"FTTH": 120}))
        await save_coverage_settings(db, CoverageSettings(radius_meters={"HFC": 300}))
        await db.commit()

        loaded = await load_coverage_settings(db)
        assert loaded.radius_meters == {"HFC": 300}

    async def test_invalid_stored_value_falls_back(self, db):
        """A corrupt stored document is ignored."""
        db.add(SystemSetting(key=COVERAGE_SETTINGS_KEY, value={"opacity": 7}))
        await db.commit()

        assert await load_coverage_settings(db) == CoverageSettings()
