"""Schemas for coverage display and classification settings."""

from pydantic import BaseModel, Field, field_validator

DEFAULT_RADIUS_METERS = 50.0


def _default_node_colors() -> dict[str, str]:
    return {"FTTH": "#0ea5e9", "HFC": "#317873"}


def _default_radius_meters() -> dict[str, float]:
    return {"FTTH": 50.0, "HFC": 250.0}


def _default_area_colors() -> dict[str, str]:
    return {"FTTH": "#38bdf8", "HFC": "#5eead4"}


class CoverageSettings(BaseModel):
    """Per-network-type radius and colors, plus shared rendering options."""

    node_colors: dict[str, str] = Field(default_factory=_default_node_colors)
    radius_meters: dict[str, float] = Field(default_factory=_default_radius_meters)
    area_colors: dict[str, str] = Field(default_factory=_default_area_colors)
    opacity: float = Field(default=0.3, ge=0.0, le=1.0)
    marker_size: int = Field(default=12, ge=1, le=64)
    default_radius_meters: float = Field(default=DEFAULT_RADIUS_METERS, gt=0)

    @field_validator("node_colors", "area_colors", "radius_meters", mode="before")
    @classmethod
    def upper_case_network_types(cls, v: dict | None) -> dict:
        """Network type keys are matched upper-cased."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k).strip().upper(): val for k, val in v.items() if str(k).strip()}
        return v

    @field_validator("radius_meters")
    @classmethod
    def positive_radii(cls, v: dict[str, float]) -> dict[str, float]:
        for network_type, radius in v.items():
            if radius <= 0:
                raise ValueError(f"radius for {network_type} must be positive")
        return v

    def radius_for(self, network_type: str | None) -> float:
        """Coverage radius for a network type, falling back to the default."""
        key = (network_type or "").strip().upper()
        return self.radius_meters.get(key, self.default_radius_meters)

    @property
    def max_radius(self) -> float:
        return max([self.default_radius_meters, *self.radius_meters.values()])
