"""Coverage site model for network nodes and drawn service areas."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Double, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utc_now

SITE_STATUS_ACTIVE = "Active"
SITE_STATUS_INACTIVE = "Inactive"


class CoverageSite(Base):
    """A coverage node (point + radius) or coverage area (polygon).

    The anchor point (latitude/longitude) is always set, even for polygon
    sites, so nearest-node search works for both kinds.
    """

    __tablename__ = "coverage_sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identification
    network_type: Mapped[str] = mapped_column(String(20), default="", server_default="")
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    homepass_id: Mapped[str | None] = mapped_column(String(100), index=True)
    ampli: Mapped[str | None] = mapped_column(String(100))
    cluster_id: Mapped[str | None] = mapped_column(String(100))
    fibernode: Mapped[str | None] = mapped_column(String(100))
    fibernode_desc: Mapped[str | None] = mapped_column(String(255))

    # Anchor ("amplifier") location
    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)

    # Secondary location, kept for reference only
    area_latitude: Mapped[float | None] = mapped_column(Double)
    area_longitude: Mapped[float | None] = mapped_column(Double)

    # [[lat, lng], ...] outer ring
    polygon: Mapped[list | None] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
    )

    locality: Mapped[str | None] = mapped_column(String(255))
    kecamatan: Mapped[str | None] = mapped_column(String(100))
    kelurahan: Mapped[str | None] = mapped_column(String(100))

    # Street address
    location: Mapped[str | None] = mapped_column(Text)
    street_name: Mapped[str | None] = mapped_column(String(255))
    street_block: Mapped[str | None] = mapped_column(String(50))
    street_no: Mapped[str | None] = mapped_column(String(50))
    rtrw: Mapped[str | None] = mapped_column(String(20))
    dwelling: Mapped[str | None] = mapped_column(String(100))

    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20),
        default=SITE_STATUS_ACTIVE,
        server_default=SITE_STATUS_ACTIVE,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
    )

    @property
    def is_active(self) -> bool:
        """Inactive sites are not drawn as coverage radii."""
        return (self.status or SITE_STATUS_ACTIVE).lower() != SITE_STATUS_INACTIVE.lower()

    @property
    def has_polygon(self) -> bool:
        return bool(self.polygon)
