"""Persistence operations for coverage sites."""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, is_dataclass
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, ValidationError
from app.models import CoverageSite
from app.models.coverage import SITE_STATUS_ACTIVE
from app.schemas.coverage import ImportMode
from app.services.geometry import (
    MAX_LATITUDE,
    MAX_LONGITUDE,
    distinct_vertex_count,
    haversine_distance_m,
    is_valid_coordinate,
)

logger = logging.getLogger(__name__)

# Columns a caller may set; id and timestamps are owned by the store
WRITABLE_FIELDS = (
    "network_type",
    "site_id",
    "homepass_id",
    "ampli",
    "cluster_id",
    "fibernode",
    "fibernode_desc",
    "latitude",
    "longitude",
    "area_latitude",
    "area_longitude",
    "polygon",
    "locality",
    "kecamatan",
    "kelurahan",
    "location",
    "street_name",
    "street_block",
    "street_no",
    "rtrw",
    "dwelling",
    "description",
    "status",
)

SEARCH_COLUMNS = (
    CoverageSite.site_id,
    CoverageSite.homepass_id,
    CoverageSite.locality,
    CoverageSite.kecamatan,
    CoverageSite.kelurahan,
    CoverageSite.ampli,
    CoverageSite.cluster_id,
)

METERS_PER_DEGREE_LAT = 111_320.0


@dataclass
class SitePage:
    """One page of a table listing."""

    items: list[CoverageSite]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


@dataclass
class NearestSite:
    """A site paired with its distance from a query point."""

    site: CoverageSite
    distance: float


def _record_values(record: Any) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    if is_dataclass(record):
        return asdict(record)
    if isinstance(record, Mapping):
        return dict(record)
    raise ValidationError("record", f"unsupported record type {type(record).__name__}")


def _check_coordinate(field: str, value: Any, limit: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field, "must be a number")
    value = float(value)
    if not math.isfinite(value):
        raise ValidationError(field, "must be a finite number")
    if abs(value) > limit:
        raise ValidationError(field, f"must be between -{limit:g} and {limit:g}")
    return value


def _check_polygon(polygon: Any) -> list[list[float]] | None:
    if polygon is None or (isinstance(polygon, (list, tuple)) and len(polygon) == 0):
        return None
    if not isinstance(polygon, (list, tuple)):
        raise ValidationError("polygon", "must be a list of [lat, lng] pairs")
    ring = []
    for index, vertex in enumerate(polygon):
        if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
            raise ValidationError("polygon", f"vertex {index} must be a [lat, lng] pair")
        lat, lng = vertex[0], vertex[1]
        if not is_valid_coordinate(lat, lng) or isinstance(lat, str) or isinstance(lng, str):
            raise ValidationError("polygon", f"vertex {index} is not a valid coordinate")
        ring.append([float(lat), float(lng)])
    if distinct_vertex_count(ring) < 3:
        raise ValidationError("polygon", "needs at least 3 distinct vertices")
    return ring


def clean_site_values(record: Any) -> dict[str, Any]:
    """Validate a record and return only the writable column values.

    Raises ValidationError naming the first offending field.
    """
    raw = _record_values(record)
    values = {field: raw.get(field) for field in WRITABLE_FIELDS if field in raw}

    values["latitude"] = _check_coordinate("latitude", raw.get("latitude"), MAX_LATITUDE)
    values["longitude"] = _check_coordinate("longitude", raw.get("longitude"), MAX_LONGITUDE)

    area_lat = raw.get("area_latitude")
    area_lng = raw.get("area_longitude")
    values["area_latitude"] = (
        None if area_lat is None else _check_coordinate("area_latitude", area_lat, MAX_LATITUDE)
    )
    values["area_longitude"] = (
        None if area_lng is None else _check_coordinate("area_longitude", area_lng, MAX_LONGITUDE)
    )

    values["polygon"] = _check_polygon(raw.get("polygon"))

    values["site_id"] = str(raw.get("site_id") or "").strip()
    values["network_type"] = str(raw.get("network_type") or "").strip()
    values["status"] = str(raw.get("status") or "").strip() or SITE_STATUS_ACTIVE
    return values


class CoverageStore:
    """CRUD, search and bulk writes over the coverage_sites table.

    The store only flushes; committing is left to whoever owns the session.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _dialect_name(self) -> str:
        bind = self.db.bind
        return bind.dialect.name if bind is not None else ""

    @staticmethod
    def _filters(search: str | None, network_type: str | None) -> list:
        conditions = []
        if search and search.strip():
            term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{term}%"
            conditions.append(
                or_(*(column.ilike(pattern, escape="\\") for column in SEARCH_COLUMNS))
            )
        if network_type and network_type.strip():
            conditions.append(
                func.upper(CoverageSite.network_type) == network_type.strip().upper()
            )
        return conditions

    # Reads

    async def get(self, site_id: int) -> CoverageSite | None:
        result = await self.db.execute(select(CoverageSite).where(CoverageSite.id == site_id))
        return result.scalar()

    async def count(self) -> int:
        return await self.db.scalar(select(func.count()).select_from(CoverageSite)) or 0

    async def list_paged(
        self,
        page: int = 1,
        page_size: int = 100,
        search: str | None = None,
        network_type: str | None = None,
    ) -> SitePage:
        """A page of sites, newest id first."""
        page = max(page, 1)
        page_size = max(page_size, 1)
        conditions = self._filters(search, network_type)

        total = await self.db.scalar(
            select(func.count()).select_from(CoverageSite).where(*conditions)
        )
        result = await self.db.execute(
            select(CoverageSite)
            .where(*conditions)
            .order_by(CoverageSite.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return SitePage(
            items=list(result.scalars().all()),
            page=page,
            page_size=page_size,
            total=total or 0,
        )

    async def list_all(
        self,
        search: str | None = None,
        network_type: str | None = None,
    ) -> list[CoverageSite]:
        """Every matching site, oldest id first."""
        result = await self.db.execute(
            select(CoverageSite)
            .where(*self._filters(search, network_type))
            .order_by(CoverageSite.id)
        )
        return list(result.scalars().all())

    async def list_in_bounding_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        search: str | None = None,
        network_type: str | None = None,
    ) -> list[CoverageSite]:
        """Sites whose anchor is inside the box, plus every polygon site.

        Polygons are never culled here: an area's anchor can sit outside a
        small viewport while its boundary still crosses it.
        """
        in_box = (
            CoverageSite.latitude.between(min_lat, max_lat)
            & CoverageSite.longitude.between(min_lng, max_lng)
        )
        result = await self.db.execute(
            select(CoverageSite)
            .where(or_(in_box, CoverageSite.polygon.isnot(None)))
            .where(*self._filters(search, network_type))
            .order_by(CoverageSite.id.desc())
        )
        return list(result.scalars().all())

    async def find_nearest(
        self,
        lat: float,
        lng: float,
        network_type: str | None = None,
    ) -> NearestSite | None:
        """The site closest to (lat, lng); ties go to the lowest id."""
        query = (
            select(CoverageSite)
            .where(*self._filters(None, network_type))
            .order_by(CoverageSite.id)
        )
        result = await self.db.execute(query)

        best: NearestSite | None = None
        for site in result.scalars().all():
            if not is_valid_coordinate(site.latitude, site.longitude):
                continue
            distance = haversine_distance_m((lat, lng), (site.latitude, site.longitude))
            if best is None or distance < best.distance:
                best = NearestSite(site=site, distance=distance)
        return best

    async def find_within_radius(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        network_type: str | None = None,
    ) -> list[NearestSite]:
        """Every site within radius_m of (lat, lng), nearest first."""
        d_lat = radius_m / METERS_PER_DEGREE_LAT
        conditions = [CoverageSite.latitude.between(lat - d_lat, lat + d_lat)]
        cos_lat = math.cos(math.radians(lat))
        if cos_lat > 1e-6:
            d_lng = radius_m / (METERS_PER_DEGREE_LAT * cos_lat)
            # Boxes crossing the antimeridian fall back to latitude-only filtering
            if -180.0 <= lng - d_lng and lng + d_lng <= 180.0:
                conditions.append(CoverageSite.longitude.between(lng - d_lng, lng + d_lng))

        result = await self.db.execute(
            select(CoverageSite)
            .where(*conditions)
            .where(*self._filters(None, network_type))
            .order_by(CoverageSite.id)
        )
        matches = []
        for site in result.scalars().all():
            if not is_valid_coordinate(site.latitude, site.longitude):
                continue
            distance = haversine_distance_m((lat, lng), (site.latitude, site.longitude))
            if distance <= radius_m:
                matches.append(NearestSite(site=site, distance=distance))
        matches.sort(key=lambda m: (m.distance, m.site.id))
        return matches

    async def network_types(self) -> list[str]:
        result = await self.db.execute(
            select(CoverageSite.network_type)
            .where(CoverageSite.network_type != "")
            .distinct()
            .order_by(CoverageSite.network_type)
        )
        return [value for (value,) in result.all()]

    async def count_by_network_type(self) -> dict[str, dict[str, int]]:
        """Site and polygon counts grouped by network type (for metrics)."""
        result = await self.db.execute(
            select(
                CoverageSite.network_type,
                func.count(CoverageSite.id),
                func.count(CoverageSite.polygon),
            ).group_by(CoverageSite.network_type)
        )
        return {
            network_type or "UNKNOWN": {"sites": sites, "polygons": polygons}
            for network_type, sites, polygons in result.all()
        }

    # Writes

    async def insert_one(self, record: Any) -> CoverageSite:
        values = clean_site_values(record)
        site = CoverageSite(**values)
        self.db.add(site)
        await self.db.flush()
        await self.db.refresh(site)
        return site

    async def update_one(self, site_id: int, record: Any) -> CoverageSite:
        values = clean_site_values(record)
        site = await self.get(site_id)
        if site is None:
            raise NotFoundError(site_id)
        for field, value in values.items():
            setattr(site, field, value)
        await self.db.flush()
        await self.db.refresh(site)
        return site

    async def delete_one(self, site_id: int) -> int:
        """Delete one site; a missing id is not an error."""
        result = await self.db.execute(delete(CoverageSite).where(CoverageSite.id == site_id))
        return result.rowcount or 0

    async def delete_by_ids(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        result = await self.db.execute(
            delete(CoverageSite).where(CoverageSite.id.in_(list(ids)))
        )
        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} coverage sites by id ({len(ids)} requested)")
        return deleted

    async def delete_all(self) -> int:
        """Remove every site and restart id numbering where supported."""
        existing = await self.count()
        if self._dialect_name() == "postgresql":
            await self.db.execute(text("TRUNCATE TABLE coverage_sites RESTART IDENTITY"))
        else:
            await self.db.execute(delete(CoverageSite))
        logger.info(f"Deleted all {existing} coverage sites")
        return existing

    async def bulk_insert_or_upsert(
        self,
        records: Iterable[Any],
        mode: ImportMode | str = ImportMode.INSERT,
    ) -> int:
        """Write records as new rows (insert) or matched on site_id (upsert).

        Every record is validated before anything is written. In upsert mode
        records are matched one at a time against the current table contents,
        so a later record with the same site_id overwrites the row an earlier
        one in the same batch wrote. Records without a site_id are always
        inserted. Returns the number of records written.
        """
        try:
            mode = ImportMode(mode)
        except ValueError:
            raise ValidationError("mode", f"unknown import mode {mode!r}") from None

        values_list = [clean_site_values(record) for record in records]
        if not values_list:
            return 0

        if mode == ImportMode.INSERT:
            self.db.add_all([CoverageSite(**values) for values in values_list])
            await self.db.flush()
            return len(values_list)

        updated = 0
        for values in values_list:
            existing = None
            if values["site_id"]:
                existing = await self.db.scalar(
                    select(CoverageSite)
                    .where(CoverageSite.site_id == values["site_id"])
                    .order_by(CoverageSite.id)
                    .limit(1)
                )
            if existing is not None:
                for field, value in values.items():
                    setattr(existing, field, value)
                updated += 1
            else:
                self.db.add(CoverageSite(**values))
            await self.db.flush()

        logger.info(
            f"Upserted {len(values_list)} coverage sites "
            f"({updated} updated, {len(values_list) - updated} inserted)"
        )
        return len(values_list)

    async def resync_id_sequence(self) -> int | None:
        """Point the id sequence at MAX(id) so new inserts do not collide.

        Returns the sequence value, or None where the dialect has no sequence.
        """
        if self._dialect_name() != "postgresql":
            return None
        result = await self.db.execute(
            text(
                "SELECT setval(pg_get_serial_sequence('coverage_sites', 'id'), "
                "COALESCE(MAX(id), 1), MAX(id) IS NOT NULL) FROM coverage_sites"
            )
        )
        value = result.scalar()
        logger.info(f"Coverage site id sequence set to {value}")
        return value
