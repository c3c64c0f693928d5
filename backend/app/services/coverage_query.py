"""Coverage classification and viewport selection."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from app.errors import ValidationError
from app.models import CoverageSite
from app.schemas.coverage import CheckMode
from app.schemas.settings import CoverageSettings
from app.services.coverage_store import CoverageStore, NearestSite
from app.services.geometry import Bounds, haversine_distance_m, is_valid_coordinate

logger = logging.getLogger(__name__)

# Point sites drawn before the map has reported its bounds
INITIAL_PAINT_POINTS = 100

NO_NODE_DISTANCE = -1.0


@dataclass
class CoverageCheck:
    """Outcome of classifying one point."""

    covered: bool
    distance: float
    nearest_node: CoverageSite | None = None
    radius_meters: float | None = None


@dataclass
class ViewportSelection:
    """Sites to render for one viewport, polygons first."""

    polygons: list[CoverageSite] = field(default_factory=list)
    points: list[CoverageSite] = field(default_factory=list)
    truncated: bool = False

    @property
    def sites(self) -> list[CoverageSite]:
        return self.polygons + self.points


@dataclass
class PointAnalysis:
    """Per-point classifications plus covered/uncovered totals."""

    results: list[CoverageCheck] = field(default_factory=list)

    @property
    def covered(self) -> int:
        return sum(1 for r in self.results if r.covered)

    @property
    def uncovered(self) -> int:
        return len(self.results) - self.covered


def _check_mode(mode: CheckMode | str) -> CheckMode:
    try:
        return CheckMode(mode)
    except ValueError:
        raise ValidationError("mode", f"unknown coverage mode {mode!r}") from None


def _result(match: NearestSite, settings: CoverageSettings) -> CoverageCheck:
    radius = settings.radius_for(match.site.network_type)
    return CoverageCheck(
        covered=match.distance <= radius,
        distance=round(match.distance, 2),
        nearest_node=match.site,
        radius_meters=radius,
    )


def _no_node() -> CoverageCheck:
    return CoverageCheck(covered=False, distance=NO_NODE_DISTANCE)


async def classify_point(
    lat: float,
    lng: float,
    store: CoverageStore,
    settings: CoverageSettings,
    network_type: str | None = None,
    mode: CheckMode | str = CheckMode.NEAREST,
) -> CoverageCheck:
    """Decide whether (lat, lng) is covered.

    nearest: only the closest site's own radius is tested, even if a farther
    site with a larger radius would reach the point.
    union: covered if any site lies within its network type's radius; the
    reported node is the nearest covering site, or the nearest site overall
    when none covers.

    An empty store is a normal outcome: covered=False, distance=-1.
    """
    mode = _check_mode(mode)

    if mode == CheckMode.UNION:
        candidates = await store.find_within_radius(lat, lng, settings.max_radius, network_type)
        for candidate in candidates:
            if candidate.distance <= settings.radius_for(candidate.site.network_type):
                return _result(candidate, settings)

    nearest = await store.find_nearest(lat, lng, network_type)
    if nearest is None:
        return _no_node()
    return _result(nearest, settings)


def classify_against_sites(
    lat: float,
    lng: float,
    sites: Sequence[CoverageSite],
    settings: CoverageSettings,
    mode: CheckMode | str = CheckMode.NEAREST,
) -> CoverageCheck:
    """In-memory classify_point over an already loaded list of sites.

    sites must be ordered by id so ties resolve to the lowest id.
    """
    mode = _check_mode(mode)

    nearest: NearestSite | None = None
    covering: NearestSite | None = None
    for site in sites:
        if not is_valid_coordinate(site.latitude, site.longitude):
            continue
        distance = haversine_distance_m((lat, lng), (site.latitude, site.longitude))
        if nearest is None or distance < nearest.distance:
            nearest = NearestSite(site=site, distance=distance)
        if (
            mode == CheckMode.UNION
            and distance <= settings.radius_for(site.network_type)
            and (covering is None or distance < covering.distance)
        ):
            covering = NearestSite(site=site, distance=distance)

    if covering is not None:
        return _result(covering, settings)
    if nearest is None:
        return _no_node()
    return _result(nearest, settings)


async def analyze_points(
    points: Iterable[tuple[float, float]],
    store: CoverageStore,
    settings: CoverageSettings,
    network_type: str | None = None,
    mode: CheckMode | str = CheckMode.NEAREST,
) -> PointAnalysis:
    """Classify many prospect or customer locations against one store snapshot."""
    mode = _check_mode(mode)
    sites = await store.list_all(network_type=network_type)

    analysis = PointAnalysis()
    for lat, lng in points:
        analysis.results.append(classify_against_sites(lat, lng, sites, settings, mode))

    logger.debug(
        f"Analyzed {len(analysis.results)} points against {len(sites)} sites: "
        f"{analysis.covered} covered"
    )
    return analysis


def filter_for_viewport(
    sites: Iterable[CoverageSite],
    bounds: Bounds | None,
    max_rendered_points: int,
) -> ViewportSelection:
    """Pick what to draw: every polygon site plus a capped set of point sites.

    Point sites must have their anchor inside bounds and be active. Without
    bounds (first paint) only the first INITIAL_PAINT_POINTS are kept.
    Polygons are never truncated.
    """
    selection = ViewportSelection()
    limit = max(max_rendered_points, 0)
    if bounds is None:
        limit = min(limit, INITIAL_PAINT_POINTS)

    for site in sites:
        if site.has_polygon:
            selection.polygons.append(site)
            continue
        if not site.is_active:
            continue
        if bounds is not None and not bounds.contains(site.latitude, site.longitude):
            continue
        if len(selection.points) >= limit:
            selection.truncated = True
            continue
        selection.points.append(site)

    return selection

