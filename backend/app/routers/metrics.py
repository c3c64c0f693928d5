"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.coverage_store import CoverageStore

router = APIRouter(tags=["metrics"])


async def collect_metrics(db: AsyncSession) -> bytes:
    """Collect all metrics and return Prometheus format."""
    registry = CollectorRegistry()

    sites_total = Gauge(
        "coverdash_coverage_sites_total",
        "Coverage sites per network type",
        ["network_type"],
        registry=registry,
    )
    polygon_sites = Gauge(
        "coverdash_coverage_polygon_sites_total",
        "Coverage sites with a drawn service area, per network type",
        ["network_type"],
        registry=registry,
    )
    all_sites = Gauge(
        "coverdash_coverage_sites_all",
        "Total coverage sites",
        registry=registry,
    )

    counts = await CoverageStore(db).count_by_network_type()
    for network_type, row in counts.items():
        sites_total.labels(network_type=network_type).set(row["sites"])
        polygon_sites.labels(network_type=network_type).set(row["polygons"])
    all_sites.set(sum(row["sites"] for row in counts.values()))

    return generate_latest(registry)


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(db: AsyncSession = Depends(get_db)) -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    metrics_data = await collect_metrics(db)
    return PlainTextResponse(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
