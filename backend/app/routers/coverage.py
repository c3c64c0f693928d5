"""Coverage site API endpoints."""

import json
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import async_session_maker, get_db
from app.errors import CoverageError, NotFoundError, ParseError, ValidationError
from app.models import CoverageSite
from app.schemas.coverage import (
    BulkDeleteRequest,
    BulkImportRequest,
    BulkImportResponse,
    CheckMode,
    CheckPointsRequest,
    CheckPointsResponse,
    ChunkErrorResponse,
    CoverageCheckResponse,
    CoverageListResponse,
    CoverageMapResponse,
    CoverageSiteBase,
    CoverageSiteCreate,
    CoverageSiteResponse,
    CoverageSiteUpdate,
    DeleteResponse,
    ImportPreviewResponse,
    ImportSummaryResponse,
    NearestNode,
    Pagination,
    PointCoverageResult,
    SpreadsheetColumnsResponse,
)
from app.services.bulk_ingest import BulkIngestionController
from app.services.coverage_query import (
    CoverageCheck,
    analyze_points,
    classify_point,
    filter_for_viewport,
)
from app.services.coverage_store import CoverageStore
from app.services.geo_import import (
    ImportResult,
    parse_geo_file,
    parse_spreadsheet,
    read_spreadsheet_columns,
)
from app.services.geometry import Bounds
from app.services.settings_store import load_coverage_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coverage", tags=["coverage"])


def get_ingestion_controller() -> BulkIngestionController:
    """Dependency that provides the bulk ingestion controller."""
    settings = get_settings()
    return BulkIngestionController(
        async_session_maker,
        chunk_size=settings.bulk_chunk_size,
        chunk_timeout=settings.bulk_chunk_timeout_seconds,
    )


def _http_error(error: CoverageError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail="Coverage site not found")
    if isinstance(error, ParseError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def _bounds_from_query(
    min_lat: float | None,
    max_lat: float | None,
    min_lng: float | None,
    max_lng: float | None,
) -> Bounds | None:
    values = (min_lat, max_lat, min_lng, max_lng)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise HTTPException(
            status_code=422,
            detail="min_lat, max_lat, min_lng and max_lng must be given together",
        )
    if min_lat > max_lat or min_lng > max_lng:
        raise HTTPException(status_code=422, detail="Bounding box minimum exceeds maximum")
    return Bounds(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)


def _check_response(check: CoverageCheck) -> CoverageCheckResponse:
    site = check.nearest_node
    if site is None:
        return CoverageCheckResponse(
            covered=False,
            distance=check.distance,
            message="No coverage nodes found",
        )

    node = NearestNode(
        id=site.id,
        site_id=site.site_id,
        ampli=site.ampli,
        homepass_id=site.homepass_id,
        locality=site.locality,
        kecamatan=site.kecamatan,
        kelurahan=site.kelurahan,
        network_type=site.network_type,
        latitude=site.latitude,
        longitude=site.longitude,
        radius_meters=check.radius_meters,
    )
    if check.covered:
        message = f"Covered by {site.site_id} ({check.distance:.2f} m away)"
    else:
        message = (
            f"Not covered: nearest node {site.site_id} is {check.distance:.2f} m away "
            f"(radius {check.radius_meters:g} m)"
        )
    return CoverageCheckResponse(
        covered=check.covered,
        distance=check.distance,
        nearest_node=node,
        message=message,
    )


def _preview_response(result: ImportResult) -> ImportPreviewResponse:
    return ImportPreviewResponse(
        records=[CoverageSiteBase(**asdict(record)) for record in result.records],
        summary=ImportSummaryResponse(**asdict(result.summary)),
    )


async def _read_upload(file: UploadFile) -> bytes:
    max_bytes = get_settings().max_upload_bytes
    too_large = HTTPException(
        status_code=413,
        detail=f"Upload exceeds the {max_bytes} byte limit",
    )
    # The declared size is known for spooled multipart uploads
    if file.size is not None and file.size > max_bytes:
        raise too_large
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise too_large
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return content


# Listing and map


@router.get("", response_model=CoverageListResponse)
async def list_coverage(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=5000),
    search: str | None = Query(default=None),
    network_type: str | None = Query(default=None),
    min_lat: float | None = Query(default=None),
    max_lat: float | None = Query(default=None),
    min_lng: float | None = Query(default=None),
    max_lng: float | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> CoverageListResponse:
    """List coverage sites.

    With a full bounding box this returns every match in the box (map mode);
    otherwise a page of sites, newest first (table mode).
    """
    store = CoverageStore(db)
    bounds = _bounds_from_query(min_lat, max_lat, min_lng, max_lng)

    if bounds is not None:
        sites = await store.list_in_bounding_box(
            bounds.min_lat,
            bounds.max_lat,
            bounds.min_lng,
            bounds.max_lng,
            search=search,
            network_type=network_type,
        )
        return CoverageListResponse(
            data=[CoverageSiteResponse.model_validate(s) for s in sites],
            total=len(sites),
        )

    site_page = await store.list_paged(
        page=page, page_size=limit, search=search, network_type=network_type
    )
    return CoverageListResponse(
        data=[CoverageSiteResponse.model_validate(s) for s in site_page.items],
        total=site_page.total,
        pagination=Pagination(
            page=site_page.page,
            limit=site_page.page_size,
            total_rows=site_page.total,
            total_pages=site_page.total_pages,
        ),
    )


@router.get("/map", response_model=CoverageMapResponse)
async def coverage_map(
    min_lat: float | None = Query(default=None),
    max_lat: float | None = Query(default=None),
    min_lng: float | None = Query(default=None),
    max_lng: float | None = Query(default=None),
    search: str | None = Query(default=None),
    network_type: str | None = Query(default=None),
    max_points: int | None = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> CoverageMapResponse:
    """Sites to draw for one map viewport: all polygons plus capped point sites."""
    store = CoverageStore(db)
    bounds = _bounds_from_query(min_lat, max_lat, min_lng, max_lng)
    cap = get_settings().max_rendered_points
    limit = min(max_points or cap, cap)

    if bounds is not None:
        sites = await store.list_in_bounding_box(
            bounds.min_lat,
            bounds.max_lat,
            bounds.min_lng,
            bounds.max_lng,
            search=search,
            network_type=network_type,
        )
    else:
        sites = await store.list_all(search=search, network_type=network_type)

    selection = filter_for_viewport(sites, bounds, limit)
    return CoverageMapResponse(
        data=[CoverageSiteResponse.model_validate(s) for s in selection.sites],
        polygon_count=len(selection.polygons),
        point_count=len(selection.points),
        total_matches=len(sites),
        truncated=selection.truncated,
    )


@router.get("/network-types", response_model=list[str])
async def list_network_types(db: AsyncSession = Depends(get_db)) -> list[str]:
    """Distinct network types present in the store."""
    return await CoverageStore(db).network_types()


# Coverage checks


@router.get("/check-point", response_model=CoverageCheckResponse)
async def check_point(
    lat: float = Query(..., ge=-90, le=90),
    long: float | None = Query(default=None, ge=-180, le=180),
    lng: float | None = Query(default=None, ge=-180, le=180),
    network_type: str | None = Query(default=None),
    mode: CheckMode = Query(default=CheckMode.NEAREST),
    db: AsyncSession = Depends(get_db),
) -> CoverageCheckResponse:
    """Is this location covered, and by which node?"""
    longitude = long if long is not None else lng
    if longitude is None:
        raise HTTPException(status_code=422, detail="Query parameter 'long' is required")

    settings = await load_coverage_settings(db)
    check = await classify_point(
        lat, longitude, CoverageStore(db), settings, network_type=network_type, mode=mode
    )
    return _check_response(check)


@router.post("/check-points", response_model=CheckPointsResponse)
async def check_points(
    request: CheckPointsRequest,
    db: AsyncSession = Depends(get_db),
) -> CheckPointsResponse:
    """Classify a batch of prospect or customer locations."""
    settings = await load_coverage_settings(db)
    analysis = await analyze_points(
        [(p.latitude, p.longitude) for p in request.points],
        CoverageStore(db),
        settings,
        network_type=request.network_type,
        mode=request.mode,
    )

    results = []
    for point, check in zip(request.points, analysis.results):
        response = _check_response(check)
        results.append(
            PointCoverageResult(
                **response.model_dump(),
                ref=point.ref,
                latitude=point.latitude,
                longitude=point.longitude,
            )
        )

    return CheckPointsResponse(
        total=len(results),
        covered=analysis.covered,
        uncovered=analysis.uncovered,
        results=results,
    )


# Bulk operations


@router.delete("/all", response_model=DeleteResponse)
async def delete_all_coverage(db: AsyncSession = Depends(get_db)) -> DeleteResponse:
    """Delete every coverage site."""
    deleted = await CoverageStore(db).delete_all()
    return DeleteResponse(message=f"Deleted {deleted} coverage sites", deleted=deleted)


@router.post("/bulk-delete", response_model=DeleteResponse)
async def bulk_delete_coverage(
    request: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),
) -> DeleteResponse:
    """Delete the given ids; unknown ids are ignored."""
    deleted = await CoverageStore(db).delete_by_ids(request.ids)
    return DeleteResponse(message=f"Deleted {deleted} coverage sites", deleted=deleted)


@router.post("/bulk", response_model=BulkImportResponse)
async def bulk_import_coverage(
    request: BulkImportRequest,
    controller: BulkIngestionController = Depends(get_ingestion_controller),
) -> BulkImportResponse:
    """Write many records in chunks; failed chunks are reported, not raised."""
    try:
        summary = await controller.ingest(request.data, request.mode)
    except CoverageError as e:
        raise _http_error(e) from e

    errors = [
        ChunkErrorResponse(chunk_index=f.index, size=f.size, message=f.message)
        for f in summary.failures
    ]
    return BulkImportResponse(
        count=summary.processed_count,
        total_requested=summary.total_requested,
        errors=errors or None,
        message=summary.message,
    )


# File imports (preview only, nothing is written)


@router.post("/import/kmz", response_model=ImportPreviewResponse)
async def import_kmz(
    file: UploadFile = File(...),
    network_type: str = Form(default=""),
) -> ImportPreviewResponse:
    """Extract coverage records from an uploaded KMZ or KML file."""
    content = await _read_upload(file)
    try:
        result = parse_geo_file(
            content,
            file.filename or "",
            default_network_type=network_type,
            max_kml_bytes=get_settings().max_kml_bytes,
        )
    except CoverageError as e:
        raise _http_error(e) from e
    return _preview_response(result)


@router.post("/import/spreadsheet/columns", response_model=SpreadsheetColumnsResponse)
async def spreadsheet_columns(
    file: UploadFile = File(...),
    sample_size: int = Form(default=5, ge=0, le=100),
) -> SpreadsheetColumnsResponse:
    """Header row and sample rows, for building a column mapping."""
    content = await _read_upload(file)
    try:
        columns, samples, total = read_spreadsheet_columns(
            content, file.filename or "", sample_size=sample_size
        )
    except CoverageError as e:
        raise _http_error(e) from e
    return SpreadsheetColumnsResponse(columns=columns, sample_rows=samples, total_rows=total)


@router.post("/import/spreadsheet", response_model=ImportPreviewResponse)
async def import_spreadsheet(
    file: UploadFile = File(...),
    mapping: str = Form(..., description='JSON object of {"column": "field"}'),
) -> ImportPreviewResponse:
    """Project spreadsheet rows into coverage records through a column mapping."""
    try:
        column_mapping = json.loads(mapping)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"mapping is not valid JSON: {e}") from e
    if not isinstance(column_mapping, dict):
        raise HTTPException(status_code=422, detail="mapping must be a JSON object")

    content = await _read_upload(file)
    try:
        result = parse_spreadsheet(content, file.filename or "", column_mapping)
    except CoverageError as e:
        raise _http_error(e) from e
    return _preview_response(result)


# Single-record CRUD


@router.post("", response_model=CoverageSiteResponse, status_code=status.HTTP_201_CREATED)
async def create_coverage_site(
    site_data: CoverageSiteCreate,
    db: AsyncSession = Depends(get_db),
) -> CoverageSiteResponse:
    """Create a coverage site."""
    try:
        site = await CoverageStore(db).insert_one(site_data)
    except CoverageError as e:
        raise _http_error(e) from e
    logger.info(f"Created coverage site {site.id} ({site.site_id})")
    return CoverageSiteResponse.model_validate(site)


@router.get("/{site_id}", response_model=CoverageSiteResponse)
async def get_coverage_site(
    site_id: int,
    db: AsyncSession = Depends(get_db),
) -> CoverageSiteResponse:
    """Get a specific coverage site."""
    site: CoverageSite | None = await CoverageStore(db).get(site_id)
    if not site:
        raise HTTPException(status_code=404, detail="Coverage site not found")
    return CoverageSiteResponse.model_validate(site)


@router.put("/{site_id}", response_model=CoverageSiteResponse)
async def update_coverage_site(
    site_id: int,
    site_data: CoverageSiteUpdate,
    db: AsyncSession = Depends(get_db),
) -> CoverageSiteResponse:
    """Replace a coverage site's fields."""
    try:
        site = await CoverageStore(db).update_one(site_id, site_data)
    except CoverageError as e:
        raise _http_error(e) from e
    return CoverageSiteResponse.model_validate(site)


@router.delete("/{site_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coverage_site(
    site_id: int,
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Delete a coverage site; deleting a missing id succeeds."""
    await CoverageStore(db).delete_one(site_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
