"""Schemas for coverage sites, queries and imports."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ImportMode(str, Enum):
    """How bulk-imported records are written."""

    INSERT = "insert"
    UPSERT = "upsert"


class CheckMode(str, Enum):
    """Coverage classification model."""

    NEAREST = "nearest"
    UNION = "union"


class CoverageSiteBase(BaseModel):
    """Fields shared by every coverage site payload.

    Coordinates are checked against WGS84 ranges by the store, not here, so
    imported rows with bad coordinates can still be previewed.
    """

    network_type: str = Field(default="", max_length=20)
    site_id: str = Field(default="", max_length=100)
    homepass_id: str | None = Field(default=None, max_length=100)
    ampli: str | None = Field(default=None, max_length=100)
    cluster_id: str | None = Field(default=None, max_length=100)
    fibernode: str | None = Field(default=None, max_length=100)
    fibernode_desc: str | None = Field(default=None, max_length=255)
    latitude: float
    longitude: float
    area_latitude: float | None = None
    area_longitude: float | None = None
    polygon: list[list[float]] | None = Field(
        default=None, description="Outer ring as [[lat, lng], ...]"
    )
    locality: str | None = Field(default=None, max_length=255)
    kecamatan: str | None = Field(default=None, max_length=100)
    kelurahan: str | None = Field(default=None, max_length=100)
    location: str | None = None
    street_name: str | None = Field(default=None, max_length=255)
    street_block: str | None = Field(default=None, max_length=50)
    street_no: str | None = Field(default=None, max_length=50)
    rtrw: str | None = Field(default=None, max_length=20)
    dwelling: str | None = Field(default=None, max_length=100)
    description: str | None = None
    status: str = Field(default="Active", max_length=20)


class CoverageSiteCreate(CoverageSiteBase):
    """Schema for creating a coverage site."""

    site_id: str = Field(..., min_length=1, max_length=100)


class CoverageSiteUpdate(CoverageSiteCreate):
    """Schema for replacing a coverage site (PUT semantics)."""


class CoverageSiteResponse(CoverageSiteBase):
    """Response schema for a coverage site."""

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    """Page metadata for table listings."""

    page: int
    limit: int
    total_rows: int
    total_pages: int


class CoverageListResponse(BaseModel):
    """A page of sites (table mode) or every bounding-box match (map mode)."""

    data: list[CoverageSiteResponse]
    total: int
    pagination: Pagination | None = None


class CoverageMapResponse(BaseModel):
    """Renderable subset of sites for one map viewport."""

    data: list[CoverageSiteResponse]
    polygon_count: int
    point_count: int
    total_matches: int
    truncated: bool


class NearestNode(BaseModel):
    """Identifying fields of the node a coverage decision was made against."""

    id: int
    site_id: str
    ampli: str | None = None
    homepass_id: str | None = None
    locality: str | None = None
    kecamatan: str | None = None
    kelurahan: str | None = None
    network_type: str
    latitude: float
    longitude: float
    radius_meters: float


class CoverageCheckResponse(BaseModel):
    """Covered/uncovered classification for one point."""

    covered: bool
    distance: float = Field(description="Meters to the reported node, -1 when none exists")
    nearest_node: NearestNode | None = None
    message: str | None = None


class PointQuery(BaseModel):
    """A prospect or customer location to classify."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    ref: str | None = Field(default=None, description="Caller's identifier, echoed back")


class CheckPointsRequest(BaseModel):
    """Batch classification request."""

    points: list[PointQuery] = Field(..., max_length=5000)
    network_type: str | None = None
    mode: CheckMode = CheckMode.NEAREST


class PointCoverageResult(CoverageCheckResponse):
    """Classification of one point in a batch."""

    ref: str | None = None
    latitude: float
    longitude: float


class CheckPointsResponse(BaseModel):
    """Batch classification totals and per-point results."""

    total: int
    covered: int
    uncovered: int
    results: list[PointCoverageResult]


class BulkDeleteRequest(BaseModel):
    """Ids to delete; unknown ids are ignored."""

    ids: list[int] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Result of a delete operation."""

    message: str
    deleted: int


class BulkImportRequest(BaseModel):
    """Candidate records to write in chunks."""

    data: list[CoverageSiteBase]
    mode: ImportMode = ImportMode.INSERT


class ChunkErrorResponse(BaseModel):
    """A chunk that failed to write."""

    chunk_index: int
    size: int
    message: str


class BulkImportResponse(BaseModel):
    """Bulk import outcome; errors present means partial success."""

    count: int
    total_requested: int
    errors: list[ChunkErrorResponse] | None = None
    message: str


class ImportSummaryResponse(BaseModel):
    """Counts shown in an import preview."""

    features_seen: int
    records_extracted: int
    polygon_count: int
    point_count: int
    dropped_invalid: int


class ImportPreviewResponse(BaseModel):
    """Parsed but not yet written records."""

    records: list[CoverageSiteBase]
    summary: ImportSummaryResponse


class SpreadsheetColumnsResponse(BaseModel):
    """Header row and sample rows used to build a column mapping."""

    columns: list[str]
    sample_rows: list[dict[str, str]]
    total_rows: int
