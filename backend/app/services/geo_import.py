"""Turn spreadsheets and KML/KMZ documents into candidate coverage records.

Nothing here touches the database. Callers get a list of ImportedRecord
plus an ImportSummary, show a preview, and hand the records to the bulk
ingestion controller.
"""

import csv
import io
import json
import logging
import math
import re
import zipfile
import zlib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from xml.etree import ElementTree

from openpyxl import load_workbook

from app.errors import ParseError, ValidationError
from app.services.geometry import (
    is_valid_coordinate,
    normalize_polygon_axis_order,
    polygon_centroid,
)

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "network_type",
    "site_id",
    "homepass_id",
    "ampli",
    "cluster_id",
    "fibernode",
    "fibernode_desc",
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
NUMERIC_FIELDS = ("latitude", "longitude", "area_latitude", "area_longitude")
POLYGON_FIELD = "polygon"
IMPORT_FIELDS = TEXT_FIELDS + NUMERIC_FIELDS + (POLYGON_FIELD,)

# Column widths of coverage_sites
FIELD_LENGTHS = {
    "network_type": 20,
    "site_id": 100,
    "homepass_id": 100,
    "ampli": 100,
    "cluster_id": 100,
    "fibernode": 100,
    "fibernode_desc": 255,
    "locality": 255,
    "kecamatan": 100,
    "kelurahan": 100,
    "street_name": 255,
    "street_block": 50,
    "street_no": 50,
    "rtrw": 20,
    "dwelling": 100,
    "status": 20,
}

# KML ExtendedData names (lower-cased, punctuation stripped) -> record field
KML_PROPERTY_ALIASES = {
    "siteid": "site_id",
    "site": "site_id",
    "networktype": "network_type",
    "network": "network_type",
    "homepassid": "homepass_id",
    "homepass": "homepass_id",
    "ampli": "ampli",
    "amplifier": "ampli",
    "clusterid": "cluster_id",
    "cluster": "cluster_id",
    "fibernode": "fibernode",
    "locality": "locality",
    "city": "locality",
    "citytown": "locality",
    "kecamatan": "kecamatan",
    "district": "kecamatan",
    "kelurahan": "kelurahan",
    "village": "kelurahan",
    "streetname": "street_name",
    "rtrw": "rtrw",
    "status": "status",
}

SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm", ".csv")

# Decompressed size of the KML inside a KMZ
MAX_KML_BYTES = 200 * 1024 * 1024


@dataclass
class ImportedRecord:
    """A candidate coverage site produced by an importer."""

    latitude: float
    longitude: float
    network_type: str = ""
    site_id: str = ""
    homepass_id: str | None = None
    ampli: str | None = None
    cluster_id: str | None = None
    fibernode: str | None = None
    fibernode_desc: str | None = None
    area_latitude: float | None = None
    area_longitude: float | None = None
    polygon: list[list[float]] | None = None
    locality: str | None = None
    kecamatan: str | None = None
    kelurahan: str | None = None
    location: str | None = None
    street_name: str | None = None
    street_block: str | None = None
    street_no: str | None = None
    rtrw: str | None = None
    dwelling: str | None = None
    description: str | None = None
    status: str = ""


@dataclass
class ImportSummary:
    """Counts for an import preview."""

    features_seen: int = 0
    records_extracted: int = 0
    polygon_count: int = 0
    point_count: int = 0
    dropped_invalid: int = 0

    def add(self, record: ImportedRecord) -> None:
        self.records_extracted += 1
        if record.polygon:
            self.polygon_count += 1
        else:
            self.point_count += 1


@dataclass
class ImportResult:
    records: list[ImportedRecord] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def coerce_number(value: Any) -> float:
    """Permissive numeric parse: anything unusable becomes 0.

    A comma decimal separator ("106,85") is accepted.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    for candidate in (text, text.replace(",", ".")):
        try:
            number = float(candidate)
        except ValueError:
            continue
        if math.isfinite(number):
            return number
    return 0.0


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet cells hold ids like 12345 as floats
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _clip(field_name: str, value: str) -> str:
    limit = FIELD_LENGTHS.get(field_name)
    return value[:limit] if limit else value


def _parse_polygon_cell(value: Any) -> list[list[float]] | None:
    """Read a JSON ring from a spreadsheet cell; unusable content gives None."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            return None
    if not isinstance(value, list):
        return None
    try:
        ring = [[float(v[0]), float(v[1])] for v in value]
    except (TypeError, ValueError, IndexError):
        return None
    if len(ring) < 3:
        return None
    # Spreadsheets do not declare axis order
    return normalize_polygon_axis_order(ring)


# ---------------------------------------------------------------------------
# Spreadsheets
# ---------------------------------------------------------------------------


def _is_blank_row(row: list[Any]) -> bool:
    return all(cell is None or (isinstance(cell, str) and not cell.strip()) for cell in row)


def _header_names(header_row: list[Any]) -> list[str]:
    """Column names for the header row; blanks get ColumnN, repeats get _2, _3."""
    names: list[str] = []
    seen: set[str] = set()
    for index, cell in enumerate(header_row):
        base = coerce_text(cell) or f"Column{index}"
        name = base
        suffix = 2
        while name in seen:
            name = f"{base}_{suffix}"
            suffix += 1
        seen.add(name)
        names.append(name)
    return names


def _read_xlsx(content: bytes) -> list[list[Any]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ParseError(f"Could not read spreadsheet: {e}") from e
    try:
        if not workbook.worksheets:
            raise ParseError("Spreadsheet has no worksheets")
        sheet = workbook.worksheets[0]
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(content: bytes) -> list[list[Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    try:
        return [list(row) for row in csv.reader(io.StringIO(text), dialect)]
    except csv.Error as e:
        raise ParseError(f"Could not read CSV: {e}") from e


def read_spreadsheet_rows(content: bytes, filename: str) -> tuple[list[str], list[list[Any]]]:
    """Return (header names, data rows) of the first sheet.

    Fully blank rows are not data and are left out.
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        rows = _read_csv(content)
    elif name.endswith((".xlsx", ".xlsm")):
        rows = _read_xlsx(content)
    else:
        raise ParseError(
            f"Unsupported spreadsheet type: {filename!r} "
            f"(expected one of {', '.join(SPREADSHEET_EXTENSIONS)})"
        )

    if not rows:
        raise ParseError("Spreadsheet is empty")
    headers = _header_names(rows[0])
    data_rows = [row for row in rows[1:] if not _is_blank_row(row)]
    return headers, data_rows


def read_spreadsheet_columns(
    content: bytes, filename: str, sample_size: int = 100
) -> tuple[list[str], list[dict[str, str]], int]:
    """Headers, the first sample_size rows as text, and the data row count."""
    headers, rows = read_spreadsheet_rows(content, filename)
    samples = [
        {header: coerce_text(row[i]) if i < len(row) else "" for i, header in enumerate(headers)}
        for row in rows[:sample_size]
    ]
    return headers, samples, len(rows)


def _validate_mapping(mapping: Mapping[str, str]) -> dict[str, str]:
    """Check a {column: field} mapping and return it inverted as {field: column}."""
    by_field: dict[str, str] = {}
    for column, field_name in mapping.items():
        if not field_name:
            continue
        if field_name not in IMPORT_FIELDS:
            raise ValidationError("mapping", f"unknown field {field_name!r} for column {column!r}")
        if field_name in by_field:
            raise ValidationError(
                "mapping",
                f"field {field_name!r} is mapped from both {by_field[field_name]!r} and {column!r}",
            )
        by_field[field_name] = column
    return by_field


def parse_spreadsheet(content: bytes, filename: str, mapping: Mapping[str, str]) -> ImportResult:
    """Project every row through a user-supplied {column: field} mapping.

    Rows are never dropped here. Missing text becomes "", unparseable
    numbers become 0; bad coordinates are rejected later by the store.
    """
    by_field = _validate_mapping(mapping)
    headers, rows = read_spreadsheet_rows(content, filename)
    column_index = {header: index for index, header in enumerate(headers)}

    def cell(row: list[Any], field_name: str) -> Any:
        column = by_field.get(field_name)
        if column is None or column not in column_index:
            return None
        index = column_index[column]
        return row[index] if index < len(row) else None

    result = ImportResult()
    for row in rows:
        result.summary.features_seen += 1
        values: dict[str, Any] = {}
        for field_name in TEXT_FIELDS:
            values[field_name] = _clip(field_name, coerce_text(cell(row, field_name)))
        for field_name in NUMERIC_FIELDS:
            values[field_name] = coerce_number(cell(row, field_name))
        values[POLYGON_FIELD] = _parse_polygon_cell(cell(row, POLYGON_FIELD))

        record = ImportedRecord(**values)
        result.records.append(record)
        result.summary.add(record)

    logger.info(
        f"Parsed spreadsheet {filename}: {result.summary.records_extracted} rows "
        f"({result.summary.polygon_count} with polygons)"
    )
    return result


# ---------------------------------------------------------------------------
# KML / KMZ
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    """Tag name without its XML namespace."""
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _child(element: ElementTree.Element, name: str) -> ElementTree.Element | None:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _find_path(element: ElementTree.Element, *names: str) -> ElementTree.Element | None:
    current = element
    for name in names:
        if current is None:
            return None
        current = _child(current, name)
    return current


def _parse_coordinates(text: str | None) -> list[tuple[float, float]]:
    """Parse a KML coordinates string ("lng,lat[,alt] ...") into (lat, lng) pairs.

    KML always puts longitude first, so no axis heuristic is needed.
    """
    points = []
    for chunk in (text or "").split():
        parts = chunk.split(",")
        if len(parts) < 2:
            continue
        try:
            lng = float(parts[0])
            lat = float(parts[1])
        except ValueError:
            continue
        points.append((lat, lng))
    return points


def _is_importable(lat: float, lng: float) -> bool:
    # (0, 0) is the usual placeholder for a missing location in geo exports
    return is_valid_coordinate(lat, lng) and not (lat == 0 and lng == 0)


def _iter_geometries(element: ElementTree.Element) -> Iterator[tuple[str, ElementTree.Element]]:
    """Yield (kind, element) for Point/LineString/Polygon, flattening MultiGeometry."""
    for child in element:
        kind = _local(child.tag)
        if kind in ("Point", "LineString", "Polygon"):
            yield kind, child
        elif kind == "MultiGeometry":
            yield from _iter_geometries(child)


def _placemark_properties(placemark: ElementTree.Element) -> dict[str, str]:
    properties: dict[str, str] = {}

    extended = _child(placemark, "ExtendedData")
    if extended is not None:
        for element in extended.iter():
            tag = _local(element.tag)
            if tag == "Data":
                value_element = _child(element, "value")
                raw_value = value_element.text if value_element is not None else None
            elif tag == "SimpleData":
                raw_value = element.text
            else:
                continue
            key = re.sub(r"[^a-z0-9]", "", (element.get("name") or "").lower())
            field_name = KML_PROPERTY_ALIASES.get(key)
            if field_name and raw_value and raw_value.strip():
                properties[field_name] = _clip(field_name, raw_value.strip())

    name = _child(placemark, "name")
    if name is not None and name.text and name.text.strip():
        properties.setdefault("site_id", _clip("site_id", name.text.strip()))

    description = _child(placemark, "description")
    if description is not None and description.text and description.text.strip():
        properties["description"] = description.text.strip()

    return properties


def _point_record(lat: float, lng: float, properties: dict[str, str]) -> ImportedRecord:
    return ImportedRecord(latitude=lat, longitude=lng, **properties)


def _polygon_record(
    polygon: ElementTree.Element, properties: dict[str, str]
) -> ImportedRecord | None:
    coordinates = _find_path(polygon, "outerBoundaryIs", "LinearRing", "coordinates")
    ring = _parse_coordinates(coordinates.text if coordinates is not None else None)
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    if len(set(ring)) < 3 or not all(is_valid_coordinate(lat, lng) for lat, lng in ring):
        return None

    centroid = polygon_centroid(ring)
    if centroid is None or not _is_importable(*centroid):
        return None
    return ImportedRecord(
        latitude=centroid[0],
        longitude=centroid[1],
        polygon=[[lat, lng] for lat, lng in ring],
        **properties,
    )


def parse_kml(content: bytes, default_network_type: str = "") -> ImportResult:
    """Extract coverage records from a KML document.

    Point -> one point record. Polygon -> one record holding the outer ring,
    anchored at the mean of its vertices. Each polygon of a MultiGeometry
    becomes its own record. LineString -> one point record per vertex.
    Placemarks without geometry are skipped; records with out-of-range or
    (0, 0) coordinates are dropped and counted.
    """
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as e:
        raise ParseError(f"Invalid KML document: {e}") from e

    result = ImportResult()
    summary = result.summary

    for placemark in root.iter():
        if _local(placemark.tag) != "Placemark":
            continue
        summary.features_seen += 1

        properties = _placemark_properties(placemark)
        if default_network_type and not properties.get("network_type"):
            properties["network_type"] = _clip("network_type", default_network_type)

        polygon_index = 0
        for kind, geometry in _iter_geometries(placemark):
            if kind == "Polygon":
                polygon_properties = dict(properties)
                if polygon_index and polygon_properties.get("site_id"):
                    # Later constituents of a multi-polygon get a stable suffix
                    polygon_properties["site_id"] = _clip(
                        "site_id", f"{properties['site_id']}#{polygon_index + 1}"
                    )
                polygon_index += 1
                record = _polygon_record(geometry, polygon_properties)
                if record is None:
                    summary.dropped_invalid += 1
                    continue
                result.records.append(record)
                summary.add(record)
                continue

            coordinates = _child(geometry, "coordinates")
            points = _parse_coordinates(coordinates.text if coordinates is not None else None)
            if kind == "Point":
                points = points[:1]
            if not points:
                summary.dropped_invalid += 1
                continue
            for lat, lng in points:
                if not _is_importable(lat, lng):
                    summary.dropped_invalid += 1
                    continue
                record = _point_record(lat, lng, properties)
                result.records.append(record)
                summary.add(record)

    logger.info(
        f"Parsed KML: {summary.features_seen} features, {summary.records_extracted} records "
        f"({summary.polygon_count} polygons, {summary.point_count} points), "
        f"{summary.dropped_invalid} dropped as invalid"
    )
    return result


def parse_kmz(
    content: bytes, default_network_type: str = "", max_kml_bytes: int = MAX_KML_BYTES
) -> ImportResult:
    """Read the first .kml entry of a KMZ (zip) archive.

    The entry's declared size is checked before anything is decompressed,
    and reading stops once max_kml_bytes is exceeded.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            kml_info = next(
                (info for info in archive.infolist() if info.filename.lower().endswith(".kml")),
                None,
            )
            if kml_info is None:
                raise ParseError("KMZ archive does not contain a .kml document")
            if kml_info.file_size > max_kml_bytes:
                raise ParseError(
                    f"KML document {kml_info.filename!r} is {kml_info.file_size} bytes "
                    f"uncompressed, over the {max_kml_bytes} byte limit"
                )
            with archive.open(kml_info) as entry:
                kml_content = entry.read(max_kml_bytes + 1)
    except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError, OSError) as e:
        raise ParseError(f"Not a valid KMZ archive: {e}") from e
    if len(kml_content) > max_kml_bytes:
        raise ParseError(f"KML document exceeds the {max_kml_bytes} byte limit")
    return parse_kml(kml_content, default_network_type)


def parse_geo_file(
    content: bytes,
    filename: str,
    default_network_type: str = "",
    max_kml_bytes: int = MAX_KML_BYTES,
) -> ImportResult:
    """Dispatch on file extension (.kmz or .kml)."""
    name = (filename or "").lower()
    if name.endswith(".kmz"):
        return parse_kmz(content, default_network_type, max_kml_bytes)
    if name.endswith(".kml"):
        return parse_kml(content, default_network_type)
    raise ParseError(f"Unsupported geographic file type: {filename!r} (expected .kmz or .kml)")
