"""Tests for coverage site persistence."""

from unittest.mock import AsyncMock, patch

import pytest

from app.errors import NotFoundError, ValidationError
from app.schemas.coverage import CoverageSiteCreate
from app.services.coverage_store import CoverageStore, clean_site_values

SQUARE = [[-6.20, 106.80], [-6.20, 106.82], [-6.22, 106.82], [-6.22, 106.80]]


def _site(site_id: str, lat: float = -6.2088, lng: float = 106.8456, **extra) -> dict:
    return {"site_id": site_id, "network_type": "FTTH", "latitude": lat, "longitude": lng, **extra}


@pytest.fixture
def store(db):
    return CoverageStore(db)


class TestValidation:
    """Test record validation before writes."""

    def test_latitude_out_of_range(self):
        """Latitude beyond 90 is rejected and named."""
        with pytest.raises(ValidationError) as exc_info:
            clean_site_values(_site("S-1", lat=91))
        assert exc_info.value.field == "latitude"

    def test_longitude_not_finite(self):
        """NaN longitude is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            clean_site_values(_site("S-1", lng=float("nan")))
        assert exc_info.value.field == "longitude"

    def test_string_coordinate_rejected(self):
        """Coordinates must already be numbers."""
        with pytest.raises(ValidationError):
            clean_site_values(_site("S-1", lat="-6.2"))

    def test_polygon_needs_three_distinct_vertices(self):
        """Degenerate rings are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            clean_site_values(_site("S-1", polygon=[[0, 1], [0, 1], [1, 1]]))
        assert exc_info.value.field == "polygon"

    def test_polygon_vertex_out_of_range(self):
        """Every vertex must be a valid coordinate."""
        with pytest.raises(ValidationError):
            clean_site_values(_site("S-1", polygon=[[0, 1], [95, 1], [1, 1]]))

    def test_defaults(self):
        """Empty polygon becomes NULL and empty status becomes Active."""
        values = clean_site_values(_site(" S-1 ", polygon=[], status=""))
        assert values["polygon"] is None
        assert values["status"] == "Active"
        assert values["site_id"] == "S-1"

    def test_accepts_schema_objects(self):
        """Pydantic payloads are accepted as records."""
        values = clean_site_values(CoverageSiteCreate(**_site("S-1")))
        assert values["latitude"] == -6.2088


class TestReads:
    """Test listing, search and nearest queries."""

    async def test_list_paged_newest_first(self, store, db):
        """Pages are ordered by id descending with totals."""
        for i in range(5):
            await store.insert_one(_site(f"S-{i}"))
        await db.commit()

        page = await store.list_paged(page=1, page_size=2)
        assert [s.site_id for s in page.items] == ["S-4", "S-3"]
        assert page.total == 5
        assert page.total_pages == 3

        last = await store.list_paged(page=3, page_size=2)
        assert [s.site_id for s in last.items] == ["S-0"]

    async def test_search_is_case_insensitive(self, store, db):
        """Free text matches site id, locality, ampli and cluster id."""
        await store.insert_one(_site("JKT-001", locality="Jakarta Selatan"))
        await store.insert_one(_site("BDG-001", locality="Bandung", ampli="AMP-JKT"))
        await store.insert_one(_site("SBY-001", locality="Surabaya", cluster_id="CL-7"))
        await db.commit()

        page = await store.list_paged(search="jkt")
        assert {s.site_id for s in page.items} == {"JKT-001", "BDG-001"}

        page = await store.list_paged(search="selatan")
        assert [s.site_id for s in page.items] == ["JKT-001"]

        page = await store.list_paged(search="cl-7")
        assert [s.site_id for s in page.items] == ["SBY-001"]

    async def test_search_matches_district(self, store, db):
        """Kecamatan and kelurahan are searchable."""
        await store.insert_one(_site("S-1", kecamatan="Tebet", kelurahan="Manggarai"))
        await store.insert_one(_site("S-2", kecamatan="Cilandak", kelurahan="Lebak Bulus"))
        await db.commit()

        page = await store.list_paged(search="tebet")
        assert [s.site_id for s in page.items] == ["S-1"]

        page = await store.list_paged(search="lebak")
        assert [s.site_id for s in page.items] == ["S-2"]

    async def test_search_wildcards_are_literal(self, store, db):
        """% and _ in search text match themselves only."""
        await store.insert_one(_site("NODE_01"))
        await store.insert_one(_site("NODEX01"))
        await store.insert_one(_site("SALE-50%"))
        await db.commit()

        page = await store.list_paged(search="_")
        assert [s.site_id for s in page.items] == ["NODE_01"]

        page = await store.list_paged(search="%")
        assert [s.site_id for s in page.items] == ["SALE-50%"]

        page = await store.list_paged(search="e_0")
        assert [s.site_id for s in page.items] == ["NODE_01"]

    async def test_network_type_filter(self, store, db):
        """Network type matching ignores case."""
        await store.insert_one(_site("F-1"))
        await store.insert_one({**_site("H-1"), "network_type": "HFC"})
        await db.commit()

        page = await store.list_paged(network_type="hfc")
        assert [s.site_id for s in page.items] == ["H-1"]
        assert await store.network_types() == ["FTTH", "HFC"]

    async def test_bounding_box_keeps_polygons(self, store, db):
        """Polygon sites are returned even when their anchor is outside the box."""
        await store.insert_one(_site("AREA", lat=-6.21, lng=106.81, polygon=SQUARE))
        await store.insert_one(_site("OUTSIDE", lat=-6.21, lng=106.81))
        await store.insert_one(_site("INSIDE", lat=-7.5, lng=110.5))
        await db.commit()

        sites = await store.list_in_bounding_box(-8, -7, 110, 111)
        assert {s.site_id for s in sites} == {"AREA", "INSIDE"}

    async def test_find_nearest(self, store, db):
        """Nearest site by haversine distance."""
        await store.insert_one(_site("FAR", lat=-6.30, lng=106.90))
        await store.insert_one(_site("NEAR", lat=-6.2089, lng=106.8456))
        await db.commit()

        nearest = await store.find_nearest(-6.2088, 106.8456)
        assert nearest.site.site_id == "NEAR"
        assert nearest.distance == pytest.approx(11.12, abs=0.01)

    async def test_find_nearest_tie_goes_to_lowest_id(self, store, db):
        """Equidistant sites resolve to the lowest id."""
        first = await store.insert_one(_site("FIRST"))
        await store.insert_one(_site("SECOND"))
        await db.commit()

        nearest = await store.find_nearest(-6.2088, 106.8456)
        assert nearest.site.id == first.id
        assert nearest.distance == 0

    async def test_find_nearest_returns_loaded_site(self, store, db):
        """The nearest site comes back from the distance scan itself."""
        await store.insert_one(_site("NEAR", kecamatan="Tebet"))
        await db.commit()

        with patch.object(CoverageStore, "get", AsyncMock(return_value=None)) as get:
            nearest = await store.find_nearest(-6.2088, 106.8456)

        get.assert_not_awaited()
        assert nearest.site.site_id == "NEAR"
        assert nearest.site.kecamatan == "Tebet"

    async def test_find_nearest_empty(self, store):
        """An empty table has no nearest site."""
        assert await store.find_nearest(0, 0) is None

    async def test_find_nearest_by_network_type(self, store, db):
        """Network type narrows the candidates."""
        await store.insert_one(_site("F-1"))
        await store.insert_one({**_site("H-1", lat=-6.3), "network_type": "HFC"})
        await db.commit()

        nearest = await store.find_nearest(-6.2088, 106.8456, network_type="HFC")
        assert nearest.site.site_id == "H-1"

    async def test_find_within_radius(self, store, db):
        """Only sites inside the radius, nearest first."""
        await store.insert_one(_site("B", lat=-6.2088 + 0.0018))
        await store.insert_one(_site("A", lat=-6.2088 + 0.0009))
        await store.insert_one(_site("C", lat=-6.2088 + 0.01))
        await db.commit()

        matches = await store.find_within_radius(-6.2088, 106.8456, 250)
        assert [m.site.site_id for m in matches] == ["A", "B"]
        assert matches[0].distance < matches[1].distance <= 250

    async def test_count_by_network_type(self, store, db):
        """Counts per network type include polygon sites."""
        await store.insert_one(_site("F-1"))
        await store.insert_one(_site("F-2", polygon=SQUARE))
        await store.insert_one({**_site("X-1"), "network_type": ""})
        await db.commit()

        counts = await store.count_by_network_type()
        assert counts["FTTH"] == {"sites": 2, "polygons": 1}
        assert counts["UNKNOWN"] == {"sites": 1, "polygons": 0}


class TestWrites:
    """Test single-record and bulk writes."""

    async def test_insert_and_get(self, store, db):
        """Inserted sites get an id and default status."""
        site = await store.insert_one(_site("S-1", polygon=SQUARE))
        await db.commit()

        fetched = await store.get(site.id)
        assert fetched.site_id == "S-1"
        assert fetched.status == "Active"
        assert fetched.polygon == SQUARE
        assert fetched.created_at is not None

    async def test_update_missing(self, store):
        """Updating a missing id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.update_one(999, _site("S-1"))

    async def test_update_replaces_fields(self, store, db):
        """Update writes every provided field."""
        site = await store.insert_one(_site("S-1"))
        updated = await store.update_one(site.id, _site("S-1b", lat=-7.0, status="Inactive"))
        await db.commit()

        assert updated.id == site.id
        assert updated.site_id == "S-1b"
        assert updated.latitude == -7.0
        assert updated.is_active is False

    async def test_delete_one_is_idempotent(self, store, db):
        """Deleting twice is not an error."""
        site = await store.insert_one(_site("S-1"))
        await db.commit()

        assert await store.delete_one(site.id) == 1
        assert await store.delete_one(site.id) == 0
        assert await store.get(site.id) is None

    async def test_delete_by_ids(self, store, db):
        """Unknown ids are ignored and an empty list is a no-op."""
        a = await store.insert_one(_site("A"))
        b = await store.insert_one(_site("B"))
        await store.insert_one(_site("C"))
        await db.commit()

        assert await store.delete_by_ids([]) == 0
        assert await store.delete_by_ids([a.id, b.id, 999]) == 2
        assert await store.count() == 1

    async def test_delete_all(self, store, db):
        """Every row is removed and the previous count reported."""
        await store.bulk_insert_or_upsert([_site("A"), _site("B")])
        await db.commit()

        assert await store.delete_all() == 2
        assert await store.count() == 0

    async def test_upsert_is_idempotent(self, store, db):
        """Upserting the same records twice keeps the row count."""
        records = [_site("A"), _site("B"), _site("C")]
        await store.bulk_insert_or_upsert(records, "upsert")
        await db.commit()

        changed = [_site("A", lat=-6.5), _site("B"), _site("C")]
        written = await store.bulk_insert_or_upsert(changed, "upsert")
        await db.commit()

        assert written == 3
        assert await store.count() == 3
        page = await store.list_paged(search="A")
        assert page.items[0].latitude == -6.5

    async def test_insert_mode_duplicates(self, store, db):
        """Plain insert doubles the rows for the same records."""
        records = [_site("A"), _site("B"), _site("C")]
        await store.bulk_insert_or_upsert(records, "insert")
        await store.bulk_insert_or_upsert(records, "insert")
        await db.commit()

        assert await store.count() == 6

    async def test_upsert_updates_lowest_id(self, store, db):
        """With duplicate site ids already stored, the oldest row is updated."""
        first = await store.insert_one(_site("DUP"))
        second = await store.insert_one(_site("DUP"))
        await store.bulk_insert_or_upsert([_site("DUP", locality="Updated")], "upsert")
        await db.commit()

        assert (await store.get(first.id)).locality == "Updated"
        assert (await store.get(second.id)).locality is None

    async def test_upsert_without_site_id_inserts(self, store, db):
        """Records with no site id are always new rows."""
        await store.bulk_insert_or_upsert([_site(""), _site("")], "upsert")
        await db.commit()
        assert await store.count() == 2

    async def test_bulk_validates_before_writing(self, store, db):
        """One bad record means nothing from the batch is written."""
        with pytest.raises(ValidationError):
            await store.bulk_insert_or_upsert([_site("OK"), _site("BAD", lat=123)])
        await db.rollback()
        assert await store.count() == 0

    async def test_unknown_mode(self, store):
        """Only insert and upsert are accepted."""
        with pytest.raises(ValidationError) as exc_info:
            await store.bulk_insert_or_upsert([_site("A")], "merge")
        assert exc_info.value.field == "mode"

    async def test_resync_without_sequence(self, store):
        """SQLite has no sequence to resync."""
        assert await store.resync_id_sequence() is None
