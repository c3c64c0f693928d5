"""Shared test fixtures."""

import io
import os
import zipfile

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
from httpx import ASGITransport, AsyncClient
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.routers.coverage import get_ingestion_controller
from app.services.bulk_ingest import BulkIngestionController


@pytest.fixture
async def engine():
    """In-memory SQLite engine shared across sessions."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    """A session for seeding and inspecting data; commit before using the client."""
    async with session_maker() as session:
        yield session


@pytest.fixture
async def client(session_maker):
    """HTTP client against the app with the test database wired in."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ingestion_controller] = lambda: BulkIngestionController(
        session_maker, chunk_size=2, chunk_timeout=5.0
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_kmz(kml: str, name: str = "doc.kml") -> bytes:
    """Wrap a KML document in a KMZ archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(name, kml)
    return buffer.getvalue()


def make_xlsx(rows: list[list]) -> bytes:
    """Build a single-sheet workbook; the first row is the header."""
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


SAMPLE_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Coverage</name>
    <Folder>
      <name>Nodes</name>
      <Placemark>
        <name>NODE-001</name>
        <description>Amplifier on Jl. Sudirman</description>
        <Point><coordinates>106.85,-6.21,0</coordinates></Point>
      </Placemark>
    </Folder>
    <Folder>
      <name>Areas</name>
      <Placemark>
        <name>AREA-001</name>
        <Polygon>
          <outerBoundaryIs>
            <LinearRing>
              <coordinates>
                106.80,-6.20,0 106.82,-6.20,0 106.82,-6.22,0 106.80,-6.22,0 106.80,-6.20,0
              </coordinates>
            </LinearRing>
          </outerBoundaryIs>
        </Polygon>
      </Placemark>
    </Folder>
  </Document>
</kml>
"""
