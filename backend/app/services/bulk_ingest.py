"""Chunked bulk writes with per-chunk failure accounting."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import ValidationError
from app.schemas.coverage import ImportMode
from app.services.coverage_store import CoverageStore

logger = logging.getLogger(__name__)


@dataclass
class ChunkFailure:
    """A chunk that was not written."""

    index: int
    message: str
    size: int


@dataclass
class IngestionSummary:
    """What a bulk ingestion wrote and which chunks it could not write."""

    processed_count: int = 0
    total_requested: int = 0
    chunk_count: int = 0
    failures: list[ChunkFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(f.size for f in self.failures)

    @property
    def partial(self) -> bool:
        """Some chunks were committed and some failed."""
        return bool(self.failures) and len(self.failures) < self.chunk_count

    @property
    def message(self) -> str:
        if not self.failures:
            return f"{self.processed_count} imported"
        return f"{self.processed_count} imported, {self.failed_count} failed"


class BulkIngestionController:
    """Feed records to the store in fixed-size chunks.

    Each chunk is written in its own session and transaction, so a chunk
    that fails (bad record, database error or timeout) leaves the chunks
    already committed in place. Failures are reported, never raised.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        chunk_size: int = 500,
        chunk_timeout: float = 10.0,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.session_maker = session_maker
        self.chunk_size = chunk_size
        self.chunk_timeout = chunk_timeout

    async def _write_chunk(self, chunk: Sequence[Any], mode: ImportMode) -> int:
        async with self.session_maker() as session:
            async with session.begin():
                return await CoverageStore(session).bulk_insert_or_upsert(chunk, mode)

    async def _resync_sequence(self) -> None:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await CoverageStore(session).resync_id_sequence()
        except SQLAlchemyError as e:
            logger.error(f"Failed to resync coverage site id sequence: {e}")

    async def ingest(
        self,
        records: Sequence[Any],
        mode: ImportMode | str = ImportMode.INSERT,
    ) -> IngestionSummary:
        try:
            mode = ImportMode(mode)
        except ValueError:
            raise ValidationError("mode", f"unknown import mode {mode!r}") from None

        records = list(records)
        summary = IngestionSummary(total_requested=len(records))

        for index, start in enumerate(range(0, len(records), self.chunk_size)):
            chunk = records[start : start + self.chunk_size]
            summary.chunk_count += 1
            try:
                written = await asyncio.wait_for(
                    self._write_chunk(chunk, mode), timeout=self.chunk_timeout
                )
            except asyncio.TimeoutError:
                message = f"Timed out after {self.chunk_timeout:g}s"
            except ValidationError as e:
                message = f"Invalid record: {e}"
            except Exception as e:
                message = f"{type(e).__name__}: {e}"
            else:
                summary.processed_count += written
                continue

            logger.error(
                f"Bulk chunk {index} ({len(chunk)} records, mode={mode.value}) failed: {message}"
            )
            summary.failures.append(ChunkFailure(index=index, message=message, size=len(chunk)))

        if summary.processed_count:
            await self._resync_sequence()

        logger.info(
            f"Bulk ingestion finished: {summary.message} "
            f"({summary.chunk_count} chunks, {len(summary.failures)} failed)"
        )
        return summary
