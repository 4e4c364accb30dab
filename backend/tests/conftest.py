"""Pytest configuration.

Settings are environment-based, so minimal test defaults are set here
before anything from the app is imported. The database and the converter
binary are replaced by in-process fakes; nothing here needs Postgres or GDAL.
"""

import os
import tempfile

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("API_PREFIX", "/api/v1")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_USER", "exporter")
os.environ.setdefault("POSTGRES_DB", "exports_test")
os.environ.setdefault("EXPORT_TMP_DIR", tempfile.gettempdir())

import asyncio
from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from ogrexport.core.database import ColumnInfo
from ogrexport.main import app
from ogrexport.api.v1.endpoints.ogr_exports import get_export_service
from ogrexport.schemas.ogr_export import ConnectionParams, ExportOptions
from ogrexport.services.export_artifacts import ExportArtifacts
from ogrexport.services.export_errors import SinkClosedError
from ogrexport.services.export_generation import ExportGenerationTask
from ogrexport.services.export_registry import ExportRegistry
from ogrexport.services.ogr_export_service import OgrExportService
from ogrexport.services.ogr_process_runner import ProcessResult


class FakeQueryRunner:
    """QueryRunner returning canned columns and SRID rows."""

    def __init__(
        self,
        columns: Optional[List[ColumnInfo]] = None,
        srid_row: Optional[dict] = None,
        columns_error: Optional[Exception] = None,
        srid_error: Optional[Exception] = None,
    ):
        self.columns = columns if columns is not None else [
            ColumnInfo("cartodb_id", "int4"),
            ColumnInfo("name", "text"),
        ]
        self.srid_row = srid_row
        self.columns_error = columns_error
        self.srid_error = srid_error
        self.queries: List[str] = []

    async def fetch_columns(self, sql: str) -> List[ColumnInfo]:
        self.queries.append(sql)
        if self.columns_error is not None:
            raise self.columns_error
        return list(self.columns)

    async def fetch_one(self, sql: str) -> Optional[dict]:
        self.queries.append(sql)
        if self.srid_error is not None:
            raise self.srid_error
        return self.srid_row

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'


class FakeProcessRunner:
    """
    Stands in for the converter: writes `content` to the output path.

    `gate`, when given, holds every run until it is set.
    """

    def __init__(self, content: bytes = b"id,name\r\n1,alpha\r\n", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[List[str]] = []
        self.timeouts: List[int] = []

    async def run(self, command: str, args, timeout_ms: int = 0) -> ProcessResult:
        self.calls.append([command, *args])
        self.timeouts.append(timeout_ms)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        out_path = args[list(args).index("LINEFORMAT=CRLF") + 1]
        with open(out_path, "wb") as fh:
            fh.write(self.content)
        return ProcessResult(returncode=0, diagnostics="", duration_seconds=0.0)


class RecordingSink:
    """ExportSink that keeps everything written to it."""

    def __init__(
        self,
        name: str = "sink",
        events: Optional[List[tuple]] = None,
        write_error: Optional[Exception] = None,
        close_after_writes: Optional[int] = None,
    ):
        self.name = name
        self.events = events if events is not None else []
        self.write_error = write_error
        self.close_after_writes = close_after_writes
        self.data = bytearray()
        self.writes = 0
        self.ended = False
        self.closed = False
        self._listeners: List[Callable[[], None]] = []

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        if self.closed:
            listener()
            return
        self._listeners.append(listener)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise SinkClosedError("closed")
        if self.write_error is not None:
            raise self.write_error
        if self.writes == 0:
            self.events.append(("start", self.name))
        self.data.extend(data)
        self.writes += 1
        await asyncio.sleep(0)
        if self.close_after_writes is not None and self.writes >= self.close_after_writes:
            self.close()

    async def end(self) -> None:
        self.ended = True
        self.events.append(("end", self.name))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()


class CallbackRecorder:
    """Completion callback that remembers what it was called with."""

    def __init__(self):
        self.calls: List[Optional[BaseException]] = []
        self.done = asyncio.Event()

    def __call__(self, error: Optional[BaseException]) -> None:
        self.calls.append(error)
        self.done.set()


@pytest.fixture
def dbopts() -> ConnectionParams:
    return ConnectionParams(host="db.local", port=5432, user="exporter", password="secret", dbname="exports_test")


@pytest.fixture
def make_options(dbopts) -> Callable[..., ExportOptions]:
    def _make(sink, **overrides) -> ExportOptions:
        values: Dict = dict(
            sql="SELECT * FROM places;",
            filename="places",
            dbopts=dbopts,
            sink=sink,
        )
        values.update(overrides)
        return ExportOptions(**values)

    return _make


@pytest.fixture
def query_runner() -> FakeQueryRunner:
    return FakeQueryRunner()


@pytest.fixture
def process_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def artifacts(tmp_path) -> ExportArtifacts:
    return ExportArtifacts(tmp_path, pid=4242)


@pytest.fixture
def export_service(query_runner, process_runner, artifacts) -> OgrExportService:
    generation = ExportGenerationTask(
        process_runner,
        ogr2ogr_command="ogr2ogr",
        query_runner_factory=lambda params: query_runner,
    )
    return OgrExportService(ExportRegistry(), artifacts, generation, chunk_size=8)


@pytest_asyncio.fixture
async def client(export_service) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose export routes use the fake-backed service."""
    app.dependency_overrides[get_export_service] = lambda: export_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
