"""File export endpoint.

Adapts an HTTP streaming response to the export service: the response body
is a QueueSink, headers are committed only once the artifact is ready
(the pre-send hook), and a client disconnect closes the sink.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, StreamingResponse

from ogrexport.core.config import settings
from ogrexport.schemas.ogr_export import ExportErrorResponse, ExportOptions
from ogrexport.services.export_errors import UnsupportedFormatError
from ogrexport.services.export_formats import get_format
from ogrexport.services.export_request import QueueSink
from ogrexport.services.ogr_export_service import OgrExportService, create_export_service

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_LAYER_NAME = "cartodb-query"


@lru_cache
def get_export_service() -> OgrExportService:
    return create_export_service()


def _split_fields(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [f.strip() for f in raw.split(",") if f.strip()]


def _error_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ExportErrorResponse(error=[message]).model_dump(),
    )


@router.get("/sql/export", responses={400: {"model": ExportErrorResponse}})
async def export_query(
    q: str = Query(..., min_length=1, description="SQL query to export"),
    format: str = Query("csv", description="Export format id"),
    filename: str = Query(DEFAULT_LAYER_NAME, min_length=1),
    skipfields: Optional[str] = Query(None, description="Comma-separated columns to drop"),
    gn: Optional[str] = Query(None, description="Geometry column"),
    timeout_ms: Optional[int] = Query(None, ge=0, description="Converter timeout; can only tighten the server limit"),
    service: OgrExportService = Depends(get_export_service),
):
    """
    Export a query result as a file.

    Identical concurrent exports share one converter run. The response is
    streamed once the artifact exists; failures before that point return 400.
    """
    try:
        fmt = get_format(format)
    except UnsupportedFormatError as exc:
        return _error_response(str(exc))

    ready: asyncio.Future = asyncio.get_running_loop().create_future()
    sink = QueueSink(
        maxsize=settings.EXPORT_SINK_QUEUE_SIZE,
        write_timeout=settings.EXPORT_SINK_WRITE_TIMEOUT_SECONDS,
    )

    def before_sink() -> None:
        if not ready.done():
            ready.set_result(None)

    def on_complete(error: Optional[BaseException]) -> None:
        if error is None:
            return
        if not ready.done():
            ready.set_exception(error)
        else:
            logger.warning(f"{fmt.id} export failed mid-stream: {error}")

    options = ExportOptions(
        sql=q,
        filename=filename,
        dbopts=settings.connection_params,
        sink=sink,
        skipfields=_split_fields(skipfields),
        gn=gn,
        timeout_ms=timeout_ms,
        before_sink=before_sink,
    )
    service.send_response(fmt, options, on_complete)

    try:
        await ready
    except asyncio.CancelledError:
        sink.close()
        raise
    except Exception as exc:
        return _error_response(str(exc))

    return StreamingResponse(
        sink.iter_chunks(),
        media_type=fmt.content_type,
        headers={
            "Content-Disposition": f"attachment; filename={quote(filename)}.{fmt.file_extension}",
        },
    )
