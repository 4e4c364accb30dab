"""OGR export service.

Entry point for file exports. Identical exports (same fingerprint) share one
converter run; every request waiting on it gets the artifact streamed in
arrival order, then the artifact is removed.

All outcomes reach callers through their completion callback; nothing is
raised across the baking task boundary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Set

from ogrexport.core.config import settings
from ogrexport.core.metrics import (
    export_generation_seconds,
    export_jobs_total,
    export_requests_total,
)
from ogrexport.schemas.ogr_export import ExportOptions
from ogrexport.services.export_artifacts import ExportArtifacts
from ogrexport.services.export_fanout import drain
from ogrexport.services.export_fingerprint import build_key
from ogrexport.services.export_formats import OgrFormat
from ogrexport.services.export_generation import ExportGenerationTask
from ogrexport.services.export_registry import BakingJob, ExportRegistry, export_registry
from ogrexport.services.export_request import CompletionCallback, ExportRequest
from ogrexport.services.ogr_process_runner import OgrProcessRunner

logger = logging.getLogger(__name__)


class OgrExportService:
    """Coalesces export requests into baking jobs and fans results out."""

    def __init__(
        self,
        registry: ExportRegistry,
        artifacts: ExportArtifacts,
        generation: ExportGenerationTask,
        *,
        default_timeout_ms: int = 0,
        chunk_size: int = 64 * 1024,
    ):
        self.registry = registry
        self.artifacts = artifacts
        self.generation = generation
        self.default_timeout_ms = default_timeout_ms
        self.chunk_size = chunk_size
        self._tasks: Set[asyncio.Task] = set()

    def effective_timeout_ms(self, requested: Optional[int]) -> int:
        """
        Converter timeout for a request.

        A positive server limit can be tightened by the caller but never
        raised or disabled; a missing or zero request means the server limit.
        """
        limit = self.default_timeout_ms
        if limit <= 0:
            return max(requested or 0, 0)
        if not requested or requested <= 0:
            return limit
        return min(requested, limit)

    @staticmethod
    def get_key(fmt: OgrFormat, options: ExportOptions) -> str:
        return build_key(
            fmt.id,
            options.dbopts.dbname,
            options.dbopts.user,
            options.gn,
            options.filename,
            options.sql,
            options.skipfields,
        )

    def send_response(
        self,
        fmt: OgrFormat,
        options: ExportOptions,
        callback: CompletionCallback,
    ) -> BakingJob:
        """
        Queue a client for the export described by `options`.

        Must be called from the running event loop. Starts baking when no
        identical export is in flight; otherwise the client joins the
        existing job's queue.

        Args:
            fmt: Target format
            options: Export definition plus the client's sink and pre-send hook
            callback: Called with None on success or the error on failure.
                Not called when the client's sink closes first.

        Returns:
            The job the client was queued on
        """
        key = self.get_key(fmt, options)
        request = ExportRequest(
            options.sink,
            callback,
            before_sink=options.before_sink,
            chunk_size=self.chunk_size,
        )
        is_new, job = self.registry.attach(key, request)
        export_requests_total.labels(format=fmt.id, coalesced=str(not is_new).lower()).inc()

        if not is_new:
            logger.info(f"Joined baking {fmt.id} export ({len(job)} waiting)")
            return job

        job.artifact_path = self.artifacts.path_for(key, fmt.file_extension)
        logger.info(f"Baking {fmt.id} export into {job.artifact_path}")
        task = asyncio.get_running_loop().create_task(self._bake(fmt, options, job))
        job.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def _bake(self, fmt: OgrFormat, options: ExportOptions, job: BakingJob) -> None:
        timeout_ms = self.effective_timeout_ms(options.timeout_ms)
        extra_args = list(fmt.extra_args) + list(options.cmd_params or [])

        started = time.monotonic()
        try:
            job.result_path = await self.generation.generate(
                options,
                fmt.ogr_driver,
                job.artifact_path,
                need_srs=fmt.need_srs,
                cast_to_text=fmt.casts_to_text,
                extra_args=extra_args,
                timeout_ms=timeout_ms,
            )
        except Exception as exc:
            logger.warning(f"{fmt.id} export failed: {exc}")
            job.error = exc
            export_jobs_total.labels(format=fmt.id, outcome="failed").inc()
        except asyncio.CancelledError:
            # Shutdown: waiting clients are dropped with the loop.
            self.registry.remove(job.key)
            self.artifacts.remove(job.artifact_path)
            raise
        else:
            export_jobs_total.labels(format=fmt.id, outcome="succeeded").inc()
        finally:
            export_generation_seconds.labels(format=fmt.id).observe(time.monotonic() - started)

        await drain(job, self.registry, self.artifacts)

    async def wait_idle(self) -> None:
        """Wait for every baking job started by this service to finish draining."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_export_service(
    registry: Optional[ExportRegistry] = None,
    process_runner: Optional[OgrProcessRunner] = None,
) -> OgrExportService:
    """Build a service from application settings."""
    generation = ExportGenerationTask(
        process_runner or OgrProcessRunner(),
        ogr2ogr_command=settings.OGR2OGR_COMMAND,
    )
    return OgrExportService(
        registry or export_registry,
        ExportArtifacts(settings.EXPORT_TMP_DIR),
        generation,
        default_timeout_ms=settings.EXPORT_TIMEOUT_MS,
        chunk_size=settings.EXPORT_CHUNK_SIZE,
    )
