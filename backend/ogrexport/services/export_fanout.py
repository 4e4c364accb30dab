"""Delivery of a finished job to its queued requests."""

from __future__ import annotations

import logging

from ogrexport.services.export_artifacts import ExportArtifacts
from ogrexport.services.export_registry import BakingJob, ExportRegistry

logger = logging.getLogger(__name__)


async def drain(job: BakingJob, registry: ExportRegistry, artifacts: ExportArtifacts) -> None:
    """
    Hand the job outcome to every queued request, oldest first, then clean up.

    One request is served at a time: the next transfer starts only after the
    current one (and its callback) has finished. Requests that attach while
    draining is in progress are served too. The registry entry is dropped in
    the same loop step that finds the queue empty, and the artifact is
    unlinked right after, so a new identical request always starts a fresh
    job rather than reading a half-deleted file.
    """
    served = 0
    try:
        while job.queue:
            request = job.queue.popleft()
            await request.send_file(job.error, job.result_path)
            served += 1
    finally:
        registry.remove(job.key)
        artifacts.remove(job.artifact_path)
        logger.info(f"Drained export job ({served} requests, error={job.error is not None})")
