"""Registry of baking export jobs.

Maps a job fingerprint to the one job producing that artifact. Attaching
to an existing entry queues the request; attaching to a missing one creates
the job. The check-and-insert runs under a lock and never awaits, so at most
one job per fingerprint exists even if the registry is shared across
threads.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from ogrexport.services.export_request import ExportRequest


@dataclass
class BakingJob:
    """One in-flight (or just finished) artifact and the requests waiting on it."""

    key: str
    queue: Deque[ExportRequest] = field(default_factory=deque)
    # Where the converter writes; set before baking, removed after draining
    artifact_path: Optional[str] = None
    result_path: Optional[str] = None
    error: Optional[BaseException] = None
    task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.queue)


class ExportRegistry:
    """Fingerprint -> BakingJob map with atomic attach."""

    def __init__(self):
        self._jobs: Dict[str, BakingJob] = {}
        self._lock = threading.Lock()

    def attach(self, key: str, request: ExportRequest) -> Tuple[bool, BakingJob]:
        """
        Queue `request` on the job for `key`, creating the job if needed.

        Returns:
            (is_new_job, job); the caller must start baking when is_new_job
        """
        with self._lock:
            job = self._jobs.get(key)
            if job is not None:
                job.queue.append(request)
                return False, job
            job = BakingJob(key=key)
            job.queue.append(request)
            self._jobs[key] = job
            return True, job

    def remove(self, key: str) -> Optional[BakingJob]:
        with self._lock:
            return self._jobs.pop(key, None)

    def get(self, key: str) -> Optional[BakingJob]:
        with self._lock:
            return self._jobs.get(key)

    def fingerprints(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


# Global registry instance
export_registry = ExportRegistry()
