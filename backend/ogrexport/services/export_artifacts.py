"""Spool paths for baked artifacts and their removal."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ogrexport.services.export_fingerprint import shorten_path

logger = logging.getLogger(__name__)


class ExportArtifacts:
    """
    Owns the on-disk artifact of each job.

    Paths embed the process id so instances sharing a temp directory never
    collide, and the (possibly shortened) fingerprint so each job has its own.
    """

    def __init__(self, tmp_dir: Union[str, Path] = "/tmp", pid: Optional[int] = None):
        self.tmp_dir = Path(tmp_dir)
        self.pid = pid if pid is not None else os.getpid()

    def path_for(self, key: str, extension: str) -> str:
        reqkey = shorten_path(key)
        return str(self.tmp_dir / f"sqlapi-{self.pid}-{reqkey}:cartodb-query.{extension}")

    def remove(self, path: Optional[str]) -> bool:
        """
        Delete an artifact synchronously.

        A missing file counts as removed. Other failures are logged and
        reported as False; they never raise.
        """
        if not path:
            return True
        logger.info(f"Removing {path}")
        try:
            os.unlink(path)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.error(f"Could not unlink dumpfile {path}: {exc}")
            return False
        return True
