"""Errors raised by the export pipeline.

Job-level errors (everything raised while baking) are broadcast to every
request queued on the job. Transfer errors only reach the one client whose
sink failed.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base class for export failures."""
    pass


class UnsupportedFormatError(ExportError):
    """Raised when a format id has no registered converter settings."""
    pass


class ColumnIntrospectionError(ExportError):
    """Raised when the zero-row column query fails."""
    pass


class SpatialReferenceError(ExportError):
    """Raised when the SRID/geometry-type query fails (an empty result is not an error)."""
    pass


class ProcessSpawnError(ExportError):
    """Raised when the converter binary cannot be started."""
    pass


class ProcessTimeoutError(ExportError):
    """Raised when the converter outlives its timeout and is killed."""

    def __init__(self, message: str = "statement timeout"):
        super().__init__(message)


class ProcessExitError(ExportError):
    """Raised when the converter exits with a non-zero code."""

    def __init__(self, command: str, returncode: int, diagnostics: str = ""):
        self.command = command
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"{command} command return code {returncode}"
        if diagnostics:
            message += f", Error: {diagnostics}"
        super().__init__(message)


class SinkClosedError(ExportError):
    """Raised when writing to a sink whose client has gone away."""
    pass
