"""
Pydantic Schemas
================

Request and response schemas for the export pipeline and its HTTP adapter.
"""

from ogrexport.schemas.ogr_export import ConnectionParams, ExportErrorResponse, ExportOptions

__all__ = [
    "ConnectionParams",
    "ExportErrorResponse",
    "ExportOptions",
]
