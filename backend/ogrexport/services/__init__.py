"""
Services module initialization.
"""

from ogrexport.services.export_artifacts import ExportArtifacts
from ogrexport.services.export_formats import EXPORT_FORMATS, OgrFormat, get_format
from ogrexport.services.export_generation import ExportGenerationTask
from ogrexport.services.export_registry import BakingJob, ExportRegistry, export_registry
from ogrexport.services.export_request import ExportRequest, QueueSink
from ogrexport.services.ogr_export_service import OgrExportService, create_export_service
from ogrexport.services.ogr_process_runner import OgrProcessRunner, ProcessResult

__all__ = [
    "ExportArtifacts",
    "EXPORT_FORMATS",
    "OgrFormat",
    "get_format",
    "ExportGenerationTask",
    "BakingJob",
    "ExportRegistry",
    "export_registry",
    "ExportRequest",
    "QueueSink",
    "OgrExportService",
    "create_export_service",
    "OgrProcessRunner",
    "ProcessResult",]
