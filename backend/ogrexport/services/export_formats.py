"""Single-file OGR export formats."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from ogrexport.services.export_errors import UnsupportedFormatError


@dataclass(frozen=True)
class OgrFormat:
    """
    Converter settings for one downloadable format.

    Attributes:
        id: Public format id, also the first fingerprint segment
        ogr_driver: Value passed to the converter's `-f`
        content_type: Response Content-Type
        file_extension: Artifact and download extension
        need_srs: Whether SRID/geometry type must be detected and passed on
        extra_args: Converter arguments placed before caller-supplied ones
    """

    id: str
    ogr_driver: str
    content_type: str
    file_extension: str
    need_srs: bool = False
    extra_args: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def casts_to_text(self) -> bool:
        return self.ogr_driver == "CSV"


CSV = OgrFormat(
    id="csv",
    ogr_driver="CSV",
    content_type="text/csv; charset=utf-8; header=present",
    file_extension="csv",
)

KML = OgrFormat(
    id="kml",
    ogr_driver="KML",
    content_type="application/kml; charset=utf-8",
    file_extension="kml",
    need_srs=True,
)

GEOPACKAGE = OgrFormat(
    id="gpkg",
    ogr_driver="GPKG",
    content_type="application/x-sqlite3; charset=utf-8",
    file_extension="gpkg",
    need_srs=True,
)

SPATIALITE = OgrFormat(
    id="spatialite",
    ogr_driver="SQLite",
    content_type="application/x-sqlite3; charset=utf-8",
    file_extension="sqlite",
    need_srs=True,
    extra_args=("-dsco", "SPATIALITE=yes"),
)

EXPORT_FORMATS: Dict[str, OgrFormat] = {
    fmt.id: fmt for fmt in (CSV, KML, GEOPACKAGE, SPATIALITE)
}


def get_format(format_id: str) -> OgrFormat:
    fmt = EXPORT_FORMATS.get((format_id or "").strip().lower())
    if fmt is None:
        supported = ", ".join(sorted(EXPORT_FORMATS))
        raise UnsupportedFormatError(f"Invalid format: {format_id} (supported: {supported})")
    return fmt
