"""
OGR Export Schemas
==================

Connection parameters and per-request options for file exports, plus the
error body returned by the HTTP adapter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ogrexport.services.export_request import ExportSink


class ConnectionParams(BaseModel):
    """
    Database connection parameters used for introspection queries and
    handed verbatim to the converter.

    Frozen so it can key the engine cache.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    host: str = "localhost"
    port: int = 5432
    user: str
    password: str = ""
    dbname: str

    def to_ogr_dsn(self) -> str:
        return (
            f"PG:host={self.host} port={self.port} user={self.user} "
            f"dbname={self.dbname} password={self.password}"
        )


@dataclass
class ExportOptions:
    """
    Everything one client supplies when asking for an export.

    `sql`, `filename`, `dbopts`, `skipfields` and `gn` define the job; the
    rest is per-client (`sink`, `before_sink`) or per-run tuning.
    """

    sql: str
    filename: str
    dbopts: ConnectionParams
    sink: "ExportSink"
    skipfields: List[str] = field(default_factory=list)
    gn: Optional[str] = None
    timeout_ms: Optional[int] = None
    cmd_params: List[str] = field(default_factory=list)
    before_sink: Optional[Callable[[], None]] = None


class ExportErrorResponse(BaseModel):
    error: List[str] = Field(default_factory=list)
