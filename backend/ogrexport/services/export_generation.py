"""Artifact generation for one export job.

Introspects the query's columns, detects the spatial reference when the
format needs one, builds the converter arguments and runs the converter.
Any fatal error short-circuits the remaining steps.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ogrexport.core.database import ColumnInfo, PostgresQueryRunner, QueryRunner
from ogrexport.schemas.ogr_export import ConnectionParams, ExportOptions
from ogrexport.services.export_errors import ColumnIntrospectionError, SpatialReferenceError
from ogrexport.services.ogr_process_runner import OgrProcessRunner

logger = logging.getLogger(__name__)

PRIMARY_GEOMETRY_COLUMN = "the_geom"
GEOMETRY_TYPE_NAME = "geometry"
SUBQUERY_ALIAS = "_cartodbsqlapi"

_TRAILING_TERMINATOR = re.compile(r";\s*$")


def strip_statement_terminator(sql: str) -> str:
    """Drop a trailing `;` (the converter rejects it)."""
    return _TRAILING_TERMINATOR.sub("", sql)


@dataclass
class GenerationState:
    sql: str
    out_path: str
    columns: List[str] = field(default_factory=list)
    geometry_column: Optional[str] = None
    srid: Optional[int] = None
    geometry_type: Optional[str] = None


def order_columns(
    columns: Sequence[ColumnInfo],
    skip_fields: Sequence[str],
    *,
    need_srs: bool,
    geometry_hint: Optional[str] = None,
) -> tuple[List[ColumnInfo], Optional[str]]:
    """
    Filter and order introspected columns.

    Returns the surviving columns and the geometry column to use for SRS
    detection (None when not needed or not found). With SRS detection on,
    `the_geom` is moved first; the sort is stable otherwise. The hint only
    wins when it names a surviving geometry-typed column.
    """
    skipped = set(skip_fields)
    kept = [col for col in columns if col.name not in skipped]
    if not need_srs:
        return kept, None

    kept.sort(key=lambda col: 0 if col.name == PRIMARY_GEOMETRY_COLUMN else 1)

    geometries = [col.name for col in kept if col.type_name == GEOMETRY_TYPE_NAME]
    if geometry_hint in geometries:
        return kept, geometry_hint
    return kept, geometries[0] if geometries else None


class ExportGenerationTask:
    """Produces the artifact file for a baking job."""

    def __init__(
        self,
        process_runner: OgrProcessRunner,
        ogr2ogr_command: str = "ogr2ogr",
        query_runner_factory: Callable[[ConnectionParams], QueryRunner] = PostgresQueryRunner,
    ):
        self.process_runner = process_runner
        self.ogr2ogr_command = ogr2ogr_command
        self.query_runner_factory = query_runner_factory

    async def generate(
        self,
        options: ExportOptions,
        out_format: str,
        out_path: str,
        *,
        need_srs: bool = False,
        cast_to_text: bool = False,
        extra_args: Sequence[str] = (),
        timeout_ms: int = 0,
    ) -> str:
        """
        Write the export of `options.sql` to `out_path`.

        Args:
            options: Export options of the request that created the job
            out_format: Converter driver name (e.g. "CSV", "GPKG")
            out_path: Artifact path
            need_srs: Detect SRID/geometry type and pass them to the converter
            cast_to_text: Cast every projected column to text (CSV)
            extra_args: Converter arguments appended before the layer name
            timeout_ms: Converter timeout (<= 0 disables)

        Returns:
            `out_path` once the converter has exited cleanly
        """
        state = GenerationState(sql=strip_statement_terminator(options.sql), out_path=out_path)
        query_runner = self.query_runner_factory(options.dbopts)
        q = query_runner.quote_identifier

        logger.info("Getting dataset columns")
        colsql = f"SELECT * FROM ({state.sql}) as {SUBQUERY_ALIAS} LIMIT 0"
        try:
            introspected = await query_runner.fetch_columns(colsql)
        except Exception as exc:
            raise ColumnIntrospectionError(str(exc)) from exc
        logger.info("Dataset columns query done")

        columns, state.geometry_column = order_columns(
            introspected,
            options.skipfields,
            need_srs=need_srs,
            geometry_hint=options.gn,
        )
        if cast_to_text:
            state.columns = [f"{q(col.name)}::text" for col in columns]
        else:
            state.columns = [q(col.name) for col in columns]

        if need_srs and state.geometry_column:
            await self._detect_srs(query_runner, state)

        args = self.build_args(state, out_format, options, extra_args)

        logger.info(f"Executing {self.ogr2ogr_command} command")
        await self.process_runner.run(self.ogr2ogr_command, args, timeout_ms)
        return out_path

    async def _detect_srs(self, query_runner: QueryRunner, state: GenerationState) -> None:
        qgeocol = query_runner.quote_identifier(state.geometry_column)
        sridsql = (
            f"SELECT ST_Srid({qgeocol}) as srid, GeometryType({qgeocol}) as type "
            f"FROM ({state.sql}) as {SUBQUERY_ALIAS} "
            f"WHERE {qgeocol} is not null limit 1"
        )
        try:
            row = await query_runner.fetch_one(sridsql)
        except Exception as exc:
            raise SpatialReferenceError(str(exc)) from exc

        if row is None:
            # srid and geometry type are optional when there are no rows
            logger.info(f"No non-null {state.geometry_column} found; exporting without SRS")
            return
        state.srid = row.get("srid")
        state.geometry_type = row.get("type")

    @staticmethod
    def build_args(
        state: GenerationState,
        out_format: str,
        options: ExportOptions,
        extra_args: Sequence[str] = (),
    ) -> List[str]:
        ogrsql = f"SELECT {','.join(state.columns)} FROM ({state.sql}) as {SUBQUERY_ALIAS}"

        args = [
            "-f", out_format,
            "-lco", "RESIZE=YES",
            "-lco", "ENCODING=UTF-8",
            "-lco", "STRING_QUOTING=IF_NEEDED",
            "-lco", "LINEFORMAT=CRLF",
            state.out_path,
            options.dbopts.to_ogr_dsn(),
            "-sql", ogrsql,
        ]
        if state.srid:
            args.extend(["-a_srs", f"EPSG:{state.srid}"])
        if state.geometry_type:
            args.extend(["-nlt", state.geometry_type])
        args.extend(extra_args)
        args.extend(["-nln", options.filename])
        return args
