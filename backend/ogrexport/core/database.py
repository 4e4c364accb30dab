"""
Database Access
===============

SQLAlchemy async engines for the export pipeline's introspection queries.

Exports run against whatever database the caller names, so engines are
created lazily per distinct ConnectionParams and reused. Queries go through
`exec_driver_sql` so that user SQL is passed to the driver untouched (no
bind-parameter parsing of `:name` fragments).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from ogrexport.core.config import settings
from ogrexport.schemas.ogr_export import ConnectionParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type_name: str


class QueryRunner(Protocol):
    """What the generation task needs from the database."""

    async def fetch_columns(self, sql: str) -> List[ColumnInfo]: ...

    async def fetch_one(self, sql: str) -> Optional[Dict[str, Any]]: ...

    def quote_identifier(self, name: str) -> str: ...


_engines: Dict[ConnectionParams, AsyncEngine] = {}


def get_engine(params: ConnectionParams) -> AsyncEngine:
    """Return the cached engine for `params`, creating it on first use."""
    engine = _engines.get(params)
    if engine is None:
        url = URL.create(
            "postgresql+asyncpg",
            username=params.user,
            password=params.password or None,
            host=params.host,
            port=params.port,
            database=params.dbname,
        )
        # Pooled asyncpg connections outlive per-test event loops.
        engine_kwargs: Dict[str, Any] = dict(echo=settings.DEBUG, pool_pre_ping=True)
        if settings.is_test:
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_size"] = 5
            engine_kwargs["max_overflow"] = 10
        engine = create_async_engine(url, **engine_kwargs)
        _engines[params] = engine
        logger.info(f"Created engine for {params.user}@{params.host}:{params.port}/{params.dbname}")
    return engine


async def dispose_engines() -> None:
    """Dispose every cached engine (application shutdown)."""
    engines = list(_engines.values())
    _engines.clear()
    for engine in engines:
        await engine.dispose()


class PostgresQueryRunner:
    """QueryRunner backed by a SQLAlchemy async engine."""

    def __init__(self, params: ConnectionParams, engine: Optional[AsyncEngine] = None):
        self.params = params
        self.engine = engine or get_engine(params)
        self._type_names: Dict[int, str] = {}

    async def fetch_columns(self, sql: str) -> List[ColumnInfo]:
        """
        Run `sql` and describe its output columns.

        The cursor description only carries type OIDs; extension types such
        as `geometry` have installation-specific OIDs, so names are resolved
        through pg_type.
        """
        async with self.engine.connect() as conn:
            result = await conn.exec_driver_sql(sql)
            description = list(result.cursor.description or [])
            result.close()

            oids = {int(col[1]) for col in description if col[1] is not None}
            missing = sorted(oids - set(self._type_names))
            if missing:
                placeholders = ", ".join(str(oid) for oid in missing)
                rows = await conn.exec_driver_sql(
                    f"SELECT oid, typname FROM pg_catalog.pg_type WHERE oid IN ({placeholders})"
                )
                for oid, typname in rows.all():
                    self._type_names[int(oid)] = str(typname)

        return [
            ColumnInfo(
                name=col[0],
                type_name=self._type_names.get(int(col[1]), "unknown") if col[1] is not None else "unknown",
            )
            for col in description
        ]

    async def fetch_one(self, sql: str) -> Optional[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.exec_driver_sql(sql)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    def quote_identifier(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(name)
