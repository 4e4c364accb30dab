"""Export job fingerprints.

Two requests whose fingerprints are equal share one converter run. Free-form
text (layer name, SQL) is hashed so the key stays bounded; the hashes are for
identity only, not security.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional

KEY_SEPARATOR = ":"
MAX_PATH_COMPONENT = 128


def md5_hex(data: str) -> str:
    return hashlib.md5(data.encode("utf-8")).hexdigest()


def build_key(
    format_id: str,
    db_name: str,
    db_user: str,
    geometry_hint: Optional[str],
    layer_name: str,
    sql: str,
    skip_fields: Iterable[str] = (),
) -> str:
    """
    Build the fingerprint of an export.

    Args:
        format_id: Export format id (e.g. "csv", "gpkg")
        db_name: Database the query runs against
        db_user: Database role the query runs as
        geometry_hint: Caller-designated geometry column, if any
        layer_name: Target layer name inside the artifact
        sql: Source query text
        skip_fields: Columns dropped from the output, in caller order

    Returns:
        Colon-separated key; a missing geometry hint is an empty segment.
    """
    parts = [
        format_id,
        db_name,
        db_user,
        geometry_hint or "",
        md5_hex(layer_name),
        md5_hex(sql),
    ]
    parts.extend(skip_fields)
    return KEY_SEPARATOR.join(parts)


def shorten_path(pathname: str) -> str:
    """Return `pathname` if it is short enough, else its SHA-256 hex digest."""
    if len(pathname) < MAX_PATH_COMPONENT:
        return pathname
    return hashlib.sha256(pathname.encode("utf-8")).hexdigest()
