"""
Shared route dependencies — the process-wide record store, tenant resolution
and file responses.
"""

import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from fastapi import Depends, Header, HTTPException, Query
from fastapi.responses import Response

from core.errors import RenderError
from core.store import RecordStore

logger = logging.getLogger(__name__)

# In-memory record store shared by every request.
store = RecordStore()

PDF = "application/pdf"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ZIP = "application/zip"


def get_store() -> RecordStore:
    return store


def resolve_school(
    school_id: Optional[str] = Query(None),
    school_code: Optional[str] = Query(None),
    x_school_id: Optional[str] = Header(None),
    records: RecordStore = Depends(get_store),
) -> Dict[str, Any]:
    """The school every request is scoped to, from the query or the X-School-Id header."""
    school_id = school_id or x_school_id
    if not school_id and not school_code:
        raise HTTPException(400, "Provide school_id or school_code.")
    school = records.get_school(school_id=school_id, school_code=school_code)
    if not school:
        raise HTTPException(404, "School not found")
    return school


def check_format(fmt: Optional[str], allowed=("json", "pdf"), default: str = "json") -> str:
    fmt = (fmt or default).strip().lower()
    if fmt not in allowed:
        raise HTTPException(400, f"Unsupported format '{fmt}'. Use one of: {', '.join(allowed)}")
    return fmt


def render(fn: Callable[..., bytes], *args, what: str = "PDF") -> bytes:
    """Call a renderer; any failure is logged and becomes a 500."""
    try:
        return fn(*args)
    except Exception as exc:
        logger.exception("[%s Generation Error] %s", what, fn.__name__)
        raise RenderError(f"Failed to generate {what}") from exc


def file_response(content: bytes, filename: str, media_type: str = PDF) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={
            "Content-Disposition": f"attachment; filename=\"{filename}\"; filename*=UTF-8''{quote(filename)}",
        },
    )
