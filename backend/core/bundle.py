"""
bundle.py — Every pathway broadsheet of a grade in one go.

Pathways render concurrently on a bounded thread pool. A pathway that fails
is logged and reported; the others still make it into the bundle.
"""

import io
import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Optional

from core.broadsheet import PATHWAYS, generate_broadsheet, parse_grade_name, safe_filename_token
from core.config import BUNDLE_MAX_WORKERS
from core.errors import ValidationError
from core.exam_scope import validate_exam
from core.marks import parse_year
from core.report_builder import generate_broadsheet_pdf
from core.store import RecordStore

logger = logging.getLogger(__name__)


def bundle_member_name(grade_name: str, term: str, year: Any, pathway: str) -> str:
    return (
        f"Broadsheet_Grade_{parse_grade_name(grade_name)}_{safe_filename_token(term)}_"
        f"{safe_filename_token(year)}_{safe_filename_token(pathway)}.pdf"
    )


def generate_broadsheet_bundle(
    store: RecordStore,
    school: Dict[str, Any],
    grade_name: str,
    term: str,
    exam: str,
    year: Any,
    render: Callable[[Dict[str, Any]], bytes] = generate_broadsheet_pdf,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Render all pathway broadsheets for a grade.

    Returns `{"files": {filename: pdf bytes}, "failures": {pathway: message}}`.
    """
    if not grade_name or not term or not exam or not year:
        raise ValidationError("Missing required parameters: gradeName, term, exam, and year are required")
    year = parse_year(year)
    validate_exam(exam, term, year, store.recorded_exams(school["id"], term, year))

    def build(pathway: str) -> bytes:
        payload = generate_broadsheet(store, school, term, exam, year, pathway, grade_name=grade_name)
        return render(payload)

    files: Dict[str, bytes] = {}
    failures: Dict[str, str] = {}
    workers = min(max_workers or BUNDLE_MAX_WORKERS, len(PATHWAYS))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(build, pathway): pathway for pathway in PATHWAYS}
        for future in as_completed(futures):
            pathway = futures[future]
            try:
                pdf = future.result()
            except Exception as exc:
                logger.exception("Failed to generate broadsheet for '%s'", pathway)
                failures[pathway] = str(exc)
                continue
            logger.info("Broadsheet for '%s' added to bundle", pathway)
            files[pathway] = pdf

    ordered = {
        bundle_member_name(grade_name, term, year, p): files[p]
        for p in PATHWAYS
        if p in files
    }
    return {"files": ordered, "failures": failures}


def zip_bundle(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()
