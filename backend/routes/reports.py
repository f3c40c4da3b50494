"""
Report routes — report forms, broadsheets and the broadsheet bundle.

Each endpoint returns JSON or the rendered document for the same parameters.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from core.broadsheet import broadsheet_filename, generate_broadsheet, safe_filename_token
from core.bundle import generate_broadsheet_bundle, zip_bundle
from core.report_builder import (
    generate_broadsheet_excel,
    generate_broadsheet_pdf,
    generate_report_forms_pdf,
)
from core.report_forms import generate_report_forms
from core.store import RecordStore
from routes.deps import XLSX, ZIP, check_format, file_response, get_store, render, resolve_school

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/report-forms")
def report_forms(
    term: str = "",
    year: Optional[int] = None,
    exam: str = "",
    admNo: Optional[str] = None,
    className: Optional[str] = None,
    format: str = "json",
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """Report forms for one student (admNo) or a whole class (className)."""
    fmt = check_format(format)
    result = generate_report_forms(store, school, term, year, exam, adm_no=admNo, class_name=className)
    if fmt == "json":
        return result

    forms = result["reportForms"]
    if not forms:
        raise HTTPException(404, "No report forms found for this class")
    pdf = render(generate_report_forms_pdf, forms, result["metadata"])
    if admNo:
        filename = f"{safe_filename_token(admNo)}_reportform.pdf"
    else:
        filename = f"{safe_filename_token(className)}_reportforms.pdf"
    return file_response(pdf, filename)


@router.get("/broadsheet")
def broadsheet(
    term: str = "",
    exam: str = "",
    year: Optional[int] = None,
    pathway: str = "",
    className: Optional[str] = None,
    gradeName: Optional[str] = None,
    format: str = "pdf",
    requestedBy: Optional[str] = None,
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """Pathway broadsheet for a class or grade. Defaults to PDF."""
    fmt = check_format(format, allowed=("json", "pdf", "xlsx"), default="pdf")
    payload = generate_broadsheet(
        store, school, term, exam, year, pathway,
        class_name=className, grade_name=gradeName, requested_by=requestedBy,
    )
    if fmt == "json":
        return payload

    if fmt == "xlsx":
        content = render(generate_broadsheet_excel, payload, what="Excel")
        filename = broadsheet_filename(payload["classLabel"], term, payload["year"], payload["pathway"], ext="xlsx")
        return file_response(content, filename, media_type=XLSX)

    content = render(generate_broadsheet_pdf, payload)
    filename = broadsheet_filename(payload["classLabel"], term, payload["year"], payload["pathway"])
    logger.info("[PDF] Sending file: %s", filename)
    return file_response(content, filename)


@router.get("/broadsheet/bundle")
def broadsheet_bundle(
    gradeName: str = "",
    term: str = "",
    exam: str = "",
    year: Optional[int] = None,
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """Zip of every pathway broadsheet for a grade; failed pathways are listed in a header."""
    result = generate_broadsheet_bundle(store, school, gradeName, term, exam, year)
    if not result["files"]:
        raise HTTPException(500, "Error generating broadsheet bundle")

    filename = f"Broadsheets_{safe_filename_token(gradeName)}_{safe_filename_token(term)}_{year}.zip"
    response = file_response(zip_bundle(result["files"]), filename, media_type=ZIP)
    if result["failures"]:
        response.headers["X-Bundle-Failures"] = ", ".join(sorted(result["failures"]))
    return response
