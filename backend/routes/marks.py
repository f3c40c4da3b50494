"""
Marks routes — bulk mark entry, bulk update and raw assessment reads.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from core.marks import enter_marks, fetch_assessments, get_assessment_by_adm_no, update_marks
from core.store import RecordStore
from routes.deps import get_store, resolve_school

router = APIRouter()


@router.post("/marks")
async def submit_marks(payload: dict, school: dict = Depends(resolve_school), store: RecordStore = Depends(get_store)):
    """Enter marks for a class; set allowUpdate to overwrite existing entries."""
    return enter_marks(
        store,
        school,
        term=payload.get("term"),
        exam=payload.get("exam"),
        year=payload.get("year"),
        marks=payload.get("marks"),
        class_id=payload.get("classId"),
        class_name=payload.get("className"),
        subject_id=payload.get("subjectId"),
        subject_name=payload.get("subjectName"),
        allow_update=bool(payload.get("allowUpdate", False)),
        recorded_by=payload.get("recordedBy"),
    )


@router.put("/marks")
async def bulk_update_marks(payload: dict, school: dict = Depends(resolve_school), store: RecordStore = Depends(get_store)):
    """Rewrite existing assessments only."""
    return update_marks(
        store,
        school,
        subject_name=payload.get("subjectName"),
        term=payload.get("term"),
        exam=payload.get("exam"),
        year=payload.get("year"),
        updates=payload.get("updates"),
    )


@router.get("/marks")
async def list_marks(
    term: str,
    exam: str,
    year: int,
    className: Optional[str] = None,
    classId: Optional[str] = None,
    subjectName: Optional[str] = None,
    subjectId: Optional[str] = None,
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    rows = fetch_assessments(
        store, school, term, exam, year,
        class_id=classId, class_name=className,
        subject_id=subjectId, subject_name=subjectName,
    )
    if not rows:
        raise HTTPException(404, "No assessments found for this setup")
    return rows


@router.get("/student/{adm_no}/{subject_name}")
async def student_assessment(
    adm_no: str,
    subject_name: str,
    term: Optional[str] = None,
    exam: Optional[str] = None,
    year: Optional[int] = None,
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """One student's papers in a subject, with the plain per-paper mean."""
    return get_assessment_by_adm_no(store, school, adm_no, subject_name, term, exam, year)
