"""
Analyze routes — grade distribution, class/grade ranking and learning-area ranking.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from core.broadsheet import safe_filename_token
from core.cbc_grading import get_all_grade_thresholds
from core.distribution import get_grade_distribution
from core.ranking import rank_grade_and_classes, rank_subjects
from core.report_builder import (
    generate_distribution_pdf,
    generate_ranking_pdf,
    generate_subject_ranking_pdf,
)
from core.report_forms import report_metadata
from core.store import RecordStore
from routes.deps import check_format, file_response, get_store, render, resolve_school

router = APIRouter()


def _ranking_metadata(school: dict, term: str, year: int, exam: str, previous_exam: Optional[str] = None) -> dict:
    window = {"examScope": [exam], "previousExam": previous_exam}
    return report_metadata(school, term, year, exam, window)


@router.get("/distribution/{level}/{term}/{year}/{exam}")
def grade_distribution(
    level: str,
    term: str,
    year: int,
    exam: str,
    format: str = "json",
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """CBC band counts per pathway for a class, a grade or the whole school ("all")."""
    fmt = check_format(format)
    result = get_grade_distribution(store, school, level, term, year, exam)
    if fmt == "json":
        return result

    pdf = render(generate_distribution_pdf, result)
    filename = f"Distribution_{safe_filename_token(level)}_{safe_filename_token(term)}_{year}.pdf"
    return file_response(pdf, filename)


@router.get("/ranking/{grade}/{term}/{year}/{exam}")
def class_and_grade_ranking(
    grade: str,
    term: str,
    year: int,
    exam: str,
    format: str = "json",
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """Class and grade rankings; `grade` is a number or "all"."""
    fmt = check_format(format)
    result = rank_grade_and_classes(store, school, grade, term, year, exam)
    if fmt == "json":
        return result

    metadata = _ranking_metadata(school, term, year, exam, result["previousExam"])
    pdf = render(generate_ranking_pdf, result, metadata)
    return file_response(pdf, f"CBC_Ranking_{safe_filename_token(term)}_{year}.pdf")


@router.get("/subject-ranking/{grade}/{term}/{year}/{exam}")
def subject_ranking(
    grade: str,
    term: str,
    year: int,
    exam: str,
    scope: str = "class",
    format: str = "json",
    school: dict = Depends(resolve_school),
    store: RecordStore = Depends(get_store),
):
    """Learning areas ranked within each class against the previous exam."""
    fmt = check_format(format)
    result = rank_subjects(store, school, grade, term, year, exam)
    if fmt == "json":
        return result

    metadata = _ranking_metadata(school, term, year, exam, result["previousExam"])
    pdf = render(generate_subject_ranking_pdf, result["raw"], metadata, scope)
    filename = f"CBC_Subject_Ranking_{safe_filename_token(scope)}_{safe_filename_token(term)}_{year}.pdf"
    return file_response(pdf, filename)


@router.get("/grade-thresholds")
async def grade_thresholds():
    """Return the CBC band scale."""
    return {"thresholds": get_all_grade_thresholds()}
