"""
exam_scope.py — Exam ordering within a term.

A term can hold any number of named exams. Their order comes from the
sequence stamped on each paper configuration when it was created (creation
time breaks ties), never from the calendar.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.errors import ValidationError


def _created_key(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


def ordered_exams(
    configs: Iterable[Dict[str, Any]],
    term: str,
    year: int,
    school_id: str,
) -> List[str]:
    """Distinct exam names configured for a term/year/school in sequence order."""
    rows = [
        c for c in configs
        if c.get("term") == term
        and int(c.get("year") or 0) == int(year)
        and c.get("school") == school_id
    ]
    rows.sort(key=lambda c: (c.get("sequence") or 0, _created_key(c.get("createdAt"))))

    names: List[str] = []
    for c in rows:
        exam = c.get("exam")
        if exam not in names:
            names.append(exam)
    return names


def get_exam_scope(exam: str, exam_order: List[str]) -> List[str]:
    """All exams up to and including `exam`; just `[exam]` if it is not configured."""
    if not exam_order or exam not in exam_order:
        return [exam]
    return exam_order[: exam_order.index(exam) + 1]


def get_previous_exam(exam: str, exam_order: List[str]) -> Optional[str]:
    """The exam sitting immediately before `exam`, or None for the first/unknown exam."""
    if not exam_order or exam not in exam_order:
        return None
    idx = exam_order.index(exam)
    return exam_order[idx - 1] if idx > 0 else None


def resolve_exam_window(
    configs: Iterable[Dict[str, Any]],
    exam: str,
    term: str,
    year: int,
    school_id: str,
) -> Dict[str, Any]:
    """Scope and previous exam for `exam` in one pass over the configs."""
    order = ordered_exams(configs, term, year, school_id)
    return {
        "examOrder": order,
        "examScope": get_exam_scope(exam, order),
        "previousExam": get_previous_exam(exam, order),
    }


def validate_exam(exam: str, term: str, year: int, valid_exams: Iterable[str]) -> None:
    """Reject an exam that has no recorded assessments for the term/year."""
    valid = sorted(set(valid_exams))
    if exam not in valid:
        raise ValidationError(
            f"Exam '{exam}' not recognized for {term} {year}. "
            f"Valid exams: {', '.join(valid)}"
        )
