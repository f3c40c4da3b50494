"""
marks.py — Bulk mark entry and update.

Each submitted row is validated against the paper configuration for the
class's grade, scored, graded and written with a single upsert. Bad rows are
reported next to the good ones; they never fail the whole request.
"""

import logging
from typing import Any, Dict, List, Optional

from core.cbc_grading import get_auto_comment, get_grade_remark, round_half_up
from core.errors import NotFoundError, ValidationError
from core.exam_scope import validate_exam
from core.scoring import compute_subject_score, evaluate_papers
from core.store import RecordStore

logger = logging.getLogger(__name__)


def parse_year(year: Any) -> int:
    try:
        return int(str(year).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid year '{year}'")


def resolve_class(store: RecordStore, school_id: str, class_id: Optional[str] = None, class_name: Optional[str] = None) -> Dict[str, Any]:
    cls = None
    if class_id:
        cls = store.get("classes", class_id)
        if cls and cls.get("school") != school_id:
            cls = None
    elif class_name:
        cls = store.find_class(school_id, class_name)
    if not cls:
        raise NotFoundError(f"Class '{class_name or class_id}' not found")
    return cls


def resolve_subject(store: RecordStore, school_id: str, subject_id: Optional[str] = None, subject_name: Optional[str] = None) -> Dict[str, Any]:
    subject = store.find_subject(school_id, subject_id=subject_id, name=subject_name)
    if not subject:
        raise NotFoundError("Subject not found")
    return subject


def _score_row(evaluated: Dict[str, Any], subject: Dict[str, Any]) -> Dict[str, Any]:
    """Assessment fields derived from an evaluated row."""
    computed = compute_subject_score(
        evaluated["papers"], subject.get("name"), strategy=subject.get("scoringStrategy")
    )
    graded = get_grade_remark(computed)
    return {
        "papers": evaluated["papers"],
        "totalScore": evaluated["totalScore"],
        "totalOutOf": evaluated["totalOutOf"],
        "percentage": evaluated["percentage"],
        "computedScore": round(computed, 2),
        "grade": graded["grade"],
        "comment": get_auto_comment(graded["grade"], graded["remark"]),
        "absentCount": evaluated["absentCount"],
    }


def _result(adm_no: str, name: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "admNo": adm_no,
        "name": name,
        "score": round_half_up(fields["computedScore"]),
        "grade": fields["grade"],
        "remark": fields["comment"],
    }


# ── Entry ───────────────────────────────────────────────────────────

def enter_marks(
    store: RecordStore,
    school: Dict[str, Any],
    term: str,
    exam: str,
    year: Any,
    marks: List[Dict[str, Any]],
    class_id: Optional[str] = None,
    class_name: Optional[str] = None,
    subject_id: Optional[str] = None,
    subject_name: Optional[str] = None,
    allow_update: bool = False,
    recorded_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Record marks for many students of one class in one subject and exam."""
    if (
        not (class_id or class_name)
        or not (subject_id or subject_name)
        or not term
        or not exam
        or not year
        or not isinstance(marks, list)
    ):
        raise ValidationError("Missing required fields or invalid marks format")

    school_id = school["id"]
    year = parse_year(year)
    cls = resolve_class(store, school_id, class_id, class_name)
    subject = resolve_subject(store, school_id, subject_id, subject_name)

    class_students = store.students(school_id, class_ids=[cls["id"]])
    if not class_students:
        raise NotFoundError("No students found in class")
    grade = class_students[0].get("currentGrade") or cls.get("grade")

    config = store.find_paper_config(school_id, subject["id"], grade, term, exam, year)
    if not config:
        raise ValidationError("Paper configuration not found for this setup")

    students = store.students_by_adm_no(school_id, [m.get("admNo") for m in marks if isinstance(m, dict)])
    results, actions, errors = [], [], []

    for entry in marks:
        adm_no = entry.get("admNo") if isinstance(entry, dict) else None
        papers = entry.get("papers") if isinstance(entry, dict) else None
        if not adm_no or not isinstance(papers, list):
            errors.append({"admNo": adm_no, "message": "Missing papers or admNo"})
            continue
        if not all(isinstance(p, dict) for p in papers):
            errors.append({"admNo": adm_no, "message": "Invalid papers format"})
            continue

        student = students.get(str(adm_no).strip().upper())
        if not student:
            errors.append({"admNo": adm_no, "message": "Student not found"})
            continue

        evaluated = evaluate_papers(papers, config["papers"], adm_no=adm_no)
        if not evaluated["papers"] or evaluated["errors"]:
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "Invalid or missing scores"})
            errors.extend(evaluated["errors"])
            continue

        fields = _score_row(evaluated, subject)
        fields["recordedBy"] = recorded_by
        key = {
            "student": student["id"],
            "class": cls["id"],
            "subject": subject["id"],
            "term": term,
            "exam": exam,
            "year": year,
            "school": school_id,
        }
        action, _ = store.upsert_assessment(key, fields, allow_update=allow_update)

        if action == "exists":
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "Existing entry — update not allowed"})
            continue

        result = _result(adm_no, student.get("name"), fields)
        actions.append({"action": action, **{k: result[k] for k in ("admNo", "score", "grade", "remark")}})
        results.append(result)

    logger.info(
        "Mark entry %s/%s %s %s %s: %d written, %d errors",
        cls["name"], subject["name"], term, exam, year, len(results), len(errors),
    )
    return {
        "message": "Mark entry completed",
        "className": cls["name"],
        "learningArea": subject["name"],
        "code": subject.get("code"),
        "exam": exam,
        "term": term,
        "year": year,
        "count": len(results),
        "results": results,
        "actions": actions,
        "errors": errors,
    }


# ── Update ──────────────────────────────────────────────────────────

def update_marks(
    store: RecordStore,
    school: Dict[str, Any],
    subject_name: str,
    term: str,
    exam: str,
    year: Any,
    updates: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Rewrite existing assessments; never creates new ones."""
    if not subject_name or not term or not exam or not year or not isinstance(updates, list) or not updates:
        raise ValidationError("Missing required fields or invalid updates format")

    school_id = school["id"]
    year = parse_year(year)
    subject = resolve_subject(store, school_id, subject_name=subject_name)
    validate_exam(exam, term, year, store.recorded_exams(school_id, term, year))

    students = store.students_by_adm_no(school_id, [u.get("admNo") for u in updates if isinstance(u, dict)])
    existing = {
        a["student"]: a
        for a in store.assessments(school_id, term=term, year=year, exams=[exam], subject_id=subject["id"])
    }
    results, actions, errors = [], [], []

    for entry in updates:
        adm_no = entry.get("admNo") if isinstance(entry, dict) else None
        papers = entry.get("papers") if isinstance(entry, dict) else None
        if not adm_no or not isinstance(papers, list):
            errors.append({"admNo": adm_no, "message": "Missing admNo or papers array"})
            continue
        if not all(isinstance(p, dict) for p in papers):
            errors.append({"admNo": adm_no, "message": "Invalid papers format"})
            continue

        student = students.get(str(adm_no).strip().upper())
        if not student:
            errors.append({"admNo": adm_no, "message": "Student not found"})
            continue

        assessment = existing.get(student["id"])
        if not assessment:
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "Assessment not found"})
            continue

        cls = store.get("classes", student.get("class")) or {}
        grade = student.get("currentGrade") or cls.get("grade")
        config = store.find_paper_config(school_id, subject["id"], grade, term, exam, year)
        if not config:
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "PaperConfig not found"})
            continue

        evaluated = evaluate_papers(papers, config["papers"], adm_no=adm_no)
        if not evaluated["papers"] or evaluated["errors"]:
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "Invalid or missing scores"})
            errors.extend(evaluated["errors"])
            continue

        fields = _score_row(evaluated, subject)
        action, _ = store.upsert_assessment(assessment, fields, allow_insert=False)
        if action == "missing":
            actions.append({"admNo": adm_no, "action": "skipped", "reason": "Assessment not found"})
            continue

        result = _result(adm_no, student.get("name"), fields)
        results.append(result)
        actions.append({"action": "updated", **{k: result[k] for k in ("admNo", "score", "grade", "remark")}})

    return {
        "message": "Bulk mark update completed",
        "subject": subject["name"],
        "term": term,
        "exam": exam,
        "year": year,
        "count": len(results),
        "results": results,
        "actions": actions,
        "errors": errors,
    }


# ── Reads ───────────────────────────────────────────────────────────

def fetch_assessments(
    store: RecordStore,
    school: Dict[str, Any],
    term: str,
    exam: str,
    year: Any,
    class_id: Optional[str] = None,
    class_name: Optional[str] = None,
    subject_id: Optional[str] = None,
    subject_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Submitted papers of every student in a class for one subject and exam."""
    if not term or not exam or not year or not (class_id or class_name) or not (subject_id or subject_name):
        raise ValidationError("Missing required query parameters")

    school_id = school["id"]
    try:
        cls = resolve_class(store, school_id, class_id, class_name)
        subject = resolve_subject(store, school_id, subject_id, subject_name)
    except NotFoundError:
        raise NotFoundError("Subject or Class not found")

    rows = store.assessments(
        school_id, class_ids=[cls["id"]], term=term, year=parse_year(year),
        exams=[exam], subject_id=subject["id"],
    )
    out = []
    for a in rows:
        student = store.get("students", a["student"]) or {}
        out.append({
            "admNo": student.get("admNo"),
            "name": student.get("name"),
            "papers": [
                {"paperNo": p["paperNo"], "score": p["score"], "total": p["total"]}
                for p in a.get("papers", [])
            ],
        })
    return sorted(out, key=lambda r: str(r["admNo"] or ""))


def get_assessment_by_adm_no(
    store: RecordStore,
    school: Dict[str, Any],
    adm_no: str,
    subject_name: str,
    term: str,
    exam: str,
    year: Any,
) -> Dict[str, Any]:
    """One student's raw papers for a subject, with the plain per-paper mean."""
    if not term or not exam or not year:
        raise ValidationError("Missing term, exam, or year in query")

    school_id = school["id"]
    year = parse_year(year)
    validate_exam(exam, term, year, store.recorded_exams(school_id, term, year))

    student = store.student_by_adm_no(school_id, adm_no)
    if not student:
        raise NotFoundError("Student not found")
    subject = resolve_subject(store, school_id, subject_name=subject_name.strip())
    cls = store.get("classes", student.get("class")) or {}

    assessment = store.find_assessment({
        "student": student["id"],
        "class": student.get("class"),
        "subject": subject["id"],
        "term": term,
        "exam": exam,
        "year": year,
        "school": school_id,
    })
    if not assessment:
        raise NotFoundError("Assessment not found for this setup")

    papers = assessment.get("papers") or []
    mean = sum(p["score"] for p in papers) / len(papers) if papers else None
    return {
        "student": {
            "name": student.get("name"),
            "admNo": student.get("admNo"),
            "class": cls.get("name"),
            "grade": student.get("currentGrade"),
        },
        "learningArea": subject["name"],
        "pathway": subject.get("group"),
        "assessment": {
            "entry": len(papers),
            "mean": round(mean, 2) if mean is not None else None,
            "papers": papers,
        },
        "context": {"term": term, "exam": exam, "year": year},
    }
