"""
broadsheet.py — Pathway broadsheets for a class or a whole grade.

One row per (student, subject the student takes). Every row is back-filled
with the student's mean, band and dense rank so a renderer can pivot the
rows into a student x subject grid without recomputing anything.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from core.cbc_grading import extract_level, get_grade_remark, round_half_up
from core.config import DEFAULT_SCHOOL_MOTTO
from core.errors import NotFoundError, ValidationError
from core.exam_scope import validate_exam
from core.marks import parse_year
from core.scoring import compute_subject_score
from core.store import RecordStore

logger = logging.getLogger(__name__)

PATHWAYS = ["stem", "arts and sports science", "social sciences", "general"]
GENERAL = "general"
COMPULSORY = "Compulsory"
MISSING = "-"


def normalize_pathway(pathway: Optional[str]) -> str:
    """Lower-cased pathway name; raises ValidationError for unknown pathways."""
    normalized = str(pathway or "").strip().lower()
    if normalized not in PATHWAYS:
        raise ValidationError(f"Invalid pathway '{pathway}'")
    return normalized


def parse_grade_name(grade_name: str) -> int:
    digits = re.sub(r"\D", "", str(grade_name or ""))
    if not digits:
        raise ValidationError(f"Invalid grade name '{grade_name}'")
    return int(digits)


def dense_rank_desc(values: List[float]) -> List[int]:
    """Dense ranks, highest value first: [90, 90, 80] -> [1, 1, 2]."""
    if not values:
        return []
    return [int(r) for r in rankdata(-np.asarray(values, dtype=float), method="dense")]


def subject_label(subject: Dict[str, Any]) -> str:
    return subject.get("shortName") or subject.get("code") or subject.get("name")


# ── Cohort selection ────────────────────────────────────────────────

def select_cohort(
    students: List[Dict[str, Any]],
    subjects: List[Dict[str, Any]],
    pathway: str,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Students and subject columns for a pathway.

    `subjects` rows carry `pathwayName`; they are expected in code order.
    """
    by_id = {s["id"]: s for s in subjects}

    def in_pathway(subject: Optional[Dict[str, Any]]) -> bool:
        return bool(subject) and str(subject.get("pathwayName") or "").lower() == pathway

    if pathway == GENERAL:
        cohort = list(students)
        wanted = {sid for s in students for sid in s.get("selectedSubjects") or []}
        columns = [s for s in subjects if s["id"] in wanted]
    else:
        cohort = [
            s for s in students
            if any(in_pathway(by_id.get(sid)) for sid in s.get("selectedSubjects") or [])
        ]
        columns = [s for s in subjects if s.get("group") == COMPULSORY or in_pathway(s)]
    return cohort, columns


def elective_pathways(student: Dict[str, Any], subjects_by_id: Dict[str, Dict[str, Any]]) -> str:
    """Names of the non-compulsory pathways a student takes subjects from."""
    names: List[str] = []
    for sid in student.get("selectedSubjects") or []:
        subject = subjects_by_id.get(sid)
        if subject and subject.get("group") != COMPULSORY and subject.get("pathwayName"):
            if subject["pathwayName"] not in names:
                names.append(subject["pathwayName"])
    return ", ".join(names) if names else MISSING


# ── Building ────────────────────────────────────────────────────────

def build_broadsheet(
    students: List[Dict[str, Any]],
    subjects: List[Dict[str, Any]],
    assessments: List[Dict[str, Any]],
    pathway: str,
    class_names: Dict[str, str],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Return (subject columns, ranked rows).

    `assessments` rows are flattened to `{admNo, subjectName, papers,
    scoringStrategy}`.
    """
    pathway = normalize_pathway(pathway)
    is_general = pathway == GENERAL
    cohort, columns = select_cohort(students, subjects, pathway)
    subjects_by_id = {s["id"]: s for s in subjects}

    scored = {(a["admNo"], a["subjectName"]): a for a in assessments}
    rows: List[Dict[str, Any]] = []

    for student in cohort:
        selected = set(student.get("selectedSubjects") or [])
        for subject in columns:
            if subject["id"] not in selected:
                continue
            assessment = scored.get((student["admNo"], subject["name"]))
            if assessment:
                score = round_half_up(compute_subject_score(
                    assessment.get("papers") or [], subject["name"],
                    strategy=assessment.get("scoringStrategy") or subject.get("scoringStrategy"),
                ))
                graded = get_grade_remark(score)
            else:
                score = MISSING
                graded = {"grade": None, "remark": "Not Assessed"}
            rows.append({
                "admNo": student["admNo"],
                "name": student.get("name"),
                "class": class_names.get(student.get("class")),
                "pathway": elective_pathways(student, subjects_by_id) if is_general else None,
                "learningArea": subject["name"],
                "score": score,
                "grade": graded["grade"],
                "level": extract_level(graded["grade"]),
                "remark": graded["remark"],
            })

    return columns, rank_rows(rows)


def rank_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Back-fill each row with its student's mean, band and dense rank."""
    if not rows:
        return []

    df = pd.DataFrame(rows)
    df["numeric"] = pd.to_numeric(df["score"].where(df["score"] != MISSING), errors="coerce")
    profile = (
        df.groupby("admNo", sort=False)["numeric"]
        .agg(total="sum", count="count")
    )
    profile = profile[profile["count"] > 0]

    means: Dict[str, int] = {
        adm: round_half_up(row["total"] / row["count"]) for adm, row in profile.iterrows()
    }
    ranks = dict(zip(means.keys(), dense_rank_desc(list(means.values()))))

    filled = []
    for row in rows:
        mean = means.get(row["admNo"])
        if mean is not None:
            graded = get_grade_remark(mean)
        else:
            graded = {"grade": None, "remark": None}
        filled.append({
            **row,
            "meanScore": mean,
            "grade": graded["grade"],
            "remark": graded["remark"],
            "level": extract_level(graded["grade"]),
            "rank": ranks.get(row["admNo"]),
        })

    filled.sort(key=lambda r: (r["rank"] is None, r["rank"] or 0))
    return filled


# ── Orchestration ───────────────────────────────────────────────────

def school_block(school: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": school.get("name"),
        "logo": school.get("logo"),
        "location": school.get("location"),
        "contact": school.get("contact"),
        "email": school.get("email") or "N/A",
        "motto": school.get("motto") or DEFAULT_SCHOOL_MOTTO,
    }


def resolve_cohort_classes(
    store: RecordStore,
    school_id: str,
    class_name: Optional[str] = None,
    grade_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    if class_name:
        cls = store.find_class(school_id, class_name)
        if not cls:
            raise NotFoundError(f"Class '{class_name}' not found")
        return [cls]
    if grade_name:
        grade = parse_grade_name(grade_name)
        classes = store.classes(school_id, grades=[grade])
        if not classes:
            raise NotFoundError(f"No classes found for grade '{grade}'")
        return classes
    raise ValidationError("Provide either className or gradeName")


def subjects_with_pathways(store: RecordStore, school_id: str) -> List[Dict[str, Any]]:
    pathway_names = {p["id"]: p.get("name") for p in store.pathways(school_id)}
    return [
        {**s, "pathwayName": pathway_names.get(s.get("pathway"))}
        for s in store.subjects(school_id)
    ]


def generate_broadsheet(
    store: RecordStore,
    school: Dict[str, Any],
    term: str,
    exam: str,
    year: Any,
    pathway: str,
    class_name: Optional[str] = None,
    grade_name: Optional[str] = None,
    requested_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Broadsheet payload for a class or grade in one pathway."""
    logger.info(
        "Broadsheet requested by %s: pathway=%r term=%r exam=%r year=%r",
        requested_by or "admin", pathway, term, exam, year,
    )
    if not term or not exam or not year or not pathway:
        raise ValidationError("Missing required parameters: term, exam, year, and pathway are required")
    normalized = normalize_pathway(pathway)

    school_id = school["id"]
    year = parse_year(year)
    validate_exam(exam, term, year, store.recorded_exams(school_id, term, year))

    classes = resolve_cohort_classes(store, school_id, class_name, grade_name)
    class_names = {c["id"]: c.get("name") for c in classes}
    subjects = subjects_with_pathways(store, school_id)
    students = store.students(school_id, class_ids=class_names.keys())

    subjects_by_id = {s["id"]: s for s in subjects}
    students_by_id = {s["id"]: s for s in students}
    assessments = []
    for a in store.assessments(school_id, class_ids=class_names.keys(), term=term, year=year, exams=[exam]):
        student = students_by_id.get(a["student"])
        subject = subjects_by_id.get(a["subject"])
        if not student or not subject:
            continue
        assessments.append({
            "admNo": student["admNo"],
            "subjectName": subject["name"],
            "scoringStrategy": subject.get("scoringStrategy"),
            "papers": a.get("papers") or [],
        })

    columns, rows = build_broadsheet(students, subjects, assessments, normalized, class_names)
    return {
        "pathway": normalized.upper(),
        "term": term,
        "year": year,
        "exam": exam,
        "classLabel": class_name or f"Grade {parse_grade_name(grade_name)}",
        "school": school_block(school),
        "subjects": [{"name": s["name"], "code": subject_label(s)} for s in columns],
        "broadsheet": rows,
    }


def safe_filename_token(value: Any) -> str:
    return re.sub(r"[^\w\-]", "", re.sub(r"\s+", "_", str(value).strip()))


def broadsheet_filename(class_label: str, term: str, year: Any, pathway: str, ext: str = "pdf") -> str:
    return (
        f"Broadsheet_{safe_filename_token(class_label)}_{safe_filename_token(term)}_"
        f"{safe_filename_token(year)}_{safe_filename_token(pathway)}.{ext}"
    )
