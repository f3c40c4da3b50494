"""
distribution.py — CBC band distribution per pathway.

Counts students into the eight bands by the rounded mean of their subject
scores for one exam, at class, grade or whole-school level.
"""

import re
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from core.cbc_grading import BAND_NAMES, get_grade_remark, round_half_up
from core.errors import NotFoundError, ValidationError
from core.exam_scope import validate_exam
from core.marks import parse_year
from core.scoring import compute_subject_score
from core.store import RecordStore

MIN_SUBJECTS = 5
CROSS_GRADE = "cross-grade"
GRADE_WIDE = "grade-wide"
CLASS_SPECIFIC = "class-specific"


def _empty_bands() -> Dict[str, int]:
    return {band: 0 for band in BAND_NAMES}


def resolve_mode(level: str) -> Dict[str, Any]:
    """Mode and grade number for a level selector: "all", "Grade 11", "11" or a class name."""
    text = str(level or "").strip()
    if not text:
        raise ValidationError("Missing level")
    if text.lower() == "all":
        return {"mode": CROSS_GRADE, "grade": None}
    if re.fullmatch(r"(?i)grade\s*\d+", text) or re.fullmatch(r"\d+", text):
        return {"mode": GRADE_WIDE, "grade": int(re.search(r"\d+", text).group(0))}
    return {"mode": CLASS_SPECIFIC, "grade": None}


def count_distribution(
    student_scores: Dict[str, List[float]],
    student_info: Dict[str, Dict[str, Any]],
    pathway_names: List[str],
    mode: str,
) -> Dict[str, Any]:
    """
    Tally students into bands.

    `student_info[admNo]` carries `pathwayName` and `grade` (the class grade).
    Students outside the listed pathways or with fewer than five scores are
    left out.
    """
    distribution: Dict[str, Dict[str, Any]] = {p: _empty_bands() for p in pathway_names}
    totals = _empty_bands()

    for adm_no, scores in student_scores.items():
        info = student_info.get(adm_no) or {}
        pathway = info.get("pathwayName")
        if not pathway or pathway not in distribution:
            continue
        if len(scores) < MIN_SUBJECTS:
            continue

        mean = round_half_up(sum(scores) / len(scores))
        band = get_grade_remark(mean)["grade"]
        if band not in totals:
            continue

        if mode == CROSS_GRADE:
            bucket = distribution[pathway].setdefault(f"Grade {info.get('grade')}", _empty_bands())
        else:
            bucket = distribution[pathway]
        bucket[band] += 1
        totals[band] += 1

    return {"distribution": distribution, "totals": totals}


def with_percentages(distribution: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Per-row band percentages (count / row total), 2 dp. Rows with no students are all zero."""
    df = pd.DataFrame(
        {
            pathway: {b: bands.get(b, 0) for b in BAND_NAMES}
            for pathway, bands in _flat_rows(distribution).items()
        }
    ).T
    if df.empty:
        return {}
    row_totals = df.sum(axis=1).replace(0, np.nan)
    pct = df.div(row_totals, axis=0).mul(100).round(2).fillna(0.0)
    return {row: pct.loc[row].to_dict() for row in pct.index}


def _flat_rows(distribution: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    rows = {}
    for pathway, bands in distribution.items():
        rows[pathway] = {b: bands.get(b, 0) for b in BAND_NAMES}
        for key, value in bands.items():
            if isinstance(value, dict):
                rows[f"{pathway} / {key}"] = value
    return rows


def get_grade_distribution(
    store: RecordStore,
    school: Dict[str, Any],
    level: str,
    term: str,
    year: Any,
    exam: str,
) -> Dict[str, Any]:
    school_id = school["id"]
    year = parse_year(year)
    validate_exam(exam, term, year, store.recorded_exams(school_id, term, year))

    pathways = store.pathways(school_id)
    pathway_names = [p["name"] for p in pathways if str(p.get("name") or "").lower() != "compulsory"]
    pathway_by_id = {p["id"]: p.get("name") for p in pathways}

    selector = resolve_mode(level)
    mode = selector["mode"]
    stream: Optional[str] = None
    if mode == CROSS_GRADE:
        class_ids = None
        classes = store.classes(school_id)
    elif mode == GRADE_WIDE:
        classes = store.classes(school_id, grades=[selector["grade"]])
        if not classes:
            raise NotFoundError("No classes found for grade")
        class_ids = [c["id"] for c in classes]
    else:
        cls = store.find_class(school_id, level.strip())
        if not cls:
            raise NotFoundError("Class not found")
        classes = [cls]
        class_ids = [cls["id"]]
        stream = cls.get("stream")

    class_grade = {c["id"]: c.get("grade") for c in classes}
    students = {s["id"]: s for s in store.students(school_id, class_ids=class_ids)}
    subjects = {s["id"]: s for s in store.subjects(school_id)}

    student_scores: Dict[str, List[float]] = {}
    student_info: Dict[str, Dict[str, Any]] = {}
    for a in store.assessments(school_id, class_ids=class_ids, term=term, year=year, exams=[exam]):
        student = students.get(a["student"])
        if not student:
            continue
        subject = subjects.get(a["subject"]) or {}
        score = a.get("computedScore")
        if score is None:
            score = compute_subject_score(a.get("papers") or [], subject.get("name"), strategy=subject.get("scoringStrategy"))
        adm_no = student["admNo"]
        student_scores.setdefault(adm_no, []).append(float(score))
        student_info[adm_no] = {
            "pathwayName": pathway_by_id.get(student.get("pathway")),
            "grade": class_grade.get(student.get("class")),
        }

    counted = count_distribution(student_scores, student_info, pathway_names, mode)
    title = f"CBC Grade Distribution - {level} ({exam}, {term} {year})"
    return {
        "mode": mode,
        "input": level,
        "term": term,
        "year": year,
        "exam": exam,
        "stream": stream,
        "school": {"name": school.get("name"), "logo": school.get("logo")},
        "distribution": counted["distribution"],
        "totals": counted["totals"],
        "percentages": with_percentages(counted["distribution"]),
        "visual": {
            "title": title,
            "type": "stackedBar",
            "pathways": list(counted["distribution"].keys()),
            "gradeBands": BAND_NAMES,
            "data": counted["distribution"],
        },
    }
