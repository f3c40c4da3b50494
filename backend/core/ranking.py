"""
ranking.py — Class, grade and learning-area rankings for one exam.

Class and grade rankings reuse the general-pathway broadsheet means and use
strict positions (ties do not share a position). Learning-area ranking uses
the plain per-paper mean of each assessment and compares it with the exam
sitting immediately before.
"""

import logging
from typing import Any, Dict, List, Optional

from core.broadsheet import GENERAL, build_broadsheet, subjects_with_pathways
from core.cbc_grading import get_grade_color, get_grade_remark
from core.errors import ValidationError
from core.exam_scope import get_previous_exam, validate_exam
from core.marks import parse_year
from core.scoring import paper_mean
from core.store import RecordStore

logger = logging.getLogger(__name__)

RANKED_GRADES = [10, 11, 12]


def _mean2(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


def deviation_fields(mean: float, previous_mean: Optional[float]) -> Dict[str, Any]:
    deviation = round(mean - previous_mean, 2) if previous_mean is not None else None
    if deviation is None:
        color = "gray"
    else:
        color = "green" if deviation >= 0 else "red"
    return {"previousMean": previous_mean, "deviation": deviation, "deviationColor": color}


def assign_positions(rows: List[Dict[str, Any]], key: str = "mean", field: str = "position") -> List[Dict[str, Any]]:
    """Sort descending by `key` (stable) and number 1, 2, 3... with no shared positions."""
    rows.sort(key=lambda r: r[key], reverse=True)
    for idx, row in enumerate(rows, start=1):
        row[field] = idx
    return rows


# ── Student profiles ────────────────────────────────────────────────

def compute_student_profiles(
    store: RecordStore,
    school_id: str,
    term: str,
    exam: str,
    year: int,
    grades: Optional[List[int]] = None,
) -> List[Dict[str, Any]]:
    """General-pathway broadsheet means for every student with at least one score."""
    classes = store.classes(school_id, grades=grades or RANKED_GRADES)
    class_names = {c["id"]: c.get("name") for c in classes}
    if not class_names:
        return []

    subjects = subjects_with_pathways(store, school_id)
    students = store.students(school_id, class_ids=class_names.keys())
    students_by_id = {s["id"]: s for s in students}
    subjects_by_id = {s["id"]: s for s in subjects}

    assessments = []
    for a in store.assessments(school_id, class_ids=class_names.keys(), term=term, year=year, exams=[exam]):
        student = students_by_id.get(a["student"])
        subject = subjects_by_id.get(a["subject"])
        if student and subject:
            assessments.append({
                "admNo": student["admNo"],
                "subjectName": subject["name"],
                "scoringStrategy": subject.get("scoringStrategy"),
                "papers": a.get("papers") or [],
            })

    _, rows = build_broadsheet(students, subjects, assessments, GENERAL, class_names)
    profiles: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        if row["meanScore"] is None or row["admNo"] in profiles:
            continue
        profiles[row["admNo"]] = {
            "admNo": row["admNo"],
            "name": row["name"],
            "class": row["class"],
            "meanScore": row["meanScore"],
        }
    return list(profiles.values())


# ── Class and grade ranking ─────────────────────────────────────────

def class_means(profiles: List[Dict[str, Any]], class_names: List[str]) -> Dict[str, Dict[str, Any]]:
    """Per class: number of ranked students and their mean (2 dp, 0 when empty)."""
    out = {}
    for name in class_names:
        scores = [p["meanScore"] for p in profiles if p["class"] == name]
        out[name] = {"entry": len(scores), "mean": _mean2(scores) or 0}
    return out


def rank_classes(
    classes: List[Dict[str, Any]],
    profiles: List[Dict[str, Any]],
    previous_profiles: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    names = [c["name"] for c in classes]
    current = class_means(profiles, names)
    previous = class_means(previous_profiles, names) if previous_profiles is not None else {}

    rows = []
    for c in classes:
        stats = current[c["name"]]
        band = get_grade_remark(stats["mean"])["grade"]
        prev = previous.get(c["name"])
        prev_mean = prev["mean"] if prev and prev["entry"] else None
        rows.append({
            "grade": c.get("grade"),
            "class": c["name"],
            "entry": stats["entry"],
            "mean": stats["mean"],
            "gradeLabel": band,
            **deviation_fields(stats["mean"], prev_mean),
            "color": get_grade_color(band),
        })
    return assign_positions(rows)


def _grade_mean(classes: List[Dict[str, Any]], means: Dict[str, Dict[str, Any]], grade: int) -> float:
    values = [means[c["name"]]["mean"] for c in classes if c.get("grade") == grade]
    return _mean2(values) or 0


def _grade_has_entries(classes: List[Dict[str, Any]], means: Dict[str, Dict[str, Any]], grade: int) -> bool:
    return any(means[c["name"]]["entry"] for c in classes if c.get("grade") == grade)


def rank_grades(
    classes: List[Dict[str, Any]],
    profiles: List[Dict[str, Any]],
    intake: Dict[int, int],
    previous_profiles: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """Grade rows: mean of class means; `entry` is the active intake, not the ranked count."""
    names = [c["name"] for c in classes]
    current = class_means(profiles, names)
    previous = class_means(previous_profiles, names) if previous_profiles is not None else None

    grades: List[int] = []
    for c in classes:
        if c.get("grade") not in grades:
            grades.append(c.get("grade"))

    rows = []
    for grade in grades:
        mean = _grade_mean(classes, current, grade)
        prev_mean = None
        if previous is not None and _grade_has_entries(classes, previous, grade):
            prev_mean = _grade_mean(classes, previous, grade)
        band = get_grade_remark(mean)["grade"]
        rows.append({
            "grade": int(grade),
            "entry": intake.get(int(grade), 0),
            "mean": mean,
            "gradeLabel": band,
            **deviation_fields(mean, prev_mean),
            "color": get_grade_color(band),
        })
    return assign_positions(rows)


def previous_recorded_exam(store: RecordStore, school_id: str, exam: str, term: str, year: int, valid_exams: List[str]) -> Optional[str]:
    previous = get_previous_exam(exam, store.exam_order(school_id, term, year))
    return previous if previous and previous in valid_exams else None


def rank_grade_and_classes(
    store: RecordStore,
    school: Dict[str, Any],
    grade: Any,
    term: str,
    year: Any,
    exam: str,
) -> Dict[str, Any]:
    """Class and grade rankings for one grade, or grades 10-12 with `grade="all"`."""
    school_id = school["id"]
    year = parse_year(year)
    valid_exams = store.recorded_exams(school_id, term, year)
    validate_exam(exam, term, year, valid_exams)

    if str(grade).strip().lower() == "all":
        grades = RANKED_GRADES
    else:
        try:
            grades = [int(str(grade).strip())]
        except ValueError:
            raise ValidationError(f"Invalid grade '{grade}'")

    classes = store.classes(school_id, grades=grades)
    profiles = compute_student_profiles(store, school_id, term, exam, year, grades=grades)

    previous_exam = previous_recorded_exam(store, school_id, exam, term, year, valid_exams)
    previous_profiles = None
    if previous_exam:
        previous_profiles = compute_student_profiles(store, school_id, term, previous_exam, year, grades=grades)

    intake = store.active_intake(school_id, grades)
    return {
        "previousExam": previous_exam,
        "classRanking": rank_classes(classes, profiles, previous_profiles),
        "gradeRanking": rank_grades(classes, profiles, intake, previous_profiles),
    }


# ── Learning-area ranking ───────────────────────────────────────────

def build_subject_ranking(
    entries: List[Dict[str, Any]],
    exam: str,
    previous_exam: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Rank learning areas per class.

    `entries` rows carry `class`, `group`, `subject`, `exam` and `papers`.
    `rank` is within (class, group); `overallRank` within the class.
    """
    grouped: Dict[str, Dict[str, Dict[str, Dict[str, List[float]]]]] = {}
    for e in entries:
        mean = paper_mean(e.get("papers") or [])
        if mean is None:
            continue
        bucket = (
            grouped.setdefault(e["class"], {})
            .setdefault(e["group"], {})
            .setdefault(e["subject"], {"current": [], "previous": []})
        )
        if e["exam"] == exam:
            bucket["current"].append(round(mean, 2))
        elif previous_exam and e["exam"] == previous_exam:
            bucket["previous"].append(round(mean, 2))

    ranking: List[Dict[str, Any]] = []
    for class_name, groups in grouped.items():
        class_rows = []
        for group, subjects in groups.items():
            rows = []
            for learning_area, values in subjects.items():
                mean = _mean2(values["current"]) or 0
                prev_mean = _mean2(values["previous"])
                deviation = deviation_fields(mean, prev_mean)
                rows.append({
                    "class": class_name,
                    "pathway": group,
                    "learningArea": learning_area,
                    "entry": len(values["current"]),
                    "mean": mean,
                    "previousMean": prev_mean,
                    "deviation": deviation["deviation"],
                    "color": deviation["deviationColor"],
                })
            assign_positions(rows, field="rank")
            ranking.extend(rows)
            class_rows.extend(rows)
        assign_positions(list(class_rows), field="overallRank")
    return ranking


def rank_subjects(
    store: RecordStore,
    school: Dict[str, Any],
    grade: Any,
    term: str,
    year: Any,
    exam: str,
) -> Dict[str, Any]:
    school_id = school["id"]
    year = parse_year(year)
    valid_exams = store.recorded_exams(school_id, term, year)
    validate_exam(exam, term, year, valid_exams)
    try:
        grade = int(str(grade).strip())
    except ValueError:
        raise ValidationError(f"Invalid grade '{grade}'")

    previous_exam = previous_recorded_exam(store, school_id, exam, term, year, valid_exams)
    exams = [exam, previous_exam] if previous_exam else [exam]

    class_names = {c["id"]: c.get("name") for c in store.classes(school_id, grades=[grade])}
    student_class = {
        s["id"]: class_names.get(s.get("class"))
        for s in store.students(school_id, class_ids=class_names.keys())
    }
    subjects = {s["id"]: s for s in store.subjects(school_id)}

    entries = []
    for a in store.assessments(school_id, term=term, year=year, exams=exams, student_ids=student_class.keys()):
        class_name = student_class.get(a["student"])
        subject = subjects.get(a["subject"])
        if not class_name or not subject:
            continue
        entries.append({
            "class": class_name,
            "group": subject.get("group"),
            "subject": subject["name"],
            "exam": a["exam"],
            "papers": a.get("papers") or [],
        })

    return {"previousExam": previous_exam, "raw": build_subject_ranking(entries, exam, previous_exam)}
