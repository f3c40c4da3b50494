"""
report_forms.py — End-of-exam report forms for one student or a whole class.

For every student: per-subject scores across the exam scope, the mean over
subjects, band/level/comments, a three-grade by three-term summary table and
a strict class position by mean score.
"""

import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.cbc_grading import (
    SUMMARY_GRADES,
    TERM_ORDER,
    extract_level,
    get_auto_comment,
    get_grade_remark,
    round_half_up,
)
from core.config import DEFAULT_SCHOOL_LOGO, DEFAULT_SCHOOL_MOTTO, VERIFY_BASE_URL
from core.errors import NotFoundError, ValidationError
from core.exam_scope import resolve_exam_window
from core.marks import parse_year
from core.scoring import compute_subject_score
from core.store import RecordStore

NOT_ASSESSED = "Not Assessed"
EMPTY_TERM_CELL = "- / -"
EMPTY_OVERALL_CELL = "- / - / -"


def grade_of_class(class_name: Optional[str]) -> str:
    """First run of digits in a class name ("Grade 10 East" -> "10")."""
    match = re.search(r"\d+", str(class_name or ""))
    return match.group(0) if match else "Unknown"


def verification_url(adm_no: str, term: str, year: int, exam: str) -> str:
    query = urlencode({"admNo": adm_no, "term": term, "year": year, "exam": exam})
    return f"{VERIFY_BASE_URL}?{query}"


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


# ── Score grouping ──────────────────────────────────────────────────

def group_scores(
    assessments: List[Dict[str, Any]],
    term: str,
    year: Optional[int] = None,
) -> Dict[str, Dict[str, Dict[str, float]]]:
    """
    admNo -> subject -> {exam: score, "{grade}-{term}-{exam}": score}.

    Each assessment row must carry `admNo`, `className`, `subjectName`,
    `exam`, `papers` and optionally `term`, `year` and `scoringStrategy`.
    The grade and term of the composite key come from the row itself, so
    rows from earlier terms and grades feed the year summary. The plain
    exam key is only set for rows of the requested term and year.
    """
    grouped: Dict[str, Dict[str, Dict[str, float]]] = {}
    for a in assessments:
        subject = a.get("subjectName") or "Unknown Subject"
        score = compute_subject_score(a.get("papers") or [], subject, strategy=a.get("scoringStrategy"))
        row_term = a.get("term") or term
        key = f"{grade_of_class(a.get('className'))}-{row_term}-{a['exam']}"
        cell = grouped.setdefault(a["admNo"], {}).setdefault(subject, {})
        cell[key] = score
        in_year = year is None or a.get("year") is None or int(a["year"]) == int(year)
        if row_term == term and in_year:
            cell[a["exam"]] = score
    return grouped


def build_year_summary(subject_map: Dict[str, Dict[str, float]], exam_scope: List[str]) -> List[Dict[str, str]]:
    """Grade 10/11/12 rows of term means plus the overall mean."""
    summary = []
    for grade in SUMMARY_GRADES:
        cells: Dict[str, str] = {}
        term_means = []
        for term_name in TERM_ORDER:
            exam_means = []
            for exam_name in exam_scope:
                key = f"{grade}-{term_name}-{exam_name}"
                subject_scores = [m[key] for m in subject_map.values() if key in m]
                if subject_scores:
                    exam_means.append(_mean(subject_scores))
            if exam_means:
                term_mean = _mean(exam_means)
                cells[term_name] = f"{round_half_up(term_mean)} / {get_grade_remark(term_mean)['grade']}"
                term_means.append(term_mean)
            else:
                cells[term_name] = EMPTY_TERM_CELL

        if term_means:
            overall = _mean(term_means)
            band = get_grade_remark(overall)["grade"]
            overall_cell = f"{round_half_up(overall)} / {band} / {extract_level(band)}"
        else:
            overall_cell = EMPTY_OVERALL_CELL

        summary.append({
            "grade": grade,
            "Term 1": cells["Term 1"],
            "Term 2": cells["Term 2"],
            "Term 3": cells["Term 3"],
            "overall": overall_cell,
        })
    return summary


# ── Report forms ────────────────────────────────────────────────────

def build_report_forms(
    students: List[Dict[str, Any]],
    assessments: List[Dict[str, Any]],
    class_label: str,
    term: str,
    exam_scope: List[str],
    year: Optional[int] = None,
    exam: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Build ranked report forms.

    `students` rows carry `admNo`, `name` and `pathwayName`; `assessments`
    rows are the flattened shape described in `group_scores`.
    """
    grouped = group_scores(assessments, term, year)
    forms = []

    for s in students:
        adm_no = s["admNo"]
        subject_map = grouped.get(adm_no, {})
        scores = []
        averages = []

        for subject, exam_scores in subject_map.items():
            values = [exam_scores[e] for e in exam_scope if e in exam_scores]
            if not values:
                # recorded outside this exam scope; the year summary carries it
                continue
            avg = _mean(values)
            graded = get_grade_remark(avg)
            averages.append(avg)
            scores.append({
                "learningArea": subject,
                "exams": {
                    e: round_half_up(exam_scores[e]) if e in exam_scores else "-"
                    for e in exam_scope
                },
                "total": round_half_up(avg),
                "grade": graded["grade"],
                "level": extract_level(graded["grade"]),
                "remark": graded["remark"],
            })

        mean_raw = sum(averages) / len(scores) if scores else None
        if mean_raw is not None:
            graded = get_grade_remark(mean_raw)
        else:
            graded = {"grade": None, "remark": NOT_ASSESSED}
        comment = get_auto_comment(graded["grade"], NOT_ASSESSED)

        forms.append({
            "admNo": adm_no,
            "name": s.get("name"),
            "class": class_label,
            "pathway": s.get("pathwayName") or "N/A",
            "scores": scores,
            "meanScore": round_half_up(mean_raw),
            "grade": graded["grade"],
            "level": extract_level(graded["grade"]),
            "summaryRemark": graded["remark"],
            "classTeacherComment": comment,
            "principalComment": comment,
            "verificationUrl": verification_url(adm_no, term, year, exam or (exam_scope[-1] if exam_scope else "")),
            "yearSummary": build_year_summary(subject_map, exam_scope),
        })

    forms.sort(key=lambda f: f["meanScore"] or 0, reverse=True)
    for idx, form in enumerate(forms, start=1):
        form["position"] = idx
    return forms


# ── Orchestration ───────────────────────────────────────────────────

def report_metadata(school: Dict[str, Any], term: str, year: int, exam: str, window: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "schoolName": school.get("name") or "Unknown School",
        "schoolLogo": school.get("logo") or DEFAULT_SCHOOL_LOGO,
        "schoolLocation": school.get("location") or "N/A",
        "schoolContact": school.get("contact") or "N/A",
        "schoolEmail": school.get("email") or "N/A",
        "schoolMotto": school.get("motto") or DEFAULT_SCHOOL_MOTTO,
        "term": term,
        "year": year,
        "examType": exam,
        "examScope": window["examScope"],
        "previousExam": window["previousExam"],
    }


def _flatten_assessments(store: RecordStore, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    students, classes, subjects = {}, {}, {}
    flat = []
    for a in rows:
        if a["student"] not in students:
            students[a["student"]] = store.get("students", a["student"]) or {}
        student = students[a["student"]]
        class_id = a.get("class") or student.get("class")
        if class_id not in classes:
            classes[class_id] = (store.get("classes", class_id) if class_id else None) or {}
        if a["subject"] not in subjects:
            subjects[a["subject"]] = store.get("subjects", a["subject"]) or {}
        subject = subjects[a["subject"]]
        if not student.get("admNo"):
            continue
        flat.append({
            "admNo": student["admNo"],
            "className": classes[class_id].get("name"),
            "subjectName": subject.get("name"),
            "scoringStrategy": subject.get("scoringStrategy"),
            "term": a.get("term"),
            "year": a.get("year"),
            "exam": a["exam"],
            "papers": a.get("papers") or [],
        })
    return flat


def _student_rows(store: RecordStore, school_id: str, cohort: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    pathways = {p["id"]: p.get("name") for p in store.pathways(school_id)}
    return [
        {"admNo": s["admNo"], "name": s.get("name"), "pathwayName": pathways.get(s.get("pathway"))}
        for s in cohort
    ]


def generate_report_forms(
    store: RecordStore,
    school: Dict[str, Any],
    term: str,
    year: Any,
    exam: str,
    adm_no: Optional[str] = None,
    class_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Report forms for one student (`adm_no`) or every student of `class_name`."""
    term = (term or "").strip()
    exam = (exam or "").strip()
    adm_no = (adm_no or "").strip()
    class_name = (class_name or "").strip()
    if not term or not year or not exam:
        raise ValidationError("Missing required parameters: term, year, and exam must be specified")
    if not adm_no and not class_name:
        raise ValidationError("Provide either admNo for single report or className for bulk report")

    school_id = school["id"]
    year = parse_year(year)
    window = resolve_exam_window(store.paper_configs(school_id), exam, term, year, school_id)
    metadata = report_metadata(school, term, year, exam, window)

    if adm_no:
        student = store.student_by_adm_no(school_id, adm_no)
        if not student:
            raise NotFoundError("Student not found")
        cls = store.get("classes", student.get("class")) or {}
        class_id, class_label = student.get("class"), cls.get("name")
    else:
        cls = store.find_class(school_id, class_name)
        if not cls:
            raise NotFoundError("Class not found")
        class_id, class_label = cls["id"], class_name
        metadata["className"] = class_name

    cohort = store.students(school_id, class_ids=[class_id])
    rows = store.assessments(school_id, student_ids=[s["id"] for s in cohort])
    forms = build_report_forms(
        _student_rows(store, school_id, cohort),
        _flatten_assessments(store, rows),
        class_label,
        term,
        window["examScope"],
        year=year,
        exam=exam,
    )

    if adm_no:
        forms = [f for f in forms if f["admNo"] == adm_no.upper()]
        if not forms:
            raise NotFoundError("Report not found for student")
    return {"metadata": metadata, "reportForms": forms}
