"""
store.py — In-memory record store standing in for the school document store.

Holds schools, classes, pathways, subjects, students, paper configurations
and assessments as plain dicts. Every lookup is scoped to a school. Reads
return copies; writes go through the store so that an assessment is created
or updated in a single locked step keyed by its uniqueness tuple.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.errors import ConflictError, ValidationError
from core.exam_scope import ordered_exams
from core.scoring import resolve_scoring_strategy

logger = logging.getLogger(__name__)

TABLES = ("schools", "classes", "pathways", "subjects", "students", "paper_configs", "assessments")

# Snapshot keys as they appear in JSON payloads.
SNAPSHOT_KEYS = {
    "schools": "schools",
    "classes": "classes",
    "pathways": "pathways",
    "subjects": "subjects",
    "students": "students",
    "paperConfigs": "paper_configs",
    "assessments": "assessments",
}

ASSESSMENT_KEY_FIELDS = ("student", "class", "subject", "term", "exam", "year", "school")
PAPER_CONFIG_KEY_FIELDS = ("subject", "grade", "term", "exam", "year", "school")
VALID_TERMS = ("Term 1", "Term 2", "Term 3")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


def _norm(value: Any) -> str:
    return str(value or "").strip().lower()


def assessment_key(record: Dict[str, Any]) -> Tuple:
    return tuple(
        int(record[f]) if f == "year" else record.get(f)
        for f in ASSESSMENT_KEY_FIELDS
    )


class RecordStore:
    """Thread-safe in-memory tables with school-scoped lookups."""

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in TABLES}
        self._assessment_index: Dict[Tuple, str] = {}

    # ── Loading ─────────────────────────────────────────────────────

    def clear(self):
        with self._lock:
            for table in self._tables.values():
                table.clear()
            self._assessment_index.clear()

    def load_snapshot(self, data: Dict[str, Any]) -> Dict[str, int]:
        """Bulk-load records; returns per-table counts of what was added."""
        counts = {}
        for key, table in SNAPSHOT_KEYS.items():
            rows = data.get(key) or []
            for row in rows:
                if table == "paper_configs":
                    self.create_paper_config(row)
                elif table == "assessments":
                    self._insert_assessment(row)
                else:
                    self.add(table, row)
            counts[key] = len(rows)
        logger.info("Loaded snapshot: %s", counts)
        return counts

    def load_file(self, path: str) -> Dict[str, int]:
        with open(Path(path), "r", encoding="utf-8") as fh:
            return self.load_snapshot(json.load(fh))

    def add(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if table not in self._tables:
            raise ValueError(f"Unknown table '{table}'")
        row = dict(record)
        row.setdefault("id", _new_id())
        row.setdefault("createdAt", _now())
        if table == "subjects":
            row["scoringStrategy"] = resolve_scoring_strategy(
                row.get("name", ""), row.get("scoringStrategy")
            ).value
        if table == "students":
            row.setdefault("status", "active")
            row.setdefault("selectedSubjects", [])
            if row.get("admNo"):
                row["admNo"] = str(row["admNo"]).strip().upper()
        with self._lock:
            self._tables[table][row["id"]] = row
        return dict(row)

    # ── Reference lookups ───────────────────────────────────────────

    def _rows(self, table: str, school_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._tables[table].values())
        if school_id is not None:
            rows = [r for r in rows if r.get("school") == school_id]
        return [dict(r) for r in rows]

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._tables[table].get(record_id)
        return dict(row) if row else None

    def get_school(self, school_id: Optional[str] = None, school_code: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for school in self._rows("schools"):
            if school_id and school.get("id") != school_id:
                continue
            if school_code and _norm(school.get("code")) != _norm(school_code):
                continue
            if school_id or school_code:
                return school
        return None

    def find_class(self, school_id: str, name: str) -> Optional[Dict[str, Any]]:
        target = _norm(name)
        return next((c for c in self._rows("classes", school_id) if _norm(c.get("name")) == target), None)

    def classes(self, school_id: str, grades: Optional[Iterable[int]] = None) -> List[Dict[str, Any]]:
        rows = self._rows("classes", school_id)
        if grades is not None:
            wanted = {int(g) for g in grades}
            rows = [c for c in rows if int(c.get("grade") or 0) in wanted]
        return rows

    def pathways(self, school_id: str) -> List[Dict[str, Any]]:
        return self._rows("pathways", school_id)

    def subjects(self, school_id: str) -> List[Dict[str, Any]]:
        return sorted(self._rows("subjects", school_id), key=lambda s: str(s.get("code") or ""))

    def find_subject(self, school_id: str, subject_id: Optional[str] = None, name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for subject in self._rows("subjects", school_id):
            if subject_id and subject.get("id") == subject_id:
                return subject
            if name and _norm(subject.get("name")) == _norm(name):
                return subject
        return None

    def students(self, school_id: str, class_ids: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        rows = self._rows("students", school_id)
        if class_ids is not None:
            wanted = set(class_ids)
            rows = [s for s in rows if s.get("class") in wanted]
        return sorted(rows, key=lambda s: str(s.get("admNo") or ""))

    def students_by_adm_no(self, school_id: str, adm_nos: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """One pass over the students table for a whole batch of admission numbers."""
        wanted = {str(a).strip().upper() for a in adm_nos if a}
        return {
            s["admNo"]: s for s in self._rows("students", school_id)
            if s.get("admNo") in wanted
        }

    def student_by_adm_no(self, school_id: str, adm_no: str) -> Optional[Dict[str, Any]]:
        return self.students_by_adm_no(school_id, [adm_no]).get(str(adm_no).strip().upper())

    def active_intake(self, school_id: str, grades: Iterable[int]) -> Dict[int, int]:
        """Active students per currentGrade."""
        wanted = {int(g) for g in grades}
        intake: Dict[int, int] = {}
        for s in self._rows("students", school_id):
            grade = int(s.get("currentGrade") or 0)
            if s.get("status", "active") == "active" and grade in wanted:
                intake[grade] = intake.get(grade, 0) + 1
        return intake

    # ── Paper configurations ────────────────────────────────────────

    def create_paper_config(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a config; sequence defaults to the term/year/school count + 1."""
        papers = record.get("papers")
        if not isinstance(papers, list) or not papers:
            raise ValidationError("Papers must be a non-empty array.")
        if record.get("term") not in VALID_TERMS:
            raise ValidationError(f"Invalid term '{record.get('term')}'. Use one of: {', '.join(VALID_TERMS)}")
        row = dict(record)
        row["exam"] = str(row.get("exam") or "").strip()
        row["year"] = int(row["year"])
        row["grade"] = int(row["grade"])
        row["papers"] = [{"paperNo": int(p["paperNo"]), "total": float(p["total"])} for p in papers]
        with self._lock:
            existing = self._tables["paper_configs"].values()
            key = tuple(row.get(f) for f in PAPER_CONFIG_KEY_FIELDS)
            if any(tuple(c.get(f) for f in PAPER_CONFIG_KEY_FIELDS) == key for c in existing):
                raise ConflictError("Paper config already exists for this subject, grade, term, exam and year.")
            if row.get("sequence") is None:
                row["sequence"] = 1 + sum(
                    1 for c in existing
                    if c.get("term") == row["term"] and c.get("year") == row["year"] and c.get("school") == row.get("school")
                )
            row.setdefault("id", _new_id())
            row.setdefault("createdAt", _now())
            self._tables["paper_configs"][row["id"]] = row
        return dict(row)

    def paper_configs(self, school_id: str, term: Optional[str] = None, year: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = self._rows("paper_configs", school_id)
        if term is not None:
            rows = [c for c in rows if c.get("term") == term]
        if year is not None:
            rows = [c for c in rows if c.get("year") == int(year)]
        return rows

    def find_paper_config(self, school_id: str, subject_id: str, grade: Any, term: str, exam: str, year: int) -> Optional[Dict[str, Any]]:
        if grade is None:
            return None
        for c in self.paper_configs(school_id, term, year):
            if c.get("subject") == subject_id and c.get("grade") == int(grade) and c.get("exam") == exam:
                return c
        return None

    def exam_order(self, school_id: str, term: str, year: int) -> List[str]:
        return ordered_exams(self.paper_configs(school_id, term, year), term, year, school_id)

    # ── Assessments ─────────────────────────────────────────────────

    def assessments(
        self,
        school_id: str,
        class_ids: Optional[Iterable[str]] = None,
        term: Optional[str] = None,
        year: Optional[int] = None,
        exams: Optional[Iterable[str]] = None,
        subject_id: Optional[str] = None,
        student_ids: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, Any]]:
        rows = self._rows("assessments", school_id)
        if class_ids is not None:
            wanted_classes = set(class_ids)
            rows = [a for a in rows if a.get("class") in wanted_classes]
        if term is not None:
            rows = [a for a in rows if a.get("term") == term]
        if year is not None:
            rows = [a for a in rows if a.get("year") == int(year)]
        if exams is not None:
            wanted_exams = set(exams)
            rows = [a for a in rows if a.get("exam") in wanted_exams]
        if subject_id is not None:
            rows = [a for a in rows if a.get("subject") == subject_id]
        if student_ids is not None:
            wanted_students = set(student_ids)
            rows = [a for a in rows if a.get("student") in wanted_students]
        return rows

    def recorded_exams(self, school_id: str, term: str, year: int) -> List[str]:
        """Distinct exams with at least one assessment for the term/year."""
        return sorted({a.get("exam") for a in self.assessments(school_id, term=term, year=year)})

    def find_assessment(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            record_id = self._assessment_index.get(assessment_key(key))
            row = self._tables["assessments"].get(record_id) if record_id else None
        return dict(row) if row else None

    def count_assessments(self) -> int:
        with self._lock:
            return len(self._tables["assessments"])

    def _insert_assessment(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        row["year"] = int(row["year"])
        row.setdefault("id", _new_id())
        row.setdefault("createdAt", _now())
        row.setdefault("updatedAt", row["createdAt"])
        key = assessment_key(row)
        with self._lock:
            if key in self._assessment_index:
                raise ConflictError("Assessment already exists for this student, subject and exam.")
            self._tables["assessments"][row["id"]] = row
            self._assessment_index[key] = row["id"]
        return dict(row)

    def upsert_assessment(
        self,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        allow_insert: bool = True,
        allow_update: bool = True,
    ) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Insert-or-update in one locked step.

        Returns (action, record) with action one of "inserted", "updated",
        "exists" (present but updates not allowed) or "missing" (absent and
        inserts not allowed).
        """
        lookup = {f: key.get(f) for f in ASSESSMENT_KEY_FIELDS}
        lookup["year"] = int(lookup["year"])
        index_key = assessment_key(lookup)
        with self._lock:
            record_id = self._assessment_index.get(index_key)
            if record_id is not None:
                if not allow_update:
                    return "exists", dict(self._tables["assessments"][record_id])
                row = self._tables["assessments"][record_id]
                if any(row.get(k) != v for k, v in fields.items()):
                    row.update(fields)
                    row["updatedAt"] = _now()
                return "updated", dict(row)
            if not allow_insert:
                return "missing", None
            row = {**lookup, **fields, "id": _new_id(), "createdAt": _now()}
            row["updatedAt"] = row["createdAt"]
            self._tables["assessments"][row["id"]] = row
            self._assessment_index[index_key] = row["id"]
            return "inserted", dict(row)
