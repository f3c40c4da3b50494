"""
Tests for core/marks.py — bulk mark entry, bulk update and assessment reads.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import NotFoundError, ValidationError
from core.marks import enter_marks, fetch_assessments, get_assessment_by_adm_no, update_marks
from core.store import RecordStore

SAMPLE_JSON = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_school.json")


@pytest.fixture
def store():
    records = RecordStore()
    records.load_file(SAMPLE_JSON)
    records.create_paper_config({
        "subject": "sub-phy", "grade": 10, "term": "Term 2", "exam": "Opener", "year": 2025,
        "school": "sch-elimu", "papers": [{"paperNo": 1, "total": 80}, {"paperNo": 2, "total": 80}, {"paperNo": 3, "total": 40}],
    })
    return records


@pytest.fixture
def school(store):
    return store.get_school(school_code="ELM")


def physics_marks():
    return [
        {"admNo": "S001", "papers": [{"paperNo": 1, "score": 60}, {"paperNo": 2, "score": 50}, {"paperNo": 3, "score": 35}]},
        {"admNo": "s002", "papers": [{"paperNo": 1, "score": 70}, {"paperNo": 2, "score": 70}, {"paperNo": 3, "score": -1}]},
        {"admNo": "S003", "papers": [{"paperNo": 1, "score": 90}, {"paperNo": 2, "score": 10}, {"paperNo": 3, "score": 10}]},
        {"admNo": "S999", "papers": []},
        {"admNo": "S001"},
    ]


def enter_physics(store, school, marks=None, allow_update=False):
    return enter_marks(
        store, school, "Term 2", "Opener", "2025", physics_marks() if marks is None else marks,
        class_name="Grade 10 East", subject_name="Physics", allow_update=allow_update,
    )


class TestEnterMarks:
    """Tests for enter_marks."""

    def test_scores_and_grades(self, store, school):
        result = enter_physics(store, school)
        assert result["message"] == "Mark entry completed"
        assert result["code"] == "232"
        assert result["year"] == 2025
        assert result["count"] == 2
        by_adm = {r["admNo"]: r for r in result["results"]}
        assert by_adm["S001"]["score"] == 76
        assert by_adm["S001"]["grade"] == "Meeting Expectations 2"
        assert by_adm["s002"]["score"] == 53
        assert by_adm["s002"]["grade"] == "Approaching Expectations 2"

    def test_absent_paper_stored_as_sentinel(self, store, school):
        enter_physics(store, school)
        row = store.assessments("sch-elimu", term="Term 2", student_ids=["stu-002"])[0]
        assert row["absentCount"] == 1
        assert row["papers"][2]["score"] == -1
        assert row["totalOutOf"] == 200
        assert row["computedScore"] == 52.5

    def test_bad_rows_reported_not_raised(self, store, school):
        result = enter_physics(store, school)
        messages = [e.get("message", "") for e in result["errors"]]
        assert any("Invalid score for paper 1" in m for m in messages)
        assert "Student not found" in messages
        assert "Missing papers or admNo" in messages
        skipped = [a for a in result["actions"] if a["action"] == "skipped"]
        assert [a["admNo"] for a in skipped] == ["S003"]

    def test_non_mapping_papers_reported_per_row(self, store, school):
        marks = [
            {"admNo": "S001", "papers": [60, 50, 35]},
            {"admNo": "S002", "papers": [{"paperNo": 1, "score": 70}, {"paperNo": 2, "score": 70}, {"paperNo": 3, "score": 30}]},
        ]
        result = enter_physics(store, school, marks=marks)
        assert result["count"] == 1
        assert result["results"][0]["admNo"] == "S002"
        assert {"admNo": "S001", "message": "Invalid papers format"} in result["errors"]

    def test_existing_entry_skipped_without_update(self, store, school):
        enter_physics(store, school)
        before = store.count_assessments()
        again = enter_physics(store, school)
        assert again["count"] == 0
        reasons = {a["reason"] for a in again["actions"] if a["action"] == "skipped"}
        assert "Existing entry — update not allowed" in reasons
        assert store.count_assessments() == before

    def test_allow_update_overwrites(self, store, school):
        enter_physics(store, school)
        marks = [{"admNo": "S001", "papers": [{"paperNo": 1, "score": 80}, {"paperNo": 2, "score": 80}, {"paperNo": 3, "score": 40}]}]
        result = enter_physics(store, school, marks=marks, allow_update=True)
        assert result["actions"][0]["action"] == "updated"
        assert result["results"][0]["score"] == 100

    def test_missing_paper_config(self, store, school):
        with pytest.raises(ValidationError) as err:
            enter_marks(store, school, "Term 3", "Opener", 2025, [], class_name="Grade 10 East", subject_name="Physics")
        assert err.value.message == "Paper configuration not found for this setup"

    def test_unknown_class(self, store, school):
        with pytest.raises(NotFoundError):
            enter_marks(store, school, "Term 2", "Opener", 2025, [], class_name="Grade 9 North", subject_name="Physics")

    def test_missing_fields(self, store, school):
        with pytest.raises(ValidationError):
            enter_marks(store, school, "Term 2", "Opener", 2025, "not a list", class_name="Grade 10 East", subject_name="Physics")

    def test_invalid_year(self, store, school):
        with pytest.raises(ValidationError):
            enter_marks(store, school, "Term 2", "Opener", "twenty", [], class_name="Grade 10 East", subject_name="Physics")


class TestUpdateMarks:
    """Tests for update_marks."""

    def test_updates_existing(self, store, school):
        result = update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, [
            {"admNo": "S001", "papers": [{"paperNo": 1, "score": 90}]},
            {"admNo": "S005", "papers": [{"paperNo": 1, "score": 40}]},
        ])
        assert result["count"] == 2
        assert {r["admNo"]: r["grade"] for r in result["results"]} == {
            "S001": "Exceeding Expectations 2",
            "S005": "Approaching Expectations 1",
        }

    def test_never_inserts(self, store, school):
        before = store.count_assessments()
        result = update_marks(store, school, "Business Studies", "Term 1", "Mid Term", 2025, [
            {"admNo": "S001", "papers": [{"paperNo": 1, "score": 50}, {"paperNo": 2, "score": 50}]},
        ])
        assert result["actions"][0]["reason"] == "Assessment not found"
        assert store.count_assessments() == before

    def test_repeat_update_is_stable(self, store, school):
        updates = [{"admNo": "S002", "papers": [{"paperNo": 1, "score": 91}]}]
        update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, updates)
        first = store.assessments("sch-elimu", term="Term 1", exams=["Mid Term"], subject_id="sub-mat", student_ids=["stu-002"])
        update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, updates)
        second = store.assessments("sch-elimu", term="Term 1", exams=["Mid Term"], subject_id="sub-mat", student_ids=["stu-002"])
        assert first == second
        assert second[0]["computedScore"] == 91

    def test_non_mapping_papers_reported_per_row(self, store, school):
        result = update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, [
            {"admNo": "S001", "papers": [90]},
            {"admNo": "S002", "papers": [{"paperNo": 1, "score": 91}]},
        ])
        assert result["count"] == 1
        assert {"admNo": "S001", "message": "Invalid papers format"} in result["errors"]

    def add_student_with_maths(self, store, adm_no, class_id):
        student = store.add("students", {"admNo": adm_no, "name": "Late Joiner", "school": "sch-elimu", "class": class_id})
        store.upsert_assessment(
            {"student": student["id"], "class": class_id, "subject": "sub-mat", "term": "Term 1",
             "exam": "Mid Term", "year": 2025, "school": "sch-elimu"},
            {"papers": [{"paperNo": 1, "score": 50, "total": 100}]},
        )

    def test_grade_falls_back_to_class(self, store, school):
        self.add_student_with_maths(store, "S050", "cls-10e")
        result = update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, [
            {"admNo": "S050", "papers": [{"paperNo": 1, "score": 64}]},
        ])
        assert result["count"] == 1
        assert result["results"][0]["grade"] == "Meeting Expectations 1"

    def test_no_grade_skips_row(self, store, school):
        self.add_student_with_maths(store, "S051", None)
        result = update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, [
            {"admNo": "S051", "papers": [{"paperNo": 1, "score": 64}]},
            {"admNo": "S001", "papers": [{"paperNo": 1, "score": 90}]},
        ])
        assert result["count"] == 1
        assert {"admNo": "S051", "action": "skipped", "reason": "PaperConfig not found"} in result["actions"]

    def test_invalid_exam(self, store, school):
        with pytest.raises(ValidationError):
            update_marks(store, school, "Mathematics", "Term 1", "Mock", 2025, [{"admNo": "S001", "papers": []}])

    def test_empty_updates(self, store, school):
        with pytest.raises(ValidationError):
            update_marks(store, school, "Mathematics", "Term 1", "Mid Term", 2025, [])


class TestReads:
    """Tests for fetch_assessments and get_assessment_by_adm_no."""

    def test_fetch_sorted(self, store, school):
        rows = fetch_assessments(store, school, "Term 1", "Mid Term", 2025, class_name="Grade 10 East", subject_name="Mathematics")
        assert [r["admNo"] for r in rows] == ["S001", "S002", "S003"]
        assert rows[0]["papers"] == [{"paperNo": 1, "score": 82, "total": 100}]

    def test_fetch_unknown_subject(self, store, school):
        with pytest.raises(NotFoundError):
            fetch_assessments(store, school, "Term 1", "Mid Term", 2025, class_name="Grade 10 East", subject_name="Latin")

    def test_by_adm_no(self, store, school):
        result = get_assessment_by_adm_no(store, school, "s001", "Physics ", "Term 1", "Mid Term", 2025)
        assert result["student"]["class"] == "Grade 10 East"
        assert result["pathway"] == "STEM"
        assert result["assessment"]["entry"] == 3
        assert result["assessment"]["mean"] == pytest.approx(49.33)

    def test_by_adm_no_missing_assessment(self, store, school):
        with pytest.raises(NotFoundError):
            get_assessment_by_adm_no(store, school, "S001", "History", "Term 1", "Mid Term", 2025)
