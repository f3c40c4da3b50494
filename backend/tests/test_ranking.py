"""
Tests for core/ranking.py — class, grade and learning-area rankings.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import ValidationError
from core.ranking import (
    assign_positions,
    build_subject_ranking,
    deviation_fields,
    rank_classes,
    rank_grade_and_classes,
    rank_subjects,
)
from core.store import RecordStore

SAMPLE_JSON = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_school.json")


@pytest.fixture
def store():
    records = RecordStore()
    records.load_file(SAMPLE_JSON)
    return records


@pytest.fixture
def school(store):
    return store.get_school(school_code="ELM")


class TestPositions:
    """Tests for assign_positions and deviation_fields."""

    def test_ties_do_not_share_positions(self):
        rows = [{"id": "a", "mean": 90}, {"id": "b", "mean": 90}, {"id": "c", "mean": 80}]
        assert [r["position"] for r in assign_positions(rows)] == [1, 2, 3]
        assert [r["id"] for r in rows] == ["a", "b", "c"]

    def test_deviation(self):
        assert deviation_fields(75.0, 70.33) == {"previousMean": 70.33, "deviation": 4.67, "deviationColor": "green"}
        assert deviation_fields(60.0, 65.0)["deviationColor"] == "red"
        assert deviation_fields(60.0, None) == {"previousMean": None, "deviation": None, "deviationColor": "gray"}


class TestRankClasses:
    """Tests for rank_classes on hand-made profiles."""

    CLASSES = [{"name": "A", "grade": 10}, {"name": "B", "grade": 10}]

    def test_empty_class_ranks_with_zero(self):
        profiles = [{"class": "B", "meanScore": 60}]
        rows = rank_classes(self.CLASSES, profiles)
        assert [(r["class"], r["mean"], r["entry"], r["position"]) for r in rows] == [("B", 60.0, 1, 1), ("A", 0, 0, 2)]
        assert rows[0]["gradeLabel"] == "Meeting Expectations 1"


class TestRankGradeAndClasses:
    """Tests for rank_grade_and_classes against the sample school."""

    def test_class_ranking_with_previous_exam(self, store, school):
        result = rank_grade_and_classes(store, school, "10", "Term 1", 2025, "Mid Term")
        assert result["previousExam"] == "Opener"
        east, west = result["classRanking"]
        assert (east["class"], east["mean"], east["position"]) == ("Grade 10 East", 75.0, 1)
        assert east["previousMean"] == 70.33
        assert east["deviation"] == 4.67
        assert east["deviationColor"] == "green"
        assert (west["class"], west["mean"], west["position"]) == ("Grade 10 West", 53.0, 2)
        assert west["deviation"] == 4.0

    def test_grade_ranking(self, store, school):
        result = rank_grade_and_classes(store, school, 10, "Term 1", 2025, "Mid Term")
        grade = result["gradeRanking"][0]
        assert grade["grade"] == 10
        assert grade["entry"] == 4
        assert grade["mean"] == 64.0
        assert grade["deviationColor"] == "green"

    def test_first_exam_has_no_previous(self, store, school):
        result = rank_grade_and_classes(store, school, "10", "Term 1", 2025, "Opener")
        assert result["previousExam"] is None
        assert all(r["deviationColor"] == "gray" for r in result["classRanking"])

    def test_all_grades(self, store, school):
        result = rank_grade_and_classes(store, school, "all", "Term 1", 2025, "Mid Term")
        assert [r["grade"] for r in result["gradeRanking"]] == [11, 10]
        grade_11 = result["gradeRanking"][0]
        assert grade_11["previousMean"] is None

    def test_invalid_grade(self, store, school):
        with pytest.raises(ValidationError):
            rank_grade_and_classes(store, school, "ten", "Term 1", 2025, "Mid Term")


class TestSubjectRanking:
    """Tests for build_subject_ranking and rank_subjects."""

    def entry(self, cls, subject, exam, score, group="Compulsory"):
        return {"class": cls, "group": group, "subject": subject, "exam": exam,
                "papers": [{"paperNo": 1, "score": score, "total": 100}]}

    def test_rank_within_group_and_class(self):
        entries = [
            self.entry("A", "Mathematics", "Mid Term", 60),
            self.entry("A", "English", "Mid Term", 70),
            self.entry("A", "Physics", "Mid Term", 65, group="STEM"),
        ]
        rows = {r["learningArea"]: r for r in build_subject_ranking(entries, "Mid Term")}
        assert rows["English"]["rank"] == 1
        assert rows["Mathematics"]["rank"] == 2
        assert rows["Physics"]["rank"] == 1
        assert [rows[s]["overallRank"] for s in ("English", "Physics", "Mathematics")] == [1, 2, 3]

    def test_absent_sentinel_counts_in_mean(self):
        entries = [{"class": "A", "group": "G", "subject": "History", "exam": "Mid Term",
                    "papers": [{"paperNo": 1, "score": -1}, {"paperNo": 2, "score": 41}]}]
        assert build_subject_ranking(entries, "Mid Term")[0]["mean"] == 20.0

    def test_sample_mathematics(self, store, school):
        rows = rank_subjects(store, school, "10", "Term 1", 2025, "Mid Term")["raw"]
        maths = next(r for r in rows if r["class"] == "Grade 10 East" and r["learningArea"] == "Mathematics")
        assert maths["mean"] == 74.67
        assert maths["previousMean"] == 70.33
        assert maths["deviation"] == pytest.approx(4.34)
        assert maths["color"] == "green"
        assert maths["rank"] == 1
        assert maths["entry"] == 3

    def test_previous_exam_reported(self, store, school):
        assert rank_subjects(store, school, "10", "Term 1", 2025, "Mid Term")["previousExam"] == "Opener"
