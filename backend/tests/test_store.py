"""
Tests for core/store.py — loading, lookups, paper configs and atomic upserts.
"""

import os
import sys
import threading
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import ConflictError, ValidationError
from core.store import RecordStore

SAMPLE_JSON = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_school.json")
SCHOOL = "sch-elimu"


@pytest.fixture
def store():
    records = RecordStore()
    records.load_file(SAMPLE_JSON)
    return records


def key(**overrides):
    base = {
        "student": "stu-001", "class": "cls-10e", "subject": "sub-mat",
        "term": "Term 2", "exam": "Opener", "year": 2025, "school": SCHOOL,
    }
    base.update(overrides)
    return base


class TestLoading:
    """Tests for snapshot loading and lookups."""

    def test_counts(self, store):
        assert len(store.students(SCHOOL)) == 5
        assert store.count_assessments() == 49

    def test_subject_strategy_resolved_on_add(self, store):
        physics = store.find_subject(SCHOOL, name="physics")
        assert physics["scoringStrategy"] == "weighted_science"
        assert store.find_subject(SCHOOL, name="History")["scoringStrategy"] == "normalized"

    def test_school_lookup(self, store):
        assert store.get_school(school_code="elm")["id"] == SCHOOL
        assert store.get_school(school_id="missing") is None
        assert store.get_school() is None

    def test_class_lookup_case_insensitive(self, store):
        assert store.find_class(SCHOOL, "grade 10 east")["id"] == "cls-10e"

    def test_students_by_adm_no(self, store):
        found = store.students_by_adm_no(SCHOOL, ["s001", "S004", "S999"])
        assert set(found) == {"S001", "S004"}

    def test_active_intake(self, store):
        assert store.active_intake(SCHOOL, [10, 11, 12]) == {10: 4, 11: 1}

    def test_recorded_exams(self, store):
        assert store.recorded_exams(SCHOOL, "Term 1", 2025) == ["Mid Term", "Opener"]

    def test_exam_order(self, store):
        assert store.exam_order(SCHOOL, "Term 1", 2025) == ["Opener", "Mid Term"]


class TestPaperConfigs:
    """Tests for create_paper_config."""

    def test_sequence_assigned(self):
        records = RecordStore()
        base = {"subject": "s1", "grade": 10, "term": "Term 2", "year": 2025, "school": SCHOOL,
                "papers": [{"paperNo": 1, "total": 100}]}
        first = records.create_paper_config({**base, "exam": "Opener"})
        second = records.create_paper_config({**base, "exam": "Mid Term"})
        assert first["sequence"] == 1
        assert second["sequence"] == 2

    def test_duplicate_rejected(self, store):
        dup = {"subject": "sub-mat", "grade": 10, "term": "Term 1", "exam": "Opener", "year": 2025,
               "school": SCHOOL, "papers": [{"paperNo": 1, "total": 100}]}
        with pytest.raises(ConflictError):
            store.create_paper_config(dup)

    def test_empty_papers_rejected(self):
        with pytest.raises(ValidationError):
            RecordStore().create_paper_config({"term": "Term 1", "papers": []})

    def test_invalid_term_rejected(self):
        with pytest.raises(ValidationError):
            RecordStore().create_paper_config({"term": "Term 4", "papers": [{"paperNo": 1, "total": 10}]})


class TestUpsertAssessment:
    """Tests for upsert_assessment."""

    def test_insert_then_update(self, store):
        action, row = store.upsert_assessment(key(), {"computedScore": 50})
        assert action == "inserted"
        action, row = store.upsert_assessment(key(), {"computedScore": 60})
        assert action == "updated"
        assert row["computedScore"] == 60
        assert store.count_assessments() == 50

    def test_update_not_allowed(self, store):
        store.upsert_assessment(key(), {"computedScore": 50})
        action, row = store.upsert_assessment(key(), {"computedScore": 70}, allow_update=False)
        assert action == "exists"
        assert row["computedScore"] == 50

    def test_insert_not_allowed(self, store):
        action, row = store.upsert_assessment(key(), {"computedScore": 50}, allow_insert=False)
        assert action == "missing"
        assert row is None

    def test_identical_update_keeps_timestamp(self, store):
        store.upsert_assessment(key(), {"computedScore": 50})
        _, first = store.upsert_assessment(key(), {"computedScore": 55})
        _, second = store.upsert_assessment(key(), {"computedScore": 55})
        assert first == second

    def test_concurrent_upserts_single_row(self):
        records = RecordStore()
        barrier = threading.Barrier(8)

        def worker(i):
            barrier.wait()
            records.upsert_assessment(key(), {"computedScore": i})

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert records.count_assessments() == 1
