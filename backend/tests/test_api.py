"""
Tests for the HTTP layer — routes, tenant resolution, formats and error mapping.
"""

import io
import os
import sys
import zipfile
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from main import app

SCHOOL = {"school_code": "ELM"}


@pytest.fixture
def client():
    client = TestClient(app)
    response = client.post("/api/records/sample")
    assert response.status_code == 200
    return client


def params(**extra):
    return {**SCHOOL, **extra}


class TestTenancy:
    """Every request is scoped to a school."""

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["assessments"] == 49

    def test_school_required(self, client):
        response = client.get("/api/records/exams/Term 1/2025")
        assert response.status_code == 400

    def test_unknown_school(self, client):
        response = client.get("/api/records/exams/Term 1/2025", params={"school_code": "NOPE"})
        assert response.status_code == 404

    def test_school_header(self, client):
        response = client.get("/api/records/exams/Term 1/2025", headers={"X-School-Id": "sch-elimu"})
        assert response.status_code == 200
        assert response.json()["examOrder"] == ["Opener", "Mid Term"]


class TestRecordRoutes:
    """Tests for /api/records."""

    CONFIG = {"subject": "sub-mat", "grade": 10, "term": "Term 1", "exam": "End Term", "year": 2025,
              "papers": [{"paperNo": 1, "total": 100}]}

    def test_create_paper_config(self, client):
        response = client.post("/api/records/paper-configs", params=params(), json=self.CONFIG)
        assert response.status_code == 201
        assert response.json()["school"] == "sch-elimu"

    def test_duplicate_paper_config(self, client):
        client.post("/api/records/paper-configs", params=params(), json=self.CONFIG)
        response = client.post("/api/records/paper-configs", params=params(), json=self.CONFIG)
        assert response.status_code == 409

    def test_paper_config_missing_fields(self, client):
        response = client.post("/api/records/paper-configs", params=params(), json={"subject": "sub-mat"})
        assert response.status_code == 400

    def test_paper_config_unknown_subject(self, client):
        response = client.post("/api/records/paper-configs", params=params(), json={**self.CONFIG, "subject": "sub-x"})
        assert response.status_code == 404


class TestMarkRoutes:
    """Tests for /api/assessments."""

    def test_submit_without_paper_config(self, client):
        payload = {"className": "Grade 10 East", "subjectName": "Physics", "term": "Term 3",
                   "exam": "Opener", "year": 2025, "marks": []}
        response = client.post("/api/assessments/marks", params=params(), json=payload)
        assert response.status_code == 400
        assert response.json()["detail"] == "Paper configuration not found for this setup"

    def test_update_then_read(self, client):
        payload = {"subjectName": "Mathematics", "term": "Term 1", "exam": "Mid Term", "year": 2025,
                   "updates": [{"admNo": "S003", "papers": [{"paperNo": 1, "score": 66}]}]}
        response = client.put("/api/assessments/marks", params=params(), json=payload)
        assert response.status_code == 200
        assert response.json()["count"] == 1

        rows = client.get("/api/assessments/marks", params=params(
            term="Term 1", exam="Mid Term", year=2025, className="Grade 10 East", subjectName="Mathematics",
        )).json()
        assert rows[2]["papers"][0]["score"] == 66

    def test_empty_listing_is_404(self, client):
        response = client.get("/api/assessments/marks", params=params(
            term="Term 2", exam="Opener", year=2025, className="Grade 10 East", subjectName="Mathematics",
        ))
        assert response.status_code == 404

    def test_student_assessment(self, client):
        response = client.get("/api/assessments/student/S002/Mathematics", params=params(term="Term 1", exam="Opener", year=2025))
        assert response.status_code == 200
        assert response.json()["assessment"]["mean"] == 88.0

    def test_student_assessment_unknown_exam(self, client):
        response = client.get("/api/assessments/student/S002/Mathematics", params=params(term="Term 1", exam="Mock", year=2025))
        assert response.status_code == 400


class TestReportRoutes:
    """Tests for /api/reports."""

    def test_report_forms_json(self, client):
        response = client.get("/api/reports/report-forms", params=params(
            term="Term 1", year=2025, exam="Mid Term", className="Grade 10 East",
        ))
        assert response.status_code == 200
        assert [f["position"] for f in response.json()["reportForms"]] == [1, 2, 3]

    def test_report_form_pdf(self, client):
        response = client.get("/api/reports/report-forms", params=params(
            term="Term 1", year=2025, exam="Mid Term", admNo="S001", format="pdf",
        ))
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert "S001_reportform.pdf" in response.headers["content-disposition"]

    def test_unsupported_format(self, client):
        response = client.get("/api/reports/report-forms", params=params(
            term="Term 1", year=2025, exam="Mid Term", admNo="S001", format="docx",
        ))
        assert response.status_code == 400

    def test_broadsheet_excel(self, client):
        response = client.get("/api/reports/broadsheet", params=params(
            term="Term 1", exam="Mid Term", year=2025, pathway="stem", className="Grade 10 East", format="xlsx",
        ))
        assert response.status_code == 200
        assert "Broadsheet_Grade_10_East_Term_1_2025_STEM.xlsx" in response.headers["content-disposition"]

    def test_broadsheet_invalid_pathway(self, client):
        response = client.get("/api/reports/broadsheet", params=params(
            term="Term 1", exam="Mid Term", year=2025, pathway="languages", className="Grade 10 East",
        ))
        assert response.status_code == 400

    def test_bundle(self, client):
        response = client.get("/api/reports/broadsheet/bundle", params=params(
            gradeName="10", term="Term 1", exam="Mid Term", year=2025,
        ))
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert len(zf.namelist()) == 4
        assert "x-bundle-failures" not in response.headers


class TestAnalyzeRoutes:
    """Tests for /api/analyze."""

    def test_distribution(self, client):
        response = client.get("/api/analyze/distribution/Grade 10/Term 1/2025/Mid Term", params=params())
        assert response.status_code == 200
        assert response.json()["distribution"]["STEM"]["Exceeding Expectations 1"] == 1

    def test_ranking_pdf(self, client):
        response = client.get("/api/analyze/ranking/10/Term 1/2025/Mid Term", params=params(format="pdf"))
        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")

    def test_subject_ranking(self, client):
        response = client.get("/api/analyze/subject-ranking/10/Term 1/2025/Mid Term", params=params())
        assert response.status_code == 200
        assert response.json()["raw"]
        assert response.json()["previousExam"] == "Opener"

    def test_subject_ranking_pdf(self, client):
        response = client.get("/api/analyze/subject-ranking/10/Term 1/2025/Mid Term", params=params(format="pdf", scope="grade"))
        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")

    def test_grade_thresholds(self, client):
        response = client.get("/api/analyze/grade-thresholds")
        assert len(response.json()["thresholds"]) == 8
