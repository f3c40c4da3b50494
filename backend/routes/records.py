"""
Record routes — bulk loading, paper configuration and exam listings.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException

from core.config import SAMPLE_DATA_DIR
from core.store import RecordStore
from routes.deps import get_store, resolve_school

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/snapshot")
async def load_snapshot(payload: dict, replace: bool = False, store: RecordStore = Depends(get_store)):
    """Load schools, classes, pathways, subjects, students, paper configs and assessments."""
    if not payload:
        raise HTTPException(400, "No records provided.")
    if replace:
        store.clear()
    return {"loaded": store.load_snapshot(payload)}


@router.post("/sample")
async def load_sample(store: RecordStore = Depends(get_store)):
    """Replace the store with the bundled sample school."""
    path = SAMPLE_DATA_DIR / "sample_school.json"
    if not path.exists():
        raise HTTPException(404, "Sample data not found.")
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    store.clear()
    return {"loaded": store.load_snapshot(data)}


@router.post("/paper-configs", status_code=201)
async def create_paper_config(payload: dict, school: dict = Depends(resolve_school), store: RecordStore = Depends(get_store)):
    """Register the papers of a subject for one grade/term/exam/year."""
    required = ("subject", "grade", "term", "exam", "year", "papers")
    missing = [k for k in required if payload.get(k) in (None, "")]
    if missing:
        raise HTTPException(400, f"Missing required fields: {', '.join(missing)}")
    if not store.find_subject(school["id"], subject_id=payload["subject"]):
        raise HTTPException(404, "Subject not found")
    config = store.create_paper_config({**payload, "school": school["id"]})
    logger.info(
        "Paper config created: %s grade %s %s %s %s (sequence %s)",
        config["subject"], config["grade"], config["term"], config["exam"], config["year"], config["sequence"],
    )
    return config


@router.get("/exams/{term}/{year}")
async def list_exams(term: str, year: int, school: dict = Depends(resolve_school), store: RecordStore = Depends(get_store)):
    """Configured exam order and the exams that already have marks."""
    return {
        "term": term,
        "year": year,
        "examOrder": store.exam_order(school["id"], term, year),
        "recordedExams": store.recorded_exams(school["id"], term, year),
    }
