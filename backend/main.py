"""
Elimu CBC Engine — assessment scoring and academic ranking
FastAPI backend entry point.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import ALLOWED_ORIGINS, DATA_FILE, LOG_LEVEL, SCHOOL_NAME
from core.errors import EngineError
from routes.analyze import router as analyze_router
from routes.deps import store
from routes.marks import router as marks_router
from routes.records import router as records_router
from routes.reports import router as reports_router

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Elimu CBC Engine API",
    description=(
        "Competency Based Curriculum mark entry, report forms, broadsheets, "
        "grade distributions and rankings."
    ),
    version="1.0.0",
)

# CORS — allow the React dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


if DATA_FILE:
    store.load_file(DATA_FILE)

# Register route modules
app.include_router(records_router, prefix="/api/records", tags=["Records"])
app.include_router(marks_router, prefix="/api/assessments", tags=["Assessments"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
app.include_router(analyze_router, prefix="/api/analyze", tags=["Analytics"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
        "assessments": store.count_assessments(),
    }
