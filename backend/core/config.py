"""
config.py — Environment-driven settings shared by routes and core modules.
"""

import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

# Optional JSON snapshot loaded into the record store at start-up.
DATA_FILE = os.getenv("DATA_FILE", "").strip()
SAMPLE_DATA_DIR = Path(__file__).resolve().parent.parent / "sample_data"

BUNDLE_MAX_WORKERS = max(1, int(os.getenv("BUNDLE_MAX_WORKERS", "4")))
VERIFY_BASE_URL = os.getenv("VERIFY_BASE_URL", "https://elimu.ke/verify")
DEFAULT_SCHOOL_LOGO = os.getenv("DEFAULT_SCHOOL_LOGO", "")
DEFAULT_SCHOOL_MOTTO = os.getenv("DEFAULT_SCHOOL_MOTTO", "Empowering Learners")


def load_scoring_overrides() -> dict:
    """Read SCORING_STRATEGIES, a JSON object of {"subject name": "strategy"}."""
    raw = os.getenv("SCORING_STRATEGIES", "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring SCORING_STRATEGIES: not valid JSON")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Ignoring SCORING_STRATEGIES: expected a JSON object")
        return {}
    return {str(k).strip().lower(): str(v).strip().lower() for k, v in parsed.items()}
