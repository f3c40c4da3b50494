"""
cbc_grading.py — Competency Based Curriculum grade bands.

Maps a 0-100 score onto the eight ordered CBC competency bands:
  Below / Approaching / Meeting / Exceeding Expectations, each at level 1 or 2.

Also carries the two canned text tables (remarks and auto-comments), the
band colours used by ranking views, and the half-up rounding every displayed
whole-number score goes through.
"""

import math
import re
from typing import Any, Dict, List, Optional

import numpy as np


# CBC grade bands (min_score, band, remark). Ordered high to low.
GRADE_BANDS = [
    (90.0, "Exceeding Expectations 2", "Consistently applies skills and understands deeply"),
    (80.0, "Exceeding Expectations 1", "Often goes beyond grade-level expectations"),
    (70.0, "Meeting Expectations 2", "Demonstrates solid understanding and application"),
    (60.0, "Meeting Expectations 1", "Meets grade-level outcomes with minor support"),
    (50.0, "Approaching Expectations 2", "Beginning to meet expectations but needs guidance"),
    (40.0, "Approaching Expectations 1", "Showing progress but requires regular support"),
    (30.0, "Below Expectations 2", "Needs fundamental support to develop competencies"),
    (float("-inf"), "Below Expectations 1", "Limited evidence of required skills or understanding"),
]

# Band names high to low, the column order of distribution tables.
BAND_NAMES: List[str] = [band for _, band, _ in GRADE_BANDS]

# Comments written onto assessments and report forms. Kept apart from the
# remark table: the two are looked up independently.
AUTO_COMMENTS = {
    "Exceeding Expectations 2": "Consistently applies skills and understands deeply.",
    "Exceeding Expectations 1": "Often goes beyond grade-level expectations.",
    "Meeting Expectations 2": "Demonstrates solid understanding and application.",
    "Meeting Expectations 1": "Meets grade-level outcomes with minor support.",
    "Approaching Expectations 2": "Beginning to meet expectations but needs guidance.",
    "Approaching Expectations 1": "Showing progress but requires regular support.",
    "Below Expectations 2": "Needs fundamental support to develop competencies.",
    "Below Expectations 1": "Limited evidence of required skills or understanding.",
}

GRADE_COLORS = {
    "Exceeding Expectations 2": "#1b5e20",
    "Exceeding Expectations 1": "#388e3c",
    "Meeting Expectations 2": "#1976d2",
    "Meeting Expectations 1": "#64b5f6",
    "Approaching Expectations 2": "#fbc02d",
    "Approaching Expectations 1": "#fdd835",
    "Below Expectations 2": "#e53935",
    "Below Expectations 1": "#b71c1c",
}


def _as_number(score: Any) -> Optional[float]:
    if isinstance(score, (bool, np.bool_)):
        return None
    if not isinstance(score, (int, float, np.integer, np.floating)):
        return None
    value = float(score)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def round_half_up(value: Optional[float]) -> Optional[int]:
    """Round to the nearest whole number with .5 going up (86.5 -> 87, -0.5 -> 0)."""
    if value is None:
        return None
    return int(math.floor(float(value) + 0.5))


def get_grade_remark(score: Any) -> Dict[str, Optional[str]]:
    """Classify a score into its CBC band and canned remark."""
    value = _as_number(score)
    if value is None:
        return {"grade": None, "remark": "Invalid score"}

    for min_score, band, remark in GRADE_BANDS:
        if value >= min_score:
            return {"grade": band, "remark": remark}

    # unreachable, the last band has no lower bound
    return {"grade": GRADE_BANDS[-1][1], "remark": GRADE_BANDS[-1][2]}


def get_auto_comment(grade: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
    """Comment for a band; falls back to the supplied remark when the band has none."""
    if grade in AUTO_COMMENTS:
        return AUTO_COMMENTS[grade]
    return fallback


def extract_level(grade: Optional[str]) -> Optional[int]:
    """Trailing level digit of a band name ("Meeting Expectations 2" -> 2)."""
    if not grade or not isinstance(grade, str):
        return None
    last = grade.strip().split(" ")[-1]
    match = re.match(r"^[+-]?\d+", last)
    return int(match.group(0)) if match else None


def band_rank(grade: Optional[str]) -> int:
    """Ordinal of a band, 1 for Below Expectations 1 up to 8; 0 when unknown."""
    if grade not in BAND_NAMES:
        return 0
    return len(BAND_NAMES) - BAND_NAMES.index(grade)


def get_grade_color(grade: Optional[str]) -> str:
    return GRADE_COLORS.get(grade, "gray")


def get_all_grade_thresholds() -> List[Dict[str, Any]]:
    """Return the full band scale for legends."""
    thresholds = []
    for idx, (min_score, band, remark) in enumerate(GRADE_BANDS):
        max_score = 100.0 if idx == 0 else GRADE_BANDS[idx - 1][0] - 0.01
        thresholds.append(
            {
                "min": 0.0 if math.isinf(min_score) else min_score,
                "max": round(max_score, 2),
                "grade": band,
                "level": extract_level(band),
                "remark": remark,
                "comment": AUTO_COMMENTS[band],
                "color": GRADE_COLORS[band],
            }
        )
    return thresholds


# 3-term calendar used by report summaries.
TERM_ORDER = ["Term 1", "Term 2", "Term 3"]
SUMMARY_GRADES = ["10", "11", "12"]
