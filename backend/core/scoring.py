"""
scoring.py — Per-paper marks to a single 0-100 subject score.

Subjects follow different national weighting conventions:
- weighted_science: two theory papers at 37.5% each plus the practical (3 papers)
- simple_average:   straight mean of two papers
- triple_average:   straight mean of three papers
- normalized:       total score over total marks, as a percentage

The strategy is an attribute of the subject, resolved once when the subject
is registered. Absent papers carry the sentinel score -1.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from core.config import load_scoring_overrides

ABSENT = -1


class ScoringStrategy(str, Enum):
    WEIGHTED_SCIENCE = "weighted_science"
    SIMPLE_AVERAGE = "simple_average"
    TRIPLE_AVERAGE = "triple_average"
    NORMALIZED = "normalized"


DEFAULT_SCORING_STRATEGIES = {
    "biology": ScoringStrategy.WEIGHTED_SCIENCE,
    "chemistry": ScoringStrategy.WEIGHTED_SCIENCE,
    "physics": ScoringStrategy.WEIGHTED_SCIENCE,
    "business studies": ScoringStrategy.SIMPLE_AVERAGE,
    "english": ScoringStrategy.TRIPLE_AVERAGE,
    "kiswahili": ScoringStrategy.TRIPLE_AVERAGE,
}


def _strategy_table() -> Dict[str, ScoringStrategy]:
    table = dict(DEFAULT_SCORING_STRATEGIES)
    for name, value in load_scoring_overrides().items():
        table[name] = parse_strategy(value)
    return table


def parse_strategy(value: Any) -> ScoringStrategy:
    """Coerce a strategy name; raises ValueError for unknown names."""
    if isinstance(value, ScoringStrategy):
        return value
    try:
        return ScoringStrategy(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in ScoringStrategy)
        raise ValueError(f"Unknown scoring strategy '{value}'. Valid strategies: {valid}")


def resolve_scoring_strategy(subject_name: str, explicit: Any = None) -> ScoringStrategy:
    """Strategy for a subject at definition time: explicit value, then the name table."""
    if explicit:
        return parse_strategy(explicit)
    name = str(subject_name or "").strip().lower()
    return _strategy_table().get(name, ScoringStrategy.NORMALIZED)


# ── Helpers ─────────────────────────────────────────────────────────

def _num(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _paper_score(papers: List[Dict[str, Any]], paper_no: int) -> float:
    for p in papers:
        if _num(p.get("paperNo"), default=-999) == paper_no:
            return _num(p.get("score"), default=ABSENT)
    return ABSENT


def _floor(score: float) -> float:
    return max(score, 0.0)


# ── Score computation ───────────────────────────────────────────────

def compute_subject_score(
    papers: List[Dict[str, Any]],
    subject_name: Optional[str] = None,
    strategy: Any = None,
) -> float:
    """
    Compute the subject score for one assessment.

    Pass the subject's stored `strategy`; `subject_name` is only consulted
    when no strategy is given. Returns -1 when neither identifies a subject.
    """
    if strategy is None:
        if not subject_name or not isinstance(subject_name, str):
            return ABSENT
        strategy = resolve_scoring_strategy(subject_name)
    strategy = parse_strategy(strategy)
    papers = list(papers or [])

    if len(papers) == 3 and strategy == ScoringStrategy.WEIGHTED_SCIENCE:
        p1, p2, p3 = (_floor(_paper_score(papers, n)) for n in (1, 2, 3))
        return (p1 + p2) * 0.375 + p3

    if len(papers) == 2 and strategy == ScoringStrategy.SIMPLE_AVERAGE:
        p1, p2 = (_floor(_paper_score(papers, n)) for n in (1, 2))
        return (p1 + p2) / 2

    if len(papers) == 3 and strategy == ScoringStrategy.TRIPLE_AVERAGE:
        p1, p2, p3 = (_floor(_paper_score(papers, n)) for n in (1, 2, 3))
        return (p1 + p2 + p3) / 3

    if len(papers) == 1:
        score = _num(papers[0].get("score"), default=ABSENT)
        total = _num(papers[0].get("total"))
        return _floor(score) / total * 100 if total > 0 else 0.0

    total_score = sum(_floor(_num(p.get("score"), default=ABSENT)) for p in papers)
    total_max = sum(_num(p.get("total")) for p in papers)
    return total_score / total_max * 100 if total_max > 0 else 0.0


def paper_mean(papers: Iterable[Dict[str, Any]]) -> Optional[float]:
    """Raw mean of paper scores, absent sentinels included. Used by subject ranking only."""
    scores = [_num(p.get("score"), default=ABSENT) for p in (papers or [])]
    if not scores:
        return None
    return sum(scores) / len(scores)


# ── Mark validation ─────────────────────────────────────────────────

def _parse_raw_score(raw: Any) -> Optional[float]:
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return float(ABSENT)
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value:  # NaN
        return None
    return value


def evaluate_papers(
    submitted: List[Dict[str, Any]],
    config_papers: List[Dict[str, Any]],
    adm_no: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Check submitted paper scores against the configured papers.

    Every configured paper is expected; a missing entry counts as absent.
    Entries that are not mappings are ignored.
    Returns the enriched papers, totals, absent count, percentage and a list
    of per-paper validation errors (the row is unusable when it is non-empty).
    """
    total_score = 0.0
    total_out_of = 0.0
    absent_count = 0
    papers: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    entries = [p for p in submitted or [] if isinstance(p, dict)]
    for config_paper in config_papers:
        paper_no = int(config_paper["paperNo"])
        max_score = _num(config_paper.get("total"))
        entry = next(
            (p for p in entries if _num(p.get("paperNo"), default=-999) == paper_no),
            None,
        )
        raw = entry.get("score") if entry else None
        score = _parse_raw_score(raw)

        if score is None or not (score == ABSENT or 0 <= score <= max_score):
            errors.append({
                "admNo": adm_no,
                "paperNo": paper_no,
                "score": raw,
                "max": max_score,
                "message": (
                    f"Invalid score for paper {paper_no}. "
                    f"Must be between 0 and {max_score:g}, or -1 for absent."
                ),
            })
            continue

        if score == ABSENT:
            absent_count += 1
        else:
            total_score += score
        total_out_of += max_score
        papers.append({
            "paperNo": paper_no,
            "score": int(score) if float(score).is_integer() else score,
            "total": int(max_score) if max_score.is_integer() else max_score,
        })

    percentage = round(total_score / total_out_of * 100, 2) if total_out_of > 0 else 0.0
    return {
        "papers": papers,
        "totalScore": total_score,
        "totalOutOf": total_out_of,
        "absentCount": absent_count,
        "percentage": percentage,
        "errors": errors,
    }
