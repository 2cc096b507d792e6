from __future__ import annotations

import math
from typing import Literal

from .errors import InvalidScore

RiskLevel = Literal["safe", "warning", "danger"]
Severity = Literal["low", "medium", "high", "critical"]
AnalysisKind = Literal["website", "contract", "token"]

RISK_LEVELS: tuple[str, ...] = ("safe", "warning", "danger")
SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
ANALYSIS_KINDS: tuple[str, ...] = ("website", "contract", "token")

MIN_SCORE = 0
MAX_SCORE = 100
SAFE_MIN = 71
WARNING_MIN = 41


def _as_finite(raw) -> float:
    # bool is an int subclass; a model answering `true` is not a score.
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise InvalidScore(f"score must be a number, got {type(raw).__name__}")
    if isinstance(raw, int):
        # Arbitrarily large JSON integers would overflow float().
        return float(max(MIN_SCORE, min(MAX_SCORE, raw)))
    value = float(raw)
    if not math.isfinite(value):
        raise InvalidScore(f"score must be finite, got {raw!r}")
    return value


def clamp_score(raw) -> int:
    """Round half up and clamp into [0, 100]."""
    value = _as_finite(raw)
    return max(MIN_SCORE, min(MAX_SCORE, int(math.floor(value + 0.5))))


def level_from_score(score) -> RiskLevel:
    """Map a risk score (higher is safer) onto safe / warning / danger.

    71-100 is safe, 41-70 warning, 0-40 danger. Out-of-range input is clamped
    first; non-numeric or non-finite input raises InvalidScore.
    """
    s = clamp_score(score)
    if s >= SAFE_MIN:
        return "safe"
    if s >= WARNING_MIN:
        return "warning"
    return "danger"
