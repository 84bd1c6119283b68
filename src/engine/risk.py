"""Risk scoring and severity classification."""

from typing import Any, Iterable, Tuple

from src.models.controls import ImplementationStatus, normalize_status
from src.models.risk import Risk, RiskEvaluation, RiskMatrix, RiskSeverity

DEFAULT_RATING = 3
MIN_RATING = 1
MAX_RATING = 5
MAX_RISK_SCORE = MAX_RATING * MAX_RATING


def clamp_rating(value: Any, default: int = DEFAULT_RATING) -> int:
    """
    Coerce an impact or likelihood rating into the 1-5 range.

    Out-of-range values are clamped; missing or non-numeric values fall back
    to the default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        rating = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(MIN_RATING, min(MAX_RATING, rating))


def calculate_severity(risk_score: int) -> RiskSeverity:
    """Classify a 1-25 risk score."""
    if risk_score >= 15:
        return RiskSeverity.CRITICAL
    elif risk_score >= 10:
        return RiskSeverity.HIGH
    elif risk_score >= 5:
        return RiskSeverity.MEDIUM
    return RiskSeverity.LOW


def display_score(risk_score: int) -> int:
    """Project a 1-25 risk score onto the inverted 0-100 display scale."""
    # 100 - (score / 25 * 100) == 100 - 4 * score, exact for integer scores
    return 100 - risk_score * 100 // MAX_RISK_SCORE


def display_severity(score: int) -> RiskSeverity:
    """Classify a score on the inverted 0-100 display scale."""
    if score < 30:
        return RiskSeverity.CRITICAL
    elif score < 50:
        return RiskSeverity.HIGH
    elif score < 70:
        return RiskSeverity.MEDIUM
    return RiskSeverity.LOW


def evaluate_risk(impact: Any = None, likelihood: Any = None) -> RiskEvaluation:
    """
    Evaluate an impact/likelihood pair.

    Args:
        impact: Impact rating, expected 1-5
        likelihood: Likelihood rating, expected 1-5

    Returns:
        Canonical 1-25 score and severity, plus the display projection
    """
    impact = clamp_rating(impact)
    likelihood = clamp_rating(likelihood)
    risk_score = impact * likelihood
    shown = display_score(risk_score)

    return RiskEvaluation(
        impact=impact,
        likelihood=likelihood,
        risk_score=risk_score,
        severity=calculate_severity(risk_score),
        display_score=shown,
        display_severity=display_severity(shown),
    )


def default_risk_inputs(control_status: Any) -> Tuple[int, int]:
    """
    Suggest impact and likelihood for a risk promoted from a control.

    Args:
        control_status: Status label of the source control

    Returns:
        (impact, likelihood)
    """
    status = normalize_status(control_status)
    if status == ImplementationStatus.NOT_IMPLEMENTED:
        return 4, 4
    elif status == ImplementationStatus.PARTIALLY_IMPLEMENTED:
        return 3, 3
    elif status == ImplementationStatus.PLANNED:
        return 2, 3
    return DEFAULT_RATING, DEFAULT_RATING


def priority_from_risk_score(risk_score: int) -> int:
    """Default objective priority (1 = High) for a risk score."""
    if risk_score >= 15:
        return 1
    elif risk_score >= 10:
        return 2
    return 3


def build_risk_matrix(risks: Iterable[Risk]) -> RiskMatrix:
    """Count risks per impact/likelihood cell and per severity."""
    matrix = RiskMatrix(by_severity={s.value: 0 for s in RiskSeverity})
    for risk in risks:
        impact = clamp_rating(risk.impact)
        likelihood = clamp_rating(risk.likelihood)
        matrix.cells[impact - 1][likelihood - 1] += 1
        matrix.by_severity[calculate_severity(impact * likelihood).value] += 1
        matrix.total += 1
    return matrix
