"""Compliance scoring over raw control statuses."""

import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from src.models.controls import (
    ComplianceSummary,
    ControlStatus,
    FamilyScore,
    ImplementationStatus,
    STATUS_POINTS,
    get_family_title,
    normalize_status,
)

logger = logging.getLogger("rmf_manager.scoring")


def round_ratio(numerator: int, denominator: int) -> int:
    """
    Round ``numerator / denominator`` half-up using integer arithmetic.

    Returns 0 when the denominator is zero.
    """
    if denominator <= 0:
        return 0
    return (2 * numerator + denominator) // (2 * denominator)


def _split_entry(entry: Any) -> tuple:
    """Extract (raw status, notes) from a bare label or a mapping."""
    if isinstance(entry, Mapping):
        return entry.get("status"), entry.get("notes")
    return entry, None


def ingest_controls(control_map: Optional[Mapping]) -> Dict[str, List[ControlStatus]]:
    """
    Normalize a raw control map into ControlStatus records per family.

    Args:
        control_map: Mapping of family id to mapping of control id to a status
            label or a ``{"status": ..., "notes": ...}`` object

    Returns:
        Ordered mapping of family id to its normalized controls. Malformed
        families are skipped; malformed entries become Unrecognized.
    """
    families: Dict[str, List[ControlStatus]] = {}
    if not control_map or not isinstance(control_map, Mapping):
        return families

    for family_id, controls in control_map.items():
        if not isinstance(controls, Mapping):
            logger.warning(f"Skipping family {family_id!r}: controls are not a mapping")
            continue

        records = []
        for control_id, entry in controls.items():
            raw_status, notes = _split_entry(entry)
            records.append(
                ControlStatus(
                    family_id=str(family_id),
                    control_id=str(control_id),
                    status=normalize_status(raw_status),
                    raw_status=raw_status if isinstance(raw_status, str) else None,
                    notes=notes if isinstance(notes, str) else None,
                )
            )
        families[str(family_id)] = records

    return families


def score_family(family_id: str, controls: List[ControlStatus]) -> FamilyScore:
    """
    Score a single control family.

    Args:
        family_id: Control family identifier
        controls: Normalized controls of the family

    Returns:
        Family score with per-status counts
    """
    score = FamilyScore(family_id=family_id, family_title=get_family_title(family_id))
    score.total_controls = len(controls)

    for control in controls:
        if not control.applicable:
            score.not_applicable += 1
            continue

        score.applicable += 1
        status = control.status
        score.points += STATUS_POINTS[status]
        if status == ImplementationStatus.IMPLEMENTED:
            score.implemented += 1
        elif status == ImplementationStatus.PARTIALLY_IMPLEMENTED:
            score.partial += 1
        elif status == ImplementationStatus.PLANNED:
            score.planned += 1
        elif status == ImplementationStatus.NOT_IMPLEMENTED:
            score.not_implemented += 1
        else:
            score.unrecognized += 1

    score.average_score = round_ratio(score.points, score.applicable)
    return score


def score_controls(control_map: Optional[Mapping]) -> ComplianceSummary:
    """
    Compute per-family and overall compliance scores.

    Implemented controls earn 100 points, partially implemented 50, planned 25
    and everything else 0. Not applicable controls are left out of both the
    points and the denominator. Never raises: incomplete imports degrade to a
    zero-filled summary.

    Args:
        control_map: Raw control statuses keyed by family, then control

    Returns:
        Compliance summary with family scores in input order
    """
    summary = ComplianceSummary()

    try:
        families = ingest_controls(control_map)
    except Exception as e:
        logger.warning(f"Control map could not be read, scoring as empty: {e}")
        return summary

    total_points = 0
    implemented = partial = planned = not_implemented = 0

    for family_id, controls in families.items():
        family = score_family(family_id, controls)
        summary.family_scores.append(family)

        summary.total_controls += family.total_controls
        summary.applicable_controls += family.applicable
        total_points += family.points
        implemented += family.implemented
        partial += family.partial
        planned += family.planned
        not_implemented += family.not_implemented

    applicable = summary.applicable_controls
    summary.overall_score = round_ratio(total_points, applicable)
    summary.implemented_pct = round_ratio(implemented * 100, applicable)
    summary.partial_pct = round_ratio(partial * 100, applicable)
    summary.planned_pct = round_ratio(planned * 100, applicable)
    summary.not_implemented_pct = round_ratio(not_implemented * 100, applicable)

    logger.debug(
        f"Scored {len(summary.family_scores)} families, "
        f"{applicable} applicable controls, overall {summary.overall_score}"
    )
    return summary


def compliance_rating(score: int) -> str:
    """Map a 0-100 compliance score to a display band."""
    if score < 30:
        return "Critical"
    elif score < 50:
        return "Poor"
    elif score < 70:
        return "Fair"
    elif score < 85:
        return "Good"
    return "Excellent"


def risk_candidates(control_map: Optional[Mapping]) -> List[ControlStatus]:
    """
    List controls eligible for promotion to a risk.

    Args:
        control_map: Raw control statuses keyed by family, then control

    Returns:
        Partially implemented, planned and not implemented controls
    """
    weak = {
        ImplementationStatus.PARTIALLY_IMPLEMENTED,
        ImplementationStatus.PLANNED,
        ImplementationStatus.NOT_IMPLEMENTED,
    }
    candidates = []
    for controls in ingest_controls(control_map).values():
        candidates.extend(c for c in controls if c.status in weak)
    return candidates


def find_duplicate_controls(control_map: Optional[Mapping]) -> List[str]:
    """Return control references that appear more than once across families."""
    seen = set()
    duplicates = []
    for controls in ingest_controls(control_map).values():
        for control in controls:
            ref = control.control_ref
            if ref in seen and ref not in duplicates:
                duplicates.append(ref)
            seen.add(ref)
    return duplicates
