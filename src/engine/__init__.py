"""Pure computation core: scoring, risk evaluation, promotion and rollup."""

from .compliance import score_controls, risk_candidates, compliance_rating
from .risk import evaluate_risk, build_risk_matrix, priority_from_risk_score
from .promotion import (
    promote_control_to_risk,
    promote_risk_to_objective,
    promoted_controls,
    reconcile_promoted_controls,
)
from .progress import recompute_progress, apply_work_item_update

__all__ = [
    "score_controls",
    "risk_candidates",
    "compliance_rating",
    "evaluate_risk",
    "build_risk_matrix",
    "priority_from_risk_score",
    "promote_control_to_risk",
    "promote_risk_to_objective",
    "promoted_controls",
    "reconcile_promoted_controls",
    "recompute_progress",
    "apply_work_item_update",
]
