"""Control-to-risk and risk-to-objective promotion."""

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from src.engine.risk import default_risk_inputs, evaluate_risk, priority_from_risk_score
from src.models.assessment import Assessment
from src.models.controls import normalize_control_ref
from src.models.objectives import ObjectiveStatus, Priority, SecurityObjective
from src.models.risk import PromotionSource, Risk, RiskInput
from src.utils.errors import AlreadyPromotedError, InvalidInputError

logger = logging.getLogger("rmf_manager.promotion")


def _new_id() -> str:
    return str(uuid.uuid4())


def promoted_controls(risks: Iterable[Risk]) -> List[str]:
    """Control references carried by a set of risks, in first-seen order."""
    refs: List[str] = []
    for risk in risks:
        if risk.control_id:
            ref = normalize_control_ref(risk.control_id)
            if ref not in refs:
                refs.append(ref)
    return refs


def find_risk_for_control(control_ref: str, risks: Iterable[Risk]) -> Optional[Risk]:
    """Return the risk already promoted from a control, if any."""
    target = normalize_control_ref(control_ref)
    for risk in risks:
        if risk.control_id and normalize_control_ref(risk.control_id) == target:
            return risk
    return None


def reconcile_promoted_controls(assessment: Assessment, risks: Iterable[Risk]) -> Assessment:
    """
    Rebuild an assessment's promoted-control cache from its risks.

    Args:
        assessment: Assessment whose cache may be stale
        risks: All risks belonging to the assessment

    Returns:
        Copy of the assessment with a consistent cache
    """
    owned = [r for r in risks if r.assessment_id == assessment.id]
    refs = promoted_controls(owned)
    if refs == assessment.promoted_controls:
        return assessment
    logger.debug(f"Reconciled promoted controls for assessment {assessment.id}: {refs}")
    return assessment.model_copy(
        update={"promoted_controls": refs, "updated_at": datetime.utcnow()}
    )


def promote_control_to_risk(
    assessment_id: str,
    control_ref: str,
    risk_input: Optional[RiskInput],
    existing_risks: Iterable[Risk],
) -> Risk:
    """
    Create a risk from a weak control.

    A control can be promoted at most once per assessment. The check is made
    against the risks themselves, never against the assessment's cache.

    Args:
        assessment_id: Owning assessment
        control_ref: Control reference in ``FAMILY-CONTROL`` form
        risk_input: Title, ratings and notes for the new risk
        existing_risks: Risks already recorded for the assessment

    Returns:
        The new risk, not yet persisted

    Raises:
        InvalidInputError: If the control reference is missing
        AlreadyPromotedError: If a risk already references the control
    """
    if not control_ref or not str(control_ref).strip():
        raise InvalidInputError("Control ID is required when promoting to risk")

    ref = normalize_control_ref(control_ref)
    risk_input = risk_input or RiskInput()

    scoped = [r for r in existing_risks if r.assessment_id == assessment_id]
    existing = find_risk_for_control(ref, scoped)
    if existing:
        raise AlreadyPromotedError(
            f"Control {ref} has already been promoted to risk {existing.id}",
            reference=ref,
        )

    default_impact, default_likelihood = default_risk_inputs(risk_input.control_status)
    impact = risk_input.impact if risk_input.impact is not None else default_impact
    likelihood = (
        risk_input.likelihood if risk_input.likelihood is not None else default_likelihood
    )
    evaluation = evaluate_risk(impact, likelihood)
    control_status = risk_input.control_status or "Unknown"

    risk = Risk(
        id=_new_id(),
        assessment_id=assessment_id,
        title=risk_input.title or f"{ref} Risk",
        description=risk_input.description
        or f"Risk identified from {ref} control with status: {control_status}",
        impact=evaluation.impact,
        likelihood=evaluation.likelihood,
        notes=risk_input.notes or "",
        control_id=ref,
        status=risk_input.status,
        promoted_from=PromotionSource(
            assessment_id=assessment_id,
            control_id=ref,
            control_status=control_status,
        ),
    )
    logger.info(
        f"Promoted control {ref} to risk {risk.id} "
        f"(score {risk.risk_score}, {evaluation.severity.value})"
    )
    return risk


def find_objective_for_risk(
    risk_id: str, objectives: Iterable[SecurityObjective]
) -> Optional[SecurityObjective]:
    """Return the objective already promoted from a risk, if any."""
    for objective in objectives:
        if objective.risk_id == risk_id:
            return objective
    return None


def promote_risk_to_objective(
    risk: Risk,
    existing_objectives: Iterable[SecurityObjective],
    client_id: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> SecurityObjective:
    """
    Create a security objective that mitigates a risk.

    The risk itself is left untouched.

    Args:
        risk: Source risk
        existing_objectives: Every recorded objective (scanned in full)
        client_id: Client owning the objective
        title: Optional title override
        description: Optional description override

    Returns:
        The new objective, not yet persisted

    Raises:
        AlreadyPromotedError: If an objective already references the risk
    """
    existing = find_objective_for_risk(risk.id, existing_objectives)
    if existing:
        raise AlreadyPromotedError(
            f"Risk {risk.id} has already been promoted to objective {existing.id}",
            reference=risk.id,
        )

    objective = SecurityObjective(
        id=_new_id(),
        client_id=client_id,
        title=title or f"Risk mitigation: {risk.title}",
        description=description
        or (
            f"Objective derived from risk assessment with impact {risk.impact}/5 "
            f"and likelihood {risk.likelihood}/5."
        ),
        status=ObjectiveStatus.PLANNING,
        priority=Priority(priority_from_risk_score(risk.risk_score)),
        progress=0,
        risk_id=risk.id,
        risk_notes=risk.notes,
    )
    logger.info(f"Promoted risk {risk.id} to objective {objective.id}")
    return objective
