"""
Stance Core - Drift Magnitude and Delta Scaling

Drift magnitude is structural, not quantitative: it counts which fields a
delta sets, weighted by a fixed policy, regardless of how far the numbers
move.

    magnitude = 15·[frame] + 15·[selfModel] + 10·[objective]
              + 5·|defined values| + 5·|defined sentience levels|

Scaling:
    When magnitude exceeds maxDriftPerTurn, scaleFactor = max / magnitude.
    If scaleFactor < 0.5 the frame and selfModel fields are dropped.
    Value and sentience changes always pass through unscaled, and a
    scaleFactor ≥ 0.5 lets the delta through unchanged even though it is
    nominally too big. This is truncation, not proportional scaling.
"""

from __future__ import annotations
import dataclasses
import logging
from typing import Tuple

from .parameters import DRIFT_WEIGHTS, DriftWeights, TRUNCATION_SCALE_FACTOR
from .state import StanceDelta

logger = logging.getLogger(__name__)


def calculate_drift_magnitude(delta: StanceDelta, weights: DriftWeights = DRIFT_WEIGHTS) -> float:
    """
    Compute the drift magnitude of a proposed delta.

    Args:
        delta: Proposed change
        weights: Drift weights (fixed policy; overridable for research only)

    Returns:
        Magnitude ≥ 0. Pure function of which fields are set.
    """
    magnitude = 0.0

    if delta.frame is not None:
        magnitude += weights.frame
    if delta.self_model is not None:
        magnitude += weights.self_model
    if delta.objective is not None:
        magnitude += weights.objective

    if delta.values is not None:
        magnitude += len(delta.values.defined()) * weights.value_field

    if delta.sentience is not None:
        magnitude += len(delta.sentience.defined_levels()) * weights.sentience_level

    return magnitude


def scale_factor_for(drift_magnitude: float, max_drift_per_turn: float) -> float:
    """max/magnitude when over the cap, else 1.0."""
    if drift_magnitude <= max_drift_per_turn or drift_magnitude <= 0:
        return 1.0
    return max_drift_per_turn / drift_magnitude


def scale_delta(delta: StanceDelta, factor: float) -> StanceDelta:
    """
    Apply the coarse truncation rule for a given scale factor.

    Returns a new delta; the input is never modified.
    """
    if factor >= TRUNCATION_SCALE_FACTOR:
        return delta
    return dataclasses.replace(delta, frame=None, self_model=None)


def limit_delta(delta: StanceDelta, max_drift_per_turn: float) -> Tuple[StanceDelta, float, float]:
    """
    Measure a delta and truncate it against the per-turn cap.

    Returns:
        (delta to apply, raw magnitude, scale factor)
    """
    magnitude = calculate_drift_magnitude(delta)
    factor = scale_factor_for(magnitude, max_drift_per_turn)
    scaled = scale_delta(delta, factor)
    if scaled is not delta:
        logger.info(
            f"Delta truncated: magnitude {magnitude:.1f} > cap {max_drift_per_turn:.1f} "
            f"(scale {factor:.2f}), dropped frame/selfModel"
        )
    return scaled, magnitude, factor
