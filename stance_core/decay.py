"""
Stance Core - Decay Modeling

Projects how each numeric stance field relaxes toward a baseline when left
unreinforced, predicts when a field will cross the alert threshold, and
recommends interventions.

Decay Curves (a = current - baseline, t = hours elapsed, λ = ln2 / halfLife):
    exponential: baseline + a·e^(−λt)
    linear:      current − a·t / (2·halfLife)
    logarithmic: baseline + a / (1 + ln(1 + t/halfLife))
    plateau:     baseline + a·(1 − tanh(t / (2·halfLife)))
    step:        baseline + a·0.5^⌊t/halfLife⌋
    oscillating: baseline + a·e^(−0.5λt)·(1 + 0.1·cos(2πt/24))

At t = 0 every curve returns the current value exactly.

Risk Tiers (hours until the projection first drops below threshold):
    < 24   → critical
    < 72   → high
    < 168  → medium
    else   → low   (including no crossing within the 720 h search)

The engine reads stances but never mutates controller-owned state.
"""

from __future__ import annotations
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import NotFoundError, ValidationError
from .fields import NUMERIC_PATHS, get_field
from .parameters import (
    CurveType,
    DecayParams,
    DEFAULT_DECAY_PARAMS,
    DEFAULT_HALF_LIVES,
    FALLBACK_HALF_LIFE,
    FIELD_CURVES,
    VALUE_MIN,
    VALUE_MAX,
)
from .state import Stance
from .utils import clip, is_number

logger = logging.getLogger(__name__)

RISK_LEVELS = ("low", "medium", "high", "critical")
REFRESH_TRIGGERS = ("scheduled", "manual", "threshold")

# risk level -> recommendation priority
_PRIORITY_FOR_RISK = {"critical": "urgent", "high": "high", "medium": "medium"}


# =============================================================================
# Curve math
# =============================================================================

def decay_rate_for(half_life: float) -> float:
    """λ = ln(2) / halfLife"""
    return math.log(2) / half_life


def decay_values(
    curve_type: Union[CurveType, str],
    current: float,
    baseline: float,
    half_life: float,
    hours: Union[float, Sequence[float], np.ndarray],
) -> np.ndarray:
    """
    Evaluate a decay curve over an array of elapsed hours.

    Args:
        curve_type: One of CurveType
        current: Value at t = 0
        baseline: Value the curve relaxes toward
        half_life: Half-life in hours (> 0)
        hours: Elapsed hours (scalar or array, ≥ 0)

    Returns:
        Array of projected values, same shape as hours (not clamped)
    """
    try:
        curve_type = CurveType(curve_type)
    except ValueError as e:
        raise ValidationError(f"Unknown curve type: {curve_type!r}") from e

    t = np.asarray(hours, dtype=float)
    above = current - baseline
    lam = decay_rate_for(half_life)

    if curve_type is CurveType.EXPONENTIAL:
        out = baseline + above * np.exp(-lam * t)
    elif curve_type is CurveType.LINEAR:
        out = current - above * t / (2.0 * half_life)
    elif curve_type is CurveType.LOGARITHMIC:
        out = baseline + above / (1.0 + np.log1p(t / half_life))
    elif curve_type is CurveType.PLATEAU:
        out = baseline + above * (1.0 - np.tanh(t / (2.0 * half_life)))
    elif curve_type is CurveType.STEP:
        out = baseline + above * np.power(0.5, np.floor(t / half_life))
    else:
        out = baseline + above * np.exp(-0.5 * lam * t) * (1.0 + 0.1 * np.cos(2.0 * np.pi * t / 24.0))

    return np.where(t == 0, current, out)


# =============================================================================
# Model types
# =============================================================================

@dataclass
class ProjectedValue:
    timestamp: datetime
    value: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "confidence": self.confidence,
        }


@dataclass
class DecayCurve:
    """Decay curve for one numeric field."""
    field: str
    curve_type: CurveType
    half_life: float
    baseline: float
    current_value: float
    decay_rate: float
    projected_values: List[ProjectedValue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "curveType": self.curve_type.value,
            "halfLife": self.half_life,
            "baseline": self.baseline,
            "currentValue": self.current_value,
            "decayRate": self.decay_rate,
            "projectedValues": [p.to_dict() for p in self.projected_values],
        }


@dataclass
class EnvironmentalFactor:
    """
    External influence on decay.

    impact is in [-1, 1] (negative accelerates decay), weight in [0, 1].
    """
    name: str
    type: str
    impact: float
    weight: float
    current_state: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "impact": self.impact,
            "weight": self.weight,
            "currentState": self.current_state,
        }


@dataclass
class UsagePattern:
    average_sessions_per_day: float
    average_session_duration: float  # minutes
    last_active: datetime
    activity_hours: List[int]
    frequency_trend: str  # increasing | stable | decreasing
    engagement_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "averageSessionsPerDay": self.average_sessions_per_day,
            "averageSessionDuration": self.average_session_duration,
            "lastActive": self.last_active.isoformat(),
            "activityHours": list(self.activity_hours),
            "frequencyTrend": self.frequency_trend,
            "engagementScore": self.engagement_score,
        }


@dataclass
class DecayPrediction:
    field: str
    current_value: float
    predicted_value: float
    time_to_threshold: float  # hours; inf if no crossing within the horizon
    threshold: float
    confidence: float
    risk_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "currentValue": self.current_value,
            "predictedValue": self.predicted_value,
            "timeToThreshold": None if math.isinf(self.time_to_threshold) else self.time_to_threshold,
            "threshold": self.threshold,
            "confidence": self.confidence,
            "riskLevel": self.risk_level,
        }


@dataclass
class DecayRecommendation:
    id: str
    type: str
    priority: str
    field: str
    action: str
    expected_improvement: float
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "field": self.field,
            "action": self.action,
            "expectedImprovement": self.expected_improvement,
            "reasoning": self.reasoning,
        }


@dataclass
class RefreshEvent:
    timestamp: datetime
    field: str
    previous_value: float
    new_value: float
    trigger: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "field": self.field,
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "trigger": self.trigger,
        }


@dataclass
class RefreshSchedule:
    enabled: bool
    interval: float  # hours
    next_refresh: datetime
    auto_refresh_fields: List[str]
    refresh_history: List[RefreshEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval": self.interval,
            "nextRefresh": self.next_refresh.isoformat(),
            "autoRefreshFields": list(self.auto_refresh_fields),
            "refreshHistory": [e.to_dict() for e in self.refresh_history],
        }


@dataclass
class DecayModel:
    id: str
    stance_id: str
    curves: List[DecayCurve]
    factors: List[EnvironmentalFactor]
    usage_pattern: UsagePattern
    predictions: List[DecayPrediction]
    recommendations: List[DecayRecommendation]
    created_at: datetime
    updated_at: datetime
    refresh_schedule: Optional[RefreshSchedule] = None

    def curve_for(self, field_path: str) -> Optional[DecayCurve]:
        for curve in self.curves:
            if curve.field == field_path:
                return curve
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stanceId": self.stance_id,
            "curves": [c.to_dict() for c in self.curves],
            "factors": [f.to_dict() for f in self.factors],
            "usagePattern": self.usage_pattern.to_dict(),
            "predictions": [p.to_dict() for p in self.predictions],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "refreshSchedule": self.refresh_schedule.to_dict() if self.refresh_schedule else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class DecayAnalysis:
    overall_health: float  # mean current value, 0-100
    decay_rate: float  # mean decay per day
    stable_fields: List[str]
    decaying_fields: List[str]
    critical_fields: List[str]
    days_until_action: float  # inf if nothing will cross

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallHealth": self.overall_health,
            "decayRate": self.decay_rate,
            "stableFields": list(self.stable_fields),
            "decayingFields": list(self.decaying_fields),
            "criticalFields": list(self.critical_fields),
            "daysUntilAction": None if math.isinf(self.days_until_action) else self.days_until_action,
        }


@dataclass
class HistoricalDecay:
    """
    Exponential fit over a field's recorded history.

    decay_rate is the fitted λ (per hour) of |value − baseline|; a negative
    rate means the field moved away from baseline.
    """
    field: str
    data_points: List[Tuple[datetime, float]]
    fitted_curve: CurveType
    r2_score: float
    decay_rate: float

    @property
    def half_life(self) -> float:
        return math.log(2) / self.decay_rate if self.decay_rate > 0 else math.inf

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "dataPoints": [{"timestamp": ts.isoformat(), "value": v} for ts, v in self.data_points],
            "fittedCurve": self.fitted_curve.value,
            "r2Score": self.r2_score,
            "decayRate": self.decay_rate,
        }


@dataclass
class StanceSnapshot:
    stance: Stance
    timestamp: datetime


# =============================================================================
# Engine
# =============================================================================

class DecayModelingEngine:
    """
    Per-stance decay models with predictions and recommendations.

    Example:
        engine = DecayModelingEngine()
        model = engine.create_model(conversation_id, stance)
        for rec in model.recommendations:
            print(rec.priority, rec.action)
    """

    def __init__(
        self,
        params: DecayParams = DEFAULT_DECAY_PARAMS,
        half_lives: Optional[Dict[str, float]] = None,
        max_recommendations: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:12],
    ):
        """
        Args:
            params: Decay parameters (baseline, threshold, horizons, tiers)
            half_lives: Per-field half-life overrides in hours
            max_recommendations: Cap on recommendations per model (None = all)
            clock: Wall-clock source
            id_factory: Suffix generator for model and recommendation ids
        """
        self.params = params
        self.half_lives = dict(DEFAULT_HALF_LIVES)
        if half_lives:
            self.half_lives.update(half_lives)
        self.max_recommendations = max_recommendations
        self.decay_threshold = params.threshold
        self._clock = clock
        self._id_factory = id_factory
        self._models: Dict[str, DecayModel] = {}
        self._history: Dict[str, List[StanceSnapshot]] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_model(self, model_id: str) -> Optional[DecayModel]:
        return self._models.get(model_id)

    def _require(self, model_id: str) -> DecayModel:
        model = self._models.get(model_id)
        if model is None:
            raise NotFoundError("Decay model", model_id)
        return model

    def get_history(self, model_id: str) -> List[StanceSnapshot]:
        self._require(model_id)
        return list(self._history.get(model_id, []))

    def delete_model(self, model_id: str) -> bool:
        self._history.pop(model_id, None)
        return self._models.pop(model_id, None) is not None

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def create_model(self, stance_id: str, stance: Stance) -> DecayModel:
        """Build curves for every numeric field and the initial predictions."""
        now = self._clock()
        model = DecayModel(
            id=f"decay-{stance_id}-{self._id_factory()}",
            stance_id=stance_id,
            curves=self._initialize_curves(stance),
            factors=self._initialize_factors(now),
            usage_pattern=UsagePattern(
                average_sessions_per_day=1.0,
                average_session_duration=30.0,
                last_active=now,
                activity_hours=[9, 10, 11, 14, 15, 16],
                frequency_trend="stable",
                engagement_score=70.0,
            ),
            predictions=[],
            recommendations=[],
            created_at=now,
            updated_at=now,
        )
        self._models[model.id] = model
        self._history[model.id] = [StanceSnapshot(stance=stance.copy(), timestamp=now)]

        model.predictions = self.generate_predictions(model)
        model.recommendations = self.generate_recommendations(model)
        logger.debug(f"Decay model {model.id} created with {len(model.curves)} curves")
        return model

    def _initialize_curves(self, stance: Stance) -> List[DecayCurve]:
        curves = []
        for path in NUMERIC_PATHS:
            half_life = self.half_lives.get(path, FALLBACK_HALF_LIFE)
            curve = DecayCurve(
                field=path,
                curve_type=FIELD_CURVES.get(path, CurveType.EXPONENTIAL),
                half_life=half_life,
                baseline=self.params.baseline,
                current_value=float(get_field(stance, path)),
                decay_rate=decay_rate_for(half_life),
            )
            curve.projected_values = self.project_values(curve)
            curves.append(curve)
        return curves

    def _initialize_factors(self, now: datetime) -> List[EnvironmentalFactor]:
        return [
            EnvironmentalFactor("Time of Day", "temporal", impact=0.0, weight=0.3, current_state=now.hour),
            EnvironmentalFactor("Days Since Last Use", "usage", impact=-0.2, weight=0.5, current_state=0),
            EnvironmentalFactor("Session Frequency", "usage", impact=0.3, weight=0.4, current_state=1),
            EnvironmentalFactor("Context Consistency", "context", impact=0.2, weight=0.3, current_state="consistent"),
        ]

    def update_stance(self, model_id: str, stance: Stance) -> DecayModel:
        """
        Record a new stance observation and refresh the model.

        Curve values are reset to the observed values, the usage pattern is
        bumped, and predictions/recommendations are regenerated.
        """
        model = self._require(model_id)
        now = self._clock()

        history = self._history.setdefault(model_id, [])
        history.append(StanceSnapshot(stance=stance.copy(), timestamp=now))
        if len(history) > self.params.history_limit:
            self._history[model_id] = history[-self.params.history_keep:]

        for curve in model.curves:
            curve.current_value = float(get_field(stance, curve.field))
            curve.projected_values = self.project_values(curve)

        usage = model.usage_pattern
        usage.last_active = now
        usage.average_sessions_per_day = min(usage.average_sessions_per_day * 0.9 + 0.1, 10.0)

        model.predictions = self.generate_predictions(model)
        model.recommendations = self.generate_recommendations(model)
        model.updated_at = now
        return model

    # ------------------------------------------------------------------
    # Projection and prediction
    # ------------------------------------------------------------------

    def calculate_decayed_value(self, curve: DecayCurve, hours_elapsed: float) -> float:
        """Unclamped curve value after hours_elapsed."""
        return float(decay_values(
            curve.curve_type, curve.current_value, curve.baseline, curve.half_life, hours_elapsed
        ))

    def project_values(self, curve: DecayCurve, hours: Optional[int] = None) -> List[ProjectedValue]:
        """
        Projection over the next `hours` (default 168) in 1/24 steps.

        Values are clamped to [0, 100]; confidence falls linearly from 1.0
        to 0.5 across the window.
        """
        hours = hours or self.params.projection_hours
        step = max(1, hours // 24)
        grid = np.arange(0, hours + 1, step, dtype=float)
        values = np.clip(
            decay_values(curve.curve_type, curve.current_value, curve.baseline, curve.half_life, grid),
            VALUE_MIN,
            VALUE_MAX,
        )
        confidence = np.maximum(0.5, 1.0 - (grid / hours) * 0.5)

        now = self._clock()
        return [
            ProjectedValue(timestamp=now + timedelta(hours=float(h)), value=float(v), confidence=float(c))
            for h, v, c in zip(grid, values, confidence)
        ]

    def time_to_threshold(self, curve: DecayCurve, threshold: Optional[float] = None) -> float:
        """First whole hour the projection is below threshold, or inf."""
        threshold = self.decay_threshold if threshold is None else threshold
        grid = np.arange(self.params.search_horizon_hours, dtype=float)
        values = decay_values(curve.curve_type, curve.current_value, curve.baseline, curve.half_life, grid)
        below = np.flatnonzero(values < threshold)
        return float(grid[below[0]]) if below.size else math.inf

    def risk_level(self, hours_to_threshold: float) -> str:
        if hours_to_threshold < self.params.risk_critical_hours:
            return "critical"
        if hours_to_threshold < self.params.risk_high_hours:
            return "high"
        if hours_to_threshold < self.params.risk_medium_hours:
            return "medium"
        return "low"

    def generate_predictions(self, model: DecayModel) -> List[DecayPrediction]:
        predictions = []
        for curve in model.curves:
            hours = self.time_to_threshold(curve)
            predictions.append(DecayPrediction(
                field=curve.field,
                current_value=curve.current_value,
                predicted_value=self.calculate_decayed_value(curve, self.params.prediction_offset_hours),
                time_to_threshold=hours,
                threshold=self.decay_threshold,
                confidence=self.params.prediction_confidence,
                risk_level=self.risk_level(hours),
            ))
        return predictions

    def generate_recommendations(self, model: DecayModel) -> List[DecayRecommendation]:
        """
        One refresh recommendation per at-risk prediction, plus an
        inactivity nudge once the model has been idle too long.
        """
        recommendations = []

        for prediction in model.predictions:
            if prediction.risk_level == "low":
                continue
            recommendations.append(DecayRecommendation(
                id=f"rec-{self._id_factory()}",
                type="refresh-value",
                priority=_PRIORITY_FOR_RISK[prediction.risk_level],
                field=prediction.field,
                action=f"Reinforce {prediction.field} before it drops below {self.decay_threshold:g}",
                expected_improvement=self.params.baseline - prediction.predicted_value,
                reasoning=(
                    f"{prediction.field} will reach threshold in "
                    f"{round(prediction.time_to_threshold)} hours"
                ),
            ))

        days_idle = (self._clock() - model.usage_pattern.last_active).total_seconds() / 86400.0
        if days_idle > self.params.inactivity_days:
            recommendations.append(DecayRecommendation(
                id=f"rec-usage-{self._id_factory()}",
                type="increase-usage",
                priority="high" if days_idle > self.params.inactivity_high_days else "medium",
                field="all",
                action="Increase session frequency to slow decay",
                expected_improvement=10.0,
                reasoning=f"{round(days_idle)} days since last activity accelerates decay",
            ))

        if self.max_recommendations is not None:
            recommendations = recommendations[:self.max_recommendations]
        return recommendations

    # ------------------------------------------------------------------
    # Refresh scheduling
    # ------------------------------------------------------------------

    def setup_refresh_schedule(
        self,
        model_id: str,
        interval_hours: float,
        fields: Optional[List[str]] = None,
    ) -> RefreshSchedule:
        model = self._require(model_id)
        if interval_hours <= 0:
            raise ValidationError(f"Refresh interval must be positive, got {interval_hours}")

        known = [c.field for c in model.curves]
        if fields is not None:
            unknown = [f for f in fields if f not in known]
            if unknown:
                raise ValidationError(f"Unknown decay fields: {unknown}")

        schedule = RefreshSchedule(
            enabled=True,
            interval=float(interval_hours),
            next_refresh=self._clock() + timedelta(hours=interval_hours),
            auto_refresh_fields=list(fields) if fields is not None else known,
        )
        model.refresh_schedule = schedule
        return schedule

    def execute_refresh(
        self,
        model_id: str,
        field_path: str,
        new_value: float,
        trigger: str = "manual",
    ) -> bool:
        """
        Reset a curve to new_value (clamped to [0, 100]).

        Returns False if the model has no refresh schedule or no such curve.
        """
        model = self._require(model_id)
        if trigger not in REFRESH_TRIGGERS:
            raise ValidationError(f"Unknown refresh trigger: {trigger!r}")
        if model.refresh_schedule is None:
            return False
        curve = model.curve_for(field_path)
        if curve is None:
            return False

        new_value = clip(float(new_value), VALUE_MIN, VALUE_MAX)
        schedule = model.refresh_schedule
        schedule.refresh_history.append(RefreshEvent(
            timestamp=self._clock(),
            field=field_path,
            previous_value=curve.current_value,
            new_value=new_value,
            trigger=trigger,
        ))
        if len(schedule.refresh_history) > self.params.refresh_history_limit:
            schedule.refresh_history = schedule.refresh_history[-self.params.refresh_history_keep:]

        curve.current_value = new_value
        curve.projected_values = self.project_values(curve)
        model.predictions = self.generate_predictions(model)
        model.recommendations = self.generate_recommendations(model)
        logger.info(f"Refreshed {field_path} on {model_id} ({trigger})")
        return True

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_decay(self, model_id: str) -> DecayAnalysis:
        model = self._require(model_id)

        stable, decaying, critical = [], [], []
        for prediction in model.predictions:
            if prediction.risk_level == "critical":
                critical.append(prediction.field)
            elif prediction.risk_level in ("high", "medium"):
                decaying.append(prediction.field)
            else:
                stable.append(prediction.field)

        current = np.array([c.current_value for c in model.curves])
        daily_rates = np.array([c.decay_rate * 24.0 for c in model.curves])
        min_hours = min((p.time_to_threshold for p in model.predictions), default=math.inf)

        return DecayAnalysis(
            overall_health=float(round(float(np.mean(current)))),
            decay_rate=round(float(np.mean(daily_rates)), 3),
            stable_fields=stable,
            decaying_fields=decaying,
            critical_fields=critical,
            days_until_action=math.inf if math.isinf(min_hours) else float(round(min_hours / 24.0)),
        )

    def analyze_historical_decay(self, model_id: str, field_path: str) -> Optional[HistoricalDecay]:
        """
        Fit |value − baseline| = A·e^(−λt) to the recorded history.

        Least squares on ln|value − baseline| against elapsed hours. Returns
        None with fewer than two snapshots.
        """
        self._require(model_id)
        if field_path not in NUMERIC_PATHS:
            raise ValidationError(f"Not a numeric decay field: {field_path}")

        history = self._history.get(model_id, [])
        if len(history) < 2:
            return None

        start = history[0].timestamp
        data_points = [(s.timestamp, float(get_field(s.stance, field_path))) for s in history]
        hours = np.array([(ts - start).total_seconds() / 3600.0 for ts, _ in data_points])
        offsets = np.abs(np.array([v for _, v in data_points]) - self.params.baseline)

        decay_rate = 0.0
        r2 = 0.0
        mask = offsets > 1e-9
        if np.count_nonzero(mask) >= 2 and np.ptp(hours[mask]) > 0:
            x = hours[mask]
            y = np.log(offsets[mask])
            slope, intercept = np.polyfit(x, y, 1)
            residuals = y - (intercept + slope * x)
            ss_res = float(np.sum(residuals ** 2))
            ss_tot = float(np.sum((y - np.mean(y)) ** 2))
            r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 1.0
            decay_rate = float(-slope)

        return HistoricalDecay(
            field=field_path,
            data_points=data_points,
            fitted_curve=CurveType.EXPONENTIAL,
            r2_score=r2,
            decay_rate=decay_rate,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_decay_threshold(self, threshold: float) -> None:
        """Clamped to [0, 100]; applies from the next prediction pass."""
        self.decay_threshold = clip(float(threshold), VALUE_MIN, VALUE_MAX)

    def update_environmental_factor(self, model_id: str, factor_name: str, state: Any) -> EnvironmentalFactor:
        model = self._require(model_id)
        factor = next((f for f in model.factors if f.name == factor_name), None)
        if factor is None:
            raise NotFoundError("Environmental factor", factor_name)

        factor.current_state = state
        if factor_name == "Days Since Last Use" and is_number(state):
            factor.impact = max(-0.5, -0.1 * state)

        model.predictions = self.generate_predictions(model)
        model.recommendations = self.generate_recommendations(model)
        return factor
