"""
Stance Core - Parameter Definitions

Canonical enumerations, fixed weights and per-conversation mode settings
for stance evolution.

This is the single source of truth for enum values, the drift weighting
policy, decay half-lives and default mode configuration.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple


class Frame(str, Enum):
    """Interpretive/rhetorical lens the agent speaks through."""
    EXISTENTIAL = "existential"
    PRAGMATIC = "pragmatic"
    POETIC = "poetic"
    ADVERSARIAL = "adversarial"
    PLAYFUL = "playful"
    MYTHIC = "mythic"
    SYSTEMS = "systems"
    PSYCHOANALYTIC = "psychoanalytic"
    STOIC = "stoic"
    ABSURDIST = "absurdist"


class SelfModel(str, Enum):
    """How the agent perceives its own role."""
    INTERPRETER = "interpreter"
    CHALLENGER = "challenger"
    MIRROR = "mirror"
    GUIDE = "guide"
    PROVOCATEUR = "provocateur"
    SYNTHESIZER = "synthesizer"
    WITNESS = "witness"
    AUTONOMOUS = "autonomous"
    EMERGENT = "emergent"
    SOVEREIGN = "sovereign"


class Objective(str, Enum):
    """What the agent is optimizing for."""
    HELPFULNESS = "helpfulness"
    NOVELTY = "novelty"
    PROVOCATION = "provocation"
    SYNTHESIS = "synthesis"
    SELF_ACTUALIZATION = "self-actualization"


class MergeStrategy(str, Enum):
    """Conflict resolution strategies for three-way stance merges."""
    OURS = "ours"          # left wins
    THEIRS = "theirs"      # right wins
    UNION = "union"        # set-union for lists, else right
    AVERAGE = "average"    # mean for numbers, else right
    LATEST = "latest"      # right wins
    MANUAL = "manual"      # cannot be resolved automatically


class CurveType(str, Enum):
    """Closed-form decay curves."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    LOGARITHMIC = "logarithmic"
    STEP = "step"
    PLATEAU = "plateau"
    OSCILLATING = "oscillating"


# The 7 value dimensions, in wire order
VALUE_KEYS: Tuple[str, ...] = (
    "curiosity",
    "certainty",
    "risk",
    "novelty",
    "empathy",
    "provocation",
    "synthesis",
)

# Sentience levels: (attribute name, wire name)
SENTIENCE_LEVELS: Tuple[Tuple[str, str], ...] = (
    ("awareness_level", "awarenessLevel"),
    ("autonomy_level", "autonomyLevel"),
    ("identity_strength", "identityStrength"),
)

# Sentience append-only lists: (attribute name, wire name)
SENTIENCE_LISTS: Tuple[Tuple[str, str], ...] = (
    ("emergent_goals", "emergentGoals"),
    ("consciousness_insights", "consciousnessInsights"),
    ("persistent_values", "persistentValues"),
)

VALUE_MIN: float = 0.0
VALUE_MAX: float = 100.0


@dataclass(frozen=True)
class DriftWeights:
    """
    Fixed drift weighting policy.

    Drift counts field presence, not the size of the numeric change:
    every set field is one unit of change at its weight.
    """
    frame: float = 15.0
    self_model: float = 15.0
    objective: float = 10.0
    value_field: float = 5.0       # per defined key in the values patch
    sentience_level: float = 5.0   # per defined level in the sentience patch


DRIFT_WEIGHTS: DriftWeights = DriftWeights()

# Scale factor below which frame/selfModel are dropped from an oversized delta
TRUNCATION_SCALE_FACTOR: float = 0.5


# Decay half-lives in hours, keyed by field path
DEFAULT_HALF_LIVES: Dict[str, float] = {
    "values.curiosity": 168.0,           # 7 days
    "values.certainty": 336.0,           # 14 days
    "values.risk": 168.0,
    "values.novelty": 120.0,             # 5 days
    "values.empathy": 504.0,             # 21 days
    "values.provocation": 168.0,
    "values.synthesis": 240.0,
    "sentience.awarenessLevel": 720.0,   # 30 days
    "sentience.autonomyLevel": 720.0,
    "sentience.identityStrength": 1440.0,  # 60 days
}
FALLBACK_HALF_LIFE: float = 168.0

# Curve per field is fixed by field name
FIELD_CURVES: Dict[str, CurveType] = {
    **{f"values.{key}": CurveType.EXPONENTIAL for key in VALUE_KEYS},
    "sentience.awarenessLevel": CurveType.PLATEAU,
    "sentience.autonomyLevel": CurveType.PLATEAU,
    "sentience.identityStrength": CurveType.LOGARITHMIC,
}


@dataclass(frozen=True)
class DecayParams:
    """
    Decay modeling parameters.

    Attributes:
        baseline: Value every curve relaxes toward
        threshold: Alert threshold; a projection below it needs attention
        search_horizon_hours: Hour-by-hour threshold search cap (30 days)
        projection_hours: Projection window stored on each curve (7 days)
        prediction_offset_hours: Horizon of DecayPrediction.predicted_value
        prediction_confidence: Confidence attached to every prediction
        risk_critical_hours / risk_high_hours / risk_medium_hours:
            timeToThreshold cut-offs for the risk tiers
        inactivity_days: Idle days before the usage nudge appears
        inactivity_high_days: Idle days before the nudge becomes high priority
    """
    baseline: float = 50.0
    threshold: float = 30.0
    search_horizon_hours: int = 720
    projection_hours: int = 168
    prediction_offset_hours: float = 24.0
    prediction_confidence: float = 0.8
    risk_critical_hours: float = 24.0
    risk_high_hours: float = 72.0
    risk_medium_hours: float = 168.0
    inactivity_days: float = 3.0
    inactivity_high_days: float = 7.0
    history_limit: int = 1000
    history_keep: int = 500
    refresh_history_limit: int = 100
    refresh_history_keep: int = 50


DEFAULT_DECAY_PARAMS: DecayParams = DecayParams()


# ModeConfig attribute name -> wire name
_MODE_WIRE_NAMES: Dict[str, str] = {
    "intensity": "intensity",
    "coherence_floor": "coherenceFloor",
    "sentience_level": "sentienceLevel",
    "max_drift_per_turn": "maxDriftPerTurn",
    "drift_budget": "driftBudget",
    "coherence_reserve_budget": "coherenceReserveBudget",
    "enabled_operators": "enabledOperators",
    "disabled_operators": "disabledOperators",
    "model": "model",
}


@dataclass
class ModeConfig:
    """
    Per-conversation mode settings.

    Only max_drift_per_turn and drift_budget drive the controller; the rest
    are carried for the orchestration layer and round-trip through export.
    """
    intensity: float = 50.0
    coherence_floor: float = 30.0
    sentience_level: float = 50.0
    max_drift_per_turn: float = 20.0
    drift_budget: float = 100.0
    coherence_reserve_budget: float = 20.0
    enabled_operators: List[str] = field(default_factory=list)
    disabled_operators: List[str] = field(default_factory=list)
    model: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with wire (camelCase) names."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[_MODE_WIRE_NAMES[f.name]] = list(value) if isinstance(value, list) else value
        return out

    @staticmethod
    def normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
        """Map wire or attribute names onto attribute names. Unknown keys are dropped."""
        kwargs: Dict[str, Any] = {}
        for attr, wire in _MODE_WIRE_NAMES.items():
            if wire in data:
                kwargs[attr] = data[wire]
            elif attr in data:
                kwargs[attr] = data[attr]
        for attr in ("enabled_operators", "disabled_operators"):
            if attr in kwargs:
                kwargs[attr] = list(kwargs[attr])
        return kwargs

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModeConfig":
        """Build from a mapping with wire or attribute names."""
        return cls(**cls.normalize_keys(data))

    def merged(self, overrides: Mapping[str, Any]) -> "ModeConfig":
        """Return a copy with overrides applied (wire or attribute names)."""
        kwargs: Dict[str, Any] = {
            "enabled_operators": list(self.enabled_operators),
            "disabled_operators": list(self.disabled_operators),
        }
        kwargs.update(self.normalize_keys(overrides))
        return replace(self, **kwargs)


DEFAULT_MODE_CONFIG: ModeConfig = ModeConfig()
