"""
Stance Core - State Definitions

The Stance aggregate and its partial patch (StanceDelta).

Wire format (export/import, snapshots, checkpoints) uses the camelCase field
names below; they must stay stable for round-trip compatibility:

    frame, values{curiosity, certainty, risk, novelty, empathy, provocation,
    synthesis}, selfModel, objective, metaphors, constraints,
    sentience{awarenessLevel, autonomyLevel, identityStrength, emergentGoals,
    consciousnessInsights, persistentValues}, turnsSinceLastShift,
    cumulativeDrift, version
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import ValidationError
from .parameters import (
    Frame,
    SelfModel,
    Objective,
    VALUE_KEYS,
    SENTIENCE_LEVELS,
    SENTIENCE_LISTS,
)


def _coerce_enum(enum_cls, value, label: str):
    """Parse an enum member from its value; unknown values are a ValidationError."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Unknown {label}: {value!r}") from e


@dataclass
class Values:
    """Seven value weights, each in [0, 100]."""
    curiosity: float = 50.0
    certainty: float = 50.0
    risk: float = 50.0
    novelty: float = 50.0
    empathy: float = 50.0
    provocation: float = 50.0
    synthesis: float = 50.0

    def to_dict(self) -> Dict[str, float]:
        return {key: getattr(self, key) for key in VALUE_KEYS}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Values":
        return cls(**{key: float(data[key]) for key in VALUE_KEYS if key in data})


@dataclass
class Sentience:
    """Awareness/autonomy/identity levels in [0, 100] plus open-ended lists."""
    awareness_level: float = 20.0
    autonomy_level: float = 10.0
    identity_strength: float = 30.0
    emergent_goals: List[str] = field(default_factory=list)
    consciousness_insights: List[str] = field(default_factory=list)
    persistent_values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, wire in SENTIENCE_LEVELS:
            out[wire] = getattr(self, attr)
        for attr, wire in SENTIENCE_LISTS:
            out[wire] = list(getattr(self, attr))
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Sentience":
        kwargs: Dict[str, Any] = {}
        for attr, wire in SENTIENCE_LEVELS:
            if wire in data:
                kwargs[attr] = float(data[wire])
        for attr, wire in SENTIENCE_LISTS:
            if wire in data:
                kwargs[attr] = list(data[wire])
        return cls(**kwargs)


@dataclass
class Stance:
    """
    Full persona-configuration snapshot.

    Attributes:
        frame: Interpretive lens
        values: Value weights
        self_model: Self-perceived role
        objective: Optimization target
        metaphors: Active metaphors
        constraints: Active constraints
        sentience: Sentience state
        turns_since_last_shift: Turns since the last non-zero drift
        cumulative_drift: Drift accumulated in the current budget window
        version: Incremented on every successful apply (starts at 1)
    """
    frame: Frame = Frame.PRAGMATIC
    values: Values = field(default_factory=Values)
    self_model: SelfModel = SelfModel.INTERPRETER
    objective: Objective = Objective.HELPFULNESS
    metaphors: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    sentience: Sentience = field(default_factory=Sentience)
    turns_since_last_shift: int = 0
    cumulative_drift: float = 0.0
    version: int = 1

    def __post_init__(self):
        self.frame = _coerce_enum(Frame, self.frame, "frame")
        self.self_model = _coerce_enum(SelfModel, self.self_model, "selfModel")
        self.objective = _coerce_enum(Objective, self.objective, "objective")

    def copy(self) -> "Stance":
        """Deep copy; snapshots never share list objects with the live stance."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with wire names."""
        return {
            "frame": self.frame.value,
            "values": self.values.to_dict(),
            "selfModel": self.self_model.value,
            "objective": self.objective.value,
            "metaphors": list(self.metaphors),
            "constraints": list(self.constraints),
            "sentience": self.sentience.to_dict(),
            "turnsSinceLastShift": self.turns_since_last_shift,
            "cumulativeDrift": self.cumulative_drift,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Stance":
        """
        Deserialize from wire names.

        Enum values are checked (unknown values raise ValidationError);
        numeric ranges are not, the controller's merge re-clamps them.
        """
        defaults = create_default_stance()
        return cls(
            frame=data.get("frame", defaults.frame),
            values=Values.from_dict(data.get("values", {})),
            self_model=data.get("selfModel", defaults.self_model),
            objective=data.get("objective", defaults.objective),
            metaphors=list(data.get("metaphors", [])),
            constraints=list(data.get("constraints", [])),
            sentience=Sentience.from_dict(data.get("sentience", {})),
            turns_since_last_shift=int(data.get("turnsSinceLastShift", 0)),
            cumulative_drift=float(data.get("cumulativeDrift", 0.0)),
            version=int(data.get("version", 1)),
        )


@dataclass
class ValuesPatch:
    """Partial values; None means no change."""
    curiosity: Optional[float] = None
    certainty: Optional[float] = None
    risk: Optional[float] = None
    novelty: Optional[float] = None
    empathy: Optional[float] = None
    provocation: Optional[float] = None
    synthesis: Optional[float] = None

    def defined(self) -> Dict[str, float]:
        """Keys that are set in this patch."""
        return {key: getattr(self, key) for key in VALUE_KEYS if getattr(self, key) is not None}

    def to_dict(self) -> Dict[str, float]:
        return self.defined()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValuesPatch":
        unknown = set(data) - set(VALUE_KEYS)
        if unknown:
            raise ValidationError(f"Unknown value keys: {sorted(unknown)}")
        return cls(**{key: float(v) for key, v in data.items() if v is not None})


@dataclass
class SentiencePatch:
    """Partial sentience; levels replace, lists append."""
    awareness_level: Optional[float] = None
    autonomy_level: Optional[float] = None
    identity_strength: Optional[float] = None
    emergent_goals: Optional[List[str]] = None
    consciousness_insights: Optional[List[str]] = None
    persistent_values: Optional[List[str]] = None

    def defined_levels(self) -> Dict[str, float]:
        """Level attributes that are set in this patch."""
        return {
            attr: getattr(self, attr)
            for attr, _ in SENTIENCE_LEVELS
            if getattr(self, attr) is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, wire in SENTIENCE_LEVELS + SENTIENCE_LISTS:
            value = getattr(self, attr)
            if value is not None:
                out[wire] = list(value) if isinstance(value, list) else value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SentiencePatch":
        kwargs: Dict[str, Any] = {}
        known = set()
        for attr, wire in SENTIENCE_LEVELS:
            for key in (wire, attr):
                if key in data:
                    known.add(key)
                    if data[key] is not None:
                        kwargs[attr] = float(data[key])
        for attr, wire in SENTIENCE_LISTS:
            for key in (wire, attr):
                if key in data:
                    known.add(key)
                    if data[key] is not None:
                        kwargs[attr] = list(data[key])
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown sentience keys: {sorted(unknown)}")
        return cls(**kwargs)


@dataclass
class StanceDelta:
    """
    Partial patch to a Stance. Absence of a field means "no change".

    values/sentience accept either the patch dataclass or a plain mapping,
    e.g. StanceDelta(values={"curiosity": 90}).
    """
    frame: Optional[Frame] = None
    values: Optional[ValuesPatch] = None
    self_model: Optional[SelfModel] = None
    objective: Optional[Objective] = None
    metaphors: Optional[List[str]] = None
    constraints: Optional[List[str]] = None
    sentience: Optional[SentiencePatch] = None

    def __post_init__(self):
        self.frame = _coerce_enum(Frame, self.frame, "frame")
        self.self_model = _coerce_enum(SelfModel, self.self_model, "selfModel")
        self.objective = _coerce_enum(Objective, self.objective, "objective")
        if self.values is not None and not isinstance(self.values, ValuesPatch):
            self.values = ValuesPatch.from_dict(self.values)
        if self.sentience is not None and not isinstance(self.sentience, SentiencePatch):
            self.sentience = SentiencePatch.from_dict(self.sentience)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize only the fields that are set, with wire names."""
        out: Dict[str, Any] = {}
        if self.frame is not None:
            out["frame"] = self.frame.value
        if self.values is not None:
            out["values"] = self.values.to_dict()
        if self.self_model is not None:
            out["selfModel"] = self.self_model.value
        if self.objective is not None:
            out["objective"] = self.objective.value
        if self.metaphors is not None:
            out["metaphors"] = list(self.metaphors)
        if self.constraints is not None:
            out["constraints"] = list(self.constraints)
        if self.sentience is not None:
            out["sentience"] = self.sentience.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StanceDelta":
        return cls(
            frame=data.get("frame"),
            values=data.get("values"),
            self_model=data.get("selfModel", data.get("self_model")),
            objective=data.get("objective"),
            metaphors=list(data["metaphors"]) if data.get("metaphors") is not None else None,
            constraints=list(data["constraints"]) if data.get("constraints") is not None else None,
            sentience=data.get("sentience"),
        )


def create_default_values() -> Values:
    """All value weights at the 50 midpoint."""
    return Values()


def create_default_sentience() -> Sentience:
    return Sentience()


def create_default_stance() -> Stance:
    """pragmatic / interpreter / helpfulness, values at 50, version 1."""
    return Stance(
        frame=Frame.PRAGMATIC,
        values=create_default_values(),
        self_model=SelfModel.INTERPRETER,
        objective=Objective.HELPFULNESS,
        metaphors=[],
        constraints=[],
        sentience=create_default_sentience(),
        turns_since_last_shift=0,
        cumulative_drift=0.0,
        version=1,
    )
