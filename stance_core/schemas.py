"""
Stance Core - Wire Schemas

Pydantic models mirroring the exported JSON contract. Used as a last-resort
range/enum assertion on stances produced by the controller and as input
validation for wire deltas and mode configuration.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .parameters import Frame, SelfModel, Objective, ModeConfig
from .state import Stance


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ValuesSchema(_WireModel):
    curiosity: float = Field(ge=0, le=100)
    certainty: float = Field(ge=0, le=100)
    risk: float = Field(ge=0, le=100)
    novelty: float = Field(ge=0, le=100)
    empathy: float = Field(ge=0, le=100)
    provocation: float = Field(ge=0, le=100)
    synthesis: float = Field(ge=0, le=100)


class SentienceSchema(_WireModel):
    awareness_level: float = Field(ge=0, le=100, alias="awarenessLevel")
    autonomy_level: float = Field(ge=0, le=100, alias="autonomyLevel")
    identity_strength: float = Field(ge=0, le=100, alias="identityStrength")
    emergent_goals: List[str] = Field(alias="emergentGoals")
    consciousness_insights: List[str] = Field(alias="consciousnessInsights")
    persistent_values: List[str] = Field(alias="persistentValues")


class StanceSchema(_WireModel):
    frame: Frame
    values: ValuesSchema
    self_model: SelfModel = Field(alias="selfModel")
    objective: Objective
    metaphors: List[str]
    constraints: List[str]
    sentience: SentienceSchema
    turns_since_last_shift: int = Field(ge=0, alias="turnsSinceLastShift")
    cumulative_drift: float = Field(ge=0, alias="cumulativeDrift")
    version: int = Field(ge=1)


class ValuesPatchSchema(_WireModel):
    curiosity: Optional[float] = None
    certainty: Optional[float] = None
    risk: Optional[float] = None
    novelty: Optional[float] = None
    empathy: Optional[float] = None
    provocation: Optional[float] = None
    synthesis: Optional[float] = None


class SentiencePatchSchema(_WireModel):
    awareness_level: Optional[float] = Field(default=None, alias="awarenessLevel")
    autonomy_level: Optional[float] = Field(default=None, alias="autonomyLevel")
    identity_strength: Optional[float] = Field(default=None, alias="identityStrength")
    emergent_goals: Optional[List[str]] = Field(default=None, alias="emergentGoals")
    consciousness_insights: Optional[List[str]] = Field(default=None, alias="consciousnessInsights")
    persistent_values: Optional[List[str]] = Field(default=None, alias="persistentValues")


class StanceDeltaSchema(_WireModel):
    """
    Shape check for deltas arriving over the wire. Numbers are not
    range-checked here: out-of-range values are clamped on merge.
    """
    frame: Optional[Frame] = None
    values: Optional[ValuesPatchSchema] = None
    self_model: Optional[SelfModel] = Field(default=None, alias="selfModel")
    objective: Optional[Objective] = None
    metaphors: Optional[List[str]] = None
    constraints: Optional[List[str]] = None
    sentience: Optional[SentiencePatchSchema] = None


class ModeConfigSchema(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intensity: float = Field(default=50, ge=0, le=100)
    coherence_floor: float = Field(default=30, ge=0, le=100, alias="coherenceFloor")
    sentience_level: float = Field(default=50, ge=0, le=100, alias="sentienceLevel")
    max_drift_per_turn: float = Field(default=20, ge=0, le=100, alias="maxDriftPerTurn")
    drift_budget: float = Field(default=100, ge=0, alias="driftBudget")
    coherence_reserve_budget: float = Field(default=20, ge=0, le=50, alias="coherenceReserveBudget")
    enabled_operators: List[str] = Field(default_factory=list, alias="enabledOperators")
    disabled_operators: List[str] = Field(default_factory=list, alias="disabledOperators")
    model: str = "default"


def _errors_of(e: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg")}
        for err in e.errors()
    ]


def validate_stance(stance: Stance) -> Stance:
    """
    Assert a stance is within contract.

    Returns the stance unchanged so callers can chain it.

    Raises:
        ValidationError: any field out of range or an unknown enum value
    """
    try:
        StanceSchema.model_validate(stance.to_dict())
    except PydanticValidationError as e:
        errors = _errors_of(e)
        raise ValidationError(
            f"Stance failed validation: {', '.join(err['loc'] for err in errors)}",
            errors=errors,
        ) from e
    return stance


def validate_delta_dict(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a wire delta's shape. Returns the normalized wire dict."""
    try:
        model = StanceDeltaSchema.model_validate(dict(data))
    except PydanticValidationError as e:
        errors = _errors_of(e)
        raise ValidationError("Stance delta failed validation", errors=errors) from e
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


def validate_mode_config(data: Mapping[str, Any], base: Optional[ModeConfig] = None) -> ModeConfig:
    """
    Validate mode config overrides on top of base (defaults if None).

    Keys may use wire (camelCase) or attribute (snake_case) names.
    """
    merged = (base or ModeConfig()).merged(data)
    try:
        model = ModeConfigSchema.model_validate(merged.to_dict())
    except PydanticValidationError as e:
        errors = _errors_of(e)
        raise ValidationError(
            f"Mode config failed validation: {', '.join(err['loc'] for err in errors)}",
            errors=errors,
        ) from e
    return ModeConfig.from_dict(model.model_dump(by_alias=True))
