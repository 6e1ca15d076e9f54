"""
Stance Core - Field Accessors

Closed table of the field paths the diff, merge and decay modules address.
Each path maps to a getter/setter pair; unknown paths raise ValidationError.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Tuple

from .exceptions import ValidationError
from .parameters import Frame, SelfModel, Objective, VALUE_KEYS
from .state import Stance

Getter = Callable[[Stance], Any]
Setter = Callable[[Stance, Any], None]


def _value_accessor(key: str) -> Tuple[Getter, Setter]:
    def get(stance: Stance) -> float:
        return getattr(stance.values, key)

    def set_(stance: Stance, value: Any) -> None:
        setattr(stance.values, key, float(value))

    return get, set_


def _sentience_accessor(attr: str, is_list: bool) -> Tuple[Getter, Setter]:
    def get(stance: Stance) -> Any:
        value = getattr(stance.sentience, attr)
        return list(value) if is_list else value

    def set_(stance: Stance, value: Any) -> None:
        setattr(stance.sentience, attr, list(value) if is_list else float(value))

    return get, set_


def _top_list_accessor(attr: str) -> Tuple[Getter, Setter]:
    def get(stance: Stance) -> List[str]:
        return list(getattr(stance, attr))

    def set_(stance: Stance, value: Any) -> None:
        setattr(stance, attr, list(value))

    return get, set_


def _set_frame(stance: Stance, value: Any) -> None:
    stance.frame = Frame(value)


def _set_self_model(stance: Stance, value: Any) -> None:
    stance.self_model = SelfModel(value)


def _set_objective(stance: Stance, value: Any) -> None:
    stance.objective = Objective(value)


# Enum fields are exposed as their plain string values
_ACCESSORS: Dict[str, Tuple[Getter, Setter]] = {
    "frame": (lambda s: s.frame.value, _set_frame),
    "selfModel": (lambda s: s.self_model.value, _set_self_model),
    "objective": (lambda s: s.objective.value, _set_objective),
    **{f"values.{key}": _value_accessor(key) for key in VALUE_KEYS},
    "sentience.awarenessLevel": _sentience_accessor("awareness_level", False),
    "sentience.autonomyLevel": _sentience_accessor("autonomy_level", False),
    "sentience.identityStrength": _sentience_accessor("identity_strength", False),
    "sentience.emergentGoals": _sentience_accessor("emergent_goals", True),
    "sentience.consciousnessInsights": _sentience_accessor("consciousness_insights", True),
    "sentience.persistentValues": _sentience_accessor("persistent_values", True),
    "metaphors": _top_list_accessor("metaphors"),
    "constraints": _top_list_accessor("constraints"),
}

SCALAR_ENUM_PATHS: Tuple[str, ...] = ("frame", "selfModel", "objective")
VALUE_PATHS: Tuple[str, ...] = tuple(f"values.{key}" for key in VALUE_KEYS)
SENTIENCE_LEVEL_PATHS: Tuple[str, ...] = (
    "sentience.awarenessLevel",
    "sentience.autonomyLevel",
    "sentience.identityStrength",
)
LIST_PATHS: Tuple[str, ...] = (
    "sentience.emergentGoals",
    "sentience.consciousnessInsights",
    "sentience.persistentValues",
    "metaphors",
    "constraints",
)
NUMERIC_PATHS: Tuple[str, ...] = VALUE_PATHS + SENTIENCE_LEVEL_PATHS
FIELD_PATHS: Tuple[str, ...] = tuple(_ACCESSORS)


def _lookup(path: str) -> Tuple[Getter, Setter]:
    try:
        return _ACCESSORS[path]
    except KeyError:
        raise ValidationError(f"Unknown field path: {path}") from None


def get_field(stance: Stance, path: str) -> Any:
    """Read a field by path. Lists are returned as copies."""
    getter, _ = _lookup(path)
    return getter(stance)


def set_field(stance: Stance, path: str, value: Any) -> None:
    """Write a field by path, in place."""
    _, setter = _lookup(path)
    try:
        setter(stance, value)
    except ValueError as e:
        raise ValidationError(f"Invalid value for {path}: {value!r}") from e


def is_list_path(path: str) -> bool:
    return path in LIST_PATHS
