"""
Runtime Configuration Management

Allows runtime access and modification of stance thresholds without
requiring code changes or redeployment.
"""

from typing import Dict, Any
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import stance_config as config_module


# Runtime overrides (absent = use class defaults)
_runtime_overrides: Dict[str, float] = {}

# Overridable thresholds: name -> (config attribute, valid range)
_OVERRIDABLE = {
    "max_drift_per_turn": ("MAX_DRIFT_PER_TURN", (0.0, 100.0)),
    "drift_budget": ("DRIFT_BUDGET", (0.0, 10000.0)),
    "coherence_floor": ("COHERENCE_FLOOR", (0.0, 100.0)),
    "decay_alert_threshold": ("DECAY_ALERT_THRESHOLD", (0.0, 100.0)),
}


def get_thresholds() -> Dict[str, float]:
    """
    Get current threshold configuration (runtime overrides + defaults).

    Returns all stance thresholds, including the fixed ones.
    """
    config = config_module.StanceConfig

    thresholds = {
        name: _runtime_overrides.get(name, getattr(config, attr))
        for name, (attr, _) in _OVERRIDABLE.items()
    }
    thresholds.update({
        "decay_baseline": config.DECAY_BASELINE,
        "decay_search_horizon_hours": config.DECAY_SEARCH_HORIZON_HOURS,
        "max_checkpoints_per_branch": config.MAX_CHECKPOINTS_PER_BRANCH,
        "gc_threshold": config.GC_THRESHOLD,
    })
    return thresholds


def set_thresholds(thresholds: Dict[str, float], validate: bool = True) -> Dict[str, Any]:
    """
    Set runtime threshold overrides.

    The batch is checked as a whole against the effective values it would
    produce; if any entry fails, nothing is applied.

    Args:
        thresholds: Dict of threshold_name -> value
        validate: If True, validate values are in reasonable ranges

    Returns:
        {
            "success": bool,
            "updated": List[str],
            "errors": List[str]
        }
    """
    staged: Dict[str, float] = {}
    errors = []

    for name, value in thresholds.items():
        if name not in _OVERRIDABLE:
            errors.append(f"Unknown threshold: {name}")
            continue

        if validate:
            min_val, max_val = _OVERRIDABLE[name][1]
            if not (min_val <= value <= max_val):
                errors.append(f"{name}={value} out of range [{min_val}, {max_val}]")
                continue

        staged[name] = float(value)

    # Cap <= budget, checked on the values the batch would leave in effect
    if "max_drift_per_turn" in staged or "drift_budget" in staged:
        cap = staged.get("max_drift_per_turn", get_effective_threshold("max_drift_per_turn"))
        budget = staged.get("drift_budget", get_effective_threshold("drift_budget"))
        if cap > budget:
            errors.append(f"max_drift_per_turn ({cap}) must be <= drift_budget ({budget})")

    if errors:
        return {"success": False, "updated": [], "errors": errors}

    _runtime_overrides.update(staged)
    return {
        "success": True,
        "updated": list(staged),
        "errors": []
    }


def get_effective_threshold(threshold_name: str) -> float:
    """
    Get effective threshold value (runtime override or default).

    Used internally by the stance service.
    """
    config = config_module.StanceConfig

    if threshold_name not in _OVERRIDABLE:
        raise ValueError(f"Unknown threshold: {threshold_name}")
    attr = _OVERRIDABLE[threshold_name][0]
    return _runtime_overrides.get(threshold_name, getattr(config, attr))


def get_mode_defaults() -> Dict[str, float]:
    """ModeConfig overrides (wire names) built from the effective thresholds."""
    return {
        "maxDriftPerTurn": get_effective_threshold("max_drift_per_turn"),
        "driftBudget": get_effective_threshold("drift_budget"),
        "coherenceFloor": get_effective_threshold("coherence_floor"),
    }


def clear_overrides() -> None:
    """Clear all runtime overrides, revert to defaults"""
    _runtime_overrides.clear()
