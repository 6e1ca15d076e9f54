"""
Stance Evolution - Deployment Configuration

Constants for the application layer. Core defaults (drift weights, mode
config) live in stance_core.parameters; the values here decide how the
service wires the core together.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional
import numpy as np

from stance_core.parameters import DecayParams, DEFAULT_DECAY_PARAMS


@dataclass
class StanceConfig:
    """Deployment configuration for stance evolution"""

    # =================================================================
    # Drift policy defaults (per conversation, overridable via ModeConfig)
    # =================================================================
    MAX_DRIFT_PER_TURN = 20.0    # Deltas heavier than this are truncated
    DRIFT_BUDGET = 100.0         # Cumulative drift before a coherence reset
    COHERENCE_FLOOR = 30.0

    # =================================================================
    # Decay modeling
    # =================================================================
    DECAY_ALERT_THRESHOLD = 30.0      # Projection below this needs attention
    DECAY_BASELINE = 50.0             # Every curve relaxes toward this
    DECAY_SEARCH_HORIZON_HOURS = 720  # 30 days
    DECAY_PROJECTION_HOURS = 168      # 7 days
    INACTIVITY_NUDGE_DAYS = 3.0       # Usage recommendation after this
    INACTIVITY_HIGH_DAYS = 7.0        # ...high priority after this
    MAX_RECOMMENDATIONS = None        # None = unlimited

    # =================================================================
    # Version control
    # =================================================================
    MAX_CHECKPOINTS_PER_BRANCH = 100
    GC_THRESHOLD = 500                # Commit triggers GC past this many checkpoints

    # =================================================================
    # Persistence
    # =================================================================
    DB_PATH = Path(os.getenv(
        "STANCE_DB_PATH",
        str(Path(__file__).parent.parent / "data" / "stance.db")
    ))
    SNAPSHOT_HISTORY_LIMIT = 1000     # Snapshots kept per conversation

    @staticmethod
    def decay_params(threshold: Optional[float] = None) -> DecayParams:
        """
        Build decay parameters from the constants above.

        Args:
            threshold: Alert threshold override, clamped to [0, 100]
        """
        if threshold is None:
            threshold = StanceConfig.DECAY_ALERT_THRESHOLD
        return replace(
            DEFAULT_DECAY_PARAMS,
            baseline=StanceConfig.DECAY_BASELINE,
            threshold=float(np.clip(threshold, 0.0, 100.0)),
            search_horizon_hours=StanceConfig.DECAY_SEARCH_HORIZON_HOURS,
            projection_hours=StanceConfig.DECAY_PROJECTION_HOURS,
            inactivity_days=StanceConfig.INACTIVITY_NUDGE_DAYS,
            inactivity_high_days=StanceConfig.INACTIVITY_HIGH_DAYS,
        )

    @staticmethod
    def mode_defaults() -> Dict[str, Any]:
        """ModeConfig overrides (wire names) for new conversations."""
        return {
            "maxDriftPerTurn": StanceConfig.MAX_DRIFT_PER_TURN,
            "driftBudget": StanceConfig.DRIFT_BUDGET,
            "coherenceFloor": StanceConfig.COHERENCE_FLOOR,
        }


# Export singleton config
config = StanceConfig()
