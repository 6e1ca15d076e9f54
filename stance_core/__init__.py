"""
Stance Core - Persona Stance Evolution

Conversation-scoped stance state for a conversational agent: bounded,
budgeted evolution of the stance under a drift policy, plus decay
projection, diff/merge and branching checkpoint history.

The core performs no I/O and configures no logging; persistence and
orchestration live in the application layer (src/).

Version: 1.0
Status: Active
"""

from .parameters import (
    Frame,
    SelfModel,
    Objective,
    MergeStrategy,
    CurveType,
    VALUE_KEYS,
    DriftWeights,
    DRIFT_WEIGHTS,
    DecayParams,
    DEFAULT_DECAY_PARAMS,
    ModeConfig,
    DEFAULT_MODE_CONFIG,
)

from .state import (
    Values,
    Sentience,
    Stance,
    ValuesPatch,
    SentiencePatch,
    StanceDelta,
    create_default_values,
    create_default_sentience,
    create_default_stance,
)

from .exceptions import (
    StanceError,
    NotFoundError,
    ValidationError,
    VersionControlError,
    MergeConflictUnresolved,
)

from .schemas import (
    validate_stance,
    validate_delta_dict,
    validate_mode_config,
)

from .fields import (
    get_field,
    set_field,
    FIELD_PATHS,
    NUMERIC_PATHS,
)

from .drift import (
    calculate_drift_magnitude,
    scale_delta,
    limit_delta,
)

from .controller import (
    StanceController,
    Conversation,
    ConversationMessage,
)

from .decay import (
    DecayModelingEngine,
    DecayModel,
    DecayCurve,
    DecayPrediction,
    DecayRecommendation,
    DecayAnalysis,
    decay_values,
)

from .diff import (
    StanceDiffEngine,
    DiffConfig,
    DiffChange,
    StanceDiff,
    MergeResult,
)

from .versioning import (
    StanceVersionControl,
    Checkpoint,
    Branch,
    StanceHistory,
)

from .utils import clip

__all__ = [
    # Enumerations and parameters
    'Frame',
    'SelfModel',
    'Objective',
    'MergeStrategy',
    'CurveType',
    'VALUE_KEYS',
    'DriftWeights',
    'DRIFT_WEIGHTS',
    'DecayParams',
    'DEFAULT_DECAY_PARAMS',
    'ModeConfig',
    'DEFAULT_MODE_CONFIG',

    # State
    'Values',
    'Sentience',
    'Stance',
    'ValuesPatch',
    'SentiencePatch',
    'StanceDelta',
    'create_default_values',
    'create_default_sentience',
    'create_default_stance',

    # Errors
    'StanceError',
    'NotFoundError',
    'ValidationError',
    'VersionControlError',
    'MergeConflictUnresolved',

    # Validation and field access
    'validate_stance',
    'validate_delta_dict',
    'validate_mode_config',
    'get_field',
    'set_field',
    'FIELD_PATHS',
    'NUMERIC_PATHS',

    # Drift
    'calculate_drift_magnitude',
    'scale_delta',
    'limit_delta',

    # Controller
    'StanceController',
    'Conversation',
    'ConversationMessage',

    # Decay
    'DecayModelingEngine',
    'DecayModel',
    'DecayCurve',
    'DecayPrediction',
    'DecayRecommendation',
    'DecayAnalysis',
    'decay_values',

    # Diff and merge
    'StanceDiffEngine',
    'DiffConfig',
    'DiffChange',
    'StanceDiff',
    'MergeResult',

    # Version control
    'StanceVersionControl',
    'Checkpoint',
    'Branch',
    'StanceHistory',

    # Utilities
    'clip',
]

__version__ = '1.0.0'
