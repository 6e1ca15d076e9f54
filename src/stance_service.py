"""
Stance Service

Composition root for the stance core: wires the controller, decay engine,
diff engine, version control and (optionally) the SQLite store with
explicit constructor injection. One service instance owns one set of
components; there are no module-level singletons.

Turn cycle (apply):
  1. controller.apply_delta        (drift cap, budget, clamping, version + 1)
  2. version_control.commit        (checkpoint on the conversation's branch)
  3. decay_engine.update_stance    (curves, predictions, recommendations)
  4. db.save_conversation / db.record_snapshot   (when a store is attached)

Callers serialize calls per conversation id.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.stance_config import StanceConfig
from src.conversation_db import ConversationDB
from src.logging_utils import get_logger
from src import runtime_config
from stance_core.controller import Conversation, ConversationMessage, StanceController
from stance_core.decay import DecayModelingEngine
from stance_core.diff import StanceDiff, StanceDiffEngine
from stance_core.exceptions import NotFoundError
from stance_core.schemas import validate_mode_config
from stance_core.state import Stance, StanceDelta
from stance_core.versioning import StanceVersionControl

logger = get_logger(__name__)


class StanceService:
    """Orchestrates stance evolution for many conversations."""

    def __init__(
        self,
        controller: Optional[StanceController] = None,
        decay_engine: Optional[DecayModelingEngine] = None,
        diff_engine: Optional[StanceDiffEngine] = None,
        version_control: Optional[StanceVersionControl] = None,
        db: Optional[ConversationDB] = None,
    ):
        self.controller = controller or StanceController(
            default_config=validate_mode_config(StanceConfig.mode_defaults())
        )
        self.diff_engine = diff_engine or StanceDiffEngine()
        self.version_control = version_control or StanceVersionControl(
            diff_engine=self.diff_engine,
            max_checkpoints_per_branch=StanceConfig.MAX_CHECKPOINTS_PER_BRANCH,
            gc_threshold=StanceConfig.GC_THRESHOLD,
        )
        self.decay_engine = decay_engine or DecayModelingEngine(
            params=StanceConfig.decay_params(),
            max_recommendations=StanceConfig.MAX_RECOMMENDATIONS,
        )
        self.db = db
        # conversation id -> decay model id
        self._decay_models: Dict[str, str] = {}

    @classmethod
    def from_runtime_config(cls, db_path: Optional[Path] = None, use_db: bool = True) -> "StanceService":
        """Build a service from StanceConfig plus the current runtime overrides."""
        diff_engine = StanceDiffEngine()
        threshold = runtime_config.get_effective_threshold("decay_alert_threshold")
        return cls(
            controller=StanceController(default_config=validate_mode_config(runtime_config.get_mode_defaults())),
            decay_engine=DecayModelingEngine(
                params=StanceConfig.decay_params(threshold),
                max_recommendations=StanceConfig.MAX_RECOMMENDATIONS,
            ),
            diff_engine=diff_engine,
            version_control=StanceVersionControl(
                diff_engine=diff_engine,
                max_checkpoints_per_branch=StanceConfig.MAX_CHECKPOINTS_PER_BRANCH,
                gc_threshold=StanceConfig.GC_THRESHOLD,
            ),
            db=ConversationDB(db_path) if use_db else None,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_conversation(self, config: Optional[Mapping[str, Any]] = None, author: str = "system") -> Conversation:
        """Create a conversation with its checkpoint history and decay model."""
        conversation = self.controller.create_conversation(config)
        self._track(conversation, author)
        self._persist(conversation.id)
        logger.info(f"Started conversation {conversation.id}")
        return conversation

    def _track(self, conversation: Conversation, author: str) -> None:
        if self.version_control.get_history(conversation.id) is None:
            self.version_control.create_history(conversation.stance, author, history_id=conversation.id)
        if conversation.id not in self._decay_models:
            model = self.decay_engine.create_model(conversation.id, conversation.stance)
            self._decay_models[conversation.id] = model.id

    def _decay_model_id(self, conversation_id: str) -> str:
        try:
            return self._decay_models[conversation_id]
        except KeyError:
            raise NotFoundError("Conversation", conversation_id) from None

    def end_conversation(self, conversation_id: str, delete_persisted: bool = False) -> bool:
        """
        Drop a conversation from memory (after a final save).

        Returns False if the conversation was not active.
        """
        if self.controller.get_conversation(conversation_id) is None:
            return False

        self._persist(conversation_id)
        self.controller.delete_conversation(conversation_id)
        self.version_control.delete_history(conversation_id)
        model_id = self._decay_models.pop(conversation_id, None)
        if model_id is not None:
            self.decay_engine.delete_model(model_id)
        if delete_persisted and self.db is not None:
            self.db.delete_conversation(conversation_id)

        logger.info(f"Ended conversation {conversation_id}")
        return True

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def apply(
        self,
        conversation_id: str,
        delta: Union[StanceDelta, Mapping[str, Any]],
        author: str = "agent",
    ) -> Stance:
        """Apply a delta, checkpoint it, update decay, persist."""
        stance = self.controller.apply_delta(conversation_id, delta)
        self.version_control.commit(conversation_id, stance, author)
        self.decay_engine.update_stance(self._decay_model_id(conversation_id), stance)
        self._persist(conversation_id, stance)
        return stance

    def record_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tools_used: Optional[List[str]] = None,
    ) -> ConversationMessage:
        """Append a message carrying a snapshot of the current stance."""
        message = ConversationMessage(
            role=role,
            content=content,
            stance=self.controller.get_current_stance(conversation_id).copy(),
            tools_used=tools_used,
        )
        self.controller.add_message(conversation_id, message)
        return message

    def rollback(self, conversation_id: str, steps: int = 1) -> Optional[Stance]:
        """
        Restore the stance `steps` checkpoints back into the controller.

        Returns None if there is nothing to roll back to.
        """
        result = self.version_control.rollback(conversation_id, steps)
        if result is None:
            return None

        stance = self.controller.restore_stance(conversation_id, result.current_checkpoint.stance)
        self.decay_engine.update_stance(self._decay_model_id(conversation_id), stance)
        self._persist(conversation_id, stance)
        logger.info(f"Rolled back {conversation_id} by {result.steps_rolled_back} checkpoints")
        return stance

    # ------------------------------------------------------------------
    # Read APIs
    # ------------------------------------------------------------------

    def diff_versions(
        self,
        conversation_id: str,
        from_checkpoint_id: Optional[str] = None,
        to_checkpoint_id: Optional[str] = None,
    ) -> StanceDiff:
        """
        Diff two checkpoints of a conversation.

        Defaults: from the root checkpoint to the live stance.
        """
        history = self.version_control.get_history(conversation_id)
        if history is None:
            raise NotFoundError("History", conversation_id)

        left_id = from_checkpoint_id or history.root_checkpoint_id
        left = self.version_control.get_checkpoint(left_id)
        if left is None:
            raise NotFoundError("Checkpoint", left_id)

        if to_checkpoint_id is None:
            right_stance = self.controller.get_current_stance(conversation_id)
        else:
            right = self.version_control.get_checkpoint(to_checkpoint_id)
            if right is None:
                raise NotFoundError("Checkpoint", to_checkpoint_id)
            right_stance = right.stance

        return self.diff_engine.diff(left.stance, right_stance)

    def decay_report(self, conversation_id: str) -> Dict[str, Any]:
        model_id = self._decay_model_id(conversation_id)
        model = self.decay_engine.get_model(model_id)
        return {
            "conversation_id": conversation_id,
            "analysis": self.decay_engine.analyze_decay(model_id).to_dict(),
            "predictions": [p.to_dict() for p in model.predictions],
            "recommendations": [r.to_dict() for r in model.recommendations],
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export(self, conversation_id: str) -> str:
        return self.controller.export_conversation(conversation_id)

    def import_conversation(self, payload: str, author: str = "system") -> Conversation:
        """
        Register an exported conversation and start tracking it.

        Importing over an active id replaces its stance; the imported stance
        is then committed to the existing history and fed to its decay model.
        """
        conversation = self.controller.import_conversation(payload)
        already_active = self.version_control.get_history(conversation.id) is not None
        self._track(conversation, author)

        if already_active:
            self.version_control.commit(conversation.id, conversation.stance, author, tags=["import"])
            self.decay_engine.update_stance(self._decay_model_id(conversation.id), conversation.stance)
            logger.info(f"Re-imported active conversation {conversation.id}")
        return conversation

    def load(self, conversation_id: str) -> Conversation:
        """
        Load a conversation from the attached store.

        Raises:
            NotFoundError: no store attached, or nothing stored under that id
        """
        payload = self.db.load_conversation(conversation_id) if self.db is not None else None
        if payload is None:
            raise NotFoundError("Stored conversation", conversation_id)
        return self.import_conversation(payload)

    def _persist(self, conversation_id: str, stance: Optional[Stance] = None) -> bool:
        if self.db is None:
            return False
        saved = self.db.save_conversation(self.controller.export_conversation(conversation_id))
        if stance is not None:
            saved = self.db.record_snapshot(conversation_id, stance) and saved
        if not saved:
            logger.warning(f"Conversation {conversation_id} was not fully persisted")
        return saved
