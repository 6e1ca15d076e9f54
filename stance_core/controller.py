"""
Stance Core - Stance Controller

Owns conversation-scoped stance state and applies deltas under the drift
budget.

Apply cycle (apply_delta):
  1. Look up the conversation (NotFoundError if absent)
  2. Measure the delta and truncate it against maxDriftPerTurn
  3. newCumulativeDrift = current.cumulativeDrift + raw magnitude
  4. If newCumulativeDrift > driftBudget: coherence reset, drift becomes 0
     (a full reset, not the overflow remainder)
  5. Build the new stance: top-level fields replaced when present, values and
     sentience levels merged key-by-key and re-clamped to [0, 100],
     sentience lists appended, turnsSinceLastShift reset on non-zero drift
     else incremented, version + 1
  6. Validate against the wire schema (last-resort assertion)
  7. Store, touch updatedAt, return

Concurrency: callers serialize apply_delta per conversation id. There is no
internal locking and no I/O; persistence is the caller's job after a
successful apply.
"""

from __future__ import annotations
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .drift import limit_delta
from .exceptions import NotFoundError, ValidationError
from .parameters import (
    ModeConfig,
    VALUE_KEYS,
    SENTIENCE_LEVELS,
    SENTIENCE_LISTS,
    VALUE_MIN,
    VALUE_MAX,
)
from .schemas import validate_delta_dict, validate_mode_config, validate_stance
from .state import (
    Stance,
    StanceDelta,
    Values,
    Sentience,
    ValuesPatch,
    SentiencePatch,
    create_default_stance,
)
from .utils import clip

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "assistant", "system")


@dataclass
class ConversationMessage:
    """A message in the conversation history."""
    role: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    stance: Optional[Stance] = None
    tools_used: Optional[List[str]] = None

    def __post_init__(self):
        if self.role not in MESSAGE_ROLES:
            raise ValidationError(f"Unknown message role: {self.role!r}")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.stance is not None:
            out["stance"] = self.stance.to_dict()
        if self.tools_used is not None:
            out["toolsUsed"] = list(self.tools_used)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationMessage":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            stance=Stance.from_dict(data["stance"]) if data.get("stance") else None,
            tools_used=list(data["toolsUsed"]) if data.get("toolsUsed") is not None else None,
        )


@dataclass
class Conversation:
    """Conversation state owned by the controller."""
    id: str
    messages: List[ConversationMessage]
    stance: Stance
    config: ModeConfig
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with wire names and ISO-8601 dates."""
        return {
            "id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "stance": self.stance.to_dict(),
            "config": self.config.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conversation":
        """Deserialize and rehydrate dates."""
        return cls(
            id=data["id"],
            messages=[ConversationMessage.from_dict(m) for m in data.get("messages", [])],
            stance=Stance.from_dict(data["stance"]),
            config=ModeConfig.from_dict(data.get("config", {})),
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )


def merge_values(current: Values, patch: Optional[ValuesPatch]) -> Values:
    """
    result[k] = clip(patch[k] if set else current[k], 0, 100)

    Every key is re-clamped, including unchanged ones, so out-of-range
    values from an imported stance are pulled back on the next apply.
    """
    updates = patch.defined() if patch is not None else {}
    return Values(**{
        key: clip(float(updates.get(key, getattr(current, key))), VALUE_MIN, VALUE_MAX)
        for key in VALUE_KEYS
    })


def merge_sentience(current: Sentience, patch: Optional[SentiencePatch]) -> Sentience:
    """Levels replaced and re-clamped like values; lists grow by append."""
    levels = patch.defined_levels() if patch is not None else {}
    kwargs: Dict[str, Any] = {}
    for attr, _ in SENTIENCE_LEVELS:
        kwargs[attr] = clip(float(levels.get(attr, getattr(current, attr))), VALUE_MIN, VALUE_MAX)
    for attr, _ in SENTIENCE_LISTS:
        appended = getattr(patch, attr) if patch is not None else None
        kwargs[attr] = list(getattr(current, attr)) + list(appended or [])
    return Sentience(**kwargs)


class StanceController:
    """
    Manages conversations and their evolving stance.

    Instances are owned by the orchestration layer; there is no module-level
    controller.

    Example:
        controller = StanceController()
        conv = controller.create_conversation({"max_drift_per_turn": 100})
        stance = controller.apply_delta(conv.id, StanceDelta(frame="poetic"))
    """

    def __init__(
        self,
        default_config: Optional[ModeConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        """
        Args:
            default_config: Base mode config for new conversations
            clock: Wall-clock source for createdAt/updatedAt
            id_factory: Conversation id generator
        """
        self.default_config = default_config or ModeConfig()
        self._clock = clock
        self._id_factory = id_factory
        self._conversations: Dict[str, Conversation] = {}

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    def create_conversation(
        self,
        config: Optional[Union[ModeConfig, Mapping[str, Any]]] = None,
    ) -> Conversation:
        """
        Create a conversation with the default stance.

        Args:
            config: ModeConfig, or overrides (wire or snake_case names) merged
                over the controller's default config

        Raises:
            ValidationError: config out of range
        """
        if isinstance(config, ModeConfig):
            mode = validate_mode_config(config.to_dict())
        else:
            mode = validate_mode_config(config or {}, base=self.default_config)

        now = self._clock()
        conversation = Conversation(
            id=self._id_factory(),
            messages=[],
            stance=create_default_stance(),
            config=mode,
            created_at=now,
            updated_at=now,
        )
        self._conversations[conversation.id] = conversation
        logger.debug(f"Conversation {conversation.id} created")
        return conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def get_current_stance(self, conversation_id: str) -> Stance:
        """Current stance. Raises NotFoundError for unknown ids."""
        return self._require(conversation_id).stance

    def list_conversations(self) -> List[str]:
        return list(self._conversations)

    def delete_conversation(self, conversation_id: str) -> bool:
        """True if the conversation existed."""
        return self._conversations.pop(conversation_id, None) is not None

    # ------------------------------------------------------------------
    # Stance evolution
    # ------------------------------------------------------------------

    def apply_delta(self, conversation_id: str, delta: Union[StanceDelta, Mapping[str, Any]]) -> Stance:
        """
        Apply a delta under the per-turn cap and cumulative budget.

        Args:
            conversation_id: Target conversation
            delta: StanceDelta or wire-format mapping

        Returns:
            The new stance (a fresh object; version = previous + 1)

        Raises:
            NotFoundError: unknown conversation
            ValidationError: malformed wire delta, or resulting stance out of contract
        """
        conversation = self._require(conversation_id)
        if not isinstance(delta, StanceDelta):
            delta = StanceDelta.from_dict(validate_delta_dict(delta))

        current = conversation.stance
        config = conversation.config

        delta, drift_magnitude, _ = limit_delta(delta, config.max_drift_per_turn)

        new_cumulative_drift = current.cumulative_drift + drift_magnitude
        coherence_reset = new_cumulative_drift > config.drift_budget
        if coherence_reset:
            logger.info(
                f"Coherence reset in {conversation_id}: drift {new_cumulative_drift:.1f} "
                f"exceeds budget {config.drift_budget:.1f}"
            )

        new_stance = Stance(
            frame=delta.frame if delta.frame is not None else current.frame,
            values=merge_values(current.values, delta.values),
            self_model=delta.self_model if delta.self_model is not None else current.self_model,
            objective=delta.objective if delta.objective is not None else current.objective,
            metaphors=list(delta.metaphors if delta.metaphors is not None else current.metaphors),
            constraints=list(delta.constraints if delta.constraints is not None else current.constraints),
            sentience=merge_sentience(current.sentience, delta.sentience),
            turns_since_last_shift=0 if drift_magnitude > 0 else current.turns_since_last_shift + 1,
            cumulative_drift=0.0 if coherence_reset else new_cumulative_drift,
            version=current.version + 1,
        )

        validate_stance(new_stance)

        conversation.stance = new_stance
        conversation.updated_at = self._clock()
        return new_stance

    def restore_stance(self, conversation_id: str, stance: Stance) -> Stance:
        """
        Adopt a stance supplied by the orchestration layer (e.g. a rollback).

        Numeric fields are re-clamped and the version continues from the
        current one, so versions stay monotonic.
        """
        conversation = self._require(conversation_id)
        current = conversation.stance

        restored = stance.copy()
        restored.values = merge_values(restored.values, None)
        restored.sentience = merge_sentience(restored.sentience, None)
        restored.version = current.version + 1
        validate_stance(restored)

        conversation.stance = restored
        conversation.updated_at = self._clock()
        return restored

    # ------------------------------------------------------------------
    # History and config
    # ------------------------------------------------------------------

    def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        conversation = self._require(conversation_id)
        conversation.messages.append(message)
        conversation.updated_at = self._clock()

    def get_history(self, conversation_id: str) -> List[ConversationMessage]:
        return list(self._require(conversation_id).messages)

    def update_config(self, conversation_id: str, config: Mapping[str, Any]) -> ModeConfig:
        """Merge overrides into the conversation's config (validated)."""
        conversation = self._require(conversation_id)
        conversation.config = validate_mode_config(config, base=conversation.config)
        conversation.updated_at = self._clock()
        return conversation.config

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_conversation(self, conversation_id: str) -> str:
        """JSON string with ISO-8601 dates."""
        return json.dumps(self._require(conversation_id).to_dict(), indent=2, ensure_ascii=False)

    def import_conversation(self, payload: str) -> Conversation:
        """
        Parse an exported conversation and register it under its own id.

        Raises:
            ValidationError: malformed JSON or unknown enum values
        """
        try:
            data = json.loads(payload)
            conversation = Conversation.from_dict(data)
        except ValidationError:
            raise
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"Invalid conversation payload: {e}") from e
        self._conversations[conversation.id] = conversation
        return conversation
