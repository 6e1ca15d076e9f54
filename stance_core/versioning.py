"""
Stance Core - Version Control

Checkpoint history with named branches, undo/redo, three-way merge and
garbage collection.

Structure:
    Checkpoints live in an id-keyed arena and link to their parent by id.
    A branch is a named, ordered list of checkpoint ids; a forked branch
    starts with the checkpoint it was created from. The default branch
    ("main") always exists and cannot be deleted.

    rollback(steps) walks parent links; redo(steps) walks forward along the
    current branch's list. commit appends to the current branch with the
    current checkpoint as parent, so committing after a rollback forks the
    DAG while keeping the branch list linear.

Garbage collection trims the oldest checkpoints of a branch beyond the cap.
A trimmed checkpoint is only dropped from the arena when no other branch
lists it, and the current checkpoint is never trimmed.
"""

from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .diff import MergeConflict, ConflictResolution, StanceDiffEngine
from .exceptions import NotFoundError, ValidationError, VersionControlError
from .parameters import MergeStrategy
from .state import Stance

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_NAME = "main"
DEFAULT_MAX_CHECKPOINTS = 100
DEFAULT_GC_THRESHOLD = 500


@dataclass
class Checkpoint:
    id: str
    stance: Stance
    branch_id: str
    timestamp: datetime
    author: str
    tags: List[str] = field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stance": self.stance.to_dict(),
            "name": self.name,
            "description": self.description,
            "parentId": self.parent_id,
            "branchId": self.branch_id,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }


@dataclass
class Branch:
    id: str
    name: str
    created_at: datetime
    last_modified: datetime
    is_default: bool = False
    protected: bool = False
    checkpoints: List[str] = field(default_factory=list)
    description: Optional[str] = None
    created_from: Optional[str] = None

    @property
    def head(self) -> Optional[str]:
        return self.checkpoints[-1] if self.checkpoints else None


@dataclass
class StanceHistory:
    id: str
    root_checkpoint_id: str
    branches: List[Branch]
    current_branch_id: str
    current_checkpoint_id: str
    created_at: datetime
    last_modified: datetime

    def branch_by_name(self, name: str) -> Optional[Branch]:
        return next((b for b in self.branches if b.name == name), None)

    def branch_by_id(self, branch_id: str) -> Optional[Branch]:
        return next((b for b in self.branches if b.id == branch_id), None)

    @property
    def current_branch(self) -> Branch:
        return self.branch_by_id(self.current_branch_id)


@dataclass
class RollbackResult:
    success: bool
    previous_checkpoint: Checkpoint
    current_checkpoint: Checkpoint
    steps_rolled_back: int


@dataclass
class TimelineEntry:
    checkpoint: Checkpoint
    branch: Branch
    depth: int
    is_current_head: bool
    children: List[str]


@dataclass
class GarbageCollectionResult:
    checkpoints_removed: int = 0
    branches_removed: int = 0


@dataclass
class VersionMergeResult:
    success: bool
    merged_checkpoint: Optional[Checkpoint]
    conflicts: List[MergeConflict]
    resolutions: List[ConflictResolution]
    strategy: str
    base_checkpoint_id: Optional[str] = None


class StanceVersionControl:
    """
    Branching checkpoint store for stances.

    Missing histories, branches and checkpoints raise NotFoundError;
    refused operations raise VersionControlError. rollback/redo return None
    when there is nothing to move to.
    """

    def __init__(
        self,
        diff_engine: Optional[StanceDiffEngine] = None,
        max_checkpoints_per_branch: int = DEFAULT_MAX_CHECKPOINTS,
        gc_threshold: int = DEFAULT_GC_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:12],
    ):
        self.diff_engine = diff_engine or StanceDiffEngine()
        self.max_checkpoints_per_branch = max_checkpoints_per_branch
        self.gc_threshold = gc_threshold
        self._clock = clock
        self._id_factory = id_factory
        self._histories: Dict[str, StanceHistory] = {}
        self._checkpoints: Dict[str, Checkpoint] = {}

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _require_history(self, history_id: str) -> StanceHistory:
        history = self._histories.get(history_id)
        if history is None:
            raise NotFoundError("History", history_id)
        return history

    def _require_branch(self, history: StanceHistory, name: str) -> Branch:
        branch = history.branch_by_name(name)
        if branch is None:
            raise NotFoundError("Branch", name)
        return branch

    def _require_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise NotFoundError("Checkpoint", checkpoint_id)
        return checkpoint

    def get_history(self, history_id: str) -> Optional[StanceHistory]:
        return self._histories.get(history_id)

    def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return self._checkpoints.get(checkpoint_id)

    def get_current_stance(self, history_id: str) -> Stance:
        history = self._require_history(history_id)
        return self._require_checkpoint(history.current_checkpoint_id).stance.copy()

    def list_branches(self, history_id: str) -> List[Branch]:
        return list(self._require_history(history_id).branches)

    # ------------------------------------------------------------------
    # History and commits
    # ------------------------------------------------------------------

    def create_history(self, stance: Stance, author: str, history_id: Optional[str] = None) -> StanceHistory:
        """Start a history whose root checkpoint holds a copy of stance."""
        history_id = history_id or f"history-{self._id_factory()}"
        if history_id in self._histories:
            raise VersionControlError(f"History {history_id} already exists")

        now = self._clock()
        branch_id = f"branch-{self._id_factory()}"
        root = Checkpoint(
            id=f"checkpoint-{self._id_factory()}",
            stance=stance.copy(),
            branch_id=branch_id,
            timestamp=now,
            author=author,
            tags=["root"],
            name="Initial",
        )
        main = Branch(
            id=branch_id,
            name=DEFAULT_BRANCH_NAME,
            created_at=now,
            last_modified=now,
            is_default=True,
            checkpoints=[root.id],
        )
        history = StanceHistory(
            id=history_id,
            root_checkpoint_id=root.id,
            branches=[main],
            current_branch_id=branch_id,
            current_checkpoint_id=root.id,
            created_at=now,
            last_modified=now,
        )
        self._checkpoints[root.id] = root
        self._histories[history_id] = history
        return history

    def delete_history(self, history_id: str) -> bool:
        """Drop a history and every checkpoint its branches list."""
        history = self._histories.pop(history_id, None)
        if history is None:
            return False
        for branch in history.branches:
            for checkpoint_id in branch.checkpoints:
                self._checkpoints.pop(checkpoint_id, None)
        self._checkpoints.pop(history.root_checkpoint_id, None)
        return True

    def commit(
        self,
        history_id: str,
        stance: Stance,
        author: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Checkpoint:
        """Append a checkpoint to the current branch."""
        history = self._require_history(history_id)
        branch = history.current_branch
        checkpoint = self._append(history, branch, stance, author, history.current_checkpoint_id,
                                  name=name, description=description, tags=tags, metadata=metadata)
        history.current_checkpoint_id = checkpoint.id

        if len(branch.checkpoints) > self.gc_threshold:
            self.garbage_collect(history_id, branch.id)
        return checkpoint

    def _append(self, history, branch, stance, author, parent_id, **details) -> Checkpoint:
        now = self._clock()
        checkpoint = Checkpoint(
            id=f"checkpoint-{self._id_factory()}",
            stance=stance.copy(),
            branch_id=branch.id,
            timestamp=now,
            author=author,
            tags=list(details.get("tags") or []),
            name=details.get("name"),
            description=details.get("description"),
            parent_id=parent_id,
            metadata=dict(details.get("metadata") or {}),
        )
        self._checkpoints[checkpoint.id] = checkpoint
        branch.checkpoints.append(checkpoint.id)
        branch.last_modified = now
        history.last_modified = now
        return checkpoint

    def create_checkpoint(
        self,
        history_id: str,
        name: str,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Checkpoint:
        """Named checkpoint of the current stance."""
        history = self._require_history(history_id)
        current = self._require_checkpoint(history.current_checkpoint_id)
        return self.commit(history_id, current.stance, current.author, name=name, description=description, tags=tags)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def create_branch(self, history_id: str, name: str, from_checkpoint_id: Optional[str] = None) -> Branch:
        """Fork a branch at a checkpoint (default: the current one). Does not switch."""
        history = self._require_history(history_id)
        if history.branch_by_name(name) is not None:
            raise VersionControlError(f"Branch {name} already exists")

        source_id = from_checkpoint_id or history.current_checkpoint_id
        self._require_checkpoint(source_id)

        now = self._clock()
        branch = Branch(
            id=f"branch-{self._id_factory()}",
            name=name,
            created_at=now,
            last_modified=now,
            checkpoints=[source_id],
            created_from=source_id,
        )
        history.branches.append(branch)
        history.last_modified = now
        return branch

    def switch_branch(self, history_id: str, name: str) -> Branch:
        """Make name current; the current checkpoint moves to its head."""
        history = self._require_history(history_id)
        branch = self._require_branch(history, name)
        history.current_branch_id = branch.id
        history.current_checkpoint_id = branch.head
        history.last_modified = self._clock()
        return branch

    def delete_branch(self, history_id: str, name: str) -> bool:
        """Remove a branch pointer. Its checkpoints stay in the store."""
        history = self._require_history(history_id)
        branch = self._require_branch(history, name)
        if branch.is_default:
            raise VersionControlError("Cannot delete the default branch")
        if branch.protected:
            raise VersionControlError(f"Branch {name} is protected")
        if branch.id == history.current_branch_id:
            raise VersionControlError(f"Cannot delete the current branch {name}")

        history.branches.remove(branch)
        history.last_modified = self._clock()
        return True

    def protect_branch(self, history_id: str, name: str, protect: bool = True) -> Branch:
        branch = self._require_branch(self._require_history(history_id), name)
        branch.protected = protect
        return branch

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def rollback(self, history_id: str, steps: int = 1) -> Optional[RollbackResult]:
        """
        Move the current checkpoint `steps` parents back.

        Stops early at the root or at a parent removed by garbage
        collection. Returns None if it could not move at all.
        """
        history = self._require_history(history_id)
        current = self._require_checkpoint(history.current_checkpoint_id)

        target = current
        moved = 0
        while moved < steps and target.parent_id is not None:
            parent = self._checkpoints.get(target.parent_id)
            if parent is None:
                break
            target = parent
            moved += 1

        if moved == 0:
            return None

        history.current_checkpoint_id = target.id
        history.last_modified = self._clock()
        return RollbackResult(success=True, previous_checkpoint=current, current_checkpoint=target, steps_rolled_back=moved)

    def rollback_to(self, history_id: str, checkpoint_id: str) -> RollbackResult:
        """Jump to a checkpoint listed on the current branch."""
        history = self._require_history(history_id)
        target = self._require_checkpoint(checkpoint_id)
        current = self._require_checkpoint(history.current_checkpoint_id)

        branch = history.current_branch
        if checkpoint_id not in branch.checkpoints:
            raise VersionControlError(f"Checkpoint {checkpoint_id} is not on branch {branch.name}")

        if current.id in branch.checkpoints:
            steps = branch.checkpoints.index(current.id) - branch.checkpoints.index(checkpoint_id)
        else:
            steps = self._ancestor_distance(current.id, checkpoint_id)

        history.current_checkpoint_id = checkpoint_id
        history.last_modified = self._clock()
        return RollbackResult(success=True, previous_checkpoint=current, current_checkpoint=target, steps_rolled_back=steps)

    def redo(self, history_id: str, steps: int = 1) -> Optional[Checkpoint]:
        """Move forward along the current branch; None if already at its head."""
        history = self._require_history(history_id)
        branch = history.current_branch
        if history.current_checkpoint_id not in branch.checkpoints:
            return None

        index = branch.checkpoints.index(history.current_checkpoint_id)
        target_index = min(index + steps, len(branch.checkpoints) - 1)
        if target_index <= index:
            return None

        target = self._require_checkpoint(branch.checkpoints[target_index])
        history.current_checkpoint_id = target.id
        history.last_modified = self._clock()
        return target

    def _ancestry(self, checkpoint_id: Optional[str]) -> List[str]:
        """checkpoint_id followed by its reachable ancestors, nearest first."""
        chain = []
        while checkpoint_id is not None and checkpoint_id in self._checkpoints:
            chain.append(checkpoint_id)
            checkpoint_id = self._checkpoints[checkpoint_id].parent_id
        return chain

    def _ancestor_distance(self, descendant_id: str, ancestor_id: str) -> int:
        chain = self._ancestry(descendant_id)
        return chain.index(ancestor_id) if ancestor_id in chain else 0

    def common_ancestor(self, left_id: str, right_id: str) -> Optional[str]:
        right_chain = set(self._ancestry(right_id))
        return next((cid for cid in self._ancestry(left_id) if cid in right_chain), None)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(
        self,
        history_id: str,
        source_branch: str,
        strategy: Union[MergeStrategy, str] = MergeStrategy.AVERAGE,
        target_branch: Optional[str] = None,
    ) -> VersionMergeResult:
        """
        Three-way merge of source's head into target (default: current branch).

        The base is the nearest common ancestor of the two heads (the root
        if GC has cut the chains apart). Target is "ours", source "theirs".
        The merged stance is committed to target, tagged "merge".
        """
        history = self._require_history(history_id)
        source = self._require_branch(history, source_branch)
        target = (
            self._require_branch(history, target_branch)
            if target_branch is not None
            else history.current_branch
        )
        if source.id == target.id:
            raise VersionControlError(f"Cannot merge branch {source.name} into itself")

        source_head = self._require_checkpoint(source.head)
        target_head = self._require_checkpoint(target.head)
        base_id = self.common_ancestor(target_head.id, source_head.id)
        if base_id is None:
            base_id = history.root_checkpoint_id if history.root_checkpoint_id in self._checkpoints else target_head.id
        base = self._require_checkpoint(base_id)

        result = self.diff_engine.merge(base.stance, target_head.stance, source_head.stance, strategy)
        # Checkpoint versions stay monotonic along the target branch
        result.merged_stance.version = max(target_head.stance.version, source_head.stance.version) + 1

        merged = self._append(
            history,
            target,
            result.merged_stance,
            "system",
            target_head.id,
            name=f"Merge {source.name} into {target.name}",
            description=f"Merged {len(result.conflicts)} conflicts using {result.strategy} strategy",
            tags=["merge"],
            metadata={
                "mergeSource": source.name,
                "mergeStrategy": result.strategy,
                "conflictCount": len(result.conflicts),
                "baseCheckpointId": base.id,
            },
        )
        if target.id == history.current_branch_id:
            history.current_checkpoint_id = merged.id

        return VersionMergeResult(
            success=True,
            merged_checkpoint=merged,
            conflicts=result.conflicts,
            resolutions=result.resolutions,
            strategy=result.strategy,
            base_checkpoint_id=base.id,
        )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_timeline(self, history_id: str) -> List[TimelineEntry]:
        """One entry per (branch, checkpoint), oldest first."""
        history = self._require_history(history_id)

        children: Dict[str, List[str]] = {}
        for branch in history.branches:
            for checkpoint_id in branch.checkpoints:
                checkpoint = self._checkpoints.get(checkpoint_id)
                if checkpoint is not None and checkpoint.parent_id is not None:
                    siblings = children.setdefault(checkpoint.parent_id, [])
                    if checkpoint_id not in siblings:
                        siblings.append(checkpoint_id)

        timeline = []
        for branch in history.branches:
            for depth, checkpoint_id in enumerate(branch.checkpoints):
                checkpoint = self._checkpoints.get(checkpoint_id)
                if checkpoint is None:
                    continue
                timeline.append(TimelineEntry(
                    checkpoint=checkpoint,
                    branch=branch,
                    depth=depth,
                    is_current_head=checkpoint_id == history.current_checkpoint_id,
                    children=list(children.get(checkpoint_id, [])),
                ))

        timeline.sort(key=lambda entry: entry.checkpoint.timestamp)
        return timeline

    def find_checkpoints_by_tag(self, history_id: str, tag: str) -> List[Checkpoint]:
        history = self._require_history(history_id)
        seen = set()
        found = []
        for branch in history.branches:
            for checkpoint_id in branch.checkpoints:
                if checkpoint_id in seen:
                    continue
                seen.add(checkpoint_id)
                checkpoint = self._checkpoints.get(checkpoint_id)
                if checkpoint is not None and tag in checkpoint.tags:
                    found.append(checkpoint)
        return found

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def garbage_collect(self, history_id: str, branch_id: Optional[str] = None) -> GarbageCollectionResult:
        """
        Trim branches beyond max_checkpoints_per_branch, oldest first.

        Protected branches are skipped. Empty non-default, unprotected
        branches are removed.
        """
        history = self._require_history(history_id)
        result = GarbageCollectionResult()

        for branch in history.branches:
            if branch_id is not None and branch.id != branch_id:
                continue
            if branch.protected:
                continue

            excess = len(branch.checkpoints) - self.max_checkpoints_per_branch
            if excess <= 0:
                continue

            trimmed, kept = [], []
            for checkpoint_id in branch.checkpoints:
                if excess > 0 and checkpoint_id != history.current_checkpoint_id:
                    trimmed.append(checkpoint_id)
                    excess -= 1
                else:
                    kept.append(checkpoint_id)
            branch.checkpoints = kept

            for checkpoint_id in trimmed:
                referenced = any(
                    checkpoint_id in other.checkpoints
                    for other in history.branches
                    if other is not branch
                )
                if not referenced:
                    self._checkpoints.pop(checkpoint_id, None)
                    result.checkpoints_removed += 1

        empty = [
            b for b in history.branches
            if not b.is_default and not b.protected and not b.checkpoints
        ]
        for branch in empty:
            history.branches.remove(branch)
            result.branches_removed += 1

        if result.checkpoints_removed or result.branches_removed:
            logger.info(
                f"GC on {history_id}: removed {result.checkpoints_removed} checkpoints, "
                f"{result.branches_removed} branches"
            )
        else:
            logger.debug(f"GC on {history_id}: nothing to remove")
        return result

    def set_max_checkpoints(self, maximum: int) -> None:
        if maximum < 1:
            raise ValidationError(f"max checkpoints must be >= 1, got {maximum}")
        self.max_checkpoints_per_branch = maximum

    def set_gc_threshold(self, threshold: int) -> None:
        if threshold < 1:
            raise ValidationError(f"GC threshold must be >= 1, got {threshold}")
        self.gc_threshold = threshold
