"""
Stance Core - Stance Diff and Merge

Field-by-field comparison of two stances, three-way merge with conflict
resolution strategies, cherry-picking, and text visualizations.

Significance Tiers:
    frame, selfModel                → major
    objective, sentience levels     → moderate
    values.*                        → major if |Δ| > 20, moderate if > 10, else minor
    list items (added / removed)    → moderate

Change order is fixed: frame, selfModel, objective, values (canonical key
order), sentience levels, then list fields. Added items follow the right
list's order and removed items the left list's order, so diff(a, b) and
diff(b, a) pair up path by path.

Merge:
    Paths changed on one side only are taken from that side. Paths changed
    on both sides to different values are conflicts, resolved by strategy:
        ours     → left
        theirs   → right
        average  → mean for numbers, else right
        union    → ordered set-union for lists, else right
        latest   → right
        manual   → unresolvable; warns and falls back to latest
    version = max(left, right) + 1, cumulativeDrift = mean of the parents,
    turnsSinceLastShift = min of the parents.
"""

from __future__ import annotations
import dataclasses
import logging
import uuid
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import MergeConflictUnresolved, ValidationError
from .fields import (
    LIST_PATHS,
    SCALAR_ENUM_PATHS,
    SENTIENCE_LEVEL_PATHS,
    VALUE_PATHS,
    get_field,
    is_list_path,
    set_field,
)
from .parameters import MergeStrategy
from .schemas import validate_stance
from .state import Stance
from .utils import is_number, ordered_union

logger = logging.getLogger(__name__)

_ENUM_SIGNIFICANCE = {"frame": "major", "selfModel": "major", "objective": "moderate"}

VISUALIZATION_TYPES = ("unified", "side-by-side", "tree")

_ANSI = {"green": "\033[32m", "red": "\033[31m", "yellow": "\033[33m"}
_ANSI_RESET = "\033[0m"


def value_significance(left: float, right: float) -> str:
    delta = abs(right - left)
    if delta > 20:
        return "major"
    if delta > 10:
        return "moderate"
    return "minor"


# =============================================================================
# Types
# =============================================================================

@dataclass
class DiffConfig:
    """
    Attributes:
        ignore_minor_changes: Drop minor value changes from diff() output
        minor_change_threshold: With ignore_minor_changes, value moves of at
            most this many points are dropped
        include_metadata: Prefix visualizations with a summary header
        colorize: Wrap visualization lines in ANSI colors
    """
    ignore_minor_changes: bool = False
    minor_change_threshold: float = 10.0
    include_metadata: bool = True
    colorize: bool = False


@dataclass
class DiffChange:
    path: str
    type: str  # added | removed | modified
    left_value: Any
    right_value: Any
    significance: str  # minor | moderate | major

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type,
            "leftValue": self.left_value,
            "rightValue": self.right_value,
            "significance": self.significance,
        }


@dataclass
class DiffSummary:
    total_changes: int
    major_changes: int
    moderate_changes: int
    minor_changes: int
    frame_changed: bool
    self_model_changed: bool
    coherence_impact: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalChanges": self.total_changes,
            "majorChanges": self.major_changes,
            "moderateChanges": self.moderate_changes,
            "minorChanges": self.minor_changes,
            "frameChanged": self.frame_changed,
            "selfModelChanged": self.self_model_changed,
            "coherenceImpact": self.coherence_impact,
        }


@dataclass
class StanceDiff:
    id: str
    timestamp: datetime
    left: Stance
    right: Stance
    changes: List[DiffChange]
    summary: DiffSummary

    def changed_paths(self) -> List[str]:
        """Distinct changed paths, in change order."""
        return ordered_union(c.path for c in self.changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
            "changes": [c.to_dict() for c in self.changes],
            "summary": self.summary.to_dict(),
        }


@dataclass
class MergeConflict:
    id: str
    path: str
    base_value: Any
    left_value: Any
    right_value: Any
    suggested_resolution: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "baseValue": self.base_value,
            "leftValue": self.left_value,
            "rightValue": self.right_value,
            "suggestedResolution": self.suggested_resolution,
        }


@dataclass
class ConflictResolution:
    conflict_id: str
    resolution: str  # use_left | use_right | custom
    custom_value: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflictId": self.conflict_id,
            "resolution": self.resolution,
            "customValue": self.custom_value,
            "reason": self.reason,
        }


@dataclass
class MergeResult:
    success: bool
    merged_stance: Optional[Stance]
    conflicts: List[MergeConflict]
    resolutions: List[ConflictResolution]
    strategy: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mergedStance": self.merged_stance.to_dict() if self.merged_stance else None,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "resolutions": [r.to_dict() for r in self.resolutions],
            "strategy": self.strategy,
        }


@dataclass
class CherryPickResult:
    success: bool
    applied_changes: List[DiffChange]
    skipped_changes: List[DiffChange]
    result_stance: Stance


@dataclass
class DiffHighlight:
    path: str
    color: str  # green | red | yellow | blue
    label: str


@dataclass
class DiffVisualization:
    type: str
    content: str
    highlights: List[DiffHighlight] = field(default_factory=list)


@dataclass
class DiffStats:
    total_diffs: int = 0
    total_merges: int = 0
    conflicts_resolved: int = 0
    cherry_picks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalDiffs": self.total_diffs,
            "totalMerges": self.total_merges,
            "conflictsResolved": self.conflicts_resolved,
            "cherryPicks": self.cherry_picks,
        }


# =============================================================================
# Engine
# =============================================================================

def compute_changes(left: Stance, right: Stance) -> List[DiffChange]:
    """Unfiltered, ordered changes from left to right."""
    changes: List[DiffChange] = []

    for path in SCALAR_ENUM_PATHS:
        lv, rv = get_field(left, path), get_field(right, path)
        if lv != rv:
            changes.append(DiffChange(path, "modified", lv, rv, _ENUM_SIGNIFICANCE[path]))

    for path in VALUE_PATHS:
        lv, rv = get_field(left, path), get_field(right, path)
        if lv != rv:
            changes.append(DiffChange(path, "modified", lv, rv, value_significance(lv, rv)))

    for path in SENTIENCE_LEVEL_PATHS:
        lv, rv = get_field(left, path), get_field(right, path)
        if lv != rv:
            changes.append(DiffChange(path, "modified", lv, rv, "moderate"))

    for path in LIST_PATHS:
        left_items, right_items = get_field(left, path), get_field(right, path)
        left_set, right_set = set(left_items), set(right_items)
        for item in ordered_union(right_items):
            if item not in left_set:
                changes.append(DiffChange(path, "added", None, item, "moderate"))
        for item in ordered_union(left_items):
            if item not in right_set:
                changes.append(DiffChange(path, "removed", item, None, "moderate"))

    return changes


def summarize_changes(changes: Sequence[DiffChange], left: Stance, right: Stance) -> DiffSummary:
    return DiffSummary(
        total_changes=len(changes),
        major_changes=sum(1 for c in changes if c.significance == "major"),
        moderate_changes=sum(1 for c in changes if c.significance == "moderate"),
        minor_changes=sum(1 for c in changes if c.significance == "minor"),
        frame_changed=left.frame != right.frame,
        self_model_changed=left.self_model != right.self_model,
        coherence_impact=abs(right.cumulative_drift - left.cumulative_drift),
    )


class StanceDiffEngine:
    """
    Diffs, merges and cherry-picks stances.

    Read/derive-only: inputs are never mutated; merged and cherry-picked
    stances are fresh copies.
    """

    def __init__(
        self,
        config: Optional[DiffConfig] = None,
        max_history: int = 1000,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:9],
    ):
        self.config = config or DiffConfig()
        self.max_history = max_history
        self._clock = clock
        self._id_factory = id_factory
        self._history: List[StanceDiff] = []
        self._stats = DiffStats()

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def diff(self, left: Stance, right: Stance) -> StanceDiff:
        """
        Compare two stances.

        Returns:
            StanceDiff with ordered changes; recorded in the diff history
        """
        changes = compute_changes(left, right)
        if self.config.ignore_minor_changes:
            changes = [c for c in changes if not self._is_ignorable(c)]

        result = StanceDiff(
            id=f"diff-{self._id_factory()}",
            timestamp=self._clock(),
            left=left.copy(),
            right=right.copy(),
            changes=changes,
            summary=summarize_changes(changes, left, right),
        )

        self._history.append(result)
        if len(self._history) > self.max_history:
            self._history = self._history[-self.max_history:]
        self._stats.total_diffs += 1
        return result

    def _is_ignorable(self, change: DiffChange) -> bool:
        if change.significance != "minor":
            return False
        if is_number(change.left_value) and is_number(change.right_value):
            return abs(change.right_value - change.left_value) <= self.config.minor_change_threshold
        return True

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(
        self,
        base: Stance,
        left: Stance,
        right: Stance,
        strategy: Union[MergeStrategy, str] = MergeStrategy.AVERAGE,
    ) -> MergeResult:
        """
        Three-way merge of left and right against their common base.

        Args:
            base: Common ancestor
            left: "Ours"
            right: "Theirs"
            strategy: Conflict resolution strategy

        Returns:
            MergeResult with the merged (validated) stance. The merged stance
            keeps base metadata except version (base + 1) and cumulativeDrift
            (mean of left and right).
        """
        return self._merge(base, left, right, strategy, record=True)

    def preview_merge(
        self,
        base: Stance,
        left: Stance,
        right: Stance,
        strategy: Union[MergeStrategy, str] = MergeStrategy.AVERAGE,
    ) -> Dict[str, Any]:
        """Dry-run merge; not counted in stats."""
        result = self._merge(base, left, right, strategy, record=False)
        merged = result.merged_stance
        return {
            "conflicts": result.conflicts,
            "preview": {
                "frame": merged.frame.value,
                "selfModel": merged.self_model.value,
                "values": merged.values.to_dict(),
                "changeCount": len(result.conflicts),
            },
        }

    def _merge(self, base, left, right, strategy, record: bool) -> MergeResult:
        strategy_name = strategy.value if isinstance(strategy, MergeStrategy) else str(strategy)

        left_paths = ordered_union(c.path for c in compute_changes(base, left))
        right_paths = ordered_union(c.path for c in compute_changes(base, right))
        right_set = set(right_paths)

        merged = base.copy()
        conflicts: List[MergeConflict] = []
        resolutions: List[ConflictResolution] = []

        for path in left_paths:
            left_value = get_field(left, path)
            if path not in right_set:
                set_field(merged, path, left_value)
                continue
            right_value = get_field(right, path)
            if left_value == right_value:
                set_field(merged, path, left_value)
                continue

            conflict = MergeConflict(
                id=f"conflict-{self._id_factory()}",
                path=path,
                base_value=get_field(base, path),
                left_value=left_value,
                right_value=right_value,
                suggested_resolution=None,
            )
            resolution = self._resolve(conflict, strategy_name)
            conflict.suggested_resolution = resolution.custom_value
            conflicts.append(conflict)
            resolutions.append(resolution)
            set_field(merged, path, resolution.custom_value)

        left_set = set(left_paths)
        for path in right_paths:
            if path not in left_set:
                set_field(merged, path, get_field(right, path))

        merged.version = base.version + 1
        merged.cumulative_drift = (left.cumulative_drift + right.cumulative_drift) / 2
        validate_stance(merged)

        if record:
            self._stats.total_merges += 1
            self._stats.conflicts_resolved += len(resolutions)
            if conflicts:
                logger.debug(f"Merge resolved {len(conflicts)} conflicts with {strategy_name}")

        return MergeResult(
            success=True,
            merged_stance=merged,
            conflicts=conflicts,
            resolutions=resolutions,
            strategy=strategy_name,
        )

    def _resolve(self, conflict: MergeConflict, strategy: str) -> ConflictResolution:
        left_value, right_value = conflict.left_value, conflict.right_value

        if strategy == MergeStrategy.OURS.value:
            return ConflictResolution(conflict.id, "use_left", left_value, "Applied ours merge strategy")
        if strategy == MergeStrategy.THEIRS.value:
            return ConflictResolution(conflict.id, "use_right", right_value, "Applied theirs merge strategy")
        if strategy == MergeStrategy.AVERAGE.value:
            if is_number(left_value) and is_number(right_value):
                value = (left_value + right_value) / 2
            else:
                value = right_value
            return ConflictResolution(conflict.id, "custom", value, "Applied average merge strategy")
        if strategy == MergeStrategy.UNION.value:
            if is_list_path(conflict.path):
                value = ordered_union(left_value, right_value)
            else:
                value = right_value
            return ConflictResolution(conflict.id, "custom", value, "Applied union merge strategy")
        if strategy == MergeStrategy.LATEST.value:
            return ConflictResolution(conflict.id, "custom", right_value, "Applied latest merge strategy")

        message = f"Cannot resolve conflict on {conflict.path} with strategy {strategy!r}; using latest"
        warnings.warn(message, MergeConflictUnresolved, stacklevel=4)
        logger.warning(message)
        return ConflictResolution(conflict.id, "custom", right_value, f"Unresolved under {strategy}; fell back to latest")

    # ------------------------------------------------------------------
    # Cherry-pick
    # ------------------------------------------------------------------

    def cherry_pick(self, target: Stance, source_diff: StanceDiff, paths: Sequence[str]) -> CherryPickResult:
        """
        Apply the changes of source_diff whose path is in paths onto target.

        List additions/removals are applied item by item; other changes set
        the right-hand value. The result's version is target.version + 1.
        """
        wanted = set(paths)
        result = target.copy()
        applied: List[DiffChange] = []
        skipped: List[DiffChange] = []

        for change in source_diff.changes:
            if change.path not in wanted:
                skipped.append(change)
                continue
            if change.type == "added":
                items = get_field(result, change.path)
                if change.right_value not in items:
                    items.append(change.right_value)
                set_field(result, change.path, items)
            elif change.type == "removed":
                items = [i for i in get_field(result, change.path) if i != change.left_value]
                set_field(result, change.path, items)
            else:
                set_field(result, change.path, change.right_value)
            applied.append(change)

        result.version = target.version + 1
        validate_stance(result)
        self._stats.cherry_picks += 1
        return CherryPickResult(success=True, applied_changes=applied, skipped_changes=skipped, result_stance=result)

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------

    def visualize(self, stance_diff: StanceDiff, kind: str = "unified") -> DiffVisualization:
        """Render a diff as 'unified', 'side-by-side' or 'tree' text."""
        if kind not in VISUALIZATION_TYPES:
            raise ValidationError(f"Unknown visualization type: {kind!r}")

        highlights: List[DiffHighlight] = []
        if kind == "unified":
            body = self._unified(stance_diff, highlights)
        elif kind == "side-by-side":
            body = self._side_by_side(stance_diff, highlights)
        else:
            body = self._tree(stance_diff, highlights)

        if self.config.include_metadata:
            s = stance_diff.summary
            header = (
                f"# Stance Diff {stance_diff.id}\n"
                f"## Summary: {s.total_changes} changes "
                f"({s.major_changes} major, {s.moderate_changes} moderate, {s.minor_changes} minor)\n"
                f"## Versions: {stance_diff.left.version} → {stance_diff.right.version}\n\n"
            )
            body = header + body

        return DiffVisualization(type=kind, content=body, highlights=highlights)

    @staticmethod
    def _color_for(change: DiffChange) -> str:
        if change.type == "added":
            return "green"
        if change.type == "removed":
            return "red"
        return "yellow"

    def _paint(self, text: str, color: str) -> str:
        if not self.config.colorize:
            return text
        return f"{_ANSI[color]}{text}{_ANSI_RESET}"

    @staticmethod
    def _fmt(value: Any) -> str:
        if value is None:
            return "-"
        if isinstance(value, float):
            return f"{value:g}"
        return str(value)

    def _unified(self, stance_diff: StanceDiff, highlights: List[DiffHighlight]) -> str:
        lines = []
        for change in stance_diff.changes:
            color = self._color_for(change)
            if change.type == "added":
                line = f"+ {change.path}: {self._fmt(change.right_value)}"
            elif change.type == "removed":
                line = f"- {change.path}: {self._fmt(change.left_value)}"
            else:
                line = f"~ {change.path}: {self._fmt(change.left_value)} → {self._fmt(change.right_value)}"
            lines.append(self._paint(f"{line} [{change.significance}]", color))
            highlights.append(DiffHighlight(change.path, color, change.significance))
        return "".join(line + "\n" for line in lines)

    def _side_by_side(self, stance_diff: StanceDiff, highlights: List[DiffHighlight]) -> str:
        lines = ["| Path | Left | Right | Change |", "|------|------|-------|--------|"]
        for change in stance_diff.changes:
            color = self._color_for(change)
            row = (
                f"| {change.path} | {self._fmt(change.left_value)} | "
                f"{self._fmt(change.right_value)} | {change.type} |"
            )
            lines.append(self._paint(row, color))
            highlights.append(DiffHighlight(change.path, color, change.path))
        return "".join(line + "\n" for line in lines)

    def _tree(self, stance_diff: StanceDiff, highlights: List[DiffHighlight]) -> str:
        markers = {"added": "[+]", "removed": "[-]", "modified": "[~]"}
        lines = ["Stance"]
        seen_nodes = set()
        for change in stance_diff.changes:
            parts = change.path.split(".")
            for depth in range(len(parts) - 1):
                node = ".".join(parts[:depth + 1])
                if node not in seen_nodes:
                    seen_nodes.add(node)
                    lines.append("  " * depth + "├─ " + parts[depth])
            leaf = "  " * (len(parts) - 1) + "├─ " + parts[-1] + " " + markers[change.type]
            if change.type == "added":
                leaf += f" {self._fmt(change.right_value)}"
            elif change.type == "removed":
                leaf += f" {self._fmt(change.left_value)}"
            lines.append(self._paint(leaf, self._color_for(change)))
            highlights.append(DiffHighlight(change.path, "blue", change.type))
        return "".join(line + "\n" for line in lines)

    # ------------------------------------------------------------------
    # History and stats
    # ------------------------------------------------------------------

    def get_diff_history(self, limit: Optional[int] = None) -> List[StanceDiff]:
        history = list(self._history)
        return history[-limit:] if limit else history

    def get_stats(self) -> DiffStats:
        return dataclasses.replace(self._stats)

    def reset(self) -> None:
        self._history = []
        self._stats = DiffStats()
