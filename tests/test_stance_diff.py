"""
Tests for stance_core/diff.py - diff, three-way merge, cherry-pick, visualization.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from stance_core.diff import (
    DiffConfig,
    StanceDiffEngine,
    compute_changes,
    value_significance,
)
from stance_core.exceptions import MergeConflictUnresolved, ValidationError
from stance_core.parameters import Frame, MergeStrategy, SelfModel
from stance_core.state import create_default_stance


@pytest.fixture
def engine(clock, id_factory):
    return StanceDiffEngine(clock=clock, id_factory=id_factory)


@pytest.fixture
def base():
    return create_default_stance()


def variant(**changes):
    """Default stance with a few fields changed."""
    stance = create_default_stance()
    for key, value in changes.items():
        if key.startswith("values_"):
            setattr(stance.values, key[len("values_"):], value)
        else:
            setattr(stance, key, value)
    return stance


# ============================================================================
# Diff
# ============================================================================

class TestValueSignificance:

    @pytest.mark.parametrize("left,right,expected", [
        (50, 55, "minor"),
        (50, 60, "minor"),
        (50, 61, "moderate"),
        (50, 70, "moderate"),
        (50, 71, "major"),
        (80, 20, "major"),
    ])
    def test_tiers(self, left, right, expected):
        assert value_significance(left, right) == expected


class TestDiff:

    def test_identical_stances(self, engine, base):
        result = engine.diff(base, base.copy())
        assert result.changes == []
        assert result.summary.total_changes == 0

    def test_change_order(self, engine, base):
        right = variant(frame=Frame.POETIC, self_model=SelfModel.MIRROR, values_risk=90.0)
        right.sentience.awareness_level = 60.0
        right.metaphors = ["tide"]
        result = engine.diff(base, right)
        assert [c.path for c in result.changes] == [
            "frame", "selfModel", "values.risk", "sentience.awarenessLevel", "metaphors",
        ]
        assert [c.significance for c in result.changes] == [
            "major", "major", "major", "moderate", "moderate",
        ]

    def test_enum_values_are_strings(self, engine, base):
        change = engine.diff(base, variant(frame=Frame.STOIC)).changes[0]
        assert change.left_value == "pragmatic"
        assert change.right_value == "stoic"
        assert change.type == "modified"

    def test_list_added_and_removed(self, engine):
        left = variant(constraints=["be brief", "cite sources"])
        right = variant(constraints=["cite sources", "no jargon", "ask first"])
        changes = engine.diff(left, right).changes
        assert [(c.type, c.left_value, c.right_value) for c in changes] == [
            ("added", None, "no jargon"),
            ("added", None, "ask first"),
            ("removed", "be brief", None),
        ]

    def test_symmetry(self, engine):
        left = variant(frame=Frame.MYTHIC, values_empathy=80.0, metaphors=["a", "b"])
        right = variant(values_empathy=30.0, metaphors=["b", "c"])
        forward = engine.diff(left, right)
        backward = engine.diff(right, left)

        assert forward.changed_paths() == backward.changed_paths()
        assert forward.summary.total_changes == backward.summary.total_changes
        for f in forward.changes:
            if f.type == "modified":
                b = next(c for c in backward.changes if c.path == f.path)
                assert (b.left_value, b.right_value) == (f.right_value, f.left_value)

    def test_summary(self, engine, base):
        right = variant(frame=Frame.POETIC, values_curiosity=55.0, cumulative_drift=35.0)
        summary = engine.diff(base, right).summary
        assert summary.frame_changed
        assert not summary.self_model_changed
        assert summary.major_changes == 1
        assert summary.minor_changes == 1
        assert summary.coherence_impact == 35.0

    def test_ignore_minor_changes(self, clock, base):
        engine = StanceDiffEngine(DiffConfig(ignore_minor_changes=True), clock=clock)
        right = variant(values_curiosity=58.0, values_risk=75.0)
        assert [c.path for c in engine.diff(base, right).changes] == ["values.risk"]

    def test_minor_threshold(self, clock, base):
        engine = StanceDiffEngine(
            DiffConfig(ignore_minor_changes=True, minor_change_threshold=3.0), clock=clock
        )
        right = variant(values_curiosity=58.0, values_novelty=52.0)
        assert [c.path for c in engine.diff(base, right).changes] == ["values.curiosity"]

    def test_inputs_snapshotted(self, engine, base):
        right = variant(frame=Frame.POETIC)
        result = engine.diff(base, right)
        right.frame = Frame.STOIC
        assert result.right.frame is Frame.POETIC

    def test_to_dict(self, engine, base):
        data = engine.diff(base, variant(frame=Frame.POETIC)).to_dict()
        assert data["id"] == "diff-id1"
        assert data["changes"][0]["leftValue"] == "pragmatic"
        assert data["summary"]["frameChanged"] is True


# ============================================================================
# Merge
# ============================================================================

class TestMerge:

    def test_non_conflicting_sides(self, engine, base):
        left = variant(frame=Frame.POETIC)
        right = variant(values_risk=80.0)
        result = engine.merge(base, left, right)
        assert result.success
        assert result.conflicts == []
        assert result.merged_stance.frame is Frame.POETIC
        assert result.merged_stance.values.risk == 80.0

    def test_merge_with_self_is_identity(self, engine):
        stance = variant(frame=Frame.SYSTEMS, values_synthesis=70.0, version=4)
        merged = engine.merge(stance, stance, stance).merged_stance
        assert merged.frame is Frame.SYSTEMS
        assert merged.values == stance.values
        assert merged.version == 5

    def test_bookkeeping(self, engine):
        base = variant(version=1, turns_since_last_shift=2)
        left = variant(version=5, cumulative_drift=20.0, turns_since_last_shift=4)
        right = variant(version=3, cumulative_drift=40.0, turns_since_last_shift=1)
        merged = engine.merge(base, left, right).merged_stance
        assert merged.version == 2
        assert merged.cumulative_drift == 30.0
        assert merged.turns_since_last_shift == 2

    def test_same_change_both_sides(self, engine, base):
        left = variant(frame=Frame.STOIC)
        right = variant(frame=Frame.STOIC)
        result = engine.merge(base, left, right)
        assert result.conflicts == []
        assert result.merged_stance.frame is Frame.STOIC

    @pytest.mark.parametrize("strategy,expected", [
        ("ours", 80.0),
        ("theirs", 20.0),
        ("average", 50.0),
        ("latest", 20.0),
        ("union", 20.0),
    ])
    def test_numeric_conflict(self, engine, base, strategy, expected):
        left = variant(values_curiosity=80.0)
        right = variant(values_curiosity=20.0)
        result = engine.merge(base, left, right, strategy)
        assert len(result.conflicts) == 1
        assert result.conflicts[0].path == "values.curiosity"
        assert result.conflicts[0].base_value == 50.0
        assert result.merged_stance.values.curiosity == expected
        assert result.strategy == strategy

    def test_enum_conflict_average_takes_right(self, engine, base):
        result = engine.merge(base, variant(frame=Frame.POETIC), variant(frame=Frame.MYTHIC))
        assert result.merged_stance.frame is Frame.MYTHIC

    def test_union_for_lists(self, engine, base):
        left = variant(metaphors=["tide", "ember"])
        right = variant(metaphors=["ember", "lattice"])
        result = engine.merge(base, left, right, MergeStrategy.UNION)
        assert result.merged_stance.metaphors == ["tide", "ember", "lattice"]

    def test_resolutions(self, engine, base):
        left = variant(values_risk=10.0)
        right = variant(values_risk=90.0)
        ours = engine.merge(base, left, right, "ours").resolutions[0]
        theirs = engine.merge(base, left, right, "theirs").resolutions[0]
        average = engine.merge(base, left, right, "average").resolutions[0]
        assert ours.resolution == "use_left"
        assert theirs.resolution == "use_right"
        assert average.resolution == "custom"
        assert average.custom_value == 50.0

    def test_manual_warns_and_falls_back(self, engine, base):
        left = variant(self_model=SelfModel.GUIDE)
        right = variant(self_model=SelfModel.WITNESS)
        with pytest.warns(MergeConflictUnresolved):
            result = engine.merge(base, left, right, "manual")
        assert result.merged_stance.self_model is SelfModel.WITNESS

    def test_unknown_strategy_warns(self, engine, base):
        with pytest.warns(MergeConflictUnresolved):
            engine.merge(base, variant(values_risk=1.0), variant(values_risk=2.0), "coinflip")

    def test_inputs_not_mutated(self, engine, base):
        left = variant(frame=Frame.POETIC)
        right = variant(values_risk=80.0)
        engine.merge(base, left, right)
        assert base.frame is Frame.PRAGMATIC
        assert left.values.risk == 50.0

    def test_stats(self, engine, base):
        engine.merge(base, variant(values_risk=1.0), variant(values_risk=2.0))
        engine.merge(base, base, base)
        stats = engine.get_stats()
        assert stats.total_merges == 2
        assert stats.conflicts_resolved == 1

    def test_preview_not_counted(self, engine, base):
        preview = engine.preview_merge(base, variant(frame=Frame.POETIC), variant(values_risk=80.0))
        assert preview["preview"]["frame"] == "poetic"
        assert preview["preview"]["values"]["risk"] == 80.0
        assert preview["preview"]["changeCount"] == 0
        assert engine.get_stats().total_merges == 0


# ============================================================================
# Cherry-pick
# ============================================================================

class TestCherryPick:

    def test_pick_subset(self, engine, base):
        source = engine.diff(base, variant(frame=Frame.POETIC, values_risk=80.0))
        target = variant(version=9)
        result = engine.cherry_pick(target, source, ["values.risk"])
        assert result.success
        assert result.result_stance.values.risk == 80.0
        assert result.result_stance.frame is Frame.PRAGMATIC
        assert result.result_stance.version == 10
        assert [c.path for c in result.applied_changes] == ["values.risk"]
        assert [c.path for c in result.skipped_changes] == ["frame"]

    def test_list_items(self, engine):
        source = engine.diff(variant(metaphors=["a", "b"]), variant(metaphors=["b", "c"]))
        target = variant(metaphors=["a", "z"])
        result = engine.cherry_pick(target, source, ["metaphors"])
        assert result.result_stance.metaphors == ["z", "c"]

    def test_target_untouched(self, engine, base):
        source = engine.diff(base, variant(frame=Frame.POETIC))
        target = create_default_stance()
        engine.cherry_pick(target, source, ["frame"])
        assert target.frame is Frame.PRAGMATIC
        assert engine.get_stats().cherry_picks == 1


# ============================================================================
# Visualization
# ============================================================================

class TestVisualize:

    def _diff(self, engine):
        left = variant(metaphors=["old"])
        right = variant(frame=Frame.POETIC, values_risk=80.0, metaphors=["new"])
        return engine.diff(left, right)

    def test_unified(self, engine):
        viz = engine.visualize(self._diff(engine), "unified")
        assert "~ frame: pragmatic → poetic [major]" in viz.content
        assert "~ values.risk: 50 → 80 [major]" in viz.content
        assert "+ metaphors: new [moderate]" in viz.content
        assert "- metaphors: old [moderate]" in viz.content
        assert [h.color for h in viz.highlights] == ["yellow", "yellow", "green", "red"]

    def test_metadata_header(self, engine):
        content = engine.visualize(self._diff(engine)).content
        assert content.startswith("# Stance Diff diff-id1\n")
        assert "## Summary: 4 changes (2 major, 2 moderate, 0 minor)" in content

    def test_no_metadata(self, clock):
        engine = StanceDiffEngine(DiffConfig(include_metadata=False), clock=clock)
        content = engine.visualize(engine.diff(create_default_stance(), variant(frame=Frame.POETIC))).content
        assert content == "~ frame: pragmatic → poetic [major]\n"

    def test_side_by_side(self, engine):
        viz = engine.visualize(self._diff(engine), "side-by-side")
        assert "| Path | Left | Right | Change |" in viz.content
        assert "| frame | pragmatic | poetic | modified |" in viz.content
        assert "| metaphors | - | new | added |" in viz.content

    def test_tree(self, engine):
        viz = engine.visualize(self._diff(engine), "tree")
        lines = viz.content.splitlines()
        assert "Stance" in lines
        assert "├─ values" in lines
        assert "  ├─ risk [~]" in lines
        assert "├─ metaphors [+] new" in lines
        assert all(h.color == "blue" for h in viz.highlights)

    def test_colorize(self, clock):
        engine = StanceDiffEngine(DiffConfig(colorize=True, include_metadata=False), clock=clock)
        content = engine.visualize(engine.diff(create_default_stance(), variant(frame=Frame.POETIC))).content
        assert content.startswith("\033[33m")
        assert "\033[0m" in content

    def test_unknown_kind(self, engine):
        with pytest.raises(ValidationError):
            engine.visualize(self._diff(engine), "html")


# ============================================================================
# History
# ============================================================================

class TestHistory:

    def test_history_and_limit(self, engine, base):
        for frame in (Frame.POETIC, Frame.STOIC, Frame.MYTHIC):
            engine.diff(base, variant(frame=frame))
        assert len(engine.get_diff_history()) == 3
        last = engine.get_diff_history(limit=1)
        assert last[0].right.frame is Frame.MYTHIC

    def test_max_history(self, clock, base):
        engine = StanceDiffEngine(max_history=2, clock=clock)
        for _ in range(5):
            engine.diff(base, base)
        assert len(engine.get_diff_history()) == 2
        assert engine.get_stats().total_diffs == 5

    def test_stats_are_a_copy(self, engine, base):
        engine.get_stats().total_diffs = 99
        assert engine.get_stats().total_diffs == 0

    def test_reset(self, engine, base):
        engine.diff(base, base)
        engine.reset()
        assert engine.get_diff_history() == []
        assert engine.get_stats().total_diffs == 0

    def test_compute_changes_is_pure(self, base):
        right = variant(values_novelty=90.0)
        assert len(compute_changes(base, right)) == 1
        assert base.values.novelty == 50.0
