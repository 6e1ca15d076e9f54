"""
Tests for stance_core/versioning.py - checkpoints, branches, undo/redo, merge, GC.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from stance_core.exceptions import NotFoundError, ValidationError, VersionControlError
from stance_core.parameters import Frame
from stance_core.state import create_default_stance
from stance_core.versioning import StanceVersionControl


@pytest.fixture
def vc(clock, id_factory):
    return StanceVersionControl(clock=clock, id_factory=id_factory)


def stance_with(frame=None, risk=None, version=1):
    stance = create_default_stance()
    if frame is not None:
        stance.frame = frame
    if risk is not None:
        stance.values.risk = risk
    stance.version = version
    return stance


def commit_frames(vc, clock, history_id, frames):
    checkpoints = []
    for i, frame in enumerate(frames, start=2):
        clock.advance(minutes=1)
        checkpoints.append(vc.commit(history_id, stance_with(frame, version=i), "agent"))
    return checkpoints


# ============================================================================
# History and commits
# ============================================================================

class TestHistory:

    def test_create_history(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        assert history.id == "h1"
        assert [b.name for b in history.branches] == ["main"]
        assert history.current_branch.is_default
        root = vc.get_checkpoint(history.root_checkpoint_id)
        assert root.tags == ["root"]
        assert root.author == "alice"
        assert root.parent_id is None
        assert history.current_checkpoint_id == root.id
        assert history.created_at == clock.now

    def test_generated_history_id(self, vc):
        history = vc.create_history(create_default_stance(), "alice")
        assert history.id == "history-id1"

    def test_duplicate_history(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        with pytest.raises(VersionControlError):
            vc.create_history(create_default_stance(), "bob", history_id="h1")

    def test_unknown_history(self, vc):
        assert vc.get_history("nope") is None
        with pytest.raises(NotFoundError):
            vc.commit("nope", create_default_stance(), "alice")
        with pytest.raises(NotFoundError):
            vc.get_current_stance("nope")

    def test_commit_links_parent(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        first, second = commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC])
        assert first.parent_id == history.root_checkpoint_id
        assert second.parent_id == first.id
        assert history.current_checkpoint_id == second.id
        assert history.current_branch.checkpoints[-1] == second.id
        assert vc.get_current_stance("h1").frame is Frame.STOIC

    def test_commit_stores_copy(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        stance = stance_with(Frame.POETIC)
        checkpoint = vc.commit("h1", stance, "agent", name="poetic", tags=["mood"], metadata={"turn": 1})
        stance.frame = Frame.MYTHIC
        assert checkpoint.stance.frame is Frame.POETIC
        assert checkpoint.name == "poetic"
        assert checkpoint.metadata == {"turn": 1}

    def test_current_stance_is_copy(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.get_current_stance("h1").frame = Frame.MYTHIC
        assert vc.get_current_stance("h1").frame is Frame.PRAGMATIC

    def test_create_checkpoint(self, vc, clock):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(vc, clock, "h1", [Frame.POETIC])
        named = vc.create_checkpoint("h1", "before-experiment", description="safe point", tags=["safe"])
        assert named.name == "before-experiment"
        assert named.stance.frame is Frame.POETIC
        assert named.author == "agent"
        assert vc.find_checkpoints_by_tag("h1", "safe") == [named]

    def test_checkpoint_to_dict(self, vc):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        data = vc.get_checkpoint(history.root_checkpoint_id).to_dict()
        assert data["parentId"] is None
        assert data["stance"]["frame"] == "pragmatic"
        assert data["tags"] == ["root"]

    def test_delete_history(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        (first,) = commit_frames(vc, clock, "h1", [Frame.POETIC])
        assert vc.delete_history("h1") is True
        assert vc.delete_history("h1") is False
        assert vc.get_checkpoint(first.id) is None
        assert vc.get_checkpoint(history.root_checkpoint_id) is None

    def test_histories_do_not_collide(self, vc):
        a = vc.create_history(create_default_stance(), "alice", history_id="a")
        b = vc.create_history(create_default_stance(), "bob", history_id="b")
        assert a.root_checkpoint_id != b.root_checkpoint_id


# ============================================================================
# Navigation
# ============================================================================

class TestRollback:

    def test_rollback_steps(self, vc, clock):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        first, _, third = commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC, Frame.MYTHIC])
        result = vc.rollback("h1", 2)
        assert result.success
        assert result.steps_rolled_back == 2
        assert result.previous_checkpoint.id == third.id
        assert result.current_checkpoint.id == first.id
        assert vc.get_current_stance("h1").frame is Frame.POETIC

    def test_rollback_stops_at_root(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(vc, clock, "h1", [Frame.POETIC])
        result = vc.rollback("h1", 10)
        assert result.steps_rolled_back == 1
        assert result.current_checkpoint.id == history.root_checkpoint_id

    def test_rollback_at_root(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        assert vc.rollback("h1") is None

    def test_redo(self, vc, clock):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        _, second, third = commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC, Frame.MYTHIC])
        vc.rollback("h1", 2)
        assert vc.redo("h1").id == second.id
        assert vc.redo("h1", 5).id == third.id
        assert vc.redo("h1") is None

    def test_commit_after_rollback_forks(self, vc, clock):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        first, second = commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC])
        vc.rollback("h1")
        fork = vc.commit("h1", stance_with(Frame.ABSURDIST), "agent")
        assert fork.parent_id == first.id
        assert vc.get_checkpoint(second.id) is not None

    def test_rollback_to(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC, Frame.MYTHIC])
        result = vc.rollback_to("h1", history.root_checkpoint_id)
        assert result.steps_rolled_back == 3
        assert history.current_checkpoint_id == history.root_checkpoint_id

    def test_rollback_to_other_branch(self, vc, clock):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        vc.switch_branch("h1", "feature")
        (feature_commit,) = commit_frames(vc, clock, "h1", [Frame.PLAYFUL])
        vc.switch_branch("h1", "main")
        with pytest.raises(VersionControlError):
            vc.rollback_to("h1", feature_commit.id)

    def test_rollback_to_unknown(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        with pytest.raises(NotFoundError):
            vc.rollback_to("h1", "checkpoint-missing")


# ============================================================================
# Branches
# ============================================================================

class TestBranches:

    def test_create_branch_does_not_switch(self, vc):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        branch = vc.create_branch("h1", "feature")
        assert branch.checkpoints == [history.root_checkpoint_id]
        assert branch.created_from == history.root_checkpoint_id
        assert history.current_branch.name == "main"
        assert [b.name for b in vc.list_branches("h1")] == ["main", "feature"]

    def test_duplicate_branch(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        with pytest.raises(VersionControlError):
            vc.create_branch("h1", "feature")

    def test_branch_from_unknown_checkpoint(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        with pytest.raises(NotFoundError):
            vc.create_branch("h1", "feature", from_checkpoint_id="checkpoint-missing")

    def test_switch_branch(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(vc, clock, "h1", [Frame.POETIC])
        vc.create_branch("h1", "feature", from_checkpoint_id=history.root_checkpoint_id)
        vc.switch_branch("h1", "feature")
        assert vc.get_current_stance("h1").frame is Frame.PRAGMATIC
        with pytest.raises(NotFoundError):
            vc.switch_branch("h1", "nope")

    def test_commit_goes_to_current_branch(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        vc.switch_branch("h1", "feature")
        (checkpoint,) = commit_frames(vc, clock, "h1", [Frame.SYSTEMS])
        assert checkpoint.branch_id == history.branch_by_name("feature").id
        assert history.branch_by_name("main").checkpoints == [history.root_checkpoint_id]

    def test_delete_branch(self, vc):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        assert vc.delete_branch("h1", "feature") is True
        assert history.branch_by_name("feature") is None
        # checkpoints are kept
        assert vc.get_checkpoint(history.root_checkpoint_id) is not None

    def test_delete_refused(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        with pytest.raises(VersionControlError):
            vc.delete_branch("h1", "main")

        vc.create_branch("h1", "locked")
        vc.protect_branch("h1", "locked")
        with pytest.raises(VersionControlError):
            vc.delete_branch("h1", "locked")

        vc.create_branch("h1", "current")
        vc.switch_branch("h1", "current")
        with pytest.raises(VersionControlError):
            vc.delete_branch("h1", "current")

    def test_unprotect(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "locked")
        vc.protect_branch("h1", "locked")
        vc.protect_branch("h1", "locked", protect=False)
        assert vc.delete_branch("h1", "locked")


# ============================================================================
# Merge
# ============================================================================

class TestVersionMerge:

    def _fork(self, vc, clock, main_stance, feature_stance):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        clock.advance(minutes=1)
        vc.commit("h1", main_stance, "agent")
        vc.switch_branch("h1", "feature")
        clock.advance(minutes=1)
        vc.commit("h1", feature_stance, "agent")
        vc.switch_branch("h1", "main")
        return history

    def test_merge_disjoint_changes(self, vc, clock):
        history = self._fork(vc, clock, stance_with(Frame.POETIC, version=2), stance_with(risk=80.0, version=3))
        main_head = history.current_checkpoint_id

        result = vc.merge("h1", "feature")
        merged = result.merged_checkpoint
        assert result.success
        assert result.conflicts == []
        assert result.base_checkpoint_id == history.root_checkpoint_id
        assert merged.stance.frame is Frame.POETIC
        assert merged.stance.values.risk == 80.0
        assert merged.stance.version == 4
        assert merged.author == "system"
        assert merged.tags == ["merge"]
        assert merged.parent_id == main_head
        assert merged.metadata["mergeSource"] == "feature"
        assert history.current_checkpoint_id == merged.id

    def test_merge_conflict_strategy(self, vc, clock):
        self._fork(vc, clock, stance_with(risk=20.0), stance_with(risk=80.0))
        result = vc.merge("h1", "feature", strategy="average")
        assert len(result.conflicts) == 1
        assert result.merged_checkpoint.stance.values.risk == 50.0
        assert result.strategy == "average"

    def test_merge_into_other_target(self, vc, clock):
        history = self._fork(vc, clock, stance_with(Frame.POETIC), stance_with(risk=80.0))
        current = history.current_checkpoint_id
        result = vc.merge("h1", "main", target_branch="feature")
        assert result.merged_checkpoint.branch_id == history.branch_by_name("feature").id
        assert history.current_checkpoint_id == current

    def test_merged_version_follows_heads_not_base(self, vc, clock):
        self._fork(vc, clock, stance_with(Frame.POETIC, version=7), stance_with(risk=80.0, version=4))
        result = vc.merge("h1", "feature")
        assert result.merged_checkpoint.stance.version == 8
        assert vc.diff_engine.merge(
            create_default_stance(), stance_with(version=7), stance_with(version=4)
        ).merged_stance.version == 2

    def test_merge_into_itself(self, vc):
        vc.create_history(create_default_stance(), "alice", history_id="h1")
        with pytest.raises(VersionControlError):
            vc.merge("h1", "main")

    def test_common_ancestor(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        (fork_point,) = commit_frames(vc, clock, "h1", [Frame.POETIC])
        vc.create_branch("h1", "feature")
        (main_tip,) = commit_frames(vc, clock, "h1", [Frame.STOIC])
        vc.switch_branch("h1", "feature")
        (feature_tip,) = commit_frames(vc, clock, "h1", [Frame.MYTHIC])
        assert vc.common_ancestor(main_tip.id, feature_tip.id) == fork_point.id
        assert vc.common_ancestor(history.root_checkpoint_id, feature_tip.id) == history.root_checkpoint_id


# ============================================================================
# Inspection
# ============================================================================

class TestTimeline:

    def test_timeline(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        first, second = commit_frames(vc, clock, "h1", [Frame.POETIC, Frame.STOIC])
        timeline = vc.get_timeline("h1")
        assert [e.checkpoint.id for e in timeline] == [history.root_checkpoint_id, first.id, second.id]
        assert [e.depth for e in timeline] == [0, 1, 2]
        assert timeline[0].children == [first.id]
        assert timeline[-1].is_current_head
        assert not timeline[0].is_current_head

    def test_timeline_lists_forks(self, vc, clock):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        (main_commit,) = commit_frames(vc, clock, "h1", [Frame.POETIC])
        vc.create_branch("h1", "feature", from_checkpoint_id=history.root_checkpoint_id)
        vc.switch_branch("h1", "feature")
        (feature_commit,) = commit_frames(vc, clock, "h1", [Frame.STOIC])
        root_entry = next(e for e in vc.get_timeline("h1") if e.checkpoint.id == history.root_checkpoint_id)
        assert sorted(root_entry.children) == sorted([main_commit.id, feature_commit.id])

    def test_find_by_tag(self, vc):
        history = vc.create_history(create_default_stance(), "alice", history_id="h1")
        vc.create_branch("h1", "feature")
        roots = vc.find_checkpoints_by_tag("h1", "root")
        assert [c.id for c in roots] == [history.root_checkpoint_id]
        assert vc.find_checkpoints_by_tag("h1", "missing") == []


# ============================================================================
# Garbage collection
# ============================================================================

class TestGarbageCollection:

    @pytest.fixture
    def small_vc(self, clock, id_factory):
        return StanceVersionControl(
            max_checkpoints_per_branch=3, gc_threshold=5, clock=clock, id_factory=id_factory
        )

    def test_auto_gc_on_commit(self, small_vc, clock):
        history = small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        commits = commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 5)
        main = history.branch_by_name("main")
        assert main.checkpoints == [c.id for c in commits[-3:]]
        assert small_vc.get_checkpoint(history.root_checkpoint_id) is None
        assert small_vc.get_checkpoint(commits[0].id) is None

    def test_rollback_stops_at_collected_parent(self, small_vc, clock):
        small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        commits = commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 5)
        result = small_vc.rollback("h1", 10)
        assert result.steps_rolled_back == 2
        assert result.current_checkpoint.id == commits[2].id

    def test_shared_checkpoints_survive(self, small_vc, clock):
        history = small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        small_vc.create_branch("h1", "feature")
        commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 5)
        assert small_vc.get_checkpoint(history.root_checkpoint_id) is not None

    def test_current_checkpoint_never_trimmed(self, small_vc, clock):
        history = small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 4)
        small_vc.rollback_to("h1", history.root_checkpoint_id)
        small_vc.set_max_checkpoints(1)
        result = small_vc.garbage_collect("h1")
        assert history.branch_by_name("main").checkpoints == [history.root_checkpoint_id]
        assert result.checkpoints_removed == 4

    def test_protected_branch_skipped(self, small_vc, clock):
        history = small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        small_vc.protect_branch("h1", "main")
        commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 6)
        assert len(history.branch_by_name("main").checkpoints) == 7

    def test_gc_logs(self, small_vc, clock, caplog):
        small_vc.create_history(create_default_stance(), "alice", history_id="h1")
        commit_frames(small_vc, clock, "h1", [Frame.POETIC] * 4)
        with caplog.at_level("INFO", logger="stance_core.versioning"):
            result = small_vc.garbage_collect("h1")
        assert result.checkpoints_removed == 2
        assert "removed 2 checkpoints" in caplog.text

    def test_settings_validated(self, vc):
        with pytest.raises(ValidationError):
            vc.set_max_checkpoints(0)
        with pytest.raises(ValidationError):
            vc.set_gc_threshold(0)
        vc.set_gc_threshold(10)
        assert vc.gc_threshold == 10
