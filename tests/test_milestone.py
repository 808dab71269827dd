"""
Unit Tests for Milestone Status Adapter

Test coverage for:
- Milestone status workflow scenarios
- Milestone predicates, labels and colors
- completed_date side effect
- Sub-milestones, progress and habit links
- Serialization
"""

from datetime import datetime, timezone

import pytest

from tracker.milestone import (
    Milestone,
    MilestoneStatus,
    MilestoneType,
    MILESTONE_CATALOG,
    MILESTONE_STATUS_ADAPTER,
)
from tracker.state_model import IllegalTransitionError

from tests.conftest import create_test_milestone, TEST_USER_ID


# -----------------------------------------------------------------------------
# Test 1: Status Workflow
# -----------------------------------------------------------------------------
class TestMilestoneWorkflow:
    """Test milestone status scenarios."""

    def test_new_milestone_is_planned(self):
        milestone = create_test_milestone()
        assert milestone.status == "planned"
        assert milestone.status_history == []
        assert MILESTONE_CATALOG.initial_state() == "planned"

    def test_start_milestone(self):
        milestone = create_test_milestone()
        milestone.set_state("in_progress", actor=TEST_USER_ID)

        assert milestone.status == "in_progress"
        assert len(milestone.status_history) == 1
        assert milestone.status_history[0].value == "in_progress"

    def test_achieve_directly_from_in_progress(self):
        milestone = create_test_milestone()
        milestone.set_state("in_progress")
        milestone.set_state("achieved", reason="Finished the race")

        assert milestone.status == "achieved"
        assert len(milestone.status_history) == 2
        assert milestone.status_history[-1].reason == "Finished the race"

    def test_achieved_cannot_be_restarted(self):
        milestone = create_test_milestone()
        milestone.set_state("in_progress")
        milestone.set_state("achieved")

        with pytest.raises(IllegalTransitionError) as exc_info:
            milestone.set_state("in_progress")

        assert exc_info.value.from_state == "achieved"
        assert exc_info.value.to_state == "in_progress"
        assert milestone.status == "achieved"
        assert len(milestone.status_history) == 2

    def test_abandoned_can_be_reactivated(self):
        milestone = create_test_milestone()
        milestone.set_state("abandoned")
        milestone.set_state("planned", reason="Trying again")

        assert milestone.status == "planned"
        assert [e.value for e in milestone.status_history] == ["abandoned", "planned"]

    def test_planned_cannot_skip_to_achieved(self):
        milestone = create_test_milestone()
        with pytest.raises(IllegalTransitionError):
            milestone.set_state(MilestoneStatus.ACHIEVED)
        assert milestone.status == "planned"

    def test_blocked_and_back(self):
        milestone = create_test_milestone(status="in_progress")
        milestone.set_state("blocked", reason="Injury")
        milestone.set_state("in_progress")
        assert [e.value for e in milestone.status_history] == ["blocked", "in_progress"]


# -----------------------------------------------------------------------------
# Test 2: Predicates & Display
# -----------------------------------------------------------------------------
class TestMilestonePredicates:
    """Test milestone-specific predicates."""

    @pytest.mark.parametrize("status", ["in_progress", "at_risk", "nearly_complete"])
    def test_active_statuses(self, status):
        assert create_test_milestone(status=status).is_active() is True

    @pytest.mark.parametrize("status", ["planned", "blocked", "achieved", "abandoned"])
    def test_inactive_statuses(self, status):
        assert create_test_milestone(status=status).is_active() is False

    def test_completed_and_blocked(self):
        assert create_test_milestone(status="achieved").is_completed() is True
        assert create_test_milestone(status="blocked").is_blocked() is True
        assert create_test_milestone(status="blocked").is_completed() is False

    def test_label_and_color(self):
        milestone = create_test_milestone(status="at_risk")
        assert milestone.get_state_label() == "At Risk"
        assert milestone.get_state_color() == "#f39c12"

    def test_unknown_status_fallbacks(self):
        milestone = create_test_milestone(status="paused")
        assert milestone.get_state_color() == "#999999"
        assert milestone.get_state_label() == "Unknown"

    def test_status_finders(self):
        milestones = [
            create_test_milestone(milestone_id="m1"),
            create_test_milestone(milestone_id="m2", status="achieved"),
        ]
        finders = MILESTONE_STATUS_ADAPTER.state_finders()
        assert len(finders) == 7
        assert [m.milestone_id for m in finders["find_achieved"](milestones)] == ["m2"]
        assert finders["find_blocked"](milestones) == []


# -----------------------------------------------------------------------------
# Test 3: Completion Date
# -----------------------------------------------------------------------------
class TestCompletionDate:
    """Test the completed_date side effect."""

    def test_set_on_achieved(self):
        milestone = create_test_milestone(status="nearly_complete")
        assert milestone.completed_date is None

        milestone.set_state("achieved")

        assert milestone.completed_date is not None
        assert len(milestone.status_history) == 1

    def test_existing_date_preserved(self):
        earlier = datetime(2025, 12, 31, tzinfo=timezone.utc)
        milestone = create_test_milestone(status="in_progress", completed_date=earlier)
        milestone.set_state("achieved")
        assert milestone.completed_date == earlier

    def test_not_set_on_other_transitions(self):
        milestone = create_test_milestone()
        milestone.set_state("in_progress")
        milestone.set_state("nearly_complete")
        assert milestone.completed_date is None


# -----------------------------------------------------------------------------
# Test 4: Sub-Milestones & Progress
# -----------------------------------------------------------------------------
class TestSubMilestones:
    """Test sub-milestone tracking."""

    def test_add_sub_milestones(self):
        milestone = create_test_milestone()
        first = milestone.add_sub_milestone("Run 10k")
        second = milestone.add_sub_milestone("Run a half marathon")

        assert first.order == 0
        assert second.order == 1
        assert first.sub_milestone_id != second.sub_milestone_id
        assert milestone.progress_percentage == 0.0

    def test_add_requires_title(self):
        with pytest.raises(ValueError):
            create_test_milestone().add_sub_milestone("")

    def test_toggle_updates_progress(self):
        milestone = create_test_milestone(status="in_progress")
        first = milestone.add_sub_milestone("Run 10k")
        milestone.add_sub_milestone("Run a half marathon")

        milestone.toggle_sub_milestone(first.sub_milestone_id)

        assert first.completed is True
        assert first.completed_date is not None
        assert milestone.progress_percentage == 50.0
        assert milestone.status == "in_progress"

        milestone.toggle_sub_milestone(first.sub_milestone_id)
        assert first.completed is False
        assert first.completed_date is None
        assert milestone.progress_percentage == 0.0

    def test_completing_all_moves_to_nearly_complete(self):
        milestone = create_test_milestone(status="in_progress")
        subs = [milestone.add_sub_milestone(t) for t in ("Run 10k", "Run 21k")]

        for sub in subs:
            milestone.toggle_sub_milestone(sub.sub_milestone_id, actor=TEST_USER_ID)

        assert milestone.progress_percentage == 100.0
        assert milestone.status == "nearly_complete"
        assert milestone.status_history[-1].reason == "All sub-milestones completed"
        assert milestone.status_history[-1].changed_by == TEST_USER_ID

    def test_completing_all_while_planned_keeps_status(self):
        milestone = create_test_milestone()
        sub = milestone.add_sub_milestone("Buy shoes")
        milestone.toggle_sub_milestone(sub.sub_milestone_id)
        assert milestone.progress_percentage == 100.0
        assert milestone.status == "planned"

    def test_toggle_unknown_sub_milestone(self):
        with pytest.raises(KeyError):
            create_test_milestone().toggle_sub_milestone("missing")


class TestProgress:
    """Test progress updates."""

    def test_threshold_progress_from_value(self):
        milestone = create_test_milestone(
            milestone_type=MilestoneType.THRESHOLD.value, threshold_value=200, status="in_progress"
        )
        assert milestone.update_progress(current_value=50) == 25.0
        assert milestone.current_value == 50
        assert milestone.status == "in_progress"

    def test_threshold_progress_capped(self):
        milestone = create_test_milestone(milestone_type="threshold", threshold_value=10)
        assert milestone.update_progress(current_value=25) == 100.0

    def test_percentage_clamped(self):
        milestone = create_test_milestone()
        assert milestone.update_progress(progress_percentage=-5) == 0.0
        assert milestone.update_progress(progress_percentage=40) == 40.0

    def test_negative_threshold_value_clamped(self):
        milestone = create_test_milestone(milestone_type="threshold", threshold_value=10)
        assert milestone.update_progress(current_value=-5) == 0.0
        assert milestone.current_value == -5

    def test_high_progress_moves_to_nearly_complete(self):
        milestone = create_test_milestone(status="in_progress")
        milestone.update_progress(progress_percentage=92)

        assert milestone.status == "nearly_complete"
        assert milestone.status_history[-1].reason == "Progress at or above 90%"

    def test_high_progress_only_when_edge_exists(self):
        milestone = create_test_milestone()
        milestone.update_progress(progress_percentage=95)
        assert milestone.status == "planned"
        assert milestone.status_history == []

    def test_repeated_high_progress_adds_no_history(self):
        milestone = create_test_milestone(status="in_progress")
        milestone.update_progress(progress_percentage=91)
        milestone.update_progress(progress_percentage=99)
        assert len(milestone.status_history) == 1

    def test_progress_requires_value(self):
        with pytest.raises(ValueError):
            create_test_milestone().update_progress()


class TestHabitLinks:
    """Test linking habits."""

    def test_link_deduplicates_and_marks_habit_based(self):
        milestone = create_test_milestone(related_habits=["habit-1"])
        habits = milestone.link_habits(["habit-1", "habit-2", "habit-2"])

        assert habits == ["habit-1", "habit-2"]
        assert milestone.milestone_type == "habit_based"

    def test_link_requires_ids(self):
        with pytest.raises(ValueError):
            create_test_milestone().link_habits([])


# -----------------------------------------------------------------------------
# Test 5: Serialization
# -----------------------------------------------------------------------------
class TestMilestoneSerialization:
    """Test to_dict / from_dict."""

    def test_document_keeps_status_and_history(self):
        milestone = create_test_milestone(target_date=datetime(2026, 10, 1, tzinfo=timezone.utc))
        milestone.add_sub_milestone("Run 10k")
        milestone.set_state("in_progress", reason="Training started", actor=TEST_USER_ID)

        document = milestone.to_dict()
        assert document["status"] == "in_progress"
        assert document["status_label"] == "In Progress"
        assert document["status_history"][0]["reason"] == "Training started"

        restored = Milestone.from_dict(document)
        assert restored.status == "in_progress"
        assert restored.status_history == milestone.status_history
        assert restored.sub_milestones[0].title == "Run 10k"
        assert restored.target_date == milestone.target_date

        restored.set_state("achieved")
        assert len(restored.status_history) == 2
