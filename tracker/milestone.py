"""
Milestone: Status Adapter & Entity

Milestones follow this status workflow:

    planned -> in_progress -> {blocked, at_risk, nearly_complete, achieved, abandoned}
    (abandoned -> planned reactivates a milestone; achieved is terminal)

The adapter supplies the milestone catalog to the generic engine, adds the
milestone predicates, and stamps completed_date when a milestone enters
achieved. That timestamp is the one field changed outside of history.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, ClassVar

from .state_engine import StateAdapter, StateTrackable
from .state_model import StateCatalog, TransitionHistoryEntry


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class MilestoneStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    AT_RISK = "at_risk"
    NEARLY_COMPLETE = "nearly_complete"
    ACHIEVED = "achieved"
    ABANDONED = "abandoned"


class MilestoneType(str, Enum):
    ACHIEVEMENT = "achievement"
    THRESHOLD = "threshold"
    CAPABILITY = "capability"
    ACQUISITION = "acquisition"
    HABIT_BASED = "habit_based"
    EXPERIENCE = "experience"
    RECOGNITION = "recognition"
    CONTRIBUTION = "contribution"
    RELATIONSHIP = "relationship"
    CUSTOM = "custom"


# -----------------------------------------------------------------------------
# Status Catalog
# -----------------------------------------------------------------------------

MILESTONE_STATUS_META: Dict[str, Dict[str, Any]] = {
    "planned": {
        "label": "Planned",
        "description": "Milestone has been defined but work hasn't started",
        "color": "#3498db",
        "allowed_transitions": ["in_progress", "abandoned"],
    },
    "in_progress": {
        "label": "In Progress",
        "description": "Work toward the milestone is underway",
        "color": "#2ecc71",
        "allowed_transitions": ["blocked", "at_risk", "nearly_complete", "achieved", "abandoned"],
    },
    "blocked": {
        "label": "Blocked",
        "description": "Progress is blocked by external factors",
        "color": "#e74c3c",
        "allowed_transitions": ["in_progress", "abandoned"],
    },
    "at_risk": {
        "label": "At Risk",
        "description": "Milestone is in danger of not being achieved on time",
        "color": "#f39c12",
        "allowed_transitions": ["in_progress", "blocked", "nearly_complete", "abandoned"],
    },
    "nearly_complete": {
        "label": "Nearly Complete",
        "description": "Milestone is close to being achieved",
        "color": "#9b59b6",
        "allowed_transitions": ["achieved", "at_risk", "in_progress"],
    },
    "achieved": {
        "label": "Achieved",
        "description": "Milestone has been successfully completed",
        "color": "#27ae60",
        "allowed_transitions": [],  # Terminal
    },
    "abandoned": {
        "label": "Abandoned",
        "description": "Milestone has been abandoned or is no longer relevant",
        "color": "#7f8c8d",
        "allowed_transitions": ["planned"],  # Can be reactivated
    },
}

MILESTONE_TYPE_META: Dict[str, Dict[str, str]] = {
    "achievement": {"label": "Achievement", "description": "A significant one-time accomplishment", "icon": "trophy"},
    "threshold": {"label": "Threshold", "description": "Reaching a specific numeric goal", "icon": "trending_up"},
    "capability": {"label": "Capability", "description": "Learning to do something new", "icon": "school"},
    "acquisition": {"label": "Acquisition", "description": "Obtaining something important", "icon": "shopping_bag"},
    "habit_based": {"label": "Habit-Based", "description": "Completing a streak or frequency of a habit", "icon": "repeat"},
    "experience": {"label": "Experience", "description": "Having a significant experience", "icon": "explore"},
    "recognition": {"label": "Recognition", "description": "Receiving external validation or award", "icon": "emoji_events"},
    "contribution": {"label": "Contribution", "description": "Making an impact or helping others", "icon": "volunteer_activism"},
    "relationship": {"label": "Relationship", "description": "A connection or relationship milestone", "icon": "people"},
    "custom": {"label": "Custom", "description": "User-defined milestone type", "icon": "create"},
}

MILESTONE_CATALOG = StateCatalog.from_dict(MILESTONE_STATUS_META)

# Progress at or above this percentage nudges the milestone to nearly_complete
NEARLY_COMPLETE_THRESHOLD = 90


# -----------------------------------------------------------------------------
# Status Adapter
# -----------------------------------------------------------------------------

class MilestoneStatusAdapter(StateAdapter):
    """Milestone predicates and the completed_date side effect."""

    ACTIVE_STATUSES = frozenset({"in_progress", "at_risk", "nearly_complete"})

    def is_active(self, milestone: "Milestone") -> bool:
        return self.is_any(milestone, self.ACTIVE_STATUSES)

    def is_completed(self, milestone: "Milestone") -> bool:
        return self.is_state(milestone, MilestoneStatus.ACHIEVED.value)

    def is_blocked(self, milestone: "Milestone") -> bool:
        return self.is_state(milestone, MilestoneStatus.BLOCKED.value)

    def after_transition(self, milestone: "Milestone", previous: str, target: str) -> None:
        if target == MilestoneStatus.ACHIEVED.value and milestone.completed_date is None:
            milestone.completed_date = datetime.now(timezone.utc)


MILESTONE_STATUS_ADAPTER = MilestoneStatusAdapter(
    MILESTONE_CATALOG,
    field="status",
    fallback_color="#999999",
)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------

@dataclass
class SubMilestone:
    sub_milestone_id: str
    title: str
    description: str = ""
    completed: bool = False
    completed_date: Optional[datetime] = None
    order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub_milestone_id": self.sub_milestone_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubMilestone":
        return cls(
            sub_milestone_id=data["sub_milestone_id"],
            title=data["title"],
            description=data.get("description", ""),
            completed=data.get("completed", False),
            completed_date=datetime.fromisoformat(data["completed_date"]) if data.get("completed_date") else None,
            order=data.get("order", 0),
        )


@dataclass
class Milestone(StateTrackable):
    """
    A user's milestone with tracked status.

    status is changed through set_state only; status_history is append-only.
    """
    state_adapter: ClassVar[MilestoneStatusAdapter] = MILESTONE_STATUS_ADAPTER

    milestone_id: str
    user_id: str
    title: str
    description: str = ""
    milestone_type: str = MilestoneType.ACHIEVEMENT.value
    parent_goal_id: Optional[str] = None
    start_date: Optional[datetime] = None
    target_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    progress_percentage: float = 0.0
    threshold_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = None
    sub_milestones: List[SubMilestone] = field(default_factory=list)
    related_habits: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = field(default_factory=MILESTONE_STATUS_ADAPTER.initial_state)
    status_history: List[TransitionHistoryEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Status Predicates
    # -------------------------------------------------------------------------

    def is_active(self) -> bool:
        return self.state_adapter.is_active(self)

    def is_completed(self) -> bool:
        return self.state_adapter.is_completed(self)

    def is_blocked(self) -> bool:
        return self.state_adapter.is_blocked(self)

    # -------------------------------------------------------------------------
    # Sub-Milestones & Progress
    # -------------------------------------------------------------------------

    def _recalculate_progress(self) -> None:
        if not self.sub_milestones:
            return
        completed = sum(1 for sm in self.sub_milestones if sm.completed)
        self.progress_percentage = completed / len(self.sub_milestones) * 100

    def add_sub_milestone(self, title: str, description: str = "", order: Optional[int] = None) -> SubMilestone:
        if not title:
            raise ValueError("title is required")

        sub_milestone = SubMilestone(
            sub_milestone_id=str(uuid.uuid4()),
            title=title,
            description=description or "",
            order=order if order is not None else len(self.sub_milestones),
        )
        self.sub_milestones.append(sub_milestone)
        self._recalculate_progress()
        return sub_milestone

    def toggle_sub_milestone(self, sub_milestone_id: str, actor: Optional[str] = None) -> SubMilestone:
        """
        Flip a sub-milestone's completion.

        Completing the last open sub-milestone moves an in_progress milestone
        to nearly_complete. Raises KeyError for an unknown id.
        """
        sub_milestone = next(
            (sm for sm in self.sub_milestones if sm.sub_milestone_id == sub_milestone_id),
            None,
        )
        if sub_milestone is None:
            raise KeyError(sub_milestone_id)

        sub_milestone.completed = not sub_milestone.completed
        sub_milestone.completed_date = datetime.now(timezone.utc) if sub_milestone.completed else None
        self._recalculate_progress()

        all_done = all(sm.completed for sm in self.sub_milestones)
        if all_done and self.status in ("in_progress", "nearly_complete"):
            self.set_state("nearly_complete", reason="All sub-milestones completed", actor=actor)

        return sub_milestone

    def update_progress(
        self,
        current_value: Optional[float] = None,
        progress_percentage: Optional[float] = None,
        actor: Optional[str] = None,
    ) -> float:
        """
        Update progress and return the new percentage.

        Threshold milestones derive the percentage from current_value; other
        types take progress_percentage. Both are clamped to 0..100.
        """
        if current_value is None and progress_percentage is None:
            raise ValueError("Either current_value or progress_percentage is required")

        if self.milestone_type == MilestoneType.THRESHOLD.value and current_value is not None:
            self.current_value = current_value
            if self.threshold_value:
                self.progress_percentage = min(100.0, max(0.0, current_value / self.threshold_value * 100))
        elif progress_percentage is not None:
            self.progress_percentage = min(100.0, max(0.0, float(progress_percentage)))

        if self.progress_percentage >= NEARLY_COMPLETE_THRESHOLD and self.can_transition_to("nearly_complete"):
            self.set_state("nearly_complete", reason="Progress at or above 90%", actor=actor)

        return self.progress_percentage

    def link_habits(self, habit_ids: List[str]) -> List[str]:
        if not habit_ids:
            raise ValueError("habit_ids is required")

        for habit_id in habit_ids:
            if habit_id not in self.related_habits:
                self.related_habits.append(habit_id)

        self.milestone_type = MilestoneType.HABIT_BASED.value
        return self.related_habits

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone_id": self.milestone_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "milestone_type": self.milestone_type,
            "parent_goal_id": self.parent_goal_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "progress_percentage": self.progress_percentage,
            "threshold_value": self.threshold_value,
            "current_value": self.current_value,
            "unit": self.unit,
            "sub_milestones": [sm.to_dict() for sm in self.sub_milestones],
            "related_habits": list(self.related_habits),
            "metadata": self.metadata,
            "status": self.status,
            "status_label": self.get_state_label(),
            "status_color": self.get_state_color(),
            "status_history": [entry.to_dict() for entry in self.status_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(
            milestone_id=data["milestone_id"],
            user_id=data["user_id"],
            title=data["title"],
            description=data.get("description", ""),
            milestone_type=data.get("milestone_type", MilestoneType.ACHIEVEMENT.value),
            parent_goal_id=data.get("parent_goal_id"),
            start_date=datetime.fromisoformat(data["start_date"]) if data.get("start_date") else None,
            target_date=datetime.fromisoformat(data["target_date"]) if data.get("target_date") else None,
            completed_date=datetime.fromisoformat(data["completed_date"]) if data.get("completed_date") else None,
            progress_percentage=data.get("progress_percentage", 0.0),
            threshold_value=data.get("threshold_value"),
            current_value=data.get("current_value"),
            unit=data.get("unit"),
            sub_milestones=[SubMilestone.from_dict(sm) for sm in data.get("sub_milestones", [])],
            related_habits=data.get("related_habits", []),
            metadata=data.get("metadata", {}),
            status=data.get("status", MILESTONE_STATUS_ADAPTER.initial_state()),
            status_history=[TransitionHistoryEntry.from_dict(e) for e in data.get("status_history", [])],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else None,
        )
