"""
Manifestation: State Adapter & Entity

Manifestations track an intention from vision to reality:

    visioning -> intention_set -> in_progress -> manifesting -> manifested <-> evolving
    (any state -> released; released -> visioning re-activates)

The adapter stores the workflow in the `state` field (history in
`state_history`) and stamps manifested_date on entering manifested.
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

class ManifestationState(str, Enum):
    VISIONING = "visioning"          # Initial idea formation
    INTENTION_SET = "intention_set"  # Formally set as an intention
    IN_PROGRESS = "in_progress"      # Actively working toward
    MANIFESTING = "manifesting"      # Starting to see evidence
    MANIFESTED = "manifested"        # Has come into reality
    EVOLVING = "evolving"            # Manifested, still expanding
    RELEASED = "released"            # No longer pursuing


class ManifestationType(str, Enum):
    GOAL = "goal"
    LIFE_STATE = "life_state"
    IDENTITY = "identity"
    MATERIAL = "material"
    SPIRITUAL = "spiritual"
    RELATIONSHIP = "relationship"
    HEALTH = "health"
    WEALTH = "wealth"
    EXPERIENCE = "experience"
    CREATIVE = "creative"
    SERVICE = "service"
    CUSTOM = "custom"


class ManifestationTimeframe(str, Enum):
    SHORT_TERM = "short_term"    # Less than 1 year
    MEDIUM_TERM = "medium_term"  # 1-3 years
    LONG_TERM = "long_term"      # 3-10 years
    LIFE_VISION = "life_vision"  # Lifetime


MANIFESTATION_CATEGORIES = [
    "Career",
    "Finance",
    "Health",
    "Relationships",
    "Personal Growth",
    "Recreation",
    "Environment",
    "Spirituality",
    "Contribution",
]


# -----------------------------------------------------------------------------
# State Catalog
# -----------------------------------------------------------------------------

MANIFESTATION_STATE_META: Dict[str, Dict[str, Any]] = {
    "visioning": {
        "label": "Visioning",
        "description": "Forming and clarifying your vision",
        "color": "#9c27b0",
        "allowed_transitions": ["intention_set", "released"],
    },
    "intention_set": {
        "label": "Intention Set",
        "description": "Clear intention has been set",
        "color": "#3f51b5",
        "allowed_transitions": ["in_progress", "released"],
    },
    "in_progress": {
        "label": "In Progress",
        "description": "Actively working toward manifestation",
        "color": "#2196f3",
        "allowed_transitions": ["manifesting", "released"],
    },
    "manifesting": {
        "label": "Manifesting",
        "description": "Beginning to see evidence of manifestation",
        "color": "#00bcd4",
        "allowed_transitions": ["manifested", "in_progress", "released"],
    },
    "manifested": {
        "label": "Manifested",
        "description": "Has fully come into reality",
        "color": "#4caf50",
        "allowed_transitions": ["evolving", "released"],
    },
    "evolving": {
        "label": "Evolving",
        "description": "Continuing to develop and expand",
        "color": "#8bc34a",
        "allowed_transitions": ["manifested", "released"],
    },
    "released": {
        "label": "Released",
        "description": "No longer actively pursuing",
        "color": "#9e9e9e",
        "allowed_transitions": ["visioning"],
    },
}

MANIFESTATION_CATALOG = StateCatalog.from_dict(MANIFESTATION_STATE_META)

# Evidence count at which an in_progress manifestation is hinted toward manifesting
EVIDENCE_SUGGESTION_COUNT = 3


# -----------------------------------------------------------------------------
# State Adapter
# -----------------------------------------------------------------------------

class ManifestationStateAdapter(StateAdapter):
    """Manifestation predicates and the manifested_date side effect."""

    ACTIVE_STATES = frozenset({"intention_set", "in_progress", "manifesting"})
    MANIFESTED_STATES = frozenset({"manifested", "evolving"})

    def is_active(self, manifestation: "Manifestation") -> bool:
        return self.is_any(manifestation, self.ACTIVE_STATES)

    def is_manifested(self, manifestation: "Manifestation") -> bool:
        return self.is_any(manifestation, self.MANIFESTED_STATES)

    def is_released(self, manifestation: "Manifestation") -> bool:
        return self.is_state(manifestation, ManifestationState.RELEASED.value)

    def after_transition(self, manifestation: "Manifestation", previous: str, target: str) -> None:
        if target == ManifestationState.MANIFESTED.value and manifestation.manifested_date is None:
            manifestation.manifested_date = datetime.now(timezone.utc)


MANIFESTATION_STATE_ADAPTER = ManifestationStateAdapter(
    MANIFESTATION_CATALOG,
    field="state",
    history_field="state_history",
    fallback_color="#9e9e9e",
)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------

@dataclass
class Evidence:
    evidence_id: str
    title: str
    description: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evidence_id": self.evidence_id,
            "title": self.title,
            "description": self.description,
            "media_url": self.media_url,
            "media_type": self.media_type,
            "added_at": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Evidence":
        return cls(
            evidence_id=data["evidence_id"],
            title=data["title"],
            description=data.get("description", ""),
            media_url=data.get("media_url"),
            media_type=data.get("media_type"),
            added_at=datetime.fromisoformat(data["added_at"]),
        )


@dataclass
class Affirmation:
    text: str
    is_primary: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "is_primary": self.is_primary,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Affirmation":
        return cls(
            text=data["text"],
            is_primary=data.get("is_primary", False),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class Manifestation(StateTrackable):
    """
    A user's manifestation with tracked state.

    state is changed through set_state only; state_history is append-only.
    """
    state_adapter: ClassVar[ManifestationStateAdapter] = MANIFESTATION_STATE_ADAPTER

    manifestation_id: str
    user_id: str
    title: str
    description: str = ""
    manifestation_type: str = ManifestationType.GOAL.value
    category: Optional[str] = None
    timeframe: Optional[str] = None
    manifested_date: Optional[datetime] = None
    evidence: List[Evidence] = field(default_factory=list)
    affirmations: List[Affirmation] = field(default_factory=list)
    related_milestones: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    state: str = field(default_factory=MANIFESTATION_STATE_ADAPTER.initial_state)
    state_history: List[TransitionHistoryEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    def is_active(self) -> bool:
        return self.state_adapter.is_active(self)

    def is_manifested(self) -> bool:
        return self.state_adapter.is_manifested(self)

    def is_released(self) -> bool:
        return self.state_adapter.is_released(self)

    def add_evidence(
        self,
        title: str,
        description: str = "",
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Attach evidence.

        Never changes state. Enough evidence on an in_progress manifestation
        only produces a suggestion for the caller.
        """
        if not title:
            raise ValueError("Evidence title is required")

        self.evidence.append(Evidence(
            evidence_id=str(uuid.uuid4()),
            title=title,
            description=description or "",
            media_url=media_url,
            media_type=media_type,
        ))

        result: Dict[str, Any] = {"evidence_added": True}
        if self.state == ManifestationState.IN_PROGRESS.value and len(self.evidence) >= EVIDENCE_SUGGESTION_COUNT:
            result["suggest_state_change"] = ManifestationState.MANIFESTING.value
            result["message"] = 'Consider updating state to "manifesting" based on evidence collected'
        return result

    def add_affirmation(self, text: str, is_primary: bool = False) -> Affirmation:
        if not text:
            raise ValueError("Affirmation text is required")

        # Only one primary affirmation
        if is_primary:
            for affirmation in self.affirmations:
                affirmation.is_primary = False

        affirmation = Affirmation(text=text, is_primary=is_primary)
        self.affirmations.append(affirmation)
        return affirmation

    def link_milestones(self, milestone_ids: List[str]) -> List[str]:
        if not milestone_ids:
            raise ValueError("At least one milestone ID is required")

        for milestone_id in milestone_ids:
            if milestone_id not in self.related_milestones:
                self.related_milestones.append(milestone_id)
        return self.related_milestones

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifestation_id": self.manifestation_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "manifestation_type": self.manifestation_type,
            "category": self.category,
            "timeframe": self.timeframe,
            "manifested_date": self.manifested_date.isoformat() if self.manifested_date else None,
            "evidence": [e.to_dict() for e in self.evidence],
            "affirmations": [a.to_dict() for a in self.affirmations],
            "related_milestones": list(self.related_milestones),
            "metadata": self.metadata,
            "state": self.state,
            "state_label": self.get_state_label(),
            "state_color": self.get_state_color(),
            "state_history": [entry.to_dict() for entry in self.state_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifestation":
        return cls(
            manifestation_id=data["manifestation_id"],
            user_id=data["user_id"],
            title=data["title"],
            description=data.get("description", ""),
            manifestation_type=data.get("manifestation_type", ManifestationType.GOAL.value),
            category=data.get("category"),
            timeframe=data.get("timeframe"),
            manifested_date=datetime.fromisoformat(data["manifested_date"]) if data.get("manifested_date") else None,
            evidence=[Evidence.from_dict(e) for e in data.get("evidence", [])],
            affirmations=[Affirmation.from_dict(a) for a in data.get("affirmations", [])],
            related_milestones=data.get("related_milestones", []),
            metadata=data.get("metadata", {}),
            state=data.get("state", MANIFESTATION_STATE_ADAPTER.initial_state()),
            state_history=[TransitionHistoryEntry.from_dict(e) for e in data.get("state_history", [])],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else None,
        )
