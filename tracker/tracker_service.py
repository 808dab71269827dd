"""
Tracker Service

Actions over milestones and manifestations. Every action:
1. Validates its input
2. Loads the entity for its owner (foreign or missing ids look identical)
3. Calls into the entity / state engine
4. Persists the entity
5. Appends state changes to the state audit log

IllegalTransitionError from the engine propagates unchanged; the HTTP layer
turns it into a client-visible validation error. UnknownStateError raised
for a stored state that left the catalog propagates the same way.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List

from .entity_store import EntityStore, MILESTONES, MANIFESTATIONS, TRACKER_STATE_DIR
from .manifestation import (
    Manifestation,
    ManifestationType,
    ManifestationTimeframe,
    MANIFESTATION_CATEGORIES,
    MANIFESTATION_STATE_ADAPTER,
)
from .milestone import Milestone, MilestoneStatus, MilestoneType, MILESTONE_STATUS_ADAPTER
from .state_engine import StateAdapter
from .state_model import UnknownStateError

logger = logging.getLogger("tracker_service")

DUE_SOON_WINDOW = timedelta(days=7)


# -----------------------------------------------------------------------------
# Service Errors
# -----------------------------------------------------------------------------
class TrackerError(Exception):
    """Base service error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class EntityNotFoundError(TrackerError):
    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            code="NOT_FOUND",
            message=f"{entity_type.capitalize()} not found or access denied",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class TrackerValidationError(TrackerError):
    def __init__(self, errors: List[str]):
        super().__init__(
            code="VALIDATION_FAILED",
            message="; ".join(errors),
            details={"errors": errors},
        )


def _require(**fields: Any) -> None:
    missing = [f"{name} is required" for name, value in fields.items() if not value]
    if missing:
        raise TrackerValidationError(missing)


def _check_state_name(adapter: StateAdapter, name: str) -> str:
    """Validate a caller-supplied state name against the adapter's catalog."""
    try:
        return adapter.catalog.get(name).name
    except UnknownStateError as e:
        raise TrackerValidationError([e.message])


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Tracker Service
# -----------------------------------------------------------------------------
class TrackerService:
    """
    Owner-checked actions over tracked entities.
    """

    def __init__(self, store: Optional[EntityStore] = None, audit_log: Optional[Path] = None):
        self._store = store or EntityStore()
        self._audit_log = audit_log or self._store.state_dir / "state_audit.log"

    @property
    def store(self) -> EntityStore:
        return self._store

    # -------------------------------------------------------------------------
    # Milestones
    # -------------------------------------------------------------------------

    async def create_milestone(
        self,
        user_id: str,
        title: str,
        description: str = "",
        milestone_type: str = MilestoneType.ACHIEVEMENT.value,
        parent_goal_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        target_date: Optional[datetime] = None,
        threshold_value: Optional[float] = None,
        unit: Optional[str] = None,
        sub_milestones: Optional[List[str]] = None,
        related_habits: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Milestone:
        _require(user_id=user_id, title=title)

        errors = []
        if milestone_type not in {t.value for t in MilestoneType}:
            errors.append(f"Invalid milestone type: {milestone_type}")
        for index, sub_title in enumerate(sub_milestones or []):
            if not sub_title:
                errors.append(f"sub_milestones[{index}] title is required")
        if errors:
            raise TrackerValidationError(errors)

        milestone = Milestone(
            milestone_id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            description=description or "",
            milestone_type=milestone_type,
            parent_goal_id=parent_goal_id,
            start_date=start_date,
            target_date=target_date,
            threshold_value=threshold_value,
            unit=unit,
            related_habits=list(related_habits or []),
            metadata=metadata or {},
        )
        for sub_title in sub_milestones or []:
            milestone.add_sub_milestone(sub_title)

        await self._save_milestone(milestone)
        logger.info(f"Created milestone {milestone.milestone_id} for user {user_id}")
        return milestone

    async def get_milestone(self, milestone_id: str, user_id: str) -> Milestone:
        _require(milestone_id=milestone_id, user_id=user_id)
        document = await self._store.get(MILESTONES, milestone_id)
        if not document or document.get("user_id") != user_id:
            raise EntityNotFoundError("milestone", milestone_id)
        return Milestone.from_dict(document)

    async def list_milestones(self, user_id: str, status: Optional[str] = None) -> List[Milestone]:
        _require(user_id=user_id)
        milestones = [Milestone.from_dict(doc) for doc in await self._store.find(MILESTONES, user_id=user_id)]
        if status:
            milestones = MILESTONE_STATUS_ADAPTER.find_by_state(
                milestones, _check_state_name(MILESTONE_STATUS_ADAPTER, status)
            )
        milestones.sort(key=lambda m: m.created_at, reverse=True)
        return milestones

    async def update_milestone_status(
        self,
        milestone_id: str,
        user_id: str,
        status: str,
        status_note: Optional[str] = None,
    ) -> Milestone:
        _require(milestone_id=milestone_id, user_id=user_id, status=status)
        status = _check_state_name(MILESTONE_STATUS_ADAPTER, status)

        milestone = await self.get_milestone(milestone_id, user_id)
        previous = milestone.status
        milestone.set_state(status, reason=status_note, actor=user_id)

        if milestone.status != previous:
            await self._save_milestone(milestone)
            self._log_state_change("milestone", milestone_id, user_id, previous, milestone.status, status_note)
            logger.info(f"Updated milestone {milestone_id} status to {status}")
        return milestone

    async def add_sub_milestone(
        self,
        milestone_id: str,
        user_id: str,
        title: str,
        description: str = "",
        order: Optional[int] = None,
    ) -> Milestone:
        _require(title=title)
        milestone = await self.get_milestone(milestone_id, user_id)
        milestone.add_sub_milestone(title, description, order)
        await self._save_milestone(milestone)
        logger.info(f"Added sub-milestone to milestone {milestone_id}")
        return milestone

    async def toggle_sub_milestone(self, milestone_id: str, user_id: str, sub_milestone_id: str) -> Milestone:
        _require(sub_milestone_id=sub_milestone_id)
        milestone = await self.get_milestone(milestone_id, user_id)
        previous = milestone.status
        try:
            milestone.toggle_sub_milestone(sub_milestone_id, actor=user_id)
        except KeyError:
            raise EntityNotFoundError("sub-milestone", sub_milestone_id)

        await self._save_milestone(milestone)
        if milestone.status != previous:
            self._log_state_change(
                "milestone", milestone_id, user_id, previous, milestone.status, "All sub-milestones completed"
            )
        logger.info(f"Toggled sub-milestone {sub_milestone_id} for milestone {milestone_id}")
        return milestone

    async def update_milestone_progress(
        self,
        milestone_id: str,
        user_id: str,
        current_value: Optional[float] = None,
        progress_percentage: Optional[float] = None,
    ) -> Milestone:
        if current_value is None and progress_percentage is None:
            raise TrackerValidationError(["Either current_value or progress_percentage is required"])

        milestone = await self.get_milestone(milestone_id, user_id)
        previous = milestone.status
        milestone.update_progress(current_value, progress_percentage, actor=user_id)

        await self._save_milestone(milestone)
        if milestone.status != previous:
            self._log_state_change(
                "milestone", milestone_id, user_id, previous, milestone.status, "Progress at or above 90%"
            )
        logger.info(f"Updated progress for milestone {milestone_id}: {milestone.progress_percentage:.1f}%")
        return milestone

    async def link_habits(self, milestone_id: str, user_id: str, habit_ids: List[str]) -> Milestone:
        _require(habit_ids=habit_ids)
        milestone = await self.get_milestone(milestone_id, user_id)
        milestone.link_habits(habit_ids)
        await self._save_milestone(milestone)
        logger.info(f"Linked {len(habit_ids)} habits to milestone {milestone_id}")
        return milestone

    async def delete_milestone(self, milestone_id: str, user_id: str) -> bool:
        """Delete an owned milestone. Missing or foreign ids return False."""
        _require(milestone_id=milestone_id, user_id=user_id)
        try:
            await self.get_milestone(milestone_id, user_id)
        except EntityNotFoundError:
            return False

        deleted = await self._store.delete(MILESTONES, milestone_id)
        if deleted:
            logger.info(f"Deleted milestone {milestone_id} for user {user_id}")
        return deleted

    async def milestone_stats(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summary counts for a user's milestones.

        by_status covers every catalog status (zero counts included). due_soon
        counts open milestones whose target date falls within the next 7 days.
        """
        _require(user_id=user_id)
        milestones = [Milestone.from_dict(doc) for doc in await self._store.find(MILESTONES, user_id=user_id)]
        now = now or datetime.now(timezone.utc)

        by_status = {}
        for finder_name, finder in MILESTONE_STATUS_ADAPTER.state_finders().items():
            by_status[finder_name[len("find_"):]] = len(finder(milestones))

        by_type = {t.value: 0 for t in MilestoneType}
        for milestone in milestones:
            if milestone.milestone_type in by_type:
                by_type[milestone.milestone_type] += 1

        total = len(milestones)
        completed = by_status[MilestoneStatus.ACHIEVED.value]
        closed = {MilestoneStatus.ACHIEVED.value, MilestoneStatus.ABANDONED.value}
        due_soon = sum(
            1 for m in milestones
            if m.target_date is not None
            and m.status not in closed
            and now <= _as_utc(m.target_date) <= now + DUE_SOON_WINDOW
        )

        return {
            "total": total,
            "completed": completed,
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
            "due_soon": due_soon,
            "by_status": by_status,
            "by_type": by_type,
        }

    async def _save_milestone(self, milestone: Milestone) -> None:
        milestone.updated_at = datetime.now(timezone.utc)
        await self._store.save(MILESTONES, milestone.milestone_id, milestone.to_dict())

    # -------------------------------------------------------------------------
    # Manifestations
    # -------------------------------------------------------------------------

    async def create_manifestation(
        self,
        user_id: str,
        title: str,
        description: str = "",
        manifestation_type: str = ManifestationType.GOAL.value,
        category: Optional[str] = None,
        timeframe: Optional[str] = None,
        related_milestones: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Manifestation:
        _require(user_id=user_id, title=title)

        errors = []
        if manifestation_type not in {t.value for t in ManifestationType}:
            errors.append(f"Invalid manifestation type: {manifestation_type}")
        if category is not None and category not in MANIFESTATION_CATEGORIES:
            errors.append(f"Invalid category: {category}")
        if timeframe is not None and timeframe not in {t.value for t in ManifestationTimeframe}:
            errors.append(f"Invalid timeframe: {timeframe}")
        if errors:
            raise TrackerValidationError(errors)

        manifestation = Manifestation(
            manifestation_id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            description=description or "",
            manifestation_type=manifestation_type,
            category=category,
            timeframe=timeframe,
            related_milestones=list(related_milestones or []),
            metadata=metadata or {},
        )
        await self._save_manifestation(manifestation)
        logger.info(f"Created manifestation {manifestation.manifestation_id} for user {user_id}")
        return manifestation

    async def get_manifestation(self, manifestation_id: str, user_id: str) -> Manifestation:
        _require(manifestation_id=manifestation_id, user_id=user_id)
        document = await self._store.get(MANIFESTATIONS, manifestation_id)
        if not document or document.get("user_id") != user_id:
            raise EntityNotFoundError("manifestation", manifestation_id)
        return Manifestation.from_dict(document)

    async def list_manifestations(self, user_id: str, state: Optional[str] = None) -> List[Manifestation]:
        _require(user_id=user_id)
        manifestations = [
            Manifestation.from_dict(doc) for doc in await self._store.find(MANIFESTATIONS, user_id=user_id)
        ]
        if state:
            manifestations = MANIFESTATION_STATE_ADAPTER.find_by_state(
                manifestations, _check_state_name(MANIFESTATION_STATE_ADAPTER, state)
            )
        manifestations.sort(key=lambda m: m.created_at, reverse=True)
        return manifestations

    async def update_manifestation_state(
        self,
        manifestation_id: str,
        user_id: str,
        state: str,
        state_note: Optional[str] = None,
    ) -> Manifestation:
        _require(manifestation_id=manifestation_id, user_id=user_id, state=state)
        state = _check_state_name(MANIFESTATION_STATE_ADAPTER, state)

        manifestation = await self.get_manifestation(manifestation_id, user_id)
        previous = manifestation.state
        if previous == state:
            logger.info(f"Manifestation {manifestation_id} already in state {state}")
            return manifestation

        manifestation.set_state(state, reason=state_note, actor=user_id)
        await self._save_manifestation(manifestation)
        self._log_state_change("manifestation", manifestation_id, user_id, previous, state, state_note)
        logger.info(f"Manifestation {manifestation_id} state updated: {previous} -> {state}")
        return manifestation

    async def add_manifestation_evidence(
        self,
        manifestation_id: str,
        user_id: str,
        title: str,
        description: str = "",
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Returns {"manifestation": ..., "result": add_evidence result}."""
        _require(title=title)
        manifestation = await self.get_manifestation(manifestation_id, user_id)
        result = manifestation.add_evidence(title, description, media_url, media_type)
        await self._save_manifestation(manifestation)
        logger.info(f"Added evidence to manifestation {manifestation_id}")
        return {"manifestation": manifestation, "result": result}

    async def add_manifestation_affirmation(
        self,
        manifestation_id: str,
        user_id: str,
        text: str,
        is_primary: bool = False,
    ) -> Manifestation:
        _require(text=text)
        manifestation = await self.get_manifestation(manifestation_id, user_id)
        manifestation.add_affirmation(text, is_primary)
        await self._save_manifestation(manifestation)
        return manifestation

    async def link_milestones_to_manifestation(
        self,
        manifestation_id: str,
        user_id: str,
        milestone_ids: List[str],
    ) -> Manifestation:
        _require(milestone_ids=milestone_ids)
        manifestation = await self.get_manifestation(manifestation_id, user_id)
        manifestation.link_milestones(milestone_ids)
        await self._save_manifestation(manifestation)
        logger.info(f"Linked {len(milestone_ids)} milestones to manifestation {manifestation_id}")
        return manifestation

    async def _save_manifestation(self, manifestation: Manifestation) -> None:
        manifestation.updated_at = datetime.now(timezone.utc)
        await self._store.save(MANIFESTATIONS, manifestation.manifestation_id, manifestation.to_dict())

    # -------------------------------------------------------------------------
    # State Audit Log
    # -------------------------------------------------------------------------

    def _log_state_change(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
        from_state: str,
        to_state: str,
        reason: Optional[str],
    ) -> None:
        """Append a state change to the audit log (JSON lines)."""
        try:
            self._audit_log.parent.mkdir(parents=True, exist_ok=True)
            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": f"{entity_type}_state_changed",
                "entity_type": entity_type,
                "entity_id": entity_id,
                "user_id": user_id,
                "from_state": from_state,
                "to_state": to_state,
                "reason": reason,
            }
            with open(self._audit_log, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except IOError as e:
            logger.warning(f"Failed to write audit log: {e}")

    def read_state_audit(self, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read audit entries, optionally for one entity, oldest first."""
        if not self._audit_log.exists():
            return []
        entries = []
        with open(self._audit_log) as f:
            for line in f:
                try:
                    entry = json.loads(line.strip())
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed audit entry")
                    continue
                if entity_id is None or entry.get("entity_id") == entity_id:
                    entries.append(entry)
        return entries


# -----------------------------------------------------------------------------
# Global Service Instance
# -----------------------------------------------------------------------------

_service_instance: Optional[TrackerService] = None


def get_tracker_service(state_dir: Path = TRACKER_STATE_DIR) -> TrackerService:
    """Get or create the tracker service singleton."""
    global _service_instance
    if _service_instance is None:
        _service_instance = TrackerService(EntityStore(state_dir))
    return _service_instance


def set_tracker_service(service: Optional[TrackerService]) -> None:
    """Replace the service singleton (None resets it)."""
    global _service_instance
    _service_instance = service
