"""
State Engine: Validated Transitions with History

Generic status/state transition engine usable by any entity that needs a
labeled workflow with validated transitions and an audit trail.

Control flow:
    set_state(entity, target) -> assert_transition(catalog, current, target)
        -> record_transition(history, target) -> entity field updated
        -> adapter after_transition hook (domain side effects)

Guarantees:
- Same-state set_state is a no-op (no history entry, no error)
- Illegal transitions raise IllegalTransitionError and leave the entity untouched
- History is append-only; insertion order is chronological order
- Terminality is structural: a state with no outgoing edges

The engine is synchronous and performs no I/O. Persisting the entity is the
caller's responsibility.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Iterable, Callable, Sequence

from .state_model import (
    StateCatalog,
    StateDefinition,
    TransitionHistoryEntry,
    IllegalTransitionError,
    UnknownStateError,
)

logger = logging.getLogger("state_engine")


# -----------------------------------------------------------------------------
# Transition Validation
# -----------------------------------------------------------------------------

def can_transition(catalog: StateCatalog, from_state: str, to_state: str) -> bool:
    """Check if from_state -> to_state is legal (self-loop always is)."""
    if from_state == to_state:
        return True
    return to_state in catalog.get(from_state).allowed_transitions


def assert_transition(catalog: StateCatalog, from_state: str, to_state: str) -> None:
    """Raise IllegalTransitionError unless from_state -> to_state is legal."""
    if not can_transition(catalog, from_state, to_state):
        allowed = catalog.get(from_state).allowed_transitions
        raise IllegalTransitionError(from_state, to_state, allowed)


# -----------------------------------------------------------------------------
# Transition Recording
# -----------------------------------------------------------------------------

def record_transition(
    history: Sequence[TransitionHistoryEntry],
    value: str,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[TransitionHistoryEntry]:
    """
    Return a new history list with one entry appended.

    The input sequence is not mutated. No validation happens here.
    """
    entry = TransitionHistoryEntry(
        value=value,
        changed_at=now or datetime.now(timezone.utc),
        changed_by=actor,
        reason=reason,
    )
    return [*history, entry]


# -----------------------------------------------------------------------------
# State Adapter
# -----------------------------------------------------------------------------

class StateAdapter:
    """
    Binds a catalog and field names to the generic engine.

    Domain adapters subclass this to add predicates and override
    after_transition for derived-field side effects.
    """

    def __init__(
        self,
        catalog: StateCatalog,
        field: str = "status",
        history_field: Optional[str] = None,
        fallback_color: str = "#999999",
        fallback_label: str = "Unknown",
    ):
        self.catalog = catalog
        self.field = field
        self.history_field = history_field or f"{field}_history"
        self.fallback_color = fallback_color
        self.fallback_label = fallback_label

    def initial_state(self) -> str:
        return self.catalog.initial_state()

    def current(self, entity: Any) -> str:
        return getattr(entity, self.field)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def set_state(
        self,
        entity: Any,
        target: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Any:
        """
        Move the entity to target, recording history.

        Returns the entity. Raises UnknownStateError for a target outside the
        catalog and IllegalTransitionError for a disallowed edge; in both
        cases the entity is left unchanged.
        """
        target = self.catalog.get(target).name
        current = self.current(entity)

        if target == current:
            return entity

        try:
            assert_transition(self.catalog, current, target)
        except IllegalTransitionError as e:
            logger.warning(f"Rejected transition on {type(entity).__name__}.{self.field}: {e.message}")
            raise

        history = record_transition(getattr(entity, self.history_field, None) or [], target, actor, reason)
        setattr(entity, self.field, target)
        setattr(entity, self.history_field, history)

        self.after_transition(entity, current, target)

        logger.info(f"{type(entity).__name__}.{self.field}: {current} -> {target} (by: {actor})")
        return entity

    def after_transition(self, entity: Any, previous: str, target: str) -> None:
        """Hook for adapter-level side effects after a successful transition."""

    def can_transition_to(self, entity: Any, target: str) -> bool:
        """True only when target is a listed edge out of the current state."""
        current = self.current(entity)
        if current not in self.catalog:
            return False
        return target in self.catalog.get(current).allowed_transitions

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_state(self, entity: Any, name: str) -> bool:
        return self.current(entity) == name

    def is_terminal(self, entity: Any) -> bool:
        return self.catalog.is_terminal(self.current(entity))

    def get_state_history(self, entity: Any) -> Tuple[TransitionHistoryEntry, ...]:
        return tuple(getattr(entity, self.history_field, None) or ())

    def get_state_meta(self, entity: Any) -> StateDefinition:
        return self.catalog.get(self.current(entity))

    def get_state_color(self, entity: Any) -> str:
        try:
            return self.get_state_meta(entity).color or self.fallback_color
        except UnknownStateError:
            return self.fallback_color

    def get_state_label(self, entity: Any) -> str:
        try:
            return self.get_state_meta(entity).label
        except UnknownStateError:
            return self.fallback_label

    def is_any(self, entity: Any, names: Iterable[str]) -> bool:
        return self.current(entity) in set(names)

    # -------------------------------------------------------------------------
    # Finders
    # -------------------------------------------------------------------------

    def find_by_state(self, entities: Iterable[Any], name: str) -> List[Any]:
        """Filter entities by current state. Unknown names raise UnknownStateError."""
        name = self.catalog.get(name).name
        return [entity for entity in entities if self.current(entity) == name]

    def state_finders(self) -> Dict[str, Callable[[Iterable[Any]], List[Any]]]:
        """One find_<state> callable per catalog state."""
        finders = {}
        for name in self.catalog.names():
            finders[f"find_{name}"] = lambda entities, _name=name: self.find_by_state(entities, _name)
        return finders


# -----------------------------------------------------------------------------
# State Trackable Mixin
# -----------------------------------------------------------------------------

class StateTrackable:
    """
    Mixin giving an entity the state-tracking surface of its adapter.

    Subclasses set `state_adapter` to a StateAdapter instance.
    """
    state_adapter: StateAdapter = None

    def set_state(self, target: str, reason: Optional[str] = None, actor: Optional[str] = None):
        return self.state_adapter.set_state(self, target, reason=reason, actor=actor)

    def is_state(self, name: str) -> bool:
        return self.state_adapter.is_state(self, name)

    def is_terminal(self) -> bool:
        return self.state_adapter.is_terminal(self)

    def can_transition_to(self, target: str) -> bool:
        return self.state_adapter.can_transition_to(self, target)

    def get_state_history(self) -> Tuple[TransitionHistoryEntry, ...]:
        return self.state_adapter.get_state_history(self)

    def get_state_meta(self) -> StateDefinition:
        return self.state_adapter.get_state_meta(self)

    def get_state_color(self) -> str:
        return self.state_adapter.get_state_color(self)

    def get_state_label(self) -> str:
        return self.state_adapter.get_state_label(self)
