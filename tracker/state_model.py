"""
State Model: Catalogs, History Entries & State Errors

This module defines the static data of the state transition engine.
All structures are IMMUTABLE once constructed.

- StateDefinition: one named state (label, display metadata, outgoing edges)
- StateCatalog: ordered, frozen mapping of state name -> StateDefinition
- TransitionHistoryEntry: immutable audit record of an applied transition

CATALOG INTEGRITY:
- Every allowed transition must reference a state in the same catalog
- State names are unique
- Exactly one initial state (first entry unless designated)

Violations raise CatalogError at construction time, never per call.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Optional, Dict, Any, List, Tuple, Iterator, Sequence, Mapping

import yaml


# -----------------------------------------------------------------------------
# State Errors
# -----------------------------------------------------------------------------
class StateError(Exception):
    """Base state engine error with structured details."""
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


class CatalogError(StateError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            code="CATALOG_INVALID",
            message=message,
            details=details,
        )


class UnknownStateError(StateError):
    def __init__(self, state_name: str, known_states: Sequence[str] = ()):
        self.state_name = state_name
        super().__init__(
            code="UNKNOWN_STATE",
            message=f"Unknown state: '{state_name}'. Must be one of: {', '.join(known_states)}",
            details={"state": state_name, "known_states": list(known_states)},
        )


class IllegalTransitionError(StateError):
    def __init__(self, from_state: str, to_state: str, allowed: Sequence[str] = ()):
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = tuple(allowed)
        super().__init__(
            code="ILLEGAL_TRANSITION",
            message=f"Cannot transition from {from_state} to {to_state}",
            details={
                "from_state": from_state,
                "to_state": to_state,
                "allowed_transitions": list(allowed),
            },
        )


# -----------------------------------------------------------------------------
# State Definition (Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class StateDefinition:
    """
    One named state in a catalog.

    An empty allowed_transitions tuple makes the state terminal.
    """
    name: str
    label: str
    description: str = ""
    color: Optional[str] = None
    icon: Optional[str] = None
    allowed_transitions: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept lists from callers; store as tuple
        object.__setattr__(self, "allowed_transitions", tuple(self.allowed_transitions))

    @property
    def is_terminal(self) -> bool:
        return len(self.allowed_transitions) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "allowed_transitions": list(self.allowed_transitions),
            "is_terminal": self.is_terminal,
        }


# -----------------------------------------------------------------------------
# State Catalog (Frozen)
# -----------------------------------------------------------------------------
class StateCatalog:
    """
    Static state graph for one domain.

    Built once from an ordered list of state definitions. The first
    definition is the initial state unless `initial` names another one.
    """

    def __init__(self, definitions: Sequence[StateDefinition], initial: Optional[str] = None):
        if not definitions:
            raise CatalogError("Catalog must define at least one state")

        states: Dict[str, StateDefinition] = {}
        for definition in definitions:
            if definition.name in states:
                raise CatalogError(
                    f"Duplicate state name: '{definition.name}'",
                    {"state": definition.name},
                )
            states[definition.name] = definition

        dangling = [
            (definition.name, target)
            for definition in definitions
            for target in definition.allowed_transitions
            if target not in states
        ]
        if dangling:
            raise CatalogError(
                f"Transitions reference unknown states: "
                f"{', '.join(f'{src} -> {dst}' for src, dst in dangling)}",
                {"dangling": [list(pair) for pair in dangling]},
            )

        if initial is None:
            initial = definitions[0].name
        elif initial not in states:
            raise CatalogError(
                f"Initial state '{initial}' is not defined in the catalog",
                {"initial": initial},
            )

        self._states = MappingProxyType(states)
        self._initial = initial

    # -------------------------------------------------------------------------
    # Alternate Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]], initial: Optional[str] = None) -> "StateCatalog":
        """
        Build a catalog from an ordered mapping of state name -> metadata.

        `transitionsTo` is accepted as an alias of `allowed_transitions`.
        """
        definitions = []
        for name, meta in data.items():
            meta = meta or {}
            if "label" not in meta:
                raise CatalogError(f"State '{name}' has no label", {"state": name})
            transitions = meta.get("allowed_transitions", meta.get("transitionsTo")) or []
            definitions.append(StateDefinition(
                name=name,
                label=meta["label"],
                description=meta.get("description", ""),
                color=meta.get("color"),
                icon=meta.get("icon"),
                allowed_transitions=tuple(transitions),
            ))
        return cls(definitions, initial=initial)

    @classmethod
    def from_yaml(cls, path: Path, initial: Optional[str] = None) -> "StateCatalog":
        """
        Load a catalog from a YAML file.

        Expected layout:

            initial: planned        # optional
            states:
              planned:
                label: Planned
                allowed_transitions: [in_progress]
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogError(f"Catalog file {path} is not valid YAML: {e}", {"path": str(path)})

        if not isinstance(data, dict) or not isinstance(data.get("states"), dict):
            raise CatalogError(f"Catalog file {path} has no 'states' mapping", {"path": str(path)})

        return cls.from_dict(data["states"], initial=initial or data.get("initial"))

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(self, name: str) -> StateDefinition:
        """Get a state definition or raise UnknownStateError."""
        try:
            return self._states[name]
        except (KeyError, TypeError):
            raise UnknownStateError(name, self.names())

    def initial_state(self) -> str:
        return self._initial

    def is_terminal(self, name: str) -> bool:
        return self.get(name).is_terminal

    def names(self) -> List[str]:
        return list(self._states.keys())

    @property
    def states(self) -> Mapping[str, StateDefinition]:
        """Read-only view of the catalog."""
        return self._states

    def __contains__(self, name: object) -> bool:
        return name in self._states

    def __iter__(self) -> Iterator[StateDefinition]:
        return iter(self._states.values())

    def __len__(self) -> int:
        return len(self._states)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial": self._initial,
            "states": {name: definition.to_dict() for name, definition in self._states.items()},
        }


# -----------------------------------------------------------------------------
# Transition History Entry (Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TransitionHistoryEntry:
    """
    Immutable record of one applied transition.

    Owned by the entity that produced it. Appended, never edited.
    """
    value: str
    changed_at: datetime
    changed_by: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "changed_at": self.changed_at.isoformat(),
            "changed_by": self.changed_by,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionHistoryEntry":
        changed_at = datetime.fromisoformat(data["changed_at"])
        if changed_at.tzinfo is None:
            changed_at = changed_at.replace(tzinfo=timezone.utc)
        return cls(
            value=data["value"],
            changed_at=changed_at,
            changed_by=data.get("changed_by"),
            reason=data.get("reason"),
        )
