"""
Unit Tests for State Model

Test coverage for:
- Catalog construction and integrity checks
- Lookups and structural terminality
- YAML catalog loading
- History entry serialization
- Error payloads
"""

import dataclasses
from datetime import datetime, timezone

import pytest

from tracker.manifestation import MANIFESTATION_CATALOG
from tracker.milestone import MILESTONE_CATALOG
from tracker.state_model import (
    StateCatalog,
    StateDefinition,
    TransitionHistoryEntry,
    CatalogError,
    UnknownStateError,
    IllegalTransitionError,
)


def simple_definitions():
    return [
        StateDefinition(name="open", label="Open", allowed_transitions=["closed"]),
        StateDefinition(name="closed", label="Closed", allowed_transitions=["open", "archived"]),
        StateDefinition(name="archived", label="Archived"),
    ]


# -----------------------------------------------------------------------------
# Test 1: Catalog Construction
# -----------------------------------------------------------------------------
class TestCatalogConstruction:
    """Test catalog construction and integrity validation."""

    def test_first_state_is_initial(self):
        catalog = StateCatalog(simple_definitions())
        assert catalog.initial_state() == "open"

    def test_explicit_initial_state(self):
        catalog = StateCatalog(simple_definitions(), initial="closed")
        assert catalog.initial_state() == "closed"

    def test_unknown_initial_state_rejected(self):
        with pytest.raises(CatalogError) as exc_info:
            StateCatalog(simple_definitions(), initial="pending")
        assert exc_info.value.code == "CATALOG_INVALID"

    def test_duplicate_state_rejected(self):
        definitions = simple_definitions() + [StateDefinition(name="open", label="Open again")]
        with pytest.raises(CatalogError) as exc_info:
            StateCatalog(definitions)
        assert "Duplicate" in exc_info.value.message

    def test_dangling_transition_rejected(self):
        definitions = [
            StateDefinition(name="open", label="Open", allowed_transitions=["closed", "reopened"]),
            StateDefinition(name="closed", label="Closed"),
        ]
        with pytest.raises(CatalogError) as exc_info:
            StateCatalog(definitions)
        assert exc_info.value.details["dangling"] == [["open", "reopened"]]

    def test_empty_catalog_rejected(self):
        with pytest.raises(CatalogError):
            StateCatalog([])

    def test_from_dict_requires_label(self):
        with pytest.raises(CatalogError):
            StateCatalog.from_dict({"open": {"allowed_transitions": []}})

    def test_from_dict_accepts_transitions_to_alias(self):
        catalog = StateCatalog.from_dict({
            "draft": {"label": "Draft", "transitionsTo": ["review"]},
            "review": {"label": "Review"},
        })
        assert catalog.get("draft").allowed_transitions == ("review",)

    def test_definition_is_frozen(self):
        definition = StateDefinition(name="open", label="Open", allowed_transitions=["closed"])
        assert definition.allowed_transitions == ("closed",)
        with pytest.raises(dataclasses.FrozenInstanceError):
            definition.label = "Changed"

    def test_states_view_is_read_only(self):
        catalog = StateCatalog(simple_definitions())
        with pytest.raises(TypeError):
            catalog.states["new"] = StateDefinition(name="new", label="New")


# -----------------------------------------------------------------------------
# Test 2: Catalog Lookups
# -----------------------------------------------------------------------------
class TestCatalogLookups:
    """Test lookups, enumeration and terminality."""

    def test_get_known_state(self):
        catalog = StateCatalog(simple_definitions())
        assert catalog.get("closed").label == "Closed"

    def test_get_unknown_state(self):
        catalog = StateCatalog(simple_definitions())
        with pytest.raises(UnknownStateError) as exc_info:
            catalog.get("pending")
        assert exc_info.value.state_name == "pending"
        assert exc_info.value.details["known_states"] == ["open", "closed", "archived"]

    def test_enumeration_keeps_order(self):
        catalog = StateCatalog(simple_definitions())
        assert catalog.names() == ["open", "closed", "archived"]
        assert [d.name for d in catalog] == ["open", "closed", "archived"]
        assert len(catalog) == 3
        assert "closed" in catalog
        assert "pending" not in catalog

    def test_terminal_is_structural(self):
        for catalog in (MILESTONE_CATALOG, MANIFESTATION_CATALOG):
            for name in catalog.names():
                assert catalog.is_terminal(name) == (len(catalog.get(name).allowed_transitions) == 0)

    def test_reactivatable_state_is_not_terminal(self):
        assert MILESTONE_CATALOG.is_terminal("achieved") is True
        assert MILESTONE_CATALOG.is_terminal("abandoned") is False

    def test_domain_catalogs_have_no_dangling_transitions(self):
        for catalog in (MILESTONE_CATALOG, MANIFESTATION_CATALOG):
            for definition in catalog:
                for target in definition.allowed_transitions:
                    assert target in catalog

    def test_to_dict(self):
        data = StateCatalog(simple_definitions()).to_dict()
        assert data["initial"] == "open"
        assert data["states"]["archived"]["is_terminal"] is True
        assert data["states"]["closed"]["allowed_transitions"] == ["open", "archived"]


# -----------------------------------------------------------------------------
# Test 3: YAML Catalogs
# -----------------------------------------------------------------------------
class TestCatalogYaml:
    """Test loading catalogs from YAML files."""

    def test_load_catalog(self, sample_catalog_yaml):
        catalog = StateCatalog.from_yaml(sample_catalog_yaml)
        assert catalog.names() == ["draft", "review", "published"]
        assert catalog.initial_state() == "draft"
        assert catalog.get("draft").color == "#ccc"
        assert catalog.get("draft").icon == "pencil"
        assert catalog.get("review").allowed_transitions == ("published", "draft")
        assert catalog.get("published").description == "Visible to everyone"
        assert catalog.is_terminal("published")

    def test_initial_argument_overrides_file(self, sample_catalog_yaml):
        catalog = StateCatalog.from_yaml(sample_catalog_yaml, initial="review")
        assert catalog.initial_state() == "review"

    def test_missing_states_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("initial: draft\n")
        with pytest.raises(CatalogError):
            StateCatalog.from_yaml(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("states: [unclosed\n")
        with pytest.raises(CatalogError):
            StateCatalog.from_yaml(path)

    def test_dangling_transition_in_file(self, tmp_path):
        path = tmp_path / "dangling.yaml"
        path.write_text(
            "states:\n"
            "  draft:\n"
            "    label: Draft\n"
            "    allowed_transitions: [shipped]\n"
        )
        with pytest.raises(CatalogError):
            StateCatalog.from_yaml(path)


# -----------------------------------------------------------------------------
# Test 4: History Entries & Errors
# -----------------------------------------------------------------------------
class TestHistoryEntry:
    """Test history entry serialization."""

    def test_to_dict_shape(self):
        changed_at = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        entry = TransitionHistoryEntry(value="in_progress", changed_at=changed_at, changed_by="user-1", reason="Kickoff")
        assert entry.to_dict() == {
            "value": "in_progress",
            "changed_at": "2026-01-05T09:30:00+00:00",
            "changed_by": "user-1",
            "reason": "Kickoff",
        }
        assert TransitionHistoryEntry.from_dict(entry.to_dict()) == entry

    def test_naive_timestamp_is_read_as_utc(self):
        entry = TransitionHistoryEntry.from_dict({"value": "planned", "changed_at": "2026-01-05T09:30:00"})
        assert entry.changed_at.tzinfo == timezone.utc
        assert entry.changed_by is None
        assert entry.reason is None

    def test_entry_is_immutable(self):
        entry = TransitionHistoryEntry(value="planned", changed_at=datetime.now(timezone.utc))
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.value = "achieved"


class TestStateErrors:
    """Test structured error payloads."""

    def test_illegal_transition_payload(self):
        error = IllegalTransitionError("achieved", "in_progress", ())
        assert error.message == "Cannot transition from achieved to in_progress"
        assert error.to_dict() == {
            "error": True,
            "code": "ILLEGAL_TRANSITION",
            "message": "Cannot transition from achieved to in_progress",
            "details": {
                "from_state": "achieved",
                "to_state": "in_progress",
                "allowed_transitions": [],
            },
        }

    def test_unknown_state_message_lists_known_states(self):
        error = UnknownStateError("done", ["open", "closed"])
        assert str(error) == "Unknown state: 'done'. Must be one of: open, closed"
