"""
Pytest configuration for Growth Tracker tests.

This module provides:
1. An isolated state directory for every test
2. Store, service and API client fixtures
3. Entity factories shared across test modules
"""

import os
import tempfile

# Keep the module-level default state dir out of the working tree
os.environ.setdefault("TRACKER_STATE_DIR", tempfile.mkdtemp())

import pytest
from fastapi.testclient import TestClient

from tracker.entity_store import EntityStore
from tracker.main import app
from tracker.manifestation import Manifestation
from tracker.milestone import Milestone
from tracker.tracker_service import TrackerService, set_tracker_service


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
TEST_USER_ID = "test-user-123"
OTHER_USER_ID = "other-user-456"


# -----------------------------------------------------------------------------
# Entity Factories
# -----------------------------------------------------------------------------
def create_test_milestone(**overrides) -> Milestone:
    """Helper to create test milestone instances."""
    fields = {
        "milestone_id": "milestone-1",
        "user_id": TEST_USER_ID,
        "title": "Run a marathon",
    }
    fields.update(overrides)
    return Milestone(**fields)


def create_test_manifestation(**overrides) -> Manifestation:
    """Helper to create test manifestation instances."""
    fields = {
        "manifestation_id": "manifestation-1",
        "user_id": TEST_USER_ID,
        "title": "Live by the sea",
    }
    fields.update(overrides)
    return Manifestation(**fields)


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def temp_state_dir(tmp_path):
    """Create a temporary state directory for testing."""
    path = tmp_path / "tracker"
    path.mkdir()
    return path


@pytest.fixture
def store(temp_state_dir):
    return EntityStore(state_dir=temp_state_dir)


@pytest.fixture
def service(store):
    return TrackerService(store)


@pytest.fixture
def client(service):
    """Create test client for FastAPI app backed by the temp service."""
    set_tracker_service(service)
    yield TestClient(app)
    set_tracker_service(None)


@pytest.fixture
def sample_catalog_yaml(tmp_path):
    """A small catalog file in the YAML catalog format."""
    path = tmp_path / "review_catalog.yaml"
    path.write_text(
        "initial: draft\n"
        "states:\n"
        "  draft:\n"
        "    label: Draft\n"
        "    color: '#ccc'\n"
        "    icon: pencil\n"
        "    allowed_transitions: [review]\n"
        "  review:\n"
        "    label: In Review\n"
        "    transitionsTo: [published, draft]\n"
        "  published:\n"
        "    label: Published\n"
        "    description: Visible to everyone\n"
        "    allowed_transitions: []\n"
    )
    return path
