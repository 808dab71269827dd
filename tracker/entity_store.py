"""
Entity Store: JSON Document Persistence

Stores entity documents (plain dicts) grouped by collection in a single JSON
file, replaced atomically on every write.

Guarantees:
- Writes within one process are serialized by an asyncio.Lock
- The state file is never partially written (temp file + rename)
- Last writer wins across processes; no optimistic locking here
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List

logger = logging.getLogger("entity_store")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
TRACKER_STATE_DIR = Path(os.getenv("TRACKER_STATE_DIR", "data/tracker"))

MILESTONES = "milestones"
MANIFESTATIONS = "manifestations"


class StoreError(Exception):
    """Raised when the state file cannot be written."""


# -----------------------------------------------------------------------------
# Entity Store
# -----------------------------------------------------------------------------
class EntityStore:
    """
    File-backed document store.

    Layout of entities.json:
        {"collections": {"milestones": {"<id>": {...}}, ...}, "last_updated": "..."}
    """

    def __init__(self, state_dir: Path = TRACKER_STATE_DIR):
        self._state_dir = Path(state_dir)
        self._state_file = self._state_dir / "entities.json"
        self._lock = asyncio.Lock()
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        """Ensure state directory exists."""
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Could not create state directory: {e}")

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save(self, collection: str, entity_id: str, document: Dict[str, Any]) -> None:
        """Insert or replace a document."""
        async with self._lock:
            state = self._load_state()
            state["collections"].setdefault(collection, {})[entity_id] = document
            state["last_updated"] = datetime.now(timezone.utc).isoformat()
            self._save_state(state)

    async def delete(self, collection: str, entity_id: str) -> bool:
        async with self._lock:
            state = self._load_state()
            documents = state["collections"].get(collection, {})
            if entity_id not in documents:
                return False
            del documents[entity_id]
            state["last_updated"] = datetime.now(timezone.utc).isoformat()
            self._save_state(state)
            return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        state = self._load_state()
        return state["collections"].get(collection, {}).get(entity_id)

    async def find(self, collection: str, **conditions: Any) -> List[Dict[str, Any]]:
        """
        Return documents whose fields equal every given condition.

        None-valued conditions are ignored.
        """
        state = self._load_state()
        documents = list(state["collections"].get(collection, {}).values())
        for key, value in conditions.items():
            if value is None:
                continue
            documents = [doc for doc in documents if doc.get(key) == value]
        return documents

    # -------------------------------------------------------------------------
    # State File
    # -------------------------------------------------------------------------

    def _load_state(self) -> Dict[str, Any]:
        """Load state from file."""
        if not self._state_file.exists():
            return {"collections": {}, "created_at": datetime.now(timezone.utc).isoformat()}
        try:
            state = json.loads(self._state_file.read_text())
        except json.JSONDecodeError as e:
            # Keep the unreadable file aside so the next save does not destroy it
            corrupt_file = self._state_file.with_suffix(".corrupt")
            logger.error(f"Corrupt state file, moved to {corrupt_file}: {e}")
            self._state_file.replace(corrupt_file)
            return {"collections": {}, "created_at": datetime.now(timezone.utc).isoformat()}
        except IOError as e:
            logger.error(f"Failed to load state file: {e}")
            return {"collections": {}, "created_at": datetime.now(timezone.utc).isoformat()}
        state.setdefault("collections", {})
        return state

    def _save_state(self, state: Dict[str, Any]) -> None:
        """Save state to file atomically."""
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(state, indent=2, default=str))
            temp_file.replace(self._state_file)
        except IOError as e:
            logger.error(f"Failed to save state file: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise StoreError(f"Failed to save state file {self._state_file}: {e}")
