"""
Growth Tracker Module

Backend for personal-growth tracking: milestones and manifestations
(intention/vision tracking), each following a labeled workflow with
validated transitions and an audit trail.

Components:
- state_model: State catalogs, history entries, state errors
  * StateDefinition / StateCatalog (frozen after construction)
  * Catalog integrity checked at construction (no dangling transitions)
  * TransitionHistoryEntry (frozen dataclass, append-only history)
- state_engine: Generic state transition engine
  * can_transition / assert_transition (pure validation)
  * record_transition (append-only history)
  * StateAdapter + StateTrackable mixin (set_state, is_state, meta, finders)
  * Same-state set_state is a silent no-op
- milestone: Milestone status adapter and entity
  * planned -> in_progress -> {blocked, at_risk, nearly_complete, achieved, abandoned}
  * Sub-milestones, progress tracking, habit links
  * completed_date stamped on entering achieved
- manifestation: Manifestation state adapter and entity
  * visioning -> intention_set -> in_progress -> manifesting -> manifested
  * Evidence, affirmations
  * manifested_date stamped on entering manifested
- entity_store: JSON document store with atomic writes
- tracker_service: Owner-checked actions, persistence, state audit log
- main: FastAPI application
"""

__version__ = "0.3.0"

SERVICE_NAME = "Growth Tracker"
