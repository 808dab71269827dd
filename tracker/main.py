"""
Growth Tracker API

FastAPI application exposing milestone and manifestation actions.

Error mapping:
- EntityNotFoundError -> 404 (missing entity and foreign owner look the same)
- TrackerValidationError -> 400
- IllegalTransitionError -> 422, naming both states
- UnknownStateError from a stored state missing in the catalog -> 409
"""

import logging
import os
from datetime import datetime
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from . import __version__, SERVICE_NAME
from .manifestation import MANIFESTATION_CATALOG
from .milestone import MILESTONE_CATALOG
from .state_model import StateError, IllegalTransitionError, UnknownStateError
from .tracker_service import (
    TrackerService,
    TrackerError,
    EntityNotFoundError,
    get_tracker_service,
)

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("TRACKER_LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("tracker_api")

CATALOGS = {
    "milestone": MILESTONE_CATALOG,
    "manifestation": MANIFESTATION_CATALOG,
}


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class MilestoneCreateRequest(BaseModel):
    user_id: str
    title: str
    description: str = ""
    milestone_type: str = "achievement"
    parent_goal_id: Optional[str] = None
    start_date: Optional[datetime] = None
    target_date: Optional[datetime] = None
    threshold_value: Optional[float] = None
    unit: Optional[str] = None
    sub_milestones: List[str] = Field(default_factory=list, description="Sub-milestone titles")
    related_habits: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MilestoneStatusRequest(BaseModel):
    user_id: str
    status: str
    status_note: Optional[str] = None


class SubMilestoneRequest(BaseModel):
    user_id: str
    title: str
    description: str = ""
    order: Optional[int] = None


class OwnerRequest(BaseModel):
    user_id: str


class MilestoneProgressRequest(BaseModel):
    user_id: str
    current_value: Optional[float] = None
    progress_percentage: Optional[float] = None


class LinkHabitsRequest(BaseModel):
    user_id: str
    habit_ids: List[str]


class LinkMilestonesRequest(BaseModel):
    user_id: str
    milestone_ids: List[str]


class ManifestationCreateRequest(BaseModel):
    user_id: str
    title: str
    description: str = ""
    manifestation_type: str = "goal"
    category: Optional[str] = None
    timeframe: Optional[str] = None
    related_milestones: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ManifestationStateRequest(BaseModel):
    user_id: str
    state: str
    state_note: Optional[str] = None


class EvidenceRequest(BaseModel):
    user_id: str
    title: str
    description: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None


class AffirmationRequest(BaseModel):
    user_id: str
    text: str
    is_primary: bool = False


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _service() -> TrackerService:
    return get_tracker_service()


def _http_error(e: Exception) -> HTTPException:
    """Map a domain error to an HTTPException."""
    if isinstance(e, IllegalTransitionError):
        return HTTPException(status_code=422, detail=e.to_dict())
    if isinstance(e, UnknownStateError):
        return HTTPException(status_code=409, detail=e.to_dict())
    if isinstance(e, EntityNotFoundError):
        return HTTPException(status_code=404, detail=e.to_dict())
    return HTTPException(status_code=400, detail=e.to_dict())


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title=SERVICE_NAME,
    description="Milestone and manifestation tracking with validated state transitions",
    version=__version__
)


# -----------------------------------------------------------------------------
# API Endpoints - Health & Catalogs
# -----------------------------------------------------------------------------
@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": SERVICE_NAME,
        "status": "running",
        "version": __version__,
    }


@app.get("/catalogs/{domain}")
async def get_catalog(domain: str):
    """State catalog metadata for a domain."""
    catalog = CATALOGS.get(domain)
    if catalog is None:
        raise HTTPException(status_code=404, detail=f"Unknown catalog '{domain}'. Valid: {list(CATALOGS)}")
    return catalog.to_dict()


# -----------------------------------------------------------------------------
# API Endpoints - Milestones
# -----------------------------------------------------------------------------
@app.post("/milestones")
async def create_milestone(request: MilestoneCreateRequest):
    try:
        milestone = await _service().create_milestone(**request.model_dump())
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.get("/milestones")
async def list_milestones(
    user_id: str = Query(...),
    status: Optional[str] = Query(None),
):
    try:
        milestones = await _service().list_milestones(user_id, status)
    except TrackerError as e:
        raise _http_error(e)
    return {"milestones": [m.to_dict() for m in milestones], "count": len(milestones)}


@app.get("/milestones/stats")
async def milestone_stats(user_id: str = Query(...)):
    """Counts by status and type, completion rate and due-soon count."""
    try:
        return await _service().milestone_stats(user_id)
    except TrackerError as e:
        raise _http_error(e)


@app.get("/milestones/{milestone_id}")
async def get_milestone(milestone_id: str, user_id: str = Query(...)):
    try:
        milestone = await _service().get_milestone(milestone_id, user_id)
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.post("/milestones/{milestone_id}/status")
async def update_milestone_status(milestone_id: str, request: MilestoneStatusRequest):
    try:
        milestone = await _service().update_milestone_status(
            milestone_id, request.user_id, request.status, request.status_note
        )
    except (TrackerError, StateError) as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.post("/milestones/{milestone_id}/sub-milestones")
async def add_sub_milestone(milestone_id: str, request: SubMilestoneRequest):
    try:
        milestone = await _service().add_sub_milestone(
            milestone_id, request.user_id, request.title, request.description, request.order
        )
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.post("/milestones/{milestone_id}/sub-milestones/{sub_milestone_id}/toggle")
async def toggle_sub_milestone(milestone_id: str, sub_milestone_id: str, request: OwnerRequest):
    try:
        milestone = await _service().toggle_sub_milestone(milestone_id, request.user_id, sub_milestone_id)
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.post("/milestones/{milestone_id}/progress")
async def update_milestone_progress(milestone_id: str, request: MilestoneProgressRequest):
    try:
        milestone = await _service().update_milestone_progress(
            milestone_id, request.user_id, request.current_value, request.progress_percentage
        )
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.post("/milestones/{milestone_id}/habits")
async def link_habits(milestone_id: str, request: LinkHabitsRequest):
    try:
        milestone = await _service().link_habits(milestone_id, request.user_id, request.habit_ids)
    except TrackerError as e:
        raise _http_error(e)
    return milestone.to_dict()


@app.delete("/milestones/{milestone_id}")
async def delete_milestone(milestone_id: str, user_id: str = Query(...)):
    try:
        deleted = await _service().delete_milestone(milestone_id, user_id)
    except TrackerError as e:
        raise _http_error(e)
    return {"deleted": deleted}


# -----------------------------------------------------------------------------
# API Endpoints - Manifestations
# -----------------------------------------------------------------------------
@app.post("/manifestations")
async def create_manifestation(request: ManifestationCreateRequest):
    try:
        manifestation = await _service().create_manifestation(**request.model_dump())
    except TrackerError as e:
        raise _http_error(e)
    return manifestation.to_dict()


@app.get("/manifestations")
async def list_manifestations(
    user_id: str = Query(...),
    state: Optional[str] = Query(None),
):
    try:
        manifestations = await _service().list_manifestations(user_id, state)
    except TrackerError as e:
        raise _http_error(e)
    return {"manifestations": [m.to_dict() for m in manifestations], "count": len(manifestations)}


@app.get("/manifestations/{manifestation_id}")
async def get_manifestation(manifestation_id: str, user_id: str = Query(...)):
    try:
        manifestation = await _service().get_manifestation(manifestation_id, user_id)
    except TrackerError as e:
        raise _http_error(e)
    return manifestation.to_dict()


@app.post("/manifestations/{manifestation_id}/state")
async def update_manifestation_state(manifestation_id: str, request: ManifestationStateRequest):
    try:
        manifestation = await _service().update_manifestation_state(
            manifestation_id, request.user_id, request.state, request.state_note
        )
    except (TrackerError, StateError) as e:
        raise _http_error(e)
    return manifestation.to_dict()


@app.post("/manifestations/{manifestation_id}/evidence")
async def add_manifestation_evidence(manifestation_id: str, request: EvidenceRequest):
    try:
        outcome = await _service().add_manifestation_evidence(
            manifestation_id,
            request.user_id,
            request.title,
            request.description,
            request.media_url,
            request.media_type,
        )
    except TrackerError as e:
        raise _http_error(e)
    return {**outcome["result"], "manifestation": outcome["manifestation"].to_dict()}


@app.post("/manifestations/{manifestation_id}/affirmations")
async def add_manifestation_affirmation(manifestation_id: str, request: AffirmationRequest):
    try:
        manifestation = await _service().add_manifestation_affirmation(
            manifestation_id, request.user_id, request.text, request.is_primary
        )
    except TrackerError as e:
        raise _http_error(e)
    return manifestation.to_dict()


@app.post("/manifestations/{manifestation_id}/milestones")
async def link_milestones(manifestation_id: str, request: LinkMilestonesRequest):
    try:
        manifestation = await _service().link_milestones_to_manifestation(
            manifestation_id, request.user_id, request.milestone_ids
        )
    except TrackerError as e:
        raise _http_error(e)
    return manifestation.to_dict()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
