import json
import logging
from datetime import datetime
from functools import partial
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from . import services
from .analytics import dashboard
from .communication import CommunicationService, RelayClient
from .config import Settings, get_settings
from .database import get_session
from .errors import NotFoundError
from .feed import CandidateFeed, get_feed
from .functions import get_http_client
from .models import (
    ActivityCreate,
    ApiResponse,
    CallRequest,
    CandidateCreate,
    CandidateUpdate,
    EmailRequest,
    EventCreate,
    EventUpdate,
    NoteCreate,
    NoteUpdate,
    PreferencesUpdate,
    RatingUpdate,
    SmsRequest,
    StatusChange,
    TaskCreate,
    TaskUpdate,
)
from .preferences import PreferenceStore
from .realtime import EventBus, get_event_bus
from .reconciler import FilterMode

logger = logging.getLogger(__name__)

router = APIRouter()

SUMMARY_FIELDS = {
    "id",
    "first_name",
    "last_name",
    "position",
    "status",
    "stage",
    "qualified",
    "resume_received",
    "rating",
    "viewed",
    "applied_date",
    "created_at",
}

# Tables that may be watched through /realtime, with the column a subscriber may filter on
REALTIME_TABLES = {
    "candidates": "id",
    "notes": "candidate_id",
    "tasks": "candidate_id",
    "calendar_events": "candidate_id",
    "activities": "candidate_id",
}


def get_preference_store(settings: Settings = Depends(get_settings)) -> PreferenceStore:
    return PreferenceStore(settings.preferences_path)


def get_relay_client(settings: Settings = Depends(get_settings)):
    """Dependency providing a client for the relay functions."""
    with httpx.Client(timeout=settings.relay_timeout_sec) as client:
        yield RelayClient(settings.functions_base_url, client)


def get_communication_service(
    session: Session = Depends(get_session),
    relay: RelayClient = Depends(get_relay_client),
    preferences: PreferenceStore = Depends(get_preference_store),
) -> CommunicationService:
    return CommunicationService(session, relay, preferences)


def _dump(rows) -> list[dict]:
    return [row.model_dump() for row in rows]


# ===== Candidates =====


@router.get("/candidates")
def get_candidates(
    q: str = "",
    filter_mode: FilterMode = Query("all", alias="filter"),
    feed: CandidateFeed = Depends(get_feed),
) -> ApiResponse:
    """Get the visible candidate list for a search query and filter (summary view)."""
    visible = feed.visible(q, filter_mode)
    summary = [c.model_dump(include=SUMMARY_FIELDS) for c in visible]

    return ApiResponse(
        status=True,
        message=f"Retrieved {len(summary)} candidates",
        data={"candidates": summary, "query": q, "filter": filter_mode},
    )


@router.post("/candidates", status_code=201)
def create_candidate(data: CandidateCreate, session: Session = Depends(get_session)) -> ApiResponse:
    """Add a candidate; it starts as new and unviewed."""
    candidate = services.create_candidate(session, data)
    return ApiResponse(status=True, message="Candidate created", data=candidate.model_dump())


@router.post("/candidates/refresh")
def refresh_candidates(
    session: Session = Depends(get_session),
    feed: CandidateFeed = Depends(get_feed),
) -> ApiResponse:
    """Reload the candidate list from the database."""
    count = feed.bulk_load(lambda: [services.row_payload(c) for c in services.list_candidates(session)])
    return ApiResponse(status=True, message=f"Loaded {count} candidates", data={"count": count})


@router.get("/candidates/{candidate_id}")
def get_candidate(
    candidate_id: str,
    session: Session = Depends(get_session),
    feed: CandidateFeed = Depends(get_feed),
) -> ApiResponse:
    """Get full candidate data and mark as viewed."""
    candidate = services.get_candidate(session, candidate_id)

    if not candidate.viewed:
        feed.mark_viewed(candidate_id, partial(services.mark_viewed, session))
        session.refresh(candidate)

    return ApiResponse(status=True, message="Candidate retrieved", data=candidate.model_dump())


@router.patch("/candidates/{candidate_id}")
def update_candidate(
    candidate_id: str,
    update: CandidateUpdate,
    session: Session = Depends(get_session),
) -> ApiResponse:
    """Edit candidate fields."""
    candidate = services.update_candidate(session, candidate_id, update)
    return ApiResponse(status=True, message="Candidate updated", data=candidate.model_dump())


@router.post("/candidates/{candidate_id}/status")
def change_status(
    candidate_id: str,
    change: StatusChange,
    session: Session = Depends(get_session),
) -> ApiResponse:
    candidate = services.change_status(session, candidate_id, change)
    return ApiResponse(status=True, message=f"Status changed to {candidate.stage}", data=candidate.model_dump())


@router.post("/candidates/{candidate_id}/rating")
def rate_candidate(
    candidate_id: str,
    update: RatingUpdate,
    session: Session = Depends(get_session),
) -> ApiResponse:
    candidate = services.rate_candidate(session, candidate_id, update.rating)
    return ApiResponse(status=True, message="Rating updated", data=candidate.model_dump())


@router.delete("/candidates/{candidate_id}")
def delete_candidate(
    candidate_id: str,
    session: Session = Depends(get_session),
    feed: CandidateFeed = Depends(get_feed),
) -> ApiResponse:
    services.delete_candidate(session, candidate_id)
    feed.remove(candidate_id)
    return ApiResponse(status=True, message="Candidate deleted")


@router.get("/stats")
def get_stats(feed: CandidateFeed = Depends(get_feed)) -> ApiResponse:
    """Get pipeline counts and dashboard metrics."""
    return ApiResponse(status=True, message="Stats retrieved", data=dashboard(feed.candidates))


# ===== Notes =====


@router.get("/candidates/{candidate_id}/notes")
def get_notes(candidate_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    notes = services.list_notes(session, candidate_id)
    return ApiResponse(status=True, message=f"Retrieved {len(notes)} notes", data={"notes": _dump(notes)})


@router.post("/candidates/{candidate_id}/notes", status_code=201)
def create_note(candidate_id: str, data: NoteCreate, session: Session = Depends(get_session)) -> ApiResponse:
    note = services.create_note(
        session, candidate_id, data.content, data.note_type, data.created_by, data.created_by_name
    )
    return ApiResponse(status=True, message="Note added", data=note.model_dump())


@router.patch("/notes/{note_id}")
def update_note(note_id: str, data: NoteUpdate, session: Session = Depends(get_session)) -> ApiResponse:
    note = services.update_note(session, note_id, data.content)
    return ApiResponse(status=True, message="Note updated", data=note.model_dump())


@router.delete("/notes/{note_id}")
def delete_note(note_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    services.delete_note(session, note_id)
    return ApiResponse(status=True, message="Note deleted")


# ===== Tasks =====


@router.get("/tasks")
def get_open_tasks(assignee: str, session: Session = Depends(get_session)) -> ApiResponse:
    """Open tasks assigned to a user."""
    tasks = services.list_open_tasks(session, assignee)
    return ApiResponse(status=True, message=f"Retrieved {len(tasks)} tasks", data={"tasks": _dump(tasks)})


@router.get("/candidates/{candidate_id}/tasks")
def get_tasks(candidate_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    tasks = services.list_tasks(session, candidate_id)
    return ApiResponse(status=True, message=f"Retrieved {len(tasks)} tasks", data={"tasks": _dump(tasks)})


@router.post("/candidates/{candidate_id}/tasks", status_code=201)
def create_task(
    candidate_id: str,
    data: TaskCreate,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client: httpx.Client = Depends(get_http_client),
) -> ApiResponse:
    """Create a task, mirrored to Google Tasks when requested."""
    task = services.create_task(session, candidate_id, data, settings=settings, client=client)
    return ApiResponse(status=True, message="Task created", data=task.model_dump())


@router.patch("/tasks/{task_id}")
def update_task(task_id: str, data: TaskUpdate, session: Session = Depends(get_session)) -> ApiResponse:
    task = services.update_task(session, task_id, data)
    return ApiResponse(status=True, message="Task updated", data=task.model_dump())


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    services.delete_task(session, task_id)
    return ApiResponse(status=True, message="Task deleted")


# ===== Calendar events =====


@router.get("/events")
def get_all_events(since: Optional[datetime] = None, session: Session = Depends(get_session)) -> ApiResponse:
    """Events across all candidates, optionally only those starting after ``since``."""
    events = services.list_upcoming_events(session, since)
    return ApiResponse(status=True, message=f"Retrieved {len(events)} events", data={"events": _dump(events)})


@router.get("/candidates/{candidate_id}/events")
def get_events(candidate_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    events = services.list_events(session, candidate_id)
    return ApiResponse(status=True, message=f"Retrieved {len(events)} events", data={"events": _dump(events)})


@router.post("/candidates/{candidate_id}/events", status_code=201)
def create_event(candidate_id: str, data: EventCreate, session: Session = Depends(get_session)) -> ApiResponse:
    """Schedule an interview or other event."""
    event = services.create_event(session, candidate_id, data)
    return ApiResponse(status=True, message="Event scheduled", data=event.model_dump())


@router.patch("/events/{event_id}")
def update_event(event_id: str, data: EventUpdate, session: Session = Depends(get_session)) -> ApiResponse:
    event = services.update_event(session, event_id, data)
    return ApiResponse(status=True, message="Event updated", data=event.model_dump())


@router.delete("/events/{event_id}")
def delete_event(event_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    services.delete_event(session, event_id)
    return ApiResponse(status=True, message="Event deleted")


# ===== Activities =====


@router.get("/activities")
def get_recent_activities(
    limit: int = Query(50, ge=1, le=500),
    session: Session = Depends(get_session),
) -> ApiResponse:
    activities = services.list_recent_activities(session, limit)
    return ApiResponse(
        status=True,
        message=f"Retrieved {len(activities)} activities",
        data={"activities": _dump(activities)},
    )


@router.get("/candidates/{candidate_id}/activities")
def get_candidate_activities(candidate_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    activities = services.list_candidate_activities(session, candidate_id)
    return ApiResponse(
        status=True,
        message=f"Retrieved {len(activities)} activities",
        data={"activities": _dump(activities)},
    )


@router.post("/candidates/{candidate_id}/activities", status_code=201)
def create_activity(
    candidate_id: str,
    data: ActivityCreate,
    session: Session = Depends(get_session),
) -> ApiResponse:
    services.get_candidate(session, candidate_id)
    activity = services.create_activity(
        session, candidate_id, data.activity_type, data.description, data.created_by, data.created_by_name
    )
    return ApiResponse(status=True, message="Activity logged", data=activity.model_dump())


# ===== Communication =====


@router.get("/candidates/{candidate_id}/communications")
def get_communications(candidate_id: str, session: Session = Depends(get_session)) -> ApiResponse:
    """Call, SMS and email history for a candidate."""
    return ApiResponse(
        status=True,
        message="Communication history retrieved",
        data={
            "calls": _dump(services.call_history(session, candidate_id)),
            "sms": _dump(services.sms_history(session, candidate_id)),
            "emails": _dump(services.email_history(session, candidate_id)),
        },
    )


@router.post("/candidates/{candidate_id}/call")
def call_candidate(
    candidate_id: str,
    data: CallRequest,
    session: Session = Depends(get_session),
    communication: CommunicationService = Depends(get_communication_service),
) -> ApiResponse:
    candidate = services.get_candidate(session, candidate_id)
    outcome = communication.call(candidate, data.user_id, data.user_name)
    return ApiResponse(status=True, message=f"Call started via {outcome.channel}", data=outcome.model_dump())


@router.post("/candidates/{candidate_id}/sms")
def sms_candidate(
    candidate_id: str,
    data: SmsRequest,
    session: Session = Depends(get_session),
    communication: CommunicationService = Depends(get_communication_service),
) -> ApiResponse:
    candidate = services.get_candidate(session, candidate_id)
    outcome = communication.send_sms(candidate, data.message, data.user_id, data.user_name)
    return ApiResponse(status=True, message=f"SMS sent via {outcome.channel}", data=outcome.model_dump())


@router.post("/candidates/{candidate_id}/email")
def email_candidate(
    candidate_id: str,
    data: EmailRequest,
    session: Session = Depends(get_session),
    communication: CommunicationService = Depends(get_communication_service),
) -> ApiResponse:
    candidate = services.get_candidate(session, candidate_id)
    outcome = communication.send_email(
        candidate, data.subject, data.body, data.user_id, data.user_name, data.from_email
    )
    return ApiResponse(status=True, message=f"Email sent via {outcome.channel}", data=outcome.model_dump())


# ===== Preferences =====


@router.get("/preferences")
def get_preferences(store: PreferenceStore = Depends(get_preference_store)) -> ApiResponse:
    return ApiResponse(status=True, message="Preferences retrieved", data=store.load().model_dump())


@router.put("/preferences")
def update_preferences(
    update: PreferencesUpdate,
    store: PreferenceStore = Depends(get_preference_store),
) -> ApiResponse:
    preferences = store.update(**update.model_dump(exclude_none=True))
    return ApiResponse(status=True, message="Preferences saved", data=preferences.model_dump())


# ===== Realtime =====


@router.get("/realtime/{table}")
async def stream_changes(
    table: str,
    candidate_id: Optional[str] = None,
    bus: EventBus = Depends(get_event_bus),
):
    """Server-sent change events for one table, optionally for one candidate."""
    if table not in REALTIME_TABLES:
        raise NotFoundError(f"Unknown table: {table}")

    column = REALTIME_TABLES[table] if candidate_id else None

    async def event_source():
        async for event in bus.stream(table, column=column, value=candidate_id):
            yield f"event: {event.event_type}\ndata: {json.dumps(event.model_dump(mode='json'))}\n\n"

    return StreamingResponse(event_source(), media_type="text/event-stream")
