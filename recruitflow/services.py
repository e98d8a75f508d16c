import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, TypeVar

import httpx
from sqlmodel import Session, SQLModel, select

from . import relays
from .config import Settings, get_settings
from .errors import NotFoundError, RelayError, ValidationFailure
from .models import (
    STAGE_FOR_STATUS,
    STATUS_LABELS,
    Activity,
    CalendarEvent,
    CallLog,
    Candidate,
    CandidateCreate,
    CandidateUpdate,
    EmailMessage,
    EventCreate,
    EventUpdate,
    Note,
    SmsMessage,
    StatusChange,
    Task,
    TaskCreate,
    TaskUpdate,
    as_utc,
    utc_now,
)
from .realtime import EventBus, publish_change

logger = logging.getLogger(__name__)

Row = TypeVar("Row", bound=SQLModel)

# Rows that belong to a candidate and go away with it
CANDIDATE_CHILDREN = (Note, Task, CalendarEvent, Activity, CallLog, SmsMessage, EmailMessage)


def row_payload(row: SQLModel) -> dict:
    """Full-row payload as delivered on the change feed."""
    return row.model_dump(mode="json")


def _get_or_raise(session: Session, model: type[Row], row_id: str, label: str) -> Row:
    row = session.get(model, row_id)
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row


def _save(session: Session, row: Row, event_type: str, bus: Optional[EventBus] = None) -> Row:
    session.add(row)
    session.commit()
    session.refresh(row)
    publish_change(event_type, row.__tablename__, new=row_payload(row), bus=bus)
    return row


def _delete(session: Session, row: SQLModel, bus: Optional[EventBus] = None) -> None:
    old = row_payload(row)
    session.delete(row)
    session.commit()
    publish_change("DELETE", row.__tablename__, old=old, bus=bus)


def _is_uuid(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


# ===== Candidates =====


def list_candidates(session: Session) -> list[Candidate]:
    """All candidates, newest first."""
    return list(session.exec(select(Candidate).order_by(Candidate.created_at.desc())).all())


def list_candidates_by_status(session: Session, status: str) -> list[Candidate]:
    return list(
        session.exec(
            select(Candidate).where(Candidate.status == status).order_by(Candidate.created_at.desc())
        ).all()
    )


def get_candidate(session: Session, candidate_id: str) -> Candidate:
    return _get_or_raise(session, Candidate, candidate_id, "Candidate")


def create_candidate(session: Session, data: CandidateCreate) -> Candidate:
    """Add a candidate. New candidates always start as status=new and unviewed."""
    fields = data.model_dump(exclude={"recruiter_id", "recruiter_name", "applied_date"})
    candidate = Candidate(
        **fields,
        status="new",
        stage=STAGE_FOR_STATUS["new"],
        viewed=False,
        applied_date=data.applied_date or utc_now(),
        recruiter_id=data.recruiter_id if _is_uuid(data.recruiter_id) else None,
    )
    candidate = _save(session, candidate, "INSERT")

    create_activity(
        session,
        candidate.id,
        "candidate_added",
        f"Candidate added: {candidate.first_name} {candidate.last_name} for {candidate.position}",
        created_by=data.recruiter_id,
        created_by_name=data.recruiter_name,
    )
    session.refresh(candidate)
    return candidate


def _save_candidate(session: Session, candidate: Candidate) -> Candidate:
    candidate.version += 1
    candidate.updated_at = utc_now()
    return _save(session, candidate, "UPDATE")


def update_candidate(session: Session, candidate_id: str, update: CandidateUpdate) -> Candidate:
    """Apply the fields set on ``update`` to the candidate."""
    candidate = get_candidate(session, candidate_id)

    changes = update.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(candidate, key, value)
    if changes.get("viewed") and not candidate.viewed_at:
        candidate.viewed_at = utc_now()

    return _save_candidate(session, candidate)


def change_status(session: Session, candidate_id: str, change: StatusChange) -> Candidate:
    """Move a candidate to another pipeline status and log it."""
    candidate = get_candidate(session, candidate_id)
    if candidate.status == change.status and not change.stage:
        return candidate

    candidate.status = change.status
    candidate.stage = change.stage or STAGE_FOR_STATUS[change.status]
    candidate = _save_candidate(session, candidate)

    create_activity(
        session,
        candidate.id,
        "status_change",
        f"Status changed to {STATUS_LABELS[change.status]} for {candidate.first_name} {candidate.last_name}",
        created_by=change.user_id,
        created_by_name=change.user_name,
    )
    session.refresh(candidate)
    return candidate


def rate_candidate(session: Session, candidate_id: str, rating: int) -> Candidate:
    candidate = get_candidate(session, candidate_id)
    candidate.rating = rating
    return _save_candidate(session, candidate)


def mark_viewed(session: Session, candidate_id: str) -> Candidate:
    """Persist viewed=True; a candidate that is already viewed is not written again."""
    candidate = get_candidate(session, candidate_id)
    if candidate.viewed:
        return candidate

    candidate.viewed = True
    candidate.viewed_at = utc_now()
    return _save_candidate(session, candidate)


def delete_candidate(session: Session, candidate_id: str, bus: Optional[EventBus] = None) -> None:
    """Delete a candidate with all of its child rows; every removed row is published as DELETE."""
    candidate = get_candidate(session, candidate_id)
    removed = []
    for model in CANDIDATE_CHILDREN:
        for row in session.exec(select(model).where(model.candidate_id == candidate_id)).all():
            removed.append((row.__tablename__, row_payload(row)))
            session.delete(row)
    _delete(session, candidate, bus=bus)

    for table, old in removed:
        publish_change("DELETE", table, old=old, bus=bus)


# ===== Notes =====


def list_notes(session: Session, candidate_id: str) -> list[Note]:
    return list(
        session.exec(
            select(Note).where(Note.candidate_id == candidate_id).order_by(Note.created_at.desc())
        ).all()
    )


def create_note(
    session: Session,
    candidate_id: str,
    content: str,
    note_type: str = "general",
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
) -> Note:
    get_candidate(session, candidate_id)
    note = _save(
        session,
        Note(
            candidate_id=candidate_id,
            content=content,
            note_type=note_type,
            created_by=created_by or None,
            created_by_name=created_by_name,
        ),
        "INSERT",
    )

    # Anonymous notes are not logged as activity
    if created_by:
        create_activity(
            session,
            candidate_id,
            "note_added",
            f"Note added: {note_type}",
            created_by=created_by,
            created_by_name=created_by_name,
        )
        session.refresh(note)
    return note


def update_note(session: Session, note_id: str, content: str) -> Note:
    note = _get_or_raise(session, Note, note_id, "Note")
    note.content = content
    note.updated_at = utc_now()
    return _save(session, note, "UPDATE")


def delete_note(session: Session, note_id: str) -> None:
    _delete(session, _get_or_raise(session, Note, note_id, "Note"))


# ===== Tasks =====


def list_tasks(session: Session, candidate_id: str) -> list[Task]:
    return list(
        session.exec(
            select(Task).where(Task.candidate_id == candidate_id).order_by(Task.due_date)
        ).all()
    )


def list_open_tasks(session: Session, assignee: str) -> list[Task]:
    """Tasks assigned to ``assignee`` that are not completed, soonest due first."""
    return list(
        session.exec(
            select(Task)
            .where(Task.assigned_to == assignee, Task.status != "completed")
            .order_by(Task.due_date)
        ).all()
    )


def create_task(
    session: Session,
    candidate_id: str,
    data: TaskCreate,
    settings: Optional[Settings] = None,
    client: Optional[httpx.Client] = None,
) -> Task:
    """Create a task, optionally mirroring it to Google Tasks.

    A failed Google Tasks sync is logged and leaves the local task in place.
    """

    get_candidate(session, candidate_id)
    task = _save(
        session,
        Task(
            candidate_id=candidate_id,
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            priority=data.priority,
            assigned_to=data.assigned_to or None,
            assigned_to_name=data.assigned_to_name,
            status="pending",
        ),
        "INSERT",
    )

    if data.sync_google:
        request = relays.TaskRelayRequest(
            title=data.title,
            notes=data.description,
            due=data.due_date,
            candidate_id=candidate_id,
            user_id=data.assigned_to,
            user_name=data.assigned_to_name,
        )
        try:
            result = relays.create_task(settings or get_settings(), request, client=client)
        except RelayError as exc:
            logger.warning("Google Tasks sync failed for task %s: %s", task.id, exc)
        else:
            task.google_task_id = result.task_id
            task.updated_at = utc_now()
            task = _save(session, task, "UPDATE")

    create_activity(
        session,
        candidate_id,
        "task_created",
        f"Task created: {data.title}",
        created_by=data.assigned_to,
        created_by_name=data.assigned_to_name or "Recruiter",
    )
    session.refresh(task)
    return task


def update_task(session: Session, task_id: str, update: TaskUpdate) -> Task:
    task = _get_or_raise(session, Task, task_id, "Task")
    changes = update.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(task, key, value)
    if changes.get("status") == "completed":
        task.completed_at = utc_now()
    task.updated_at = utc_now()
    return _save(session, task, "UPDATE")


def delete_task(session: Session, task_id: str) -> None:
    _delete(session, _get_or_raise(session, Task, task_id, "Task"))


# ===== Calendar events =====


def list_events(session: Session, candidate_id: str) -> list[CalendarEvent]:
    return list(
        session.exec(
            select(CalendarEvent)
            .where(CalendarEvent.candidate_id == candidate_id)
            .order_by(CalendarEvent.start_time)
        ).all()
    )


def list_upcoming_events(session: Session, since: Optional[datetime] = None) -> list[CalendarEvent]:
    """Events across all candidates by start time; past events too unless ``since`` is given."""
    query = select(CalendarEvent).order_by(CalendarEvent.start_time)
    if since is not None:
        query = query.where(CalendarEvent.start_time >= as_utc(since))
    return list(session.exec(query).all())


def create_event(session: Session, candidate_id: str, data: EventCreate) -> CalendarEvent:
    """Schedule an event for a candidate and log it."""
    candidate = get_candidate(session, candidate_id)
    event = _save(session, CalendarEvent(candidate_id=candidate_id, **data.model_dump()), "INSERT")

    label = data.event_type.replace("_", " ").capitalize()
    create_activity(
        session,
        candidate_id,
        "interview_scheduled",
        f"{label} scheduled with {candidate.first_name} {candidate.last_name}: "
        f"{data.title} on {data.start_time:%b %d, %Y %H:%M}",
        created_by=data.created_by,
        created_by_name=data.created_by_name,
    )
    session.refresh(event)
    return event


def update_event(session: Session, event_id: str, update: EventUpdate) -> CalendarEvent:
    event = _get_or_raise(session, CalendarEvent, event_id, "Event")
    changes = update.model_dump(exclude_unset=True)
    start = changes.get("start_time", event.start_time)
    end = changes.get("end_time", event.end_time)
    if _naive(end) <= _naive(start):
        raise ValidationFailure("end_time must be after start_time")

    for key, value in changes.items():
        setattr(event, key, value)
    event.updated_at = utc_now()
    return _save(session, event, "UPDATE")


def _naive(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; stored values are UTC
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def delete_event(session: Session, event_id: str) -> None:
    _delete(session, _get_or_raise(session, CalendarEvent, event_id, "Event"))


# ===== Activities =====


def list_recent_activities(session: Session, limit: int = 50) -> list[Activity]:
    return list(
        session.exec(select(Activity).order_by(Activity.created_at.desc()).limit(limit)).all()
    )


def list_candidate_activities(session: Session, candidate_id: str) -> list[Activity]:
    return list(
        session.exec(
            select(Activity)
            .where(Activity.candidate_id == candidate_id)
            .order_by(Activity.created_at.desc())
        ).all()
    )


def create_activity(
    session: Session,
    candidate_id: str,
    activity_type: str,
    description: str,
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
) -> Activity:
    activity = Activity(
        candidate_id=candidate_id,
        activity_type=activity_type,
        description=description,
        created_by=created_by if created_by and created_by.strip() else None,
        created_by_name=created_by_name or "Recruiter",
    )
    return _save(session, activity, "INSERT")


# ===== Communication logs =====


def log_call(
    session: Session,
    candidate_id: str,
    phone_number: str,
    status: str,
    twilio_call_sid: Optional[str] = None,
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
) -> CallLog:
    return _save(
        session,
        CallLog(
            candidate_id=candidate_id,
            phone_number=phone_number,
            status=status,
            twilio_call_sid=twilio_call_sid,
            created_by=created_by or None,
            created_by_name=created_by_name,
        ),
        "INSERT",
    )


def log_sms(
    session: Session,
    candidate_id: str,
    phone_number: str,
    message_body: str,
    status: str,
    twilio_message_sid: Optional[str] = None,
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
) -> SmsMessage:
    return _save(
        session,
        SmsMessage(
            candidate_id=candidate_id,
            phone_number=phone_number,
            message_body=message_body,
            status=status,
            twilio_message_sid=twilio_message_sid,
            created_by=created_by or None,
            created_by_name=created_by_name,
        ),
        "INSERT",
    )


def log_email(
    session: Session,
    candidate_id: str,
    to_email: str,
    subject: str,
    body: str,
    status: str,
    from_email: Optional[str] = None,
    gmail_message_id: Optional[str] = None,
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
) -> EmailMessage:
    return _save(
        session,
        EmailMessage(
            candidate_id=candidate_id,
            to_email=to_email,
            from_email=from_email,
            subject=subject,
            body=body,
            status=status,
            gmail_message_id=gmail_message_id,
            created_by=created_by or None,
            created_by_name=created_by_name,
        ),
        "INSERT",
    )


def call_history(session: Session, candidate_id: str) -> list[CallLog]:
    return list(
        session.exec(
            select(CallLog).where(CallLog.candidate_id == candidate_id).order_by(CallLog.created_at.desc())
        ).all()
    )


def sms_history(session: Session, candidate_id: str) -> list[SmsMessage]:
    return list(
        session.exec(
            select(SmsMessage)
            .where(SmsMessage.candidate_id == candidate_id)
            .order_by(SmsMessage.created_at.desc())
        ).all()
    )


def email_history(session: Session, candidate_id: str) -> list[EmailMessage]:
    return list(
        session.exec(
            select(EmailMessage)
            .where(EmailMessage.candidate_id == candidate_id)
            .order_by(EmailMessage.created_at.desc())
        ).all()
    )
