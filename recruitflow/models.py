import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field as PydanticField, model_validator
from sqlmodel import SQLModel, Field

CandidateStatus = Literal["new", "screening", "interview", "offer", "hired", "rejected", "withdrawn"]
Qualification = Literal["qualified", "not_qualified", "pending"]
NoteType = Literal["general", "interview", "phone_screen", "reference", "follow_up"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
EventType = Literal["interview", "phone_screen", "meeting", "follow_up"]
ActivityType = Literal[
    "call",
    "sms",
    "email",
    "note_added",
    "status_change",
    "interview_scheduled",
    "task_created",
    "candidate_added",
]

STATUSES: tuple[str, ...] = ("new", "screening", "interview", "offer", "hired", "rejected", "withdrawn")

# Default free-text stage label for each pipeline status
STAGE_FOR_STATUS = {
    "new": "Applied",
    "screening": "Phone Screen",
    "interview": "Technical Interview",
    "offer": "Offer Extended",
    "hired": "Offer Accepted",
    "rejected": "Rejected",
    "withdrawn": "Withdrawn",
}

STATUS_LABELS = {status: status.capitalize() for status in STATUSES}


def utc_now():
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Candidate(SQLModel, table=True):
    """Database model for a job candidate."""
    __tablename__ = "candidates"

    id: str = Field(default_factory=new_id, primary_key=True)
    first_name: str
    last_name: str = Field(index=True)
    email: str
    phone: Optional[str] = None
    location: Optional[str] = None

    # Professional info
    current_position: Optional[str] = None
    current_company: Optional[str] = None
    years_of_experience: int = 0
    expected_salary: Optional[str] = None
    citizenship: Optional[str] = None
    linkedin: Optional[str] = None
    portfolio: Optional[str] = None

    # Application info
    position: str
    department: Optional[str] = None
    source: Optional[str] = None
    applied_date: Optional[datetime] = None
    resume_received: bool = Field(default=False)
    qualified: str = Field(default="pending")

    # Pipeline
    status: str = Field(default="new", index=True)
    stage: str = Field(default="Applied")

    # Engagement
    rating: Optional[int] = None
    viewed: bool = Field(default=False)
    viewed_at: Optional[datetime] = None

    recruiter_id: Optional[str] = None
    hiring_manager_id: Optional[str] = None

    # Bumped on every write; lets subscribers discard stale change events
    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)


class Note(SQLModel, table=True):
    __tablename__ = "notes"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    content: str
    note_type: str = Field(default="general")
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: str = Field(default="medium")
    status: str = Field(default="pending")
    assigned_to: Optional[str] = Field(default=None, index=True)
    assigned_to_name: Optional[str] = None
    google_task_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class CalendarEvent(SQLModel, table=True):
    __tablename__ = "calendar_events"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    title: str
    description: Optional[str] = None
    event_type: str = Field(default="interview")
    start_time: datetime = Field(index=True)
    end_time: datetime
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Activity(SQLModel, table=True):
    __tablename__ = "activities"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    activity_type: str
    description: str
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, index=True)


class CallLog(SQLModel, table=True):
    __tablename__ = "calls"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    call_type: str = Field(default="outbound")
    phone_number: str
    duration: Optional[int] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    twilio_call_sid: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class SmsMessage(SQLModel, table=True):
    __tablename__ = "sms_messages"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    direction: str = Field(default="outbound")
    phone_number: str
    message_body: str
    status: Optional[str] = None
    twilio_message_sid: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class EmailMessage(SQLModel, table=True):
    __tablename__ = "emails"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    direction: str = Field(default="outbound")
    to_email: str
    from_email: Optional[str] = None
    subject: Optional[str] = None
    body: str
    status: str = Field(default="sent")
    gmail_message_id: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class CandidateCreate(BaseModel):
    """Request model for adding a candidate."""
    first_name: str = PydanticField(min_length=1)
    last_name: str = PydanticField(min_length=1)
    email: EmailStr
    position: str = PydanticField(min_length=1)
    phone: Optional[str] = None
    location: Optional[str] = None
    department: Optional[str] = None
    current_position: Optional[str] = None
    current_company: Optional[str] = None
    years_of_experience: int = PydanticField(default=0, ge=0)
    expected_salary: Optional[str] = None
    citizenship: Optional[str] = None
    linkedin: Optional[str] = None
    portfolio: Optional[str] = None
    source: Optional[str] = None
    applied_date: Optional[UtcDatetime] = None
    recruiter_id: Optional[str] = None
    recruiter_name: Optional[str] = None


class PartialUpdate(BaseModel):
    """Update body: fields left out are untouched, fields in ``not_null`` may not be sent as null."""
    not_null: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            nulls = [name for name in cls.not_null if name in data and data[name] is None]
            if nulls:
                raise ValueError(f"{', '.join(nulls)} may not be null")
        return data


class CandidateUpdate(PartialUpdate):
    """Request model for editing a candidate; only fields that are set are written."""
    not_null: ClassVar[tuple[str, ...]] = (
        "first_name",
        "last_name",
        "email",
        "position",
        "years_of_experience",
        "resume_received",
        "qualified",
        "stage",
        "viewed",
    )

    first_name: Optional[str] = PydanticField(default=None, min_length=1)
    last_name: Optional[str] = PydanticField(default=None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    position: Optional[str] = PydanticField(default=None, min_length=1)
    department: Optional[str] = None
    current_position: Optional[str] = None
    current_company: Optional[str] = None
    years_of_experience: Optional[int] = PydanticField(default=None, ge=0)
    expected_salary: Optional[str] = None
    citizenship: Optional[str] = None
    linkedin: Optional[str] = None
    portfolio: Optional[str] = None
    source: Optional[str] = None
    resume_received: Optional[bool] = None
    qualified: Optional[Qualification] = None
    stage: Optional[str] = None
    viewed: Optional[bool] = None


class StatusChange(BaseModel):
    status: CandidateStatus
    stage: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class RatingUpdate(BaseModel):
    rating: int = PydanticField(ge=1, le=5)


class NoteCreate(BaseModel):
    content: str = PydanticField(min_length=1)
    note_type: NoteType = "general"
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None


class NoteUpdate(BaseModel):
    content: str = PydanticField(min_length=1)


class TaskCreate(BaseModel):
    title: str = PydanticField(min_length=1)
    description: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    priority: TaskPriority = "medium"
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    sync_google: bool = False


class TaskUpdate(PartialUpdate):
    not_null: ClassVar[tuple[str, ...]] = ("title", "priority", "status")

    title: Optional[str] = PydanticField(default=None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None


class EventCreate(BaseModel):
    title: str = PydanticField(min_length=1)
    start_time: UtcDatetime
    end_time: UtcDatetime
    event_type: EventType = "interview"
    description: Optional[str] = None
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class EventUpdate(PartialUpdate):
    not_null: ClassVar[tuple[str, ...]] = ("title", "start_time", "end_time", "event_type")

    title: Optional[str] = PydanticField(default=None, min_length=1)
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    event_type: Optional[EventType] = None
    description: Optional[str] = None
    location: Optional[str] = None
    meeting_link: Optional[str] = None


class ActivityCreate(BaseModel):
    activity_type: ActivityType
    description: str = PydanticField(min_length=1)
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None


class ApiResponse(BaseModel):
    """Standard API response wrapper."""
    status: bool
    message: str
    data: Optional[dict] = None


class CallRequest(BaseModel):
    user_id: Optional[str] = None
    user_name: str = "Recruiter"


class SmsRequest(CallRequest):
    message: str = PydanticField(min_length=1)


class EmailRequest(CallRequest):
    subject: str = PydanticField(min_length=1)
    body: str = PydanticField(min_length=1)
    from_email: Optional[str] = None


class PreferencesUpdate(BaseModel):
    theme: Optional[Literal["light", "dark", "auto"]] = None
    call_method: Optional[Literal["twilio", "native"]] = None
    sms_method: Optional[Literal["twilio", "native"]] = None
    email_method: Optional[Literal["gmail", "native"]] = None
    fallback_to_native: Optional[bool] = None
