"""Candidate list reconciliation.

Everything in this module is pure: the list state is a plain mapping of
candidate id to :class:`CandidateRecord`, and each operation returns a new
mapping or list instead of mutating its input. :class:`recruitflow.feed.CandidateFeed`
holds the current state and wires these functions to the change feed.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .models import STATUSES, CandidateStatus, Qualification

FilterMode = Literal["all", "new", "screening", "interview", "offer", "hired", "rejected", "withdrawn"]

QUALIFICATION_LABELS = {
    "qualified": "Qualified",
    "not_qualified": "Not Qualified",
    "pending": "Pending",
}

# A candidate with a resume on file matches any query contained in these phrases
RESUME_RECEIVED_TERMS = ("resume received", "received")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class CandidateRecord(BaseModel):
    """Canonical in-memory candidate.

    Rows arrive either in the table's snake_case naming or in camelCase; both
    are accepted here so nothing downstream has to care which one it got.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    first_name: str = Field(default="", validation_alias=_alias("first_name", "firstName"))
    last_name: str = Field(default="", validation_alias=_alias("last_name", "lastName"))
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    current_position: Optional[str] = Field(default=None, validation_alias=_alias("current_position", "currentPosition"))
    current_company: Optional[str] = Field(default=None, validation_alias=_alias("current_company", "currentCompany"))
    years_of_experience: int = Field(default=0, validation_alias=_alias("years_of_experience", "yearsOfExperience"))
    expected_salary: Optional[str] = Field(default=None, validation_alias=_alias("expected_salary", "expectedSalary"))
    citizenship: Optional[str] = None
    linkedin: Optional[str] = Field(default=None, validation_alias=_alias("linkedin", "linkedIn"))
    portfolio: Optional[str] = None
    position: str = ""
    department: Optional[str] = None
    source: Optional[str] = None
    applied_date: Optional[datetime] = Field(default=None, validation_alias=_alias("applied_date", "appliedDate"))
    resume_received: bool = Field(default=False, validation_alias=_alias("resume_received", "resumeReceived"))
    qualified: Qualification = "pending"
    status: CandidateStatus
    stage: str = ""
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    viewed: bool = False
    version: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, validation_alias=_alias("created_at", "createdAt"))
    updated_at: Optional[datetime] = Field(default=None, validation_alias=_alias("updated_at", "updatedAt"))

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("first_name", "last_name", "position", "stage", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("resume_received", "viewed", mode="before")
    @classmethod
    def none_to_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("qualified", mode="before")
    @classmethod
    def none_to_pending(cls, value: Any) -> Any:
        return "pending" if value is None else value

    @field_validator("years_of_experience", mode="before")
    @classmethod
    def none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("applied_date", "created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value:
                return None
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        return value

    @field_validator("applied_date", "created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def qualification_label(self) -> str:
        return QUALIFICATION_LABELS[self.qualified]

    @property
    def sort_timestamp(self) -> datetime:
        return self.applied_date or self.created_at or _EPOCH


CandidateState = Mapping[str, CandidateRecord]


def normalize_candidate(raw: Union[Mapping[str, Any], Any]) -> CandidateRecord:
    """Build a CandidateRecord from a row dict or an ORM object.

    Raises pydantic.ValidationError for rows that lack an id or status.
    """
    if isinstance(raw, CandidateRecord):
        return raw
    if isinstance(raw, Mapping):
        return CandidateRecord.model_validate(raw)
    return CandidateRecord.model_validate(raw, from_attributes=True)


def load_state(records: Iterable[CandidateRecord]) -> dict[str, CandidateRecord]:
    """Build a fresh state from a bulk fetch; a later duplicate id wins."""
    return {record.id: record for record in records}


def is_stale(current: CandidateRecord, incoming: CandidateRecord) -> bool:
    if current.version is None or incoming.version is None:
        return False
    return incoming.version <= current.version


def apply_event(state: CandidateState, record: CandidateRecord) -> CandidateState:
    """Insert ``record`` if its id is unknown, otherwise replace the stored record whole.

    When both records carry a version, an incoming record that is not newer
    is ignored and ``state`` is returned as is.
    """
    current = state.get(record.id)
    if current is not None and is_stale(current, record):
        return state

    new_state = dict(state)
    new_state[record.id] = record
    return new_state


def remove_candidate(state: CandidateState, candidate_id: str) -> CandidateState:
    if candidate_id not in state:
        return state
    return {key: value for key, value in state.items() if key != candidate_id}


def matches_search(candidate: CandidateRecord, search_query: str) -> bool:
    query = search_query.lower()
    if not query:
        return True

    fields = (
        candidate.first_name,
        candidate.last_name,
        candidate.position,
        candidate.qualification_label,
        candidate.stage,
        candidate.status,
    )
    if any(query in field.lower() for field in fields):
        return True

    return candidate.resume_received and any(query in term for term in RESUME_RECEIVED_TERMS)


def matches_filter(candidate: CandidateRecord, filter_mode: str) -> bool:
    if filter_mode == "all":
        return True
    if filter_mode == "new":
        # Unseen, whatever the pipeline status
        return not candidate.viewed
    if filter_mode in STATUSES:
        return candidate.status == filter_mode
    raise ValueError(f"Unknown filter mode: {filter_mode!r}")


def sort_candidates(candidates: Iterable[CandidateRecord]) -> list[CandidateRecord]:
    """Newest applied/created first, then last name ascending, case-insensitive."""
    by_name = sorted(candidates, key=lambda c: c.last_name.casefold())
    return sorted(by_name, key=lambda c: c.sort_timestamp, reverse=True)


def derive_visible(
    candidates: Iterable[CandidateRecord],
    search_query: str = "",
    filter_mode: str = "all",
) -> list[CandidateRecord]:
    """Return the candidates passing both the search and the filter, in display order."""
    if filter_mode not in ("all", "new") and filter_mode not in STATUSES:
        raise ValueError(f"Unknown filter mode: {filter_mode!r}")

    visible = [
        c for c in candidates
        if matches_search(c, search_query) and matches_filter(c, filter_mode)
    ]
    return sort_candidates(visible)
