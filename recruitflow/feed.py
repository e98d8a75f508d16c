import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any, Optional

from pydantic import ValidationError

from .analytics import pipeline_stats
from .errors import RemoteQueryError
from .realtime import ChangeEvent, EventBus
from .reconciler import (
    CandidateRecord,
    CandidateState,
    apply_event,
    derive_visible,
    load_state,
    normalize_candidate,
    remove_candidate,
)

logger = logging.getLogger(__name__)

CANDIDATES_TABLE = "candidates"


class CandidateFeed:
    """Holds one reconciled candidate list and keeps it current from the change feed.

    The state itself is only ever replaced, never mutated, so readers can take
    a snapshot without holding the lock.
    """

    def __init__(self) -> None:
        self._state: CandidateState = {}
        self._lock = threading.RLock()
        self._closed = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def candidates(self) -> list[CandidateRecord]:
        return list(self._state.values())

    def get(self, candidate_id: str) -> Optional[CandidateRecord]:
        return self._state.get(candidate_id)

    def __len__(self) -> int:
        return len(self._state)

    def attach(self, bus: EventBus) -> None:
        """Subscribe to candidate changes on ``bus``."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = bus.subscribe(CANDIDATES_TABLE, self.handle_change)

    def close(self) -> None:
        """Detach from the bus; later loads and events are ignored."""
        with self._lock:
            self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def bulk_load(self, fetch: Callable[[], Iterable[Any]]) -> int:
        """Replace the whole list with the rows returned by ``fetch``.

        On failure the current list is kept and RemoteQueryError is raised.
        """
        try:
            rows = list(fetch())
        except Exception as exc:
            logger.error("Failed to load candidates: %s", exc)
            raise RemoteQueryError("Failed to load candidates") from exc

        records = []
        for row in rows:
            try:
                records.append(normalize_candidate(row))
            except ValidationError as exc:
                logger.warning("Skipping malformed candidate row: %s", exc)

        with self._lock:
            if self._closed:
                logger.debug("Feed closed; discarding bulk load of %d candidates", len(records))
                return 0
            self._state = load_state(records)

        logger.info("Loaded %d candidates", len(records))
        return len(records)

    def upsert(self, record: CandidateRecord) -> None:
        with self._lock:
            if self._closed:
                return
            self._state = apply_event(self._state, record)

    def remove(self, candidate_id: str) -> None:
        with self._lock:
            self._state = remove_candidate(self._state, candidate_id)

    def handle_change(self, event: ChangeEvent) -> None:
        if event.event_type == "DELETE":
            # Deletes go through remove(), called by the delete action itself
            return

        try:
            record = normalize_candidate(event.new)
        except ValidationError as exc:
            logger.warning("Dropping malformed candidate %s event: %s", event.event_type, exc)
            return

        self.upsert(record)

    def visible(self, search_query: str = "", filter_mode: str = "all") -> list[CandidateRecord]:
        return derive_visible(self.candidates, search_query, filter_mode)

    def stats(self) -> dict[str, int]:
        return pipeline_stats(self.candidates)

    def mark_viewed(self, candidate_id: str, persist: Callable[[str], Any]) -> bool:
        """Flip ``viewed`` locally and persist it.

        Returns False without writing when the candidate is already viewed.
        A failed write is logged and the local flag is put back, so the next
        call tries again.
        """
        flipped = None
        with self._lock:
            current = self._state.get(candidate_id)
            if current is not None:
                if current.viewed:
                    return False
                flipped = current.model_copy(update={"viewed": True})
                self._state = {**self._state, candidate_id: flipped}

        try:
            persist(candidate_id)
        except Exception as exc:
            logger.error("Failed to mark candidate %s as viewed: %s", candidate_id, exc)
            with self._lock:
                # Leave newer records from the change feed alone
                if flipped is not None and self._state.get(candidate_id) is flipped:
                    self._state = {**self._state, candidate_id: current}
        return True


_feed = CandidateFeed()


def get_feed() -> CandidateFeed:
    """Dependency returning the process-wide candidate feed."""
    return _feed


def set_feed(feed: CandidateFeed) -> None:
    global _feed
    _feed = feed
