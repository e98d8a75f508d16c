from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from recruitflow.reconciler import (
    CandidateRecord,
    apply_event,
    derive_visible,
    load_state,
    matches_search,
    normalize_candidate,
    remove_candidate,
    sort_candidates,
)


def make(id, **fields):
    fields.setdefault("status", "new")
    return CandidateRecord(id=id, **fields)


def ids(records):
    return [r.id for r in records]


class TestNormalize:
    """Tests for turning raw rows into CandidateRecord."""

    def test_snake_case_row(self):
        record = normalize_candidate({
            "id": "c1",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "status": "screening",
            "resume_received": True,
            "created_at": "2024-01-01T10:00:00",
        })
        assert record.first_name == "Ada"
        assert record.resume_received is True
        assert record.created_at == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)

    def test_camel_case_row(self):
        """Rows using camelCase keys end up in the same canonical shape."""
        record = normalize_candidate({
            "id": "c1",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "status": "new",
            "resumeReceived": True,
            "appliedDate": "2024-01-02T00:00:00Z",
        })
        assert record.last_name == "Lovelace"
        assert record.resume_received is True
        assert record.applied_date == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_nulls_become_defaults(self):
        record = normalize_candidate({"id": 7, "status": "new", "first_name": None, "qualified": None, "viewed": None})
        assert record.id == "7"
        assert record.first_name == ""
        assert record.qualified == "pending"
        assert record.viewed is False

    def test_date_only_timestamp(self):
        record = normalize_candidate({"id": "1", "status": "new", "created_at": "2024-01-01"})
        assert record.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_missing_id_rejected(self):
        with pytest.raises(ValidationError):
            normalize_candidate({"status": "new", "first_name": "No Id"})

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            normalize_candidate({"id": "1", "status": "archived"})


class TestApplyEvent:
    """Tests for the upsert reducer."""

    def test_insert_unknown_id(self):
        state = load_state([make("1")])
        new_state = apply_event(state, make("2", last_name="Adams"))

        assert len(new_state) == len(state) + 1
        assert new_state["2"].last_name == "Adams"

    def test_replace_known_id(self):
        state = load_state([make("1", first_name="Old", rating=2)])
        incoming = make("1", first_name="New", status="interview")
        new_state = apply_event(state, incoming)

        assert len(new_state) == 1
        assert new_state["1"] == incoming
        # Whole-record replace: fields absent from the event are not carried over
        assert new_state["1"].rating is None

    def test_idempotent(self):
        state = load_state([make("1")])
        event = make("2", last_name="Adams")

        once = apply_event(state, event)
        twice = apply_event(once, event)
        assert twice == once

    def test_does_not_mutate_input(self):
        state = load_state([make("1")])
        apply_event(state, make("2"))
        assert list(state) == ["1"]

    def test_event_before_bulk_load(self):
        """Events may arrive while the list is still empty."""
        state = apply_event({}, make("1"))
        assert ids(state.values()) == ["1"]

    def test_last_delivered_wins_without_versions(self):
        state = apply_event({}, make("1", status="offer"))
        state = apply_event(state, make("1", status="screening"))
        assert state["1"].status == "screening"

    def test_stale_version_ignored(self):
        state = apply_event({}, make("1", status="offer", version=3))
        state = apply_event(state, make("1", status="screening", version=2))
        assert state["1"].status == "offer"

    def test_same_version_ignored(self):
        state = apply_event({}, make("1", status="offer", version=3))
        state = apply_event(state, make("1", status="hired", version=3))
        assert state["1"].status == "offer"

    def test_newer_version_applied(self):
        state = apply_event({}, make("1", status="offer", version=3))
        state = apply_event(state, make("1", status="hired", version=4))
        assert state["1"].status == "hired"

    def test_remove(self):
        state = load_state([make("1"), make("2")])
        assert ids(remove_candidate(state, "1").values()) == ["2"]
        assert remove_candidate(state, "missing") is state


class TestSearch:
    """Tests for the multi-field search predicate."""

    @pytest.fixture(name="candidate")
    def candidate_fixture(self):
        return make(
            "1",
            first_name="Grace",
            last_name="Hopper",
            position="Compiler Engineer",
            stage="Phone Screen",
            status="screening",
            qualified="not_qualified",
        )

    @pytest.mark.parametrize(
        "query",
        ["grace", "HOPPER", "compiler", "phone scr", "SCREENING", "not qualified", "Qualified"],
    )
    def test_matches_any_field_any_case(self, candidate, query):
        assert matches_search(candidate, query)

    def test_empty_query_matches(self, candidate):
        assert matches_search(candidate, "")

    def test_no_field_matches(self, candidate):
        assert not matches_search(candidate, "zeppelin")

    def test_email_is_not_searched(self, candidate):
        candidate = candidate.model_copy(update={"email": "grace@navy.mil"})
        assert not matches_search(candidate, "navy")

    def test_resume_received_loose_match(self):
        with_resume = make("1", resume_received=True)
        without_resume = make("2", resume_received=False)

        for query in ("resume", "Received", "resume rec", "eived"):
            assert matches_search(with_resume, query)
            assert not matches_search(without_resume, query)


class TestDeriveVisible:
    """Tests for filtering and ordering of the visible list."""

    def test_add_then_filter_scenario(self):
        state = apply_event({}, make("1", status="new", viewed=False, last_name="Zephyr", created_at="2024-01-01"))
        state = apply_event(state, make("2", status="new", viewed=True, last_name="Adams", created_at="2024-01-02"))

        assert ids(derive_visible(state.values(), filter_mode="new")) == ["1"]
        assert ids(derive_visible(state.values(), filter_mode="all")) == ["2", "1"]

    def test_new_filter_ignores_status(self):
        candidates = [
            make("1", status="interview", viewed=False),
            make("2", status="new", viewed=True),
            make("3", status="hired", viewed=False),
        ]
        assert sorted(ids(derive_visible(candidates, filter_mode="new"))) == ["1", "3"]

    def test_status_filter(self):
        candidates = [make("1", status="offer"), make("2", status="interview"), make("3", status="offer")]
        assert sorted(ids(derive_visible(candidates, filter_mode="offer"))) == ["1", "3"]

    def test_search_and_filter_combined(self):
        candidates = [
            make("1", first_name="Ann", status="offer"),
            make("2", first_name="Ann", status="interview"),
            make("3", first_name="Bea", status="offer"),
        ]
        assert ids(derive_visible(candidates, "ann", "offer")) == ["1"]

    def test_unknown_filter_mode(self):
        with pytest.raises(ValueError):
            derive_visible([make("1")], filter_mode="archived")

    def test_returns_new_list(self):
        candidates = [make("1", created_at="2024-01-01"), make("2", created_at="2024-01-02")]
        visible = derive_visible(candidates)
        assert visible is not candidates
        assert ids(candidates) == ["1", "2"]


class TestSort:
    """Tests for display ordering."""

    def test_newest_first(self):
        candidates = [
            make("old", created_at="2024-01-01"),
            make("newest", created_at="2024-03-01"),
            make("mid", created_at="2024-02-01"),
        ]
        assert ids(sort_candidates(candidates)) == ["newest", "mid", "old"]

    def test_applied_date_preferred_over_created(self):
        candidates = [
            make("a", created_at="2024-05-01", applied_date="2024-01-01"),
            make("b", created_at="2024-02-01"),
        ]
        assert ids(sort_candidates(candidates)) == ["b", "a"]

    def test_tie_broken_by_last_name_case_insensitive(self):
        candidates = [
            make("1", last_name="zimmer", created_at="2024-01-01"),
            make("2", last_name="Baker", created_at="2024-01-01"),
            make("3", last_name="adams", created_at="2024-01-01"),
        ]
        assert ids(sort_candidates(candidates)) == ["3", "2", "1"]

    def test_full_ties_keep_input_order(self):
        candidates = [
            make("1", last_name="Lee", created_at="2024-01-01"),
            make("2", last_name="lee", created_at="2024-01-01"),
            make("3", last_name="LEE", created_at="2024-01-01"),
        ]
        assert ids(sort_candidates(candidates)) == ["1", "2", "3"]

    def test_missing_dates_sort_last(self):
        candidates = [make("undated"), make("dated", created_at="2020-01-01")]
        assert ids(sort_candidates(candidates)) == ["dated", "undated"]
