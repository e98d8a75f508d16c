from datetime import datetime, timezone

from recruitflow.analytics import (
    average_time_to_hire,
    candidates_added_since,
    conversion_rates,
    dashboard,
    offer_acceptance_rate,
    pipeline_stats,
)
from recruitflow.models import STATUSES
from recruitflow.reconciler import CandidateRecord


def make(id, status, **fields):
    return CandidateRecord(id=id, status=status, **fields)


class TestPipelineStats:
    def test_empty_collection_has_every_status(self):
        stats = pipeline_stats([])
        assert set(stats) == set(STATUSES)
        assert sum(stats.values()) == 0

    def test_counts_sum_to_total(self):
        candidates = [
            make("1", "new"),
            make("2", "new"),
            make("3", "interview"),
            make("4", "withdrawn"),
        ]
        stats = pipeline_stats(candidates)

        assert len(stats) == 7
        assert sum(stats.values()) == len(candidates)
        assert stats["new"] == 2
        assert stats["offer"] == 0

    def test_accepts_generator(self):
        stats = pipeline_stats(make(str(i), "hired") for i in range(3))
        assert stats["hired"] == 3


class TestDashboardMetrics:
    def test_added_since(self):
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        candidates = [
            make("1", "new", created_at="2024-01-09"),
            make("2", "new", created_at="2024-01-01"),
            make("3", "new"),
        ]
        assert candidates_added_since(candidates, days=7, now=now) == 1

    def test_average_time_to_hire(self):
        candidates = [
            make("1", "hired", created_at="2024-01-01", updated_at="2024-01-11"),
            make("2", "hired", created_at="2024-01-01", updated_at="2024-01-21"),
            make("3", "offer", created_at="2024-01-01", updated_at="2024-03-01"),
        ]
        assert average_time_to_hire(candidates) == 15

    def test_average_time_to_hire_without_hires(self):
        assert average_time_to_hire([make("1", "new")]) == 0

    def test_offer_acceptance_rate(self):
        candidates = [make("1", "hired"), make("2", "offer"), make("3", "rejected"), make("4", "new")]
        assert offer_acceptance_rate(candidates) == 33
        assert offer_acceptance_rate([]) == 0

    def test_conversion_rates(self):
        candidates = [make("1", "new"), make("2", "screening"), make("3", "screening"), make("4", "interview")]
        rates = conversion_rates(candidates)

        assert rates["new_to_screening"] == 67
        assert rates["screening_to_interview"] == 33
        assert rates["interview_to_offer"] == 0
        assert rates["offer_to_hired"] == 0

    def test_dashboard(self):
        candidates = [make("1", "new", viewed=True), make("2", "offer")]
        data = dashboard(candidates)

        assert data["total"] == 2
        assert data["unviewed"] == 1
        assert data["pipeline"]["offer"] == 1

    def test_rates_round_half_up(self):
        candidates = [make("1", "hired")] + [make(str(i), "offer") for i in range(2, 9)]
        assert offer_acceptance_rate(candidates) == 13

    def test_average_time_to_hire_rounds_half_up(self):
        candidates = [
            make("1", "hired", created_at="2024-01-01", updated_at="2024-01-11"),
            make("2", "hired", created_at="2024-01-01", updated_at="2024-01-12"),
        ]
        assert average_time_to_hire(candidates) == 11
