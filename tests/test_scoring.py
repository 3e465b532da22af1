"""Tests for composite tab scoring."""

import pytest

from tabfairy.models import ScoreCategory, Tab
from tabfairy.scoring import (
    WEIGHTS, activity_score, compute_score, cpu_score, media_score, memory_score,
    round_half_up, score_category,
)


class TestMemoryScore:
    """Test the memory sub-score."""

    def test_zero_and_negative(self):
        """Test that zero and negative memory score 0."""
        assert memory_score(0) == 0
        assert memory_score(-10) == 0

    @pytest.mark.parametrize("memory_mb,expected", [
        (25, 10),
        (50, 20),
        (100, 40),
        (150, 60),
        (225, 75),
        (300, 90),
        (400, 95),
        (500, 100),
        (5000, 100),
    ])
    def test_breakpoints(self, memory_mb, expected):
        """Test the memory score at each breakpoint."""
        assert memory_score(memory_mb) == expected

    def test_monotonic_and_capped(self):
        """Test that the memory score never decreases and caps at 100."""
        previous = 0
        for tenth_mb in range(0, 10_000):
            current = memory_score(tenth_mb / 10)
            assert current >= previous
            previous = current
        assert all(memory_score(m) == 100 for m in range(500, 2000, 37))


class TestCpuScore:
    """Test the CPU sub-score."""

    @pytest.mark.parametrize("cpu,expected", [(0, 0), (12.5, 25), (25, 50), (50, 100), (99.9, 100)])
    def test_mapping(self, cpu, expected):
        """Test the linear CPU mapping and cap."""
        assert cpu_score(cpu) == expected


class TestSubScores:
    """Test the activity and media sub-scores."""

    def test_discarded_activity_is_zero(self, make_usage):
        """Test that discarded tabs have no activity."""
        tab = Tab(id=1, url="https://youtube.com", active=True, audible=True, discarded=True)
        assert activity_score(tab, make_usage(requests_per_second=10)) == 0

    def test_activity_components(self, make_usage):
        """Test each activity contribution."""
        assert activity_score(Tab(id=1, active=True), make_usage()) == 80
        assert activity_score(Tab(id=1), make_usage()) == 10
        assert activity_score(Tab(id=1, audible=True), make_usage(requests_per_second=2)) == 45
        assert activity_score(Tab(id=1, active=True, audible=True),
                              make_usage(requests_per_second=2)) == 100

    def test_media_components(self, make_usage):
        """Test each media contribution."""
        assert media_score(Tab(id=1, url="https://example.com"), make_usage()) == 0
        assert media_score(Tab(id=1, url="https://vimeo.com/1"), make_usage()) == 60
        assert media_score(Tab(id=1, audible=True), make_usage(bytes_in=600_000)) == 90


class TestCompositeScore:
    """Test the weighted total score."""

    def test_weights_sum_to_one(self):
        """Test the component weights."""
        assert sum(WEIGHTS.values()) == pytest.approx(1.0)
        assert WEIGHTS == {"memory": 0.30, "cpu": 0.30, "activity": 0.25, "media": 0.15}

    @pytest.mark.parametrize("tab,memory,cpu,bytes_in,rps", [
        (Tab(id=1, url="https://example.com"), 60, 3, 0, 0.0),
        (Tab(id=2, url="https://example.com", active=True), 180, 20, 120_000, 1.5),
        (Tab(id=3, url="https://twitch.tv/x", audible=True), 420, 70, 900_000, 3.0),
        (Tab(id=4, url="https://example.com", discarded=True), 5, 0, 0, 0.0),
    ])
    def test_total_is_rounded_weighted_sum(self, make_usage, tab, memory, cpu, bytes_in, rps):
        """Test that the total is the rounded weighted sum."""
        score = compute_score(tab, make_usage(tab_id=tab.id, memory=memory, cpu=cpu,
                                              bytes_in=bytes_in, requests_per_second=rps))

        expected = round_half_up(sum(c.score * c.weight for c in score.breakdown.values()))
        assert score.total_score == expected
        assert 0 <= score.total_score <= 100
        assert set(score.breakdown) == {"memory", "cpu", "activity", "media"}

    def test_breakdown_carries_raw_values(self, make_usage):
        """Test that the breakdown keeps raw values and scores."""
        score = compute_score(Tab(id=1), make_usage(memory=75.5, cpu=12.0), timestamp=42.0)

        assert score.breakdown["memory"].value == 75.5
        assert score.breakdown["cpu"].value == 12.0
        assert score.breakdown["cpu"].score == 24
        assert score.timestamp == 42.0

    def test_streaming_media_scenario(self, make_usage):
        """Test a streaming media tab scores high on memory and media."""
        tab = Tab(id=7, url="https://youtube.com/watch?v=x", audible=True)
        score = compute_score(tab, make_usage(tab_id=7, memory=300, cpu=40, bytes_in=600_000))

        assert score.breakdown["memory"].score >= 90
        assert score.breakdown["media"].score == 100

    def test_half_up_rounding(self):
        """Test half-up rounding."""
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2


class TestScoreCategory:
    """Test score categories."""

    @pytest.mark.parametrize("score,category", [
        (0, ScoreCategory.LOW),
        (24, ScoreCategory.LOW),
        (25, ScoreCategory.MEDIUM),
        (49, ScoreCategory.MEDIUM),
        (50, ScoreCategory.HIGH),
        (74, ScoreCategory.HIGH),
        (75, ScoreCategory.CRITICAL),
        (100, ScoreCategory.CRITICAL),
    ])
    def test_boundaries(self, score, category):
        """Test category boundaries."""
        assert score_category(score) == category
