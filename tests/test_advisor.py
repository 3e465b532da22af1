"""Tests for optimization advice and the protection gate."""

import pytest

from tabfairy.advisor import OptimizationAdvisor, is_tab_protected, protection_reason
from tabfairy.errors import ProtectedTabError, TabNotFoundError, UpstreamUnavailableError
from tabfairy.models import OptimizationAction, Priority, Score, Tab

from conftest import FakeTabRegistry


def make_score(total: int, tab_id: int = 1) -> Score:
    return Score(tab_id=tab_id, total_score=total, breakdown={}, timestamp=0.0)


class TestProtection:
    """Test the protection gate."""

    @pytest.mark.parametrize("tab", [
        Tab(id=1, url="https://example.com", pinned=True),
        Tab(id=1, url="https://example.com", active=True),
        Tab(id=1, url="chrome://settings"),
        Tab(id=1, url="about:blank"),
        Tab(id=1, url="devtools://devtools/bundled/inspector.html"),
        Tab(id=1, url="chrome-extension://abcdef/popup.html"),
        Tab(id=1, url="moz-extension://1234/options.html"),
        Tab(id=1, url="edge://flags"),
    ])
    def test_protected_tabs(self, tab):
        """Test that pinned, active and internal pages are protected."""
        assert is_tab_protected(tab)

    def test_regular_tab_is_not_protected(self):
        """Test that an ordinary web page is not protected."""
        assert protection_reason(Tab(id=1, url="https://example.com")) is None

    def test_reason_names_the_rule(self):
        """Test that the protection reason names the matching rule."""
        assert protection_reason(Tab(id=1, pinned=True)) == "pinned"
        assert protection_reason(Tab(id=1, active=True)) == "active"
        assert "chrome" in protection_reason(Tab(id=1, url="chrome://newtab"))


class TestAdvise:
    """Test suggestion generation."""

    @pytest.fixture
    def advisor(self):
        return OptimizationAdvisor()

    def test_protected_tab_gets_single_info_entry(self, advisor, make_usage):
        """Test that a protected tab only gets one informational entry."""
        tab = Tab(id=1, url="https://youtube.com/watch?v=x", pinned=True, audible=True)
        suggestions = advisor.advise(tab, make_score(90), make_usage(memory=900, cpu=90, bytes_in=10**6))

        assert len(suggestions) == 1
        assert suggestions[0].action == OptimizationAction.NONE
        assert not suggestions[0].actionable

    def test_critical_tab_accumulates_ranked_suggestions(self, advisor, make_usage):
        """Test the ordered suggestion list for a critical tab."""
        tab = Tab(id=1, url="https://example.com")
        suggestions = advisor.advise(tab, make_score(80), make_usage(memory=400, cpu=60, bytes_in=600_000))

        assert [s.type for s in suggestions] == ["memory", "cpu", "media", "background", "general"]
        assert [s.priority for s in suggestions] == [
            Priority.HIGH, Priority.HIGH, Priority.MEDIUM, Priority.MEDIUM, Priority.LOW,
        ]
        assert suggestions[0].action == OptimizationAction.DISCARD
        assert suggestions[0].estimated_savings == "360MB memory"
        assert "400MB" in suggestions[0].description
        assert suggestions[2].action == OptimizationAction.PAUSE_MEDIA
        assert suggestions[4].action == OptimizationAction.CLOSE

    def test_non_critical_high_memory_is_medium(self, advisor, make_usage):
        """Test that high memory on a moderate score is medium priority."""
        suggestions = advisor.advise(Tab(id=1, url="https://example.com"), make_score(30),
                                     make_usage(memory=250, cpu=5))

        assert len(suggestions) == 1
        assert suggestions[0].type == "memory"
        assert suggestions[0].priority == Priority.MEDIUM

    def test_already_discarded_tab(self, advisor, make_usage):
        """Test that a discarded tab is reported as already optimized."""
        tab = Tab(id=1, url="https://example.com", discarded=True)
        suggestions = advisor.advise(tab, make_score(4), make_usage(memory=5, cpu=0))

        assert [s.title for s in suggestions] == ["Tab is already optimized"]
        assert suggestions[0].action == OptimizationAction.NONE

    def test_quiet_tab_gets_nothing(self, advisor, make_usage):
        """Test that a light tab gets no suggestions."""
        assert advisor.advise(Tab(id=1, url="https://example.com"), make_score(12), make_usage()) == []

    def test_priorities_never_increase_down_the_list(self, advisor, make_usage):
        """Test that suggestions are ordered by non-increasing priority."""
        for total in range(0, 101, 5):
            for memory in (10, 250, 700):
                suggestions = advisor.advise(Tab(id=1, url="https://example.com"), make_score(total),
                                             make_usage(memory=memory, cpu=memory / 10, bytes_in=memory * 1000))
                ranks = [s.priority.rank for s in suggestions]
                assert ranks == sorted(ranks, reverse=True)


@pytest.mark.asyncio
class TestApply:
    """Test applying optimization actions through the registry."""

    @pytest.fixture
    def registry(self):
        return FakeTabRegistry([
            Tab(id=1, url="https://example.com"),
            Tab(id=2, url="https://example.com", pinned=True),
            Tab(id=3, url="chrome://settings"),
        ])

    @pytest.fixture
    def advisor(self, registry):
        return OptimizationAdvisor(registry)

    async def test_discard(self, advisor, registry):
        """Test that discard reaches the host."""
        assert await advisor.apply(1, OptimizationAction.DISCARD) is True
        assert registry.mutations == [(1, "discard")]

    async def test_sleep_is_discard(self, advisor, registry):
        """Test that sleep is applied as discard."""
        assert await advisor.apply(1, "sleep") is True
        assert registry.mutations == [(1, "discard")]

    async def test_close_and_pause_media(self, advisor, registry):
        """Test the close and pause_media actions."""
        await advisor.apply(1, "close")
        await advisor.apply(1, "pause_media")
        assert registry.mutations == [(1, "close"), (1, "pause_media")]

    async def test_pinned_tab_refused_without_mutation(self, advisor, registry):
        """Test that a pinned tab is refused before any mutation."""
        with pytest.raises(ProtectedTabError) as exc_info:
            await advisor.apply(2, "discard")

        assert exc_info.value.tab_id == 2
        assert exc_info.value.reason == "pinned"
        assert registry.mutations == []

    async def test_internal_page_refused(self, advisor, registry):
        """Test that internal pages are refused."""
        with pytest.raises(ProtectedTabError):
            await advisor.apply(3, "close")
        assert registry.mutations == []

    async def test_tab_that_became_protected_is_refused(self, advisor, registry):
        """Test that protection is checked against the current tab state."""
        registry.tabs[1] = Tab(id=1, url="https://example.com", active=True)

        with pytest.raises(ProtectedTabError):
            await advisor.apply(1, "discard")

    @pytest.mark.parametrize("action", ["none", "hibernate", ""])
    async def test_invalid_actions(self, advisor, registry, action):
        """Test that none and unknown actions raise ValueError."""
        with pytest.raises(ValueError):
            await advisor.apply(1, action)
        assert registry.mutations == []

    async def test_unknown_tab(self, advisor):
        """Test that an unknown tab raises TabNotFoundError."""
        with pytest.raises(TabNotFoundError):
            await advisor.apply(99, "discard")

    async def test_host_rejection_returns_false(self, advisor, registry):
        """Test that a host rejection returns False."""
        registry.mutate_result = False
        assert await advisor.apply(1, "discard") is False

    async def test_host_failure_propagates(self, advisor, registry):
        """Test that upstream failures propagate."""
        registry.mutate_error = UpstreamUnavailableError("browser went away")
        with pytest.raises(UpstreamUnavailableError):
            await advisor.apply(1, "close")

    async def test_requires_registry(self):
        """Test that apply without a registry raises."""
        with pytest.raises(RuntimeError):
            await OptimizationAdvisor().apply(1, "discard")
