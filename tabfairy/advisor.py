"""Optimization suggestions and the safety gate that protects tabs."""

import logging
from typing import List, Optional, Union
from urllib.parse import urlparse

from .core.registry import TabRegistry
from .errors import ProtectedTabError
from .models import (
    OptimizationAction, Priority, ResourceUsage, Score, ScoreCategory, Suggestion, Tab,
)
from .scoring import score_category

logger = logging.getLogger(__name__)

# Browser-internal and extension pages are never touched
PROTECTED_SCHEMES = {
    'about', 'chrome', 'devtools', 'edge',
    'moz-extension', 'chrome-extension', 'edge-extension',
}

HIGH_MEMORY_MB = 200
HIGH_CPU_PERCENT = 30
STREAMING_BYTES = 500_000

# Host actions; "sleep" has no distinct primitive and maps to discard
ACTION_ALIASES = {
    OptimizationAction.DISCARD: OptimizationAction.DISCARD,
    OptimizationAction.SLEEP: OptimizationAction.DISCARD,
    OptimizationAction.CLOSE: OptimizationAction.CLOSE,
    OptimizationAction.PAUSE_MEDIA: OptimizationAction.PAUSE_MEDIA,
}

PROTECTED_SUGGESTION = Suggestion(
    type='info',
    action=OptimizationAction.NONE,
    title='Tab is protected',
    description='This tab cannot be optimized due to safety restrictions.',
    priority=Priority.LOW,
)


def protection_reason(tab: Tab) -> Optional[str]:
    """Return why a tab is protected, or None."""
    if tab.pinned:
        return "pinned"
    if tab.active:
        return "active"
    if tab.url:
        scheme = urlparse(tab.url).scheme.lower()
        if scheme in PROTECTED_SCHEMES or 'extension://' in tab.url:
            return f"internal page ({scheme})"
    return None


def is_tab_protected(tab: Tab) -> bool:
    return protection_reason(tab) is not None


class OptimizationAdvisor:
    """Turn a tab's score and usage into ranked suggestions, and apply them."""

    def __init__(self, registry: Optional[TabRegistry] = None):
        self.registry = registry

    def advise(self, tab: Tab, score: Score, usage: ResourceUsage) -> List[Suggestion]:
        if is_tab_protected(tab):
            return [PROTECTED_SUGGESTION]

        category = score_category(score.total_score)
        escalated = Priority.HIGH if category == ScoreCategory.CRITICAL else Priority.MEDIUM
        memory = usage.memory
        cpu = usage.cpu
        suggestions = []

        if memory > HIGH_MEMORY_MB:
            suggestions.append(Suggestion(
                type='memory',
                action=OptimizationAction.DISCARD,
                title='High Memory Usage',
                description=f'This tab is using {memory:g}MB of memory. Consider discarding it.',
                priority=escalated,
                estimated_savings=f'{round(memory * 0.9)}MB memory',
            ))

        if cpu > HIGH_CPU_PERCENT:
            suggestions.append(Suggestion(
                type='cpu',
                action=OptimizationAction.DISCARD,
                title='High CPU Usage',
                description=f'This tab is using {cpu:g}% CPU. Consider discarding it.',
                priority=escalated,
                estimated_savings=f'{cpu:g}% CPU',
            ))

        if usage.network is not None and usage.network.bytes_in > STREAMING_BYTES:
            suggestions.append(Suggestion(
                type='media',
                action=OptimizationAction.PAUSE_MEDIA,
                title='Reduce Media Streaming',
                description='This tab appears to be streaming media. Pausing or reducing quality can save resources.',
                priority=Priority.MEDIUM,
                estimated_savings='Reduced network bandwidth',
            ))

        if not tab.active and score.total_score > 50:
            suggestions.append(Suggestion(
                type='background',
                action=OptimizationAction.DISCARD,
                title='Inactive High-Resource Tab',
                description='This inactive tab is consuming significant resources. Discarding it will free up memory.',
                priority=Priority.MEDIUM,
                estimated_savings=f'{round(memory * 0.9)}MB memory, {cpu:g}% CPU',
            ))

        if tab.discarded and score.total_score < 10:
            suggestions.append(Suggestion(
                type='info',
                action=OptimizationAction.NONE,
                title='Tab is already optimized',
                description='This tab has been discarded and is using minimal resources.',
                priority=Priority.LOW,
            ))

        if score.total_score > 40:
            suggestions.append(Suggestion(
                type='general',
                action=OptimizationAction.CLOSE,
                title='Consider Closing Tab',
                description='This tab has a high resource score. If not needed, consider closing it.',
                priority=Priority.LOW,
                estimated_savings=f'{memory:g}MB memory, {cpu:g}% CPU',
            ))

        # sorted() is stable: ties keep evaluation order
        return sorted(suggestions, key=lambda s: s.priority.rank, reverse=True)

    async def apply(self, tab_id: int, action: Union[OptimizationAction, str]) -> bool:
        """Apply an action to a tab after re-checking the safety gate.

        Raises TabNotFoundError, ProtectedTabError, or ValueError for actions
        the host cannot perform. Host failures propagate unchanged.
        """
        if self.registry is None:
            raise RuntimeError("OptimizationAdvisor has no tab registry to apply actions")

        try:
            requested = OptimizationAction(action)
        except ValueError:
            raise ValueError(f"Unknown action: {action}") from None
        host_action = ACTION_ALIASES.get(requested)
        if host_action is None:
            raise ValueError(f"Action {requested.value!r} cannot be applied to a tab")

        # Tab state may have changed since the advice was generated
        tab = await self.registry.get_tab(tab_id)
        reason = protection_reason(tab)
        if reason:
            raise ProtectedTabError(tab_id, reason)

        ok = await self.registry.mutate_tab(tab_id, host_action.value)
        if ok:
            logger.info(f"Applied {requested.value} to tab {tab_id}")
        else:
            logger.warning(f"Host rejected {requested.value} for tab {tab_id}")
        return bool(ok)
