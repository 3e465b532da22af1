"""Consumer-facing query surface over tabs, resources, scores and suggestions."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from .advisor import OptimizationAdvisor
from .cache import Analysis, TabDataCache, analyze_tab, estimate_tab
from .core.registry import TabRegistry
from .errors import UpstreamUnavailableError
from .estimator import ResourceEstimator
from .models import CacheSnapshot, OptimizationAction, ResourceUsage, Score, Suggestion, Tab

logger = logging.getLogger(__name__)


class TabsAPI:
    """Live queries (fresh estimates) plus cache introspection."""

    def __init__(self, registry: TabRegistry, estimator: ResourceEstimator,
                 advisor: OptimizationAdvisor, cache: TabDataCache,
                 batch_size: int = 5):
        self.registry = registry
        self.estimator = estimator
        self.advisor = advisor
        self.cache = cache
        self.batch_size = max(1, batch_size)

    async def _analyze(self, tab: Tab) -> Analysis:
        return await analyze_tab(self.estimator, self.advisor, tab)

    async def _gather_batched(self, coros: List) -> List[Any]:
        results = []
        for start in range(0, len(coros), self.batch_size):
            batch = coros[start:start + self.batch_size]
            results.extend(await asyncio.gather(*batch, return_exceptions=True))
        return results

    async def get_tabs(self, include_resources: bool = False, include_scores: bool = False,
                       include_suggestions: bool = False) -> List[Dict[str, Any]]:
        """List tabs, optionally enriched with resources, scores and suggestions."""
        tabs = await self.registry.list_tabs()
        if not (include_resources or include_scores or include_suggestions):
            return [tab.to_dict() for tab in tabs]

        analyses = await self._gather_batched([self._analyze(tab) for tab in tabs])
        enriched_tabs = []
        for tab, result in zip(tabs, analyses):
            enriched = tab.to_dict()
            failed = isinstance(result, Exception)
            if failed:
                logger.warning(f"Error analyzing tab {tab.id}: {result}")
            usage, score, suggestions = (None, None, []) if failed else result

            if include_resources:
                enriched["resourceUsage"] = usage.to_dict() if usage else None
                if failed:
                    enriched["resourceUsageError"] = str(result)
            if include_scores:
                enriched["score"] = score.to_dict() if score else None
                if failed:
                    enriched["scoreError"] = str(result)
            if include_suggestions:
                enriched["suggestions"] = [s.to_dict() for s in suggestions]
                if failed:
                    enriched["suggestionsError"] = str(result)
            enriched_tabs.append(enriched)
        return enriched_tabs

    async def get_tab_by_id(self, tab_id: int, include_resources: bool = False,
                            include_scores: bool = False,
                            include_suggestions: bool = False) -> Dict[str, Any]:
        """Raises TabNotFoundError for unknown ids."""
        tab = await self.registry.get_tab(tab_id)
        enriched = tab.to_dict()
        if include_resources or include_scores or include_suggestions:
            usage, score, suggestions = await self._analyze(tab)
            if include_resources:
                enriched["resourceUsage"] = usage.to_dict()
            if include_scores:
                enriched["score"] = score.to_dict()
            if include_suggestions:
                enriched["suggestions"] = [s.to_dict() for s in suggestions]
        return enriched

    async def get_tab_resources(self, tab_id: int) -> ResourceUsage:
        tab = await self.registry.get_tab(tab_id)
        return await estimate_tab(self.estimator, tab)

    async def get_tab_score(self, tab_id: int) -> Score:
        tab = await self.registry.get_tab(tab_id)
        _, score, _ = await self._analyze(tab)
        return score

    async def get_tab_suggestions(self, tab_id: int) -> List[Suggestion]:
        tab = await self.registry.get_tab(tab_id)
        _, _, suggestions = await self._analyze(tab)
        return suggestions

    async def optimize_tab(self, tab_id: int,
                           action: Union[OptimizationAction, str] = OptimizationAction.DISCARD) -> Dict[str, Any]:
        """Apply an action; NotFound and ProtectedTab propagate to the caller."""
        action_name = getattr(action, "value", action)
        try:
            success = await self.advisor.apply(tab_id, action)
        except UpstreamUnavailableError as e:
            logger.warning(f"Error applying optimization to tab {tab_id}: {e}")
            return {"success": False, "tabId": tab_id, "action": action_name, "error": str(e)}

        if not success:
            return {"success": False, "tabId": tab_id, "action": action_name,
                    "error": f"Host rejected {action_name} for tab {tab_id}"}
        return {"success": True, "tabId": tab_id, "action": action_name,
                "message": f"Successfully applied {action_name} to tab {tab_id}"}

    async def get_all_suggestions(self, min_score: int = 0) -> Dict[int, List[Suggestion]]:
        """Suggestions per tab, keeping only tabs scoring at least ``min_score``."""
        tabs = await self.registry.list_tabs()
        analyses = await self._gather_batched([self._analyze(tab) for tab in tabs])

        results: Dict[int, List[Suggestion]] = {}
        for tab, result in zip(tabs, analyses):
            if isinstance(result, Exception):
                logger.warning(f"Failed to get suggestions for tab {tab.id}: {result}")
                if min_score <= 0:
                    results[tab.id] = []
                continue
            _, score, suggestions = result
            if score.total_score >= min_score:
                results[tab.id] = suggestions
        return results

    async def get_all_resources(self) -> Dict[int, Optional[ResourceUsage]]:
        tabs = await self.registry.list_tabs()
        usages = await self._gather_batched([estimate_tab(self.estimator, tab) for tab in tabs])

        results: Dict[int, Optional[ResourceUsage]] = {}
        for tab, usage in zip(tabs, usages):
            if isinstance(usage, Exception):
                logger.warning(f"Failed to get resource usage for tab {tab.id}: {usage}")
                usage = None
            results[tab.id] = usage
        return results

    async def get_all_scores(self) -> List[Score]:
        """Scores for every tab, highest first."""
        tabs = await self.registry.list_tabs()
        analyses = await self._gather_batched([self._analyze(tab) for tab in tabs])

        scores = []
        for tab, result in zip(tabs, analyses):
            if isinstance(result, Exception):
                logger.warning(f"Failed to compute score for tab {tab.id}: {result}")
                scores.append(Score(tab_id=tab.id, total_score=0, breakdown={},
                                    timestamp=time.time(), error=str(result)))
            else:
                scores.append(result[1])
        return sorted(scores, key=lambda s: s.total_score, reverse=True)

    def get_cached_data(self) -> CacheSnapshot:
        return self.cache.get()

    async def force_cache_update(self) -> CacheSnapshot:
        return await self.cache.refresh()
