"""Host collaborator contracts: tab registry and lifecycle events."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..models import Tab

logger = logging.getLogger(__name__)


class LifecycleKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"
    ACTIVATED = "activated"


@dataclass
class TabLifecycleEvent:
    """A host-reported tab lifecycle change."""
    kind: LifecycleKind
    tab_id: int
    tab: Optional[Tab] = None
    change_info: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


LifecycleHandler = Callable[[TabLifecycleEvent], Any]


class TabRegistry(ABC):
    """Host tab registry: enumeration, lookup, mutation and lifecycle events.

    Implementations raise ``TabNotFoundError`` for unknown ids and
    ``UpstreamUnavailableError`` when the host cannot be reached.
    """

    def __init__(self):
        self.event_handlers: List[LifecycleHandler] = []

    @abstractmethod
    async def list_tabs(self) -> List[Tab]:
        ...

    @abstractmethod
    async def get_tab(self, tab_id: int) -> Tab:
        ...

    @abstractmethod
    async def mutate_tab(self, tab_id: int, action: str) -> bool:
        """Apply a host action (discard, close, pause_media)."""
        ...

    def subscribe_tab_events(self, handler: LifecycleHandler) -> None:
        if handler not in self.event_handlers:
            self.event_handlers.append(handler)

    def unsubscribe_tab_events(self, handler: LifecycleHandler) -> None:
        try:
            self.event_handlers.remove(handler)
        except ValueError:
            pass

    async def _fire_event(self, event: TabLifecycleEvent) -> None:
        """Deliver a lifecycle event to every subscriber."""
        for handler in list(self.event_handlers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.warning(f"Error in tab event handler for {event.kind.value}: {e}")
