"""Host integration: Chrome DevTools Protocol connection and tab registry."""

from .connector import ChromeConnector, ChromeConnectionError
from .registry import LifecycleKind, TabLifecycleEvent, TabRegistry
from .chrome_tabs import ChromeTabRegistry

__all__ = [
    'ChromeConnector',
    'ChromeConnectionError',
    'LifecycleKind',
    'TabLifecycleEvent',
    'TabRegistry',
    'ChromeTabRegistry',
]
