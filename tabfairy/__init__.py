"""TabFairy - per-tab resource estimation, scoring and optimization for Chrome."""

from .advisor import OptimizationAdvisor
from .api import TabsAPI
from .cache import TabDataCache
from .estimator import ResourceEstimator
from .events import NotificationBus, TabEvent
from .scheduler import PollScheduler
from .scoring import compute_score

__version__ = "0.1.0"

__all__ = [
    "OptimizationAdvisor",
    "TabsAPI",
    "TabDataCache",
    "ResourceEstimator",
    "NotificationBus",
    "TabEvent",
    "PollScheduler",
    "compute_score",
]
