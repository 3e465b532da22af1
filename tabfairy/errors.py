"""Error taxonomy for the tab monitoring pipeline."""

from typing import Optional


class TabFairyError(Exception):
    """Base class for TabFairy errors."""
    pass


class TabNotFoundError(TabFairyError):
    """Unknown tab id."""

    def __init__(self, tab_id: int, message: Optional[str] = None):
        self.tab_id = tab_id
        super().__init__(message or f"Tab with ID {tab_id} not found")


class ProtectedTabError(TabFairyError):
    """Optimization attempted on a protected tab."""

    def __init__(self, tab_id: int, reason: str = ""):
        self.tab_id = tab_id
        self.reason = reason
        message = f"Cannot optimize protected tab {tab_id}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class EstimationError(TabFairyError):
    """An estimator, scorer or advisor call failed for a tab."""
    pass


class UpstreamUnavailableError(TabFairyError):
    """A host collaborator call failed."""
    pass
