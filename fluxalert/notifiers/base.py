"""Base class for event notifiers."""

from abc import ABC, abstractmethod
from typing import Any

from fluxalert.models.event import Event


class BaseNotifier(ABC):
    """Abstract base class for notifiers that forward events."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Notifier name for logging."""
        ...

    @abstractmethod
    async def post(self, event: Event, timeout: Any = ..., deadline: float | None = None) -> Any:
        """Forward an event. Returns None when the event is skipped."""
        ...
