"""
Publish/subscribe fan-out for queue and job change notifications.

Events are plain frozen dataclasses. Each carries a ``type`` string matching the
wire names used by front ends (``job-added``, ``job-updated``, ``job-removed``,
``queue-state``) and, where relevant, a snapshot of the job at emit time.
"""

import logging
from dataclasses import dataclass
from typing import Callable, ClassVar, List, Union

from downtube_cli.models.job import DownloadJob, QueueState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobAdded:
    type: ClassVar[str] = "job-added"
    job: DownloadJob


@dataclass(frozen=True)
class JobUpdated:
    type: ClassVar[str] = "job-updated"
    job: DownloadJob


@dataclass(frozen=True)
class JobRemoved:
    type: ClassVar[str] = "job-removed"
    id: str


@dataclass(frozen=True)
class QueueStateChanged:
    type: ClassVar[str] = "queue-state"
    state: QueueState


QueueEvent = Union[JobAdded, JobUpdated, JobRemoved, QueueStateChanged]
Listener = Callable[[QueueEvent], None]


class EventBus:
    """Synchronous in-process event dispatcher with unsubscribe handles."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Registers a listener for all events.

        Returns:
            A callable that removes the listener again. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: QueueEvent) -> None:
        # Iterate over a copy so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log.error(f"Event listener failed on '{event.type}': {e}")
                log.debug("Listener traceback:", exc_info=True)
