from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional
import logging

from .controller import Controller

logger = logging.getLogger(__name__)

Finalizer = Callable[[Controller], None]
AnomalyHook = Callable[[str, int, str], None]


class ControllerRegistry:
    """Insertion-ordered controllers keyed by index.

    At most one :class:`Controller` exists per index. ``drain`` hands every
    remaining entry to a finalizer and leaves the registry empty.
    """

    def __init__(self, on_anomaly: Optional[AnomalyHook] = None) -> None:
        self._controllers: Dict[int, Controller] = {}
        self._on_anomaly = on_anomaly

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, index: object) -> bool:
        return index in self._controllers

    def __iter__(self) -> Iterator[Controller]:
        return iter(list(self._controllers.values()))

    def get(self, index: int) -> Optional[Controller]:
        return self._controllers.get(index)

    def create(self, index: int, *, created_at: Optional[datetime] = None) -> Controller:
        """Start a fresh controller for ``index``, discarding any previous entry."""
        previous = self._controllers.pop(index, None)
        if previous is not None:
            logger.debug("hci%d re-added; dropping previous state", index)
        controller = Controller(index=index, created_at=created_at)
        self._controllers[index] = controller
        return controller

    def lookup_or_create(self, index: int, *, created_at: Optional[datetime] = None) -> Controller:
        controller = self._controllers.get(index)
        if controller is None:
            logger.warning("Creating new device for unknown index %d", index)
            self._report("implicit_create", index, "traffic before new-index record")
            controller = self.create(index, created_at=created_at)
        return controller

    def remove(self, index: int) -> Optional[Controller]:
        controller = self._controllers.pop(index, None)
        if controller is None:
            logger.warning("Remove for an unexisting device (index %d)", index)
            self._report("remove_unknown", index, "remove for nonexistent device")
        return controller

    def drain(self, finalize: Finalizer) -> List[Controller]:
        drained: List[Controller] = []
        while self._controllers:
            index = next(iter(self._controllers))
            controller = self._controllers.pop(index)
            finalize(controller)
            drained.append(controller)
        return drained

    def _report(self, kind: str, index: int, message: str) -> None:
        if self._on_anomaly is not None:
            self._on_anomaly(kind, index, message)
