"""Observer registry shared by the lifecycle and the MCP process manager."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Observer = Callable[[str, Dict[str, Any]], Any]


class ObserverRegistry:
    """Broadcasts named transitions to registered observers.

    Observers are called with ``(event, payload)``. Coroutine observers are
    scheduled on the running loop. An observer that raises is logged and
    never breaks the emitter.
    """

    def __init__(self, name: str):
        self.name = name
        self._observers: List[Observer] = []

    def add(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: str, **payload: Any) -> None:
        for observer in list(self._observers):
            try:
                result = observer(event, payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    task.add_done_callback(self._log_task_error)
            except Exception as e:
                logger.error(f"{self.name} observer failed on '{event}': {e}")

    def _log_task_error(self, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{self.name} async observer failed: {error}")
