# services/events.py
import asyncio
import inspect
import logging
from typing import Callable, Dict, List, Tuple

from signal_relay.constants import P2P_TEARDOWN, P2P_UPGRADE

logger = logging.getLogger(__name__)

EVENTS = (P2P_UPGRADE, P2P_TEARDOWN)


class EventNotifier:
    """
    Observer registry for peer-link events.

    Listeners are called with one ``(peer_a, peer_b)`` tuple. Coroutine
    listeners are scheduled, not awaited. A failing listener is logged and
    does not stop the others.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in EVENTS}
        self._tasks = set()

    def _listeners_for(self, event: str) -> List[Callable]:
        try:
            return self._listeners[event]
        except KeyError:
            raise ValueError(f"Unknown event {event!r}; expected one of {EVENTS}") from None

    def subscribe(self, event: str, listener: Callable) -> None:
        listeners = self._listeners_for(event)
        if listener not in listeners:
            listeners.append(listener)

    def unsubscribe(self, event: str, listener: Callable) -> None:
        listeners = self._listeners_for(event)
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, pair: Tuple[str, str]) -> None:
        for listener in list(self._listeners_for(event)):
            try:
                result = listener(pair)
            except Exception as e:
                logger.error(f"{event} listener {listener!r} failed", exc_info=e)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event listener failed", exc_info=task.exception())

    def listener_count(self, event: str) -> int:
        return len(self._listeners_for(event))
