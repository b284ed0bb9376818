import asyncio
import inspect
from typing import Any, Callable, List, Set

from loguru import logger

Listener = Callable[[Any], Any]


class Notifier:
    """
    Fire-and-forget notification channel for UI refresh.

    Listeners may be plain callables or coroutine functions. Coroutine
    listeners run as tasks, so delivery order across emits is not
    guaranteed. A failing listener is logged and never reaches the emitter.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: Any) -> None:
        logger.debug(f"Emitting {type(event).__name__}")
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception as e:
                logger.error(f"Event listener {listener!r} failed: {type(e).__name__}: {str(e)}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async event listener failed: {type(exc).__name__}: {str(exc)}")

    def clear(self) -> None:
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
