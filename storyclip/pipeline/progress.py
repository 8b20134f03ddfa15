from dataclasses import replace
from typing import Callable, List

from storyclip.models import INITIAL_PROGRESS, Progress
from storyclip.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

ProgressCallback = Callable[[Progress], None]


class ProgressSignal:
    """Single-writer observable holding the current Progress value."""

    def __init__(self, initial: Progress = INITIAL_PROGRESS):
        self._initial = initial
        self._value = initial
        self._subscribers: List[ProgressCallback] = []

    @property
    def value(self) -> Progress:
        return self._value

    def set(self, progress: Progress) -> None:
        self._value = progress
        self._notify()

    def update(self, **changes) -> Progress:
        self.set(replace(self._value, **changes))
        return self._value

    def clear(self) -> None:
        self.set(self._initial)

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._value)
            except Exception:
                logger.exception(f"Progress subscriber {callback!r} raised")
