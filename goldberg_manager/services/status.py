"""Status channel for unobtrusive progress and background failure reports."""

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

log = structlog.stdlib.get_logger()

READY_MESSAGE = "Ready."


class StatusLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusMessage:
    text: str
    level: StatusLevel
    created_at: float  # time.monotonic() at publication


class StatusChannel:
    """Bounded queue of status messages.

    A message is "current" for ``display_seconds`` after it was published;
    after that the channel falls back to ``READY_MESSAGE``. Listeners are
    called synchronously for every message, which is how the CLI prints
    progress lines.
    """

    def __init__(
        self,
        display_seconds: float = 3.0,
        max_history: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.display_seconds = display_seconds
        self._clock = clock
        self._messages: deque[StatusMessage] = deque(maxlen=max_history)
        self._listeners: list[Callable[[StatusMessage], None]] = []

    def subscribe(self, listener: Callable[[StatusMessage], None]) -> None:
        self._listeners.append(listener)

    def publish(self, text: str, level: StatusLevel = StatusLevel.INFO) -> StatusMessage:
        message = StatusMessage(text=text, level=level, created_at=self._clock())
        self._messages.append(message)

        log_method = {
            StatusLevel.INFO: log.info,
            StatusLevel.WARNING: log.warning,
            StatusLevel.ERROR: log.error,
        }[level]
        log_method("Status", message=text)

        for listener in self._listeners:
            listener(message)
        return message

    def info(self, text: str) -> StatusMessage:
        return self.publish(text, StatusLevel.INFO)

    def warning(self, text: str) -> StatusMessage:
        return self.publish(text, StatusLevel.WARNING)

    def error(self, text: str) -> StatusMessage:
        return self.publish(text, StatusLevel.ERROR)

    def current(self) -> str:
        """Text to display right now."""
        if not self._messages:
            return READY_MESSAGE
        latest = self._messages[-1]
        if self._clock() - latest.created_at >= self.display_seconds:
            return READY_MESSAGE
        return latest.text

    def history(self, level: StatusLevel | None = None) -> list[StatusMessage]:
        return [m for m in self._messages if level is None or m.level == level]
