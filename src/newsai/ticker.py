from __future__ import annotations

import threading
from typing import Protocol


class Ticker(Protocol):
    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True means the owner asked to stop."""

    def stop(self) -> None:
        ...

    def reset(self) -> None:
        ...


class EventTicker:
    def __init__(self) -> None:
        self._event = threading.Event()

    def wait(self, seconds: float) -> bool:
        return self._event.wait(max(0.0, seconds))

    def stop(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()
