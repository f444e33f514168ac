from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

DispatchEventHook = Callable[[dict[str, Any]], None]


class Dispatcher(ABC):
    """Fire-and-forget delivery of a prompt to a worker's terminal.

    Failures are logged and reported through ``event_hook``; they never raise.
    """

    def __init__(self, event_hook: DispatchEventHook | None = None) -> None:
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    @abstractmethod
    def dispatch(self, role: str, prompt: str) -> bool:
        """Send ``prompt`` to the worker for ``role``; return whether it was delivered."""

    @abstractmethod
    def clear(self, role: str) -> None:
        """Interrupt and clear the worker's terminal."""

    def dispatch_many(
        self, prompts: Iterable[tuple[str, str]], stagger_seconds: float = 0
    ) -> list[str]:
        delivered: list[str] = []
        for index, (role, prompt) in enumerate(prompts):
            if index and stagger_seconds > 0:
                time.sleep(stagger_seconds)
            if self.dispatch(role, prompt):
                delivered.append(role)
        return delivered


class NullDispatcher(Dispatcher):
    """Records prompts instead of sending them; used when no session is running."""

    def __init__(self, event_hook: DispatchEventHook | None = None) -> None:
        super().__init__(event_hook)
        self.sent: list[tuple[str, str]] = []

    def dispatch(self, role: str, prompt: str) -> bool:
        logger.debug("No dispatch session; recorded prompt for %s", role)
        self.sent.append((role, prompt))
        return True

    def clear(self, role: str) -> None:
        return None
