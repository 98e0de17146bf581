"""Post-commit side effects (listener notifications) kept off the result path."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


class Notifier:
    def publish(self, event: Event) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def publish(self, event: Event) -> None:
        return None


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: List[Event] = []

    def publish(self, event: Event) -> None:
        self.events.append(dict(event))


class PostCommitHooks:
    """Callables run after a store operation has committed.

    A failing hook is logged and skipped; the remaining hooks still run and
    the caller's result is unaffected.
    """

    def __init__(self, hooks: List[Callable[[Event], None]] | None = None) -> None:
        self._hooks: List[Callable[[Event], None]] = list(hooks or [])

    @classmethod
    def for_notifier(cls, notifier: Notifier) -> "PostCommitHooks":
        return cls([notifier.publish])

    def register(self, hook: Callable[[Event], None]) -> None:
        self._hooks.append(hook)

    def __len__(self) -> int:
        return len(self._hooks)

    def fire(self, event: Event) -> int:
        delivered = 0
        for hook in self._hooks:
            try:
                hook(event)
            except Exception:  # noqa: BLE001
                logger.exception("post-commit hook %r failed for %s/%s", hook, event.get("type"), event.get("action"))
                continue
            delivered += 1
        return delivered
