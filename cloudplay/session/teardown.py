"""Exactly-once release of everything a session attempt acquired.

Every acquisition site registers its release action here instead of keeping
its own cleanup closure. ``run_all`` is what cancel, exit and the internal
failure paths all converge on.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

ReleaseAction = Callable[[], Union[None, Awaitable[Any]]]


class TeardownCoordinator:
    """Ordered registry of release actions for one session attempt."""

    def __init__(self) -> None:
        self._actions: list[tuple[str, ReleaseAction]] = []
        self._lock: Optional[asyncio.Lock] = None

    def register(self, action: ReleaseAction, name: Optional[str] = None) -> None:
        label = name or getattr(action, "__qualname__", None) or repr(action)
        self._actions.append((label, action))
        logger.debug("[teardown] registered %s (pending=%d)", label, len(self._actions))

    @property
    def pending(self) -> list[str]:
        return [label for label, _ in self._actions]

    def __len__(self) -> int:
        return len(self._actions)

    async def run_all(self) -> int:
        """Run every registered action once, newest first.

        Returns the number of actions invoked by this call. The registry is
        emptied before anything runs, so a second or concurrent call is a
        no-op returning 0. Failing actions are logged and skipped.
        """
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            actions, self._actions = self._actions, []
            if not actions:
                return 0
            logger.info("[teardown] releasing %d resources", len(actions))
            for label, action in reversed(actions):
                try:
                    result = action()
                    if inspect.isawaitable(result):
                        await result
                    logger.debug("[teardown] released %s", label)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("[teardown] release %s failed: %s", label, e, exc_info=True)
            return len(actions)
