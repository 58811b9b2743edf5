import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class RequestDeduplicator:
    """Share one in-flight call between concurrent callers using the same key."""

    def __init__(self):
        self.pending: Dict[str, asyncio.Task] = {}

    async def execute(self, key: str, request_fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self.pending.get(key)
        if task is not None:
            logger.debug(f"[API] Reusing pending request for {key}")
        else:
            task = asyncio.ensure_future(request_fn())
            self.pending[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        # one caller being cancelled must not cancel the shared request
        return await asyncio.shield(task)

    def is_pending(self, key: str) -> bool:
        return key in self.pending

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self.pending.get(key) is task:
            del self.pending[key]
