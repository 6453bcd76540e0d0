"""Detached execution of deployment trigger sequences.

Create returns to the caller as soon as the stack, repository and tags are in
place; the deployment trigger keeps running in a background task. Failures
there have no result channel, so they are logged here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

from ..observability.metrics import DEPLOYMENT_LAUNCHES_TOTAL

logger = logging.getLogger(__name__)


class DeploymentLauncher:
    """Owns background deployment tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def launch(self, label: str, coro: Awaitable[object]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(f'deploy:{label}')
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info('Deployment launched in background: %s', label)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            DEPLOYMENT_LAUNCHES_TOTAL.labels(outcome='cancelled').inc()
            logger.warning('Background deployment cancelled: %s', task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            DEPLOYMENT_LAUNCHES_TOTAL.labels(outcome='failed').inc()
            logger.error(
                'Background deployment failed: %s: %s',
                task.get_name(),
                exc,
                exc_info=exc,
            )
            return
        DEPLOYMENT_LAUNCHES_TOTAL.labels(outcome='succeeded').inc()

    async def drain(self) -> None:
        """Wait for every outstanding task. Failures are already logged."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
