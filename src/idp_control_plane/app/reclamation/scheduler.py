"""Periodic deletion of stacks tagged for reclamation.

Usage::

    scheduler = ReclamationScheduler(stacks, organization='acme')
    scheduler.start()          # first pass runs immediately, then every minute
    scheduler.trigger()        # extra pass, concurrent with the timer
    report = await scheduler.run_once()
    await scheduler.stop()

Each pass lists the stacks carrying the deletion tag and deletes them under
one wall-clock timeout shared by the whole pass. Deletions still pending when
the timeout fires are abandoned; the tag stays on those stacks, so the next
pass retries them. That is the only retry mechanism.

Concurrent passes (timer + manual, or several instances) may try to delete
the same stack. A 404 on delete means another pass got there first and is
counted as ``already_gone``, not as a failure.

State shared between passes is limited to the running flag, the last-run
time and the deletion criteria, all guarded by one lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..errors import PlatformError, UpstreamNotFoundError
from ..observability.metrics import RECLAMATION_PASSES_TOTAL, RECLAMATION_STACKS_TOTAL
from ..protocols import StackApi
from ..provisioning.tags import AUTO_DELETE_TAG
from ..providers.stack_models import Stack, StackFilter, StackRef

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_PASS_TIMEOUT_SECONDS = 55.0


class SchedulerAlreadyRunningError(RuntimeError):
    """Raised by ``start()`` when the scheduler is already running."""

    def __init__(self) -> None:
        super().__init__('reclamation scheduler is already running')


@dataclass(frozen=True, slots=True)
class DeletionCriteria:
    """Tag pair that marks a stack for deletion."""

    tag_key: str = AUTO_DELETE_TAG
    tag_value: str = 'true'

    def matches(self, stack: Stack) -> bool:
        # List results may omit tags; the server-side filter already applied.
        if not stack.tags:
            return True
        return stack.tags.get(self.tag_key) == self.tag_value


@dataclass(frozen=True, slots=True)
class ReclamationReport:
    """Outcome of one reclamation pass.

    Attributes:
        deleted: Stacks deleted by this pass.
        already_gone: Stacks another pass deleted first (404 on delete).
        failed: Stacks whose delete failed; retried next pass.
        abandoned: Stacks not attempted (or interrupted) when the timeout fired.
        skipped: Listed stacks whose tags did not match the criteria.
        timed_out: Whether the pass hit its wall-clock timeout.
        list_error: Why listing failed, if it did.
    """

    started_at: datetime
    criteria: DeletionCriteria
    deleted: tuple[StackRef, ...] = ()
    already_gone: tuple[StackRef, ...] = ()
    failed: tuple[StackRef, ...] = ()
    abandoned: tuple[StackRef, ...] = ()
    skipped: tuple[StackRef, ...] = ()
    timed_out: bool = False
    list_error: str = ''

    @property
    def total_matched(self) -> int:
        return (
            len(self.deleted) + len(self.already_gone)
            + len(self.failed) + len(self.abandoned)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'criteria': {'key': self.criteria.tag_key, 'value': self.criteria.tag_value},
            'deleted': [str(ref) for ref in self.deleted],
            'already_gone': [str(ref) for ref in self.already_gone],
            'failed': [str(ref) for ref in self.failed],
            'abandoned': [str(ref) for ref in self.abandoned],
            'skipped': [str(ref) for ref in self.skipped],
            'timed_out': self.timed_out,
            'list_error': self.list_error,
        }


class ReclamationScheduler:
    """Stopped/Running scheduler around ``run_once()``.

    Args:
        stacks: Stack API used to list and delete stacks.
        organization: Organization scope of every pass.
        criteria: Initial deletion criteria.
        interval_seconds: Period between the starts of consecutive timer passes.
        pass_timeout_seconds: Wall-clock budget shared by all deletes in a pass.
    """

    def __init__(
        self,
        stacks: StackApi,
        *,
        organization: str,
        criteria: DeletionCriteria | None = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        pass_timeout_seconds: float = DEFAULT_PASS_TIMEOUT_SECONDS,
    ) -> None:
        self._stacks = stacks
        self._organization = organization
        self._interval = interval_seconds
        self._pass_timeout = pass_timeout_seconds

        self._lock = threading.Lock()
        self._running = False
        self._last_run_time: datetime | None = None
        self._criteria = criteria or DeletionCriteria()

        self._loop_task: asyncio.Task | None = None
        self._manual_tasks: set[asyncio.Task] = set()

    # ── Guarded state ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def last_run_time(self) -> datetime | None:
        with self._lock:
            return self._last_run_time

    @property
    def criteria(self) -> DeletionCriteria:
        with self._lock:
            return self._criteria

    def update_criteria(self, criteria: DeletionCriteria) -> None:
        """Swap the criteria; takes effect from the next pass."""
        with self._lock:
            self._criteria = criteria
        logger.info(
            'Reclamation criteria updated: %s=%s', criteria.tag_key, criteria.tag_value,
        )

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the timer loop. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._running:
                raise SchedulerAlreadyRunningError()
            self._running = True
            self._loop_task = loop.create_task(self._loop(), name='reclamation-loop')
        logger.info(
            'Reclamation scheduler started (interval=%ss, timeout=%ss)',
            self._interval,
            self._pass_timeout,
        )

    async def stop(self) -> None:
        """Cancel the timer loop and any manual passes still in flight."""
        with self._lock:
            was_running = self._running
            self._running = False
            loop_task, self._loop_task = self._loop_task, None
        tasks = [task for task in (loop_task, *self._manual_tasks) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if was_running:
            logger.info('Reclamation scheduler stopped')

    def trigger(self) -> asyncio.Task:
        """Start an extra pass now, concurrently with the timer."""
        logger.info('Manual reclamation triggered')
        task = asyncio.get_running_loop().create_task(
            self._run_safely('manual'), name='reclamation-manual',
        )
        self._manual_tasks.add(task)
        task.add_done_callback(self._manual_tasks.discard)
        return task

    async def _loop(self) -> None:
        # Fixed rate: ticks start one interval apart however long a pass takes.
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            await self._run_safely('scheduled')
            next_at += self._interval
            now = loop.time()
            if next_at < now:
                # Overran at least one tick; skip the missed ones.
                missed = int((now - next_at) // self._interval) + 1
                next_at += missed * self._interval
            await asyncio.sleep(max(0.0, next_at - now))

    async def _run_safely(self, origin: str) -> ReclamationReport | None:
        try:
            report = await self.run_once()
        except Exception:
            logger.exception('Reclamation pass (%s) crashed', origin)
            return None
        RECLAMATION_PASSES_TOTAL.labels(
            origin=origin, timed_out=str(report.timed_out).lower(),
        ).inc()
        return report

    # ── One pass ─────────────────────────────────────────────────

    async def run_once(self) -> ReclamationReport:
        """List tagged stacks and delete them under the shared pass timeout."""
        started_at = datetime.now(timezone.utc)
        with self._lock:
            self._last_run_time = started_at
            criteria = self._criteria

        deleted: list[StackRef] = []
        already_gone: list[StackRef] = []
        failed: list[StackRef] = []
        skipped: list[StackRef] = []
        pending: deque[StackRef] = deque()
        timed_out = False
        list_error = ''

        try:
            async with asyncio.timeout(self._pass_timeout):
                try:
                    stacks = await self._stacks.list_all_stacks(
                        StackFilter(
                            organization=self._organization,
                            tag_name=criteria.tag_key,
                            tag_value=criteria.tag_value,
                        ),
                    )
                except PlatformError as exc:
                    logger.error('Reclamation could not list stacks: %s', exc)
                    list_error = str(exc)
                    stacks = []

                for stack in stacks:
                    if criteria.matches(stack):
                        pending.append(stack.ref)
                    else:
                        skipped.append(stack.ref)
                logger.info('Reclamation found %d stacks to delete', len(pending))

                while pending:
                    ref = pending[0]
                    try:
                        await self._stacks.delete_stack(ref.organization, ref.project, ref.stack)
                    except UpstreamNotFoundError:
                        logger.info('Stack already deleted: %s', ref)
                        already_gone.append(ref)
                    except PlatformError as exc:
                        logger.warning('Failed to delete stack %s: %s', ref, exc)
                        failed.append(ref)
                    else:
                        deleted.append(ref)
                    pending.popleft()
        except TimeoutError:
            timed_out = True
            logger.warning(
                'Reclamation pass timed out after %ss, %d stacks left for the next pass',
                self._pass_timeout,
                len(pending),
            )

        report = ReclamationReport(
            started_at=started_at,
            criteria=criteria,
            deleted=tuple(deleted),
            already_gone=tuple(already_gone),
            failed=tuple(failed),
            abandoned=tuple(pending),
            skipped=tuple(skipped),
            timed_out=timed_out,
            list_error=list_error,
        )
        for outcome in ('deleted', 'already_gone', 'failed', 'abandoned'):
            count = len(getattr(report, outcome))
            if count:
                RECLAMATION_STACKS_TOTAL.labels(outcome=outcome).inc(count)
        logger.info(
            'Reclamation pass completed: deleted=%d already_gone=%d failed=%d abandoned=%d',
            len(report.deleted),
            len(report.already_gone),
            len(report.failed),
            len(report.abandoned),
        )
        return report
