"""Trigger coordinator: turns network and change signals into sync passes.

``SyncCoordinator`` owns the debounce timers and decides when the
reconciliation and mirror engines run:

* a transition to an unrestricted network with pending edits schedules a
  reconciliation after a short debounce;
* losing the unrestricted network aborts an in-flight mirror pass;
* remote change notifications schedule a per-team mirror pass after the
  mirror debounce, coalescing bursts;
* user requests run immediately and report the outcome through the alert
  callback.

Timers are plain asyncio tasks; ``close()`` cancels whatever is pending.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable

from ..errors import QueuePersistenceError
from ..models import Task
from .context import SyncFlags
from .mirror import MirrorEngine, ProgressCallback
from .models import MirrorReport, ReconcileReport
from .queue import LocalEditQueue
from .reconciler import ReconciliationEngine
from .reporter import format_mirror_alert, format_reconcile_alert

logger = logging.getLogger(__name__)

AlertCallback = Callable[[str, str], None]

DEFAULT_NETWORK_DEBOUNCE = 1.0
DEFAULT_MIRROR_DEBOUNCE = 5.0


class NetworkClass(str, Enum):
    """Connectivity class reported by the platform."""

    UNRESTRICTED = "unrestricted"
    METERED = "metered"
    NONE = "none"


class SyncCoordinator:
    """Schedule reconciliation and mirror passes for one runtime.

    Args:
        reconciler: The reconciliation engine.
        mirror: The mirror engine, or ``None`` when mirroring is disabled.
        queue: The local edit queue (for pending-work checks).
        flags: Run flags shared with both engines.
        network_debounce: Seconds to wait after a network transition.
        mirror_debounce: Seconds to wait after the last remote change of a
            team before mirroring it.
        on_alert: Called with ``(title, message)`` for user-initiated
            outcomes.
    """

    def __init__(
        self,
        reconciler: ReconciliationEngine,
        mirror: MirrorEngine | None,
        queue: LocalEditQueue,
        flags: SyncFlags,
        network_debounce: float = DEFAULT_NETWORK_DEBOUNCE,
        mirror_debounce: float = DEFAULT_MIRROR_DEBOUNCE,
        on_alert: AlertCallback | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.mirror = mirror
        self.queue = queue
        self.flags = flags
        self.network_debounce = network_debounce
        self.mirror_debounce = mirror_debounce
        self.on_alert = on_alert

        self._network = NetworkClass.NONE
        self._reconcile_timer: asyncio.Task | None = None
        self._mirror_timers: dict[str, asyncio.Task] = {}
        self._push_timers: dict[str, asyncio.Task] = {}
        self._pending_pushes: dict[str, dict[str, Task]] = {}

    @property
    def network(self) -> NetworkClass:
        return self._network

    @property
    def is_unrestricted(self) -> bool:
        return self._network == NetworkClass.UNRESTRICTED

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def on_network_change(self, network: NetworkClass) -> None:
        """Handle a connectivity-class notification."""
        previous = self._network
        self._network = network
        logger.debug("Network class %s -> %s", previous.value, network.value)

        if network == NetworkClass.UNRESTRICTED:
            if previous != NetworkClass.UNRESTRICTED and self._has_pending():
                self._schedule_reconcile()
            return

        if self._reconcile_timer is not None:
            self._reconcile_timer.cancel()
            self._reconcile_timer = None
        if self.flags.mirroring:
            logger.info("Unrestricted network lost; aborting mirror pass")
            self.flags.abort.set()

    def submit_edit(self, project_id: str, task: Task) -> None:
        """Queue a local edit and reconcile soon if the network allows.

        Raises:
            QueuePersistenceError: If the edit could not be persisted.
        """
        self.queue.enqueue(project_id, task)
        if self.is_unrestricted:
            self._schedule_reconcile()

    def schedule_push(self, project_id: str, tasks: list[Task]) -> None:
        """Debounced auto-push of *tasks* straight to the remote project.

        Tasks accumulate (by id) until the debounce fires.  If the network
        is not unrestricted by then, they are queued instead.
        """
        pending = self._pending_pushes.setdefault(project_id, {})
        for task in tasks:
            pending[task.id] = task
        _cancel(self._push_timers.pop(project_id, None))
        self._push_timers[project_id] = asyncio.create_task(
            self._delayed_push(project_id)
        )

    def notify_remote_change(self, team_id: str) -> None:
        """Schedule a debounced mirror pass for *team_id*."""
        if self.mirror is None:
            return
        _cancel(self._mirror_timers.pop(team_id, None))
        self._mirror_timers[team_id] = asyncio.create_task(
            self._delayed_mirror(team_id)
        )

    # ------------------------------------------------------------------
    # User requests
    # ------------------------------------------------------------------

    async def request_sync(self) -> ReconcileReport:
        """User-initiated reconciliation of every pending queue."""
        report = await self.reconciler.reconcile_all(trigger="user")
        if not report.skipped and not report.success:
            self._alert("Sync", format_reconcile_alert(report))
        return report

    async def trigger_mirror(
        self, team_id: str, on_progress: ProgressCallback | None = None
    ) -> MirrorReport | None:
        """User-initiated mirror of a team.

        Returns:
            The sweep report, or ``None`` if it could not start (mirroring
            disabled, no unrestricted network, pass in flight).
        """
        if self.mirror is None:
            self._alert("Mirror", "Mirroring is not configured.")
            return None
        if not self.is_unrestricted:
            self._alert("Mirror", "No unrestricted network connection.")
            return None
        if self.flags.mirroring:
            return None
        _cancel(self._mirror_timers.pop(team_id, None))
        report = await self.mirror.sync_team(team_id, on_progress)
        self._alert("Mirror", format_mirror_alert(report))
        return report

    async def close(self) -> None:
        """Cancel pending timers and wait for them to finish."""
        timers = list(self._mirror_timers.values())
        timers.extend(self._push_timers.values())
        if self._reconcile_timer is not None:
            timers.append(self._reconcile_timer)
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._mirror_timers.clear()
        self._push_timers.clear()
        self._reconcile_timer = None

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _schedule_reconcile(self) -> None:
        _cancel(self._reconcile_timer)
        self._reconcile_timer = asyncio.create_task(self._delayed_reconcile())

    async def _delayed_reconcile(self) -> None:
        await asyncio.sleep(self.network_debounce)
        self._reconcile_timer = None
        if not self.is_unrestricted:
            return
        report = await self.reconciler.reconcile_all(trigger="network")
        if not report.skipped and not report.success:
            logger.warning(
                "Automatic reconciliation incomplete: %d projects with errors",
                len(report.errors),
            )

    async def _delayed_push(self, project_id: str) -> None:
        await asyncio.sleep(self.network_debounce)
        self._push_timers.pop(project_id, None)
        tasks = list(self._pending_pushes.pop(project_id, {}).values())
        if not tasks:
            return
        if self.is_unrestricted:
            report = await self.reconciler.push_tasks(project_id, tasks)
            if report.success:
                return
        self._queue_tasks(project_id, tasks)

    async def _delayed_mirror(self, team_id: str) -> None:
        await asyncio.sleep(self.mirror_debounce)
        self._mirror_timers.pop(team_id, None)
        if self.mirror is None or self.flags.mirroring:
            return
        if not self.is_unrestricted:
            logger.debug("Mirror of team %s postponed: network", team_id)
            return
        report = await self.mirror.sync_team(team_id)
        if not report.success:
            logger.warning(
                "Automatic mirror of team %s failed: %s",
                team_id,
                report.error or f"{len(report.errors)} projects with errors",
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _queue_tasks(self, project_id: str, tasks: list[Task]) -> None:
        for task in tasks:
            try:
                self.queue.enqueue(project_id, task)
            except QueuePersistenceError as exc:
                logger.error(
                    "Could not queue task %s for project %s: %s",
                    task.id,
                    project_id,
                    exc,
                )

    def _has_pending(self) -> bool:
        return self.queue.pending_count() > 0

    def _alert(self, title: str, message: str) -> None:
        if self.on_alert is not None:
            self.on_alert(title, message)
        else:
            logger.info("%s: %s", title, message)


def _cancel(task: asyncio.Task | None) -> None:
    if task is not None and not task.done():
        task.cancel()
