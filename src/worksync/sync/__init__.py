"""Offline edit reconciliation and one-way mirroring.

Architecture
------------
Edits made while offline are appended to a durable per-project queue.
When connectivity returns, the **reconciliation engine** uploads any
local media, merges the queued tasks into the remote project by task id
(queued edits win), writes the task list back, and drains the queue.
Edits that cannot be applied are retried up to a ceiling and then
dropped.

The **mirror engine** copies each team's projects into an external
folder store (Google Drive).  It is incremental: a fingerprint of the
task list short-circuits unchanged projects, per-item records skip media
whose source reference has not changed, and documents are gated by a
content hash.

Modules:

- ``queue``       -- ``LocalEditQueue``: durable per-project edit queue.
- ``cache``       -- ``ProjectCache``: last-known project snapshots.
- ``media``       -- Media reference classification and blob paths.
- ``reconciler``  -- ``ReconciliationEngine`` and ``merge_by_id``.
- ``mirror``      -- ``MirrorEngine``: folder tree, media and documents.
- ``state``       -- ``SyncStateStore``: per-team mirror state files.
- ``triggers``    -- ``SyncCoordinator``: debounced network/change
  triggers.
- ``context``     -- ``SyncFlags``: in-flight and abort flags.
- ``models``      -- Result and report contracts.
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from worksync.core import JsonKeyValueStore
    from worksync.sync import (
        LocalEditQueue, ReconciliationEngine, SyncFlags,
        format_reconcile_report,
    )

    queue = LocalEditQueue(JsonKeyValueStore(Path("~/.worksync").expanduser()))
    engine = ReconciliationEngine(documents, blobs, queue, SyncFlags())

    report = await engine.reconcile_all(trigger="network")
    print(format_reconcile_report(report))
"""

from .cache import ProjectCache
from .context import AbortFlag, SyncFlags
from .mirror import MirrorEngine
from .models import (
    MirrorReport,
    MirrorResult,
    MirrorStatus,
    ReconcileReport,
    ReconcileResult,
    ReconcileStatus,
    SyncProgress,
)
from .queue import LocalEditQueue
from .reconciler import ReconciliationEngine, merge_by_id
from .reporter import (
    format_mirror_report,
    format_reconcile_report,
    mirror_report_to_json,
    reconcile_report_to_json,
)
from .state import SyncStateStore
from .triggers import NetworkClass, SyncCoordinator

__all__ = [
    "AbortFlag",
    "LocalEditQueue",
    "MirrorEngine",
    "MirrorReport",
    "MirrorResult",
    "MirrorStatus",
    "NetworkClass",
    "ProjectCache",
    "ReconcileReport",
    "ReconcileResult",
    "ReconcileStatus",
    "ReconciliationEngine",
    "SyncCoordinator",
    "SyncFlags",
    "SyncProgress",
    "SyncStateStore",
    "format_mirror_report",
    "format_reconcile_report",
    "merge_by_id",
    "mirror_report_to_json",
    "reconcile_report_to_json",
]
