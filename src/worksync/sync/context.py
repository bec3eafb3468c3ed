"""Per-instance run flags shared by the engines and the trigger coordinator.

One ``SyncFlags`` object is created per runtime and handed to both
engines, so independent runtimes (several teams, tests) never share
in-flight or abort state.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class AbortFlag:
    """Cooperative cancellation signal checked between units of work."""

    _requested: bool = False

    @property
    def requested(self) -> bool:
        return self._requested

    def set(self) -> None:
        self._requested = True

    def clear(self) -> None:
        self._requested = False


@dataclass
class SyncFlags:
    """In-flight and abort state for one runtime.

    Attributes:
        reconciling: ``True`` while a reconciliation attempt runs.  Only
            one attempt may run at a time.
        mirroring: ``True`` while a mirror sweep runs.
        abort: Abort signal for the in-flight mirror sweep.
    """

    reconciling: bool = False
    mirroring: bool = False
    abort: AbortFlag = field(default_factory=AbortFlag)
