"""
Notifier — append-only, operator-visible event sink.

Every event goes to the module logger and to an in-memory list (read by
the status API); optionally also to an ``events.jsonl`` file and any extra
callables.  Recording is best-effort: a broken sink is logged and skipped,
callers never see an error.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from release_orchestrator.io.schema import EventKind, RunEvent
from release_orchestrator.io.writer import append_event

logger = logging.getLogger(__name__)

EventSink = Callable[[RunEvent], None]

_ERROR_STATES = {"FAILED"}


class Notifier:
    def __init__(
        self,
        run_id: str,
        events_path: Optional[Path] = None,
        sinks: Sequence[EventSink] = (),
    ):
        self.run_id = run_id
        self.events_path = events_path
        self._sinks = list(sinks)
        self._events: List[RunEvent] = []
        self._lock = threading.Lock()

    def record(self, event: RunEvent) -> None:
        """Append *event*.  Never raises."""
        level = logging.INFO
        if event.kind == EventKind.DIAGNOSTIC or event.state in _ERROR_STATES:
            level = logging.ERROR
        logger.log(
            level,
            "[%s]%s %s",
            event.kind.value,
            f" {event.platform}:" if event.platform else "",
            event.message,
        )

        with self._lock:
            self._events.append(event)
            if self.events_path is not None:
                try:
                    append_event(event, self.events_path)
                except OSError as e:
                    logger.warning("Could not append event to %s: %s", self.events_path, e)

        for sink in self._sinks:
            try:
                sink(event)
            except Exception as e:
                logger.warning("Event sink %r failed: %s", sink, e)

    def emit(
        self,
        kind: EventKind,
        message: str,
        platform: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        """Build a RunEvent for this run and record it."""
        self.record(RunEvent(
            run_id=self.run_id,
            kind=kind,
            message=message,
            platform=platform,
            state=state,
        ))

    def events(self) -> List[RunEvent]:
        with self._lock:
            return list(self._events)
