"""Ledger sequencer: one total order and all-or-nothing operations.

Every mutating operation on the registry, the notice workflow and the
root store runs inside ``Ledger.transaction()``. The ledger holds one
re-entrant lock, so operations are applied strictly one after another
and check-then-act invariants (uniqueness sets, status transitions) hold
even when callers are on different threads. Reads take the same lock and
therefore never observe a half-applied operation.

Inside a transaction, components mutate their in-memory state directly
and register a rollback callback for each mutation. Event records are
staged, not written. When the outermost transaction exits cleanly the
staged events are appended to the event log as a single unit. If the
body raises, or the append fails, every rollback runs in reverse order
and no event is written.

A call made from inside a transaction (the notice workflow pushing an
anchor into the root store) joins the enclosing unit: its mutations and
events commit or roll back together with the caller's.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from batchledger.persistence.event_log import EventKind, EventLog, EventRecord

logger = logging.getLogger(__name__)


@dataclass
class _StagedEvent:
    kind: EventKind
    actor_id: str
    subject_id: str
    payload: dict[str, Any]
    timestamp_utc: Optional[datetime]


@dataclass
class Transaction:
    """An open atomic unit. Obtain one from Ledger.transaction()."""
    _staged: list[_StagedEvent] = field(default_factory=list)
    _rollbacks: list[Callable[[], None]] = field(default_factory=list)

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        subject_id: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """Stage an event record; written only if the unit commits."""
        self._staged.append(_StagedEvent(kind, actor_id, subject_id, payload, now))

    def on_rollback(self, undo: Callable[[], None]) -> None:
        """Register an undo step for a mutation already applied."""
        self._rollbacks.append(undo)

    def _rollback(self) -> None:
        for undo in reversed(self._rollbacks):
            undo()
        self._rollbacks.clear()
        self._staged.clear()


class Ledger:
    """Single sequencer shared by all ledger components.

    Usage:
        ledger = Ledger(EventLog(storage_path=Path("events.jsonl")))
        with ledger.transaction() as tx:
            ...mutate...
            tx.on_rollback(undo)
            tx.emit(EventKind.BATCH_CREATED, caller, "batch:1", {...})
    """

    def __init__(self, event_log: Optional[EventLog] = None) -> None:
        self._event_log = event_log if event_log is not None else EventLog()
        self._lock = threading.RLock()
        self._active: Optional[Transaction] = None
        # Continue numbering from a recovered log to avoid ID collisions
        self._event_counter = self._event_log.count
        self._last_committed: list[EventRecord] = []

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def last_committed(self) -> list[EventRecord]:
        """Events written by the most recent committed transaction."""
        return list(self._last_committed)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            if self._active is not None:
                yield self._active
                return

            tx = Transaction()
            self._active = tx
            try:
                yield tx
                self._flush(tx)
            except BaseException:
                tx._rollback()
                raise
            finally:
                self._active = None

    @contextmanager
    def reading(self) -> Iterator[None]:
        """Hold the sequencer lock for a consistent read."""
        with self._lock:
            yield

    def _flush(self, tx: Transaction) -> None:
        """Turn staged events into records and append them as one unit."""
        start = self._event_counter
        records: list[EventRecord] = []
        for staged in tx._staged:
            self._event_counter += 1
            records.append(EventRecord.create(
                event_id=f"EVT-{self._event_counter:08d}",
                event_kind=staged.kind,
                actor_id=staged.actor_id,
                subject_id=staged.subject_id,
                payload=staged.payload,
                timestamp_utc=staged.timestamp_utc,
            ))
        try:
            self._event_log.append_many(records)
        except (ValueError, OSError):
            self._event_counter = start
            logger.error("Event log append failed; rolling back %d staged events", len(records))
            raise
        self._last_committed = records
        for record in records:
            logger.debug("committed %s %s %s", record.event_id, record.event_kind.value, record.subject_id)
