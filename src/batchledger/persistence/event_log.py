"""Append-only event log: the durable record of every accepted operation.

Every state change in the ledger produces one or more event records,
appended in the single total order in which operations commit. Events
are immutable once written. The log serves as:
1. The audit trail for external indexers and regulators.
2. The input to a Merkle commitment over the whole history.
3. The source of truth when the state snapshot is stale.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from batchledger.crypto.merkle import compute_root


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    # Batch registry
    BATCH_CREATED = "batch_created"
    BATCH_STATE_CHANGED = "batch_state_changed"
    BATCH_RECALLED = "batch_recalled"
    BATCH_METADATA_UPDATED = "batch_metadata_updated"
    OPERATOR_CHANGED = "operator_changed"
    # Notice workflow roles
    REGULATOR_CHANGED = "regulator_changed"
    ROLE_CHANGED = "role_changed"
    MERKLE_ANCHOR_CHANGED = "merkle_anchor_changed"
    # Notice workflow
    NOTICE_CREATED = "notice_created"
    NOTICE_SUBMITTED = "notice_submitted"
    NOTICE_APPROVED = "notice_approved"
    NOTICE_REJECTED = "notice_rejected"
    ANCHOR_PUSHED = "anchor_pushed"
    # Root store
    ROOT_SUBMITTED = "root_submitted"


def _canonical_digest(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    subject_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "subject_id": subject_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return "0x" + hashlib.sha256(canonical).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the ledger log.

    subject_id names the entity the event is about ("batch:7",
    "notice:3", "role:supplier:acme"), so the log can be queried per
    entity. event_hash is computed at creation time and doubles as the
    Merkle leaf for log commitments.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    subject_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        subject_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        digest = _canonical_digest(
            event_id, event_kind.value, ts_str, actor_id, subject_id, payload,
        )
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            subject_id=subject_id,
            payload=payload,
            event_hash=digest,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "subject_id": self.subject_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    The log can be persisted to a JSONL file (one JSON object per line)
    and loaded back for recovery.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append a single event. See append_many."""
        self.append_many([event])

    def append_many(self, events: Iterable[EventRecord]) -> None:
        """Append a group of events as one unit.

        All ids are checked before anything is written, and the file
        receives the whole group in a single write, so a rejected or
        failed append leaves both the file and the in-memory log as
        they were.

        Raises ValueError on a duplicate event_id (replay protection),
        OSError if the file write fails.
        """
        batch = list(events)
        seen: set[str] = set()
        for event in batch:
            if event.event_id in self._event_ids or event.event_id in seen:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            seen.add(event.event_id)

        if self._storage_path and batch:
            self._append_to_file(batch)

        for event in batch:
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(
        self,
        subject_id: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events about one entity, in log order."""
        return [
            e for e in self.events(kind) if e.subject_id == subject_id
        ]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        result = [e for e in self._events if e.timestamp_utc >= since_utc]
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        return result

    def event_hashes(self, kind: Optional[EventKind] = None) -> list[str]:
        """Return all event hashes for Merkle tree construction."""
        return [e.event_hash for e in self.events(kind)]

    def merkle_root(self) -> str:
        """Merkle commitment over every event hash in the log."""
        return compute_root(self.event_hashes())

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, events: list[EventRecord]) -> None:
        lines = "".join(
            json.dumps(e.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
            for e in events
        )
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(lines)

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_digest(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["subject_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    subject_id=data["subject_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
