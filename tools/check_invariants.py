#!/usr/bin/env python3
"""Batch ledger invariant checks against the recorded event log.

Loads the deployment config, opens the event log (which verifies every
record's hash on load) and replays it to confirm that:
- batch states only moved along the lifecycle table or through recall,
  and never left a terminal state;
- external ids and metadata hashes were never reused;
- notices went DRAFT -> SUBMITTED -> APPROVED | REJECTED, with the
  submission made by the notice's creator;
- every anchor push directly follows the approval of the same notice;
- the state snapshot, if any, agrees with the replayed batch states.

Usage:
    python3 tools/check_invariants.py
    python3 tools/check_invariants.py --config path/to/config
"""

import argparse
import sys
from pathlib import Path

# Add src to path for batchledger imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from batchledger.config import LedgerConfig
from batchledger.models.batch import TERMINAL_STATES, BatchState
from batchledger.persistence.event_log import EventKind, EventLog, EventRecord
from batchledger.persistence.state_store import StateStore
from batchledger.registry.lifecycle import BatchStateMachine


def check_batches(events: list[EventRecord], errors: list[str]) -> dict[int, BatchState]:
    """Replay batch events. Returns the final state of every batch."""
    states: dict[int, BatchState] = {}
    external_ids: set[str] = set()
    metadata_hashes: set[str] = set()
    recalled: set[int] = set()

    for event in events:
        payload = event.payload
        if event.event_kind == EventKind.BATCH_CREATED:
            batch_id = payload["batch_id"]
            if batch_id in states:
                errors.append(f"{event.event_id}: batch {batch_id} created twice")
            if payload["external_id"] in external_ids:
                errors.append(f"{event.event_id}: external id reused: {payload['external_id']}")
            if payload["metadata_hash"] in metadata_hashes:
                errors.append(f"{event.event_id}: metadata hash reused: {payload['metadata_hash']}")
            external_ids.add(payload["external_id"])
            metadata_hashes.add(payload["metadata_hash"])
            states[batch_id] = BatchState.REGISTERED

        elif event.event_kind == EventKind.BATCH_METADATA_UPDATED:
            if payload["new_hash"] in metadata_hashes:
                errors.append(f"{event.event_id}: metadata hash reused: {payload['new_hash']}")
            metadata_hashes.add(payload["new_hash"])

        elif event.event_kind == EventKind.BATCH_RECALLED:
            recalled.add(payload["batch_id"])

        elif event.event_kind == EventKind.BATCH_STATE_CHANGED:
            batch_id = payload["batch_id"]
            current = states.get(batch_id)
            target = BatchState(payload["to"])
            if current is None:
                errors.append(f"{event.event_id}: state change for unknown batch {batch_id}")
                continue
            if current.value != payload["from"]:
                errors.append(
                    f"{event.event_id}: batch {batch_id} recorded from {payload['from']} "
                    f"but replayed state is {current.value}"
                )
            if current in TERMINAL_STATES:
                errors.append(f"{event.event_id}: batch {batch_id} left terminal state {current.value}")
            elif target == BatchState.RECALLED:
                if batch_id not in recalled:
                    errors.append(f"{event.event_id}: batch {batch_id} recalled without a recall record")
            elif target not in BatchStateMachine.valid_transitions(current):
                errors.append(
                    f"{event.event_id}: invalid transition {current.value} -> {target.value} "
                    f"for batch {batch_id}"
                )
            states[batch_id] = target

    return states


def check_notices(events: list[EventRecord], errors: list[str]) -> None:
    """Replay notice events and check status order and anchor pushes."""
    status: dict[int, str] = {}
    creators: dict[int, str] = {}
    previous: EventRecord | None = None

    expected_from = {
        EventKind.NOTICE_SUBMITTED: ("draft", "submitted"),
        EventKind.NOTICE_APPROVED: ("submitted", "approved"),
        EventKind.NOTICE_REJECTED: ("submitted", "rejected"),
    }

    for event in events:
        payload = event.payload
        if event.event_kind == EventKind.NOTICE_CREATED:
            notice_id = payload["notice_id"]
            if notice_id in status:
                errors.append(f"{event.event_id}: notice {notice_id} created twice")
            status[notice_id] = "draft"
            creators[notice_id] = event.actor_id

        elif event.event_kind in expected_from:
            notice_id = payload["notice_id"]
            required, target = expected_from[event.event_kind]
            if status.get(notice_id) != required:
                errors.append(
                    f"{event.event_id}: notice {notice_id} moved to {target} "
                    f"from {status.get(notice_id, 'nothing')}"
                )
            if event.event_kind == EventKind.NOTICE_SUBMITTED and event.actor_id != creators.get(notice_id):
                errors.append(f"{event.event_id}: notice {notice_id} submitted by non-creator {event.actor_id}")
            status[notice_id] = target

        elif event.event_kind == EventKind.ANCHOR_PUSHED:
            notice_id = payload["notice_id"]
            if status.get(notice_id) != "approved":
                errors.append(f"{event.event_id}: anchor pushed for unapproved notice {notice_id}")
            # The push is recorded right after the root submission it caused,
            # which itself follows the approval.
            if previous is None or previous.event_kind != EventKind.ROOT_SUBMITTED:
                errors.append(f"{event.event_id}: anchor push without root submission")
            elif previous.payload["root"] != payload["anchor"]:
                errors.append(f"{event.event_id}: pushed anchor differs from submitted root")

        previous = event


def check_snapshot(
    store: StateStore,
    log: EventLog,
    states: dict[int, BatchState],
    errors: list[str],
) -> None:
    snapshot = store.load()
    if snapshot is None:
        if log.count:
            errors.append("event log is not empty but no state snapshot exists")
        return
    if snapshot["event_count"] != log.count:
        errors.append(
            f"snapshot covers {snapshot['event_count']} events, log holds {log.count}"
        )
        return
    for record in snapshot["registry"].get("batches", []):
        replayed = states.get(record["batch_id"])
        if replayed is None or replayed.value != record["state"]:
            errors.append(
                f"snapshot batch {record['batch_id']} state {record['state']} "
                f"!= replayed {replayed.value if replayed else 'missing'}"
            )


def check(config_dir: Path) -> int:
    config = LedgerConfig.from_config_dir(config_dir)
    errors: list[str] = []

    try:
        log = EventLog(storage_path=config.event_log_path)
    except ValueError as e:
        errors.append(f"event log integrity: {e}")
        log = None

    if log is not None:
        events = log.events()
        states = check_batches(events, errors)
        check_notices(events, errors)
        check_snapshot(StateStore(config.state_path), log, states, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print(f"Invariant check passed ({log.count} events).")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Check batch ledger invariants")
    parser.add_argument("--config", type=Path, default=ROOT / "config")
    args = parser.parse_args()
    raise SystemExit(check(args.config))
