"""Persistence: append-only event log, sequencer and state snapshot."""

from batchledger.persistence.event_log import EventKind, EventLog, EventRecord
from batchledger.persistence.ledger import Ledger, Transaction
from batchledger.persistence.state_store import StateStore

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "Ledger",
    "StateStore",
    "Transaction",
]
