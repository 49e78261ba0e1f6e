"""Batch models: a tracked production lot and its lifecycle state.

Batch lifecycle:
    REGISTERED → IN_TRANSIT | IN_STORAGE
    IN_TRANSIT → IN_STORAGE
    IN_STORAGE → FOR_SALE
    FOR_SALE   → SOLD
    Any non-terminal state → EXPIRED
    Any non-terminal state → RECALLED (via recall only)

SOLD, RECALLED and EXPIRED are terminal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class BatchState(str, enum.Enum):
    """Lifecycle state of a batch."""
    REGISTERED = "registered"
    IN_TRANSIT = "in_transit"
    IN_STORAGE = "in_storage"
    FOR_SALE = "for_sale"
    SOLD = "sold"
    RECALLED = "recalled"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({BatchState.SOLD, BatchState.RECALLED, BatchState.EXPIRED})


@dataclass
class Batch:
    """A production lot registered in the ledger.

    Identity fields (creator, created_utc, external_id) never change.
    metadata_uri and metadata_hash change only through an explicit
    metadata update; state changes only through advance or recall.
    """
    batch_id: int
    creator: str
    created_utc: datetime
    external_id: str
    metadata_uri: str
    metadata_hash: str
    state: BatchState = BatchState.REGISTERED

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
