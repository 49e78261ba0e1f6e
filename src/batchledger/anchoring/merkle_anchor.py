"""Root store: one declared integrity root per batch.

submit_root is open to any caller. The only checks are that the batch
exists and the root is non-zero. Each submission overwrites the previous
root for that batch; there is no history beyond the event log.

A matching root therefore shows that *someone* declared that value for
the batch, not that it came out of the notice approval workflow. Callers
who need provenance compare against a specific notice's own anchor
(ChangeNoticeWorkflow.anchor_verified_on_merkle).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from batchledger.errors import BadInputError
from batchledger.models.batch import BatchState
from batchledger.models.values import ZERO_BYTES32, to_bytes32
from batchledger.persistence.event_log import EventKind
from batchledger.persistence.ledger import Ledger
from batchledger.registry.batch_registry import batch_subject


class BatchStateSource(Protocol):
    """The registry surface the root store depends on."""

    def get_state(self, batch_id: int) -> BatchState: ...


class MerkleAnchor:
    """Open, overwrite-on-submit mapping from batch id to root."""

    def __init__(self, ledger: Ledger, registry: BatchStateSource) -> None:
        self._ledger = ledger
        self._registry = registry
        self._roots: dict[int, str] = {}

    def submit_root(
        self,
        caller: str,
        batch_id: int,
        root: str,
        now: Optional[datetime] = None,
    ) -> str:
        """Declare the root for a batch. Returns the normalised root.

        Raises:
            BadInputError: root is zero ("Root cannot be zero").
            NotFoundError: batch does not exist in the registry.
        """
        value = to_bytes32(root)
        if value == ZERO_BYTES32:
            raise BadInputError("Root cannot be zero")

        with self._ledger.transaction() as tx:
            self._registry.get_state(batch_id)

            previous = self._roots.get(batch_id)
            self._roots[batch_id] = value

            def _rollback() -> None:
                if previous is None:
                    self._roots.pop(batch_id, None)
                else:
                    self._roots[batch_id] = previous

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.ROOT_SUBMITTED, caller, batch_subject(batch_id),
                {
                    "batch_id": batch_id,
                    "root": value,
                    "previous_root": previous or ZERO_BYTES32,
                },
                now,
            )
        return value

    def get_root(self, batch_id: int) -> str:
        """Last submitted root, or the zero value if none."""
        with self._ledger.reading():
            return self._roots.get(batch_id, ZERO_BYTES32)

    def verify_root(self, batch_id: int, proposed_root: str) -> bool:
        """Pure equality check; False for a batch with no root on file."""
        proposed = to_bytes32(proposed_root)
        with self._ledger.reading():
            stored = self._roots.get(batch_id)
        return stored is not None and stored == proposed

    @property
    def root_count(self) -> int:
        with self._ledger.reading():
            return len(self._roots)

    def to_records(self) -> dict[str, str]:
        with self._ledger.reading():
            return {str(k): v for k, v in sorted(self._roots.items())}

    @classmethod
    def from_records(
        cls,
        ledger: Ledger,
        registry: BatchStateSource,
        data: dict[str, Any],
    ) -> MerkleAnchor:
        anchor = cls(ledger, registry)
        anchor._roots = {int(k): v for k, v in data.items()}
        return anchor
