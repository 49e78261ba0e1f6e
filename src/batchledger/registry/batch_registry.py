"""Batch registry: canonical identity and lifecycle state of every batch.

The registry owns:
- batch records, addressed by a sequential id starting at 1;
- the set of every external id ever registered;
- the set of every metadata hash ever registered or updated to.

Neither set is ever cleared. A batch's own previous metadata hash is
therefore also unavailable to later updates.

Authorisation:
- create_batch: any caller.
- advance_lifecycle, recall, update_metadata: the operator only.
- set_operator: the owner (the identity that deployed the registry).

The other components depend on this one only through get_state(),
which fails with NotFoundError for an unknown batch id.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, Optional

from batchledger.errors import (
    AlreadyTerminalError,
    BadInputError,
    ExternalIdUsedError,
    InvalidTransitionError,
    MetadataHashUsedError,
    NotFoundError,
    UnauthorizedError,
)
from batchledger.models.batch import Batch, BatchState
from batchledger.models.values import ZERO_BYTES32, is_zero_identity, to_bytes32
from batchledger.persistence.event_log import EventKind
from batchledger.persistence.ledger import Ledger
from batchledger.registry.lifecycle import BatchStateMachine


def batch_subject(batch_id: int) -> str:
    return f"batch:{batch_id}"


class BatchRegistry:
    """Batch creation, lifecycle advancement, recall and metadata updates.

    Usage:
        registry = BatchRegistry(ledger, owner="deployer", operator="ops")
        batch_id = registry.create_batch("supplier-1", ext_id, uri, digest)
        registry.advance_lifecycle("ops", batch_id, BatchState.IN_TRANSIT)
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        operator: Optional[str] = None,
    ) -> None:
        if is_zero_identity(owner):
            raise BadInputError("Registry owner cannot be the zero identity")
        self._ledger = ledger
        self._owner = owner.strip()
        self._operator = (operator or owner).strip()
        self._batches: dict[int, Batch] = {}
        self._next_id = 1
        self._used_external_ids: set[str] = set()
        self._used_metadata_hashes: set[str] = set()

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def operator(self) -> str:
        with self._ledger.reading():
            return self._operator

    @property
    def batch_count(self) -> int:
        with self._ledger.reading():
            return len(self._batches)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_batch(
        self,
        caller: str,
        external_id: str,
        metadata_uri: str,
        metadata_hash: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Register a new batch in REGISTERED state and return its id.

        Raises:
            BadInputError: zero creator, zero external id or metadata
                hash, empty URI.
            ExternalIdUsedError / MetadataHashUsedError: on collision.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if is_zero_identity(caller):
            raise BadInputError("Creator cannot be the zero identity")

        ext_id = to_bytes32(external_id)
        digest = to_bytes32(metadata_hash)
        if ext_id == ZERO_BYTES32:
            raise BadInputError("External id cannot be zero")
        if digest == ZERO_BYTES32:
            raise BadInputError("Metadata hash cannot be zero")
        if not metadata_uri or not metadata_uri.strip():
            raise BadInputError("Metadata URI cannot be empty")

        with self._ledger.transaction() as tx:
            if ext_id in self._used_external_ids:
                raise ExternalIdUsedError(f"External id already used: {ext_id}")
            if digest in self._used_metadata_hashes:
                raise MetadataHashUsedError(f"Metadata hash already used: {digest}")

            batch_id = self._next_id
            batch = Batch(
                batch_id=batch_id,
                creator=caller,
                created_utc=now,
                external_id=ext_id,
                metadata_uri=metadata_uri,
                metadata_hash=digest,
                state=BatchState.REGISTERED,
            )
            self._batches[batch_id] = batch
            self._next_id += 1
            self._used_external_ids.add(ext_id)
            self._used_metadata_hashes.add(digest)

            def _rollback() -> None:
                self._batches.pop(batch_id, None)
                self._next_id = batch_id
                self._used_external_ids.discard(ext_id)
                self._used_metadata_hashes.discard(digest)

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.BATCH_CREATED, caller, batch_subject(batch_id),
                {
                    "batch_id": batch_id,
                    "external_id": ext_id,
                    "metadata_uri": metadata_uri,
                    "metadata_hash": digest,
                },
                now,
            )
        return batch_id

    def advance_lifecycle(
        self,
        caller: str,
        batch_id: int,
        new_state: BatchState | str,
        now: Optional[datetime] = None,
    ) -> BatchState:
        """Move a batch along the lifecycle table. Returns the new state.

        Raises:
            UnauthorizedError: caller is not the operator.
            NotFoundError: unknown batch.
            AlreadyTerminalError: batch is SOLD, RECALLED or EXPIRED.
            InvalidTransitionError: target not allowed from current state.
        """
        target = _parse_state(new_state)
        with self._ledger.transaction() as tx:
            self._require_operator(caller)
            batch = self._require_batch(batch_id)
            if batch.is_terminal:
                raise AlreadyTerminalError(
                    f"Batch {batch_id} is in terminal state {batch.state.value}"
                )

            previous = batch.state
            errors = BatchStateMachine.apply_transition(batch, target)
            if errors:
                raise InvalidTransitionError("; ".join(errors))

            def _rollback() -> None:
                batch.state = previous

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.BATCH_STATE_CHANGED, caller, batch_subject(batch_id),
                {"batch_id": batch_id, "from": previous.value, "to": target.value},
                now,
            )
            return target

    def recall(
        self,
        caller: str,
        batch_id: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Force a non-terminal batch into RECALLED.

        Emits a recall record followed by a generic state-change record.
        """
        with self._ledger.transaction() as tx:
            self._require_operator(caller)
            batch = self._require_batch(batch_id)
            if batch.is_terminal:
                raise AlreadyTerminalError(
                    f"Batch {batch_id} is in terminal state {batch.state.value}"
                )

            previous = batch.state
            batch.state = BatchState.RECALLED

            def _rollback() -> None:
                batch.state = previous

            tx.on_rollback(_rollback)
            subject = batch_subject(batch_id)
            tx.emit(
                EventKind.BATCH_RECALLED, caller, subject,
                {"batch_id": batch_id, "reason": reason},
                now,
            )
            tx.emit(
                EventKind.BATCH_STATE_CHANGED, caller, subject,
                {"batch_id": batch_id, "from": previous.value, "to": BatchState.RECALLED.value},
                now,
            )

    def update_metadata(
        self,
        caller: str,
        batch_id: int,
        new_uri: str,
        new_hash: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Replace a batch's metadata URI and hash together.

        Raises:
            BadInputError: empty URI or zero hash.
            MetadataHashUsedError: hash was used before by any batch,
                including this batch's current or earlier metadata.
        """
        digest = to_bytes32(new_hash)
        with self._ledger.transaction() as tx:
            self._require_operator(caller)
            batch = self._require_batch(batch_id)
            if not new_uri or not new_uri.strip():
                raise BadInputError("Metadata URI cannot be empty")
            if digest == ZERO_BYTES32:
                raise BadInputError("Metadata hash cannot be zero")
            if digest in self._used_metadata_hashes:
                raise MetadataHashUsedError(f"Metadata hash already used: {digest}")

            old_uri, old_hash = batch.metadata_uri, batch.metadata_hash
            batch.metadata_uri = new_uri
            batch.metadata_hash = digest
            self._used_metadata_hashes.add(digest)

            def _rollback() -> None:
                batch.metadata_uri = old_uri
                batch.metadata_hash = old_hash
                self._used_metadata_hashes.discard(digest)

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.BATCH_METADATA_UPDATED, caller, batch_subject(batch_id),
                {
                    "batch_id": batch_id,
                    "old_uri": old_uri,
                    "new_uri": new_uri,
                    "old_hash": old_hash,
                    "new_hash": digest,
                },
                now,
            )

    def set_operator(
        self,
        caller: str,
        new_operator: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Hand the operator role to another identity (owner only)."""
        with self._ledger.transaction() as tx:
            if caller != self._owner:
                raise UnauthorizedError("Not owner")
            if is_zero_identity(new_operator):
                raise BadInputError("Operator cannot be the zero identity")

            previous = self._operator
            self._operator = new_operator.strip()

            def _rollback() -> None:
                self._operator = previous

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.OPERATOR_CHANGED, caller, "registry:operator",
                {"old": previous, "new": self._operator},
                now,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_batch(self, batch_id: int) -> Batch:
        """Return a copy of the full batch record."""
        with self._ledger.reading():
            return dataclasses.replace(self._require_batch(batch_id))

    def get_state(self, batch_id: int) -> BatchState:
        """Lifecycle state lookup consumed by the other components."""
        with self._ledger.reading():
            return self._require_batch(batch_id).state

    def is_terminal(self, batch_id: int) -> bool:
        with self._ledger.reading():
            return self._require_batch(batch_id).is_terminal

    def exists(self, batch_id: int) -> bool:
        with self._ledger.reading():
            return batch_id in self._batches

    def is_external_id_used(self, external_id: str) -> bool:
        with self._ledger.reading():
            return to_bytes32(external_id) in self._used_external_ids

    def is_metadata_hash_used(self, metadata_hash: str) -> bool:
        with self._ledger.reading():
            return to_bytes32(metadata_hash) in self._used_metadata_hashes

    def count_by_state(self) -> dict[str, int]:
        with self._ledger.reading():
            counts: dict[str, int] = {}
            for b in self._batches.values():
                counts[b.state.value] = counts.get(b.state.value, 0) + 1
            return counts

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        """Serialise registry state for the state snapshot."""
        with self._ledger.reading():
            return {
                "owner": self._owner,
                "operator": self._operator,
                "next_id": self._next_id,
                "used_external_ids": sorted(self._used_external_ids),
                "used_metadata_hashes": sorted(self._used_metadata_hashes),
                "batches": [
                    {
                        "batch_id": b.batch_id,
                        "creator": b.creator,
                        "created_utc": b.created_utc.isoformat(),
                        "external_id": b.external_id,
                        "metadata_uri": b.metadata_uri,
                        "metadata_hash": b.metadata_hash,
                        "state": b.state.value,
                    }
                    for b in self._batches.values()
                ],
            }

    @classmethod
    def from_records(cls, ledger: Ledger, data: dict[str, Any]) -> BatchRegistry:
        """Restore registry state from a snapshot."""
        registry = cls(ledger, owner=data["owner"], operator=data["operator"])
        for bd in data.get("batches", []):
            batch = Batch(
                batch_id=bd["batch_id"],
                creator=bd["creator"],
                created_utc=datetime.fromisoformat(bd["created_utc"]),
                external_id=bd["external_id"],
                metadata_uri=bd["metadata_uri"],
                metadata_hash=bd["metadata_hash"],
                state=BatchState(bd["state"]),
            )
            registry._batches[batch.batch_id] = batch
        registry._next_id = data.get("next_id", len(registry._batches) + 1)
        registry._used_external_ids = set(data.get("used_external_ids", []))
        registry._used_metadata_hashes = set(data.get("used_metadata_hashes", []))
        return registry

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_operator(self, caller: str) -> None:
        if caller != self._operator:
            raise UnauthorizedError("Not operator")

    def _require_batch(self, batch_id: int) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        return batch


def _parse_state(value: BatchState | str) -> BatchState:
    if isinstance(value, BatchState):
        return value
    try:
        return BatchState(value)
    except ValueError:
        raise BadInputError(f"Unknown batch state: {value!r}") from None
