"""Batch ledger service: unified facade over registry, notices and roots.

This is the primary interface for programmatic access. It wires the
three components to one sequencer and one event log:
- Batch registry (create, advance, recall, metadata, operator)
- Change notice workflow (roles, create, submit, approve, reject)
- Root store (open submission, lookup, verification)
- Persistence (event log, state snapshot)

All operations return a ServiceResult. Domain rejections come back as
``success=False`` with the violated precondition in ``errors`` and a
stable ``error_code``; nothing is applied and nothing is logged for a
rejected operation. Accepted operations are durably recorded in the
event log before the state snapshot is refreshed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from batchledger.anchoring.merkle_anchor import MerkleAnchor
from batchledger.config import LedgerConfig
from batchledger.errors import LedgerError
from batchledger.models.batch import Batch, BatchState
from batchledger.models.notice import NoticeType, NoticeView, Severity
from batchledger.notices.change_notice import ChangeNoticeWorkflow
from batchledger.persistence.event_log import EventKind, EventLog, EventRecord
from batchledger.persistence.ledger import Ledger
from batchledger.persistence.state_store import StateStore
from batchledger.registry.batch_registry import BatchRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


class SupplyChainService:
    """Unified batch ledger facade.

    Usage:
        service = SupplyChainService(owner="deployer", operator="ops",
                                     regulator="fda")
        service.set_supplier("deployer", "acme")
        result = service.create_batch("acme", ext_id, uri, digest)
        batch_id = result.data["batch_id"]
        result = service.create_notice("acme", batch_id, "quality", "high",
                                       effective, "Leak detected", anchor=root)
        service.submit_notice("acme", result.data["notice_id"])
        service.approve_notice("fda", result.data["notice_id"], "confirmed")
        service.verify_root(batch_id, root)  # True

    Persistence (optional):
        service = SupplyChainService.from_config(LedgerConfig.from_config_dir(path))
        # Events are appended to events.jsonl; state.json is refreshed
        # after every accepted operation and loaded on construction.
    """

    def __init__(
        self,
        owner: str,
        operator: Optional[str] = None,
        regulator: Optional[str] = None,
        anchoring_enabled: bool = True,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._ledger = Ledger(event_log)
        self._state_store = state_store

        # Persistence health flag: set when the snapshot could not be
        # written after an operation was already committed to the log.
        self._persistence_degraded: bool = False

        snapshot = state_store.load() if state_store is not None else None
        if snapshot is not None:
            # A stale snapshot lags the id counters and uniqueness sets
            # behind the log; accepting writes on it could reissue both.
            if snapshot.get("event_count") != self._ledger.event_log.count:
                logger.error(
                    "State snapshot covers %s events but the log holds %d",
                    snapshot.get("event_count"), self._ledger.event_log.count,
                )
                raise RuntimeError(
                    f"State snapshot covers {snapshot.get('event_count')} events but "
                    f"the event log holds {self._ledger.event_log.count}; refusing to "
                    "start from stale state"
                )
            self._restore(snapshot)
        elif self._ledger.event_log.count > 0:
            raise RuntimeError(
                f"Event log holds {self._ledger.event_log.count} events but no "
                "state snapshot exists; refusing to start from empty state"
            )
        else:
            self._registry = BatchRegistry(self._ledger, owner=owner, operator=operator)
            self._anchor = MerkleAnchor(self._ledger, self._registry)
            self._notices = ChangeNoticeWorkflow(self._ledger, self._registry, owner=owner)
            self._bootstrap(owner, regulator, anchoring_enabled)

    @classmethod
    def from_config(cls, config: LedgerConfig) -> SupplyChainService:
        """Create a service with durable persistence under config.data_dir."""
        config.data_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            owner=config.owner,
            operator=config.operator,
            regulator=config.regulator or None,
            anchoring_enabled=config.anchoring_enabled,
            event_log=EventLog(storage_path=config.event_log_path),
            state_store=StateStore(config.state_path),
        )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def event_log(self) -> EventLog:
        return self._ledger.event_log

    @property
    def registry(self) -> BatchRegistry:
        return self._registry

    @property
    def notices(self) -> ChangeNoticeWorkflow:
        return self._notices

    @property
    def merkle_anchor(self) -> MerkleAnchor:
        return self._anchor

    # ------------------------------------------------------------------
    # Batch registry
    # ------------------------------------------------------------------

    def create_batch(
        self,
        caller: str,
        external_id: str,
        metadata_uri: str,
        metadata_hash: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Register a new batch in REGISTERED state."""
        def _op() -> dict[str, Any]:
            batch_id = self._registry.create_batch(
                caller, external_id, metadata_uri, metadata_hash, now,
            )
            return {"batch_id": batch_id, "state": BatchState.REGISTERED.value}
        return self._execute("create_batch", caller, _op)

    def advance_lifecycle(
        self,
        caller: str,
        batch_id: int,
        new_state: BatchState | str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            state = self._registry.advance_lifecycle(caller, batch_id, new_state, now)
            return {"batch_id": batch_id, "state": state.value}
        return self._execute("advance_lifecycle", caller, _op)

    def recall_batch(
        self,
        caller: str,
        batch_id: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._registry.recall(caller, batch_id, reason, now)
            return {"batch_id": batch_id, "state": BatchState.RECALLED.value}
        return self._execute("recall", caller, _op)

    def update_metadata(
        self,
        caller: str,
        batch_id: int,
        new_uri: str,
        new_hash: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._registry.update_metadata(caller, batch_id, new_uri, new_hash, now)
            batch = self._registry.get_batch(batch_id)
            return {
                "batch_id": batch_id,
                "metadata_uri": batch.metadata_uri,
                "metadata_hash": batch.metadata_hash,
            }
        return self._execute("update_metadata", caller, _op)

    def set_operator(
        self, caller: str, new_operator: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._registry.set_operator(caller, new_operator, now)
            return {"operator": self._registry.operator}
        return self._execute("set_operator", caller, _op)

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        """Look up a batch; None if it was never created."""
        if not self._registry.exists(batch_id):
            return None
        return self._registry.get_batch(batch_id)

    # ------------------------------------------------------------------
    # Change notice roles
    # ------------------------------------------------------------------

    def set_regulator(
        self, caller: str, new_regulator: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._notices.set_regulator(caller, new_regulator, now)
            return {"regulator": self._notices.regulator}
        return self._execute("set_regulator", caller, _op)

    def set_supplier(
        self, caller: str, account: str, enabled: bool = True,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._notices.set_supplier(caller, account, enabled, now)
            return {"account": account, "role": "supplier", "enabled": enabled}
        return self._execute("set_supplier", caller, _op)

    def set_retailer(
        self, caller: str, account: str, enabled: bool = True,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._notices.set_retailer(caller, account, enabled, now)
            return {"account": account, "role": "retailer", "enabled": enabled}
        return self._execute("set_retailer", caller, _op)

    def set_anchoring(
        self, caller: str, enabled: bool, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Wire or unwire this service's root store into the notice workflow."""
        def _op() -> dict[str, Any]:
            self._notices.set_merkle_anchor(caller, self._anchor if enabled else None, now)
            return {"anchoring_enabled": enabled}
        return self._execute("set_merkle_anchor", caller, _op)

    # ------------------------------------------------------------------
    # Change notice workflow
    # ------------------------------------------------------------------

    def create_notice(
        self,
        caller: str,
        batch_id: int,
        notice_type: NoticeType | str,
        severity: Severity | str,
        effective_from: datetime,
        summary: str,
        details_uri: str = "",
        anchor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create a DRAFT notice against an existing batch."""
        def _op() -> dict[str, Any]:
            notice_id = self._notices.create_notice(
                caller, batch_id, notice_type, severity, effective_from,
                summary, details_uri, anchor, now,
            )
            return {"notice_id": notice_id, "batch_id": batch_id, "status": "draft"}
        return self._execute("create_notice", caller, _op)

    def submit_notice(
        self, caller: str, notice_id: int, now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._notices.submit(caller, notice_id, now)
            return {"notice_id": notice_id, "status": "submitted"}
        return self._execute("submit_notice", caller, _op)

    def approve_notice(
        self,
        caller: str,
        notice_id: int,
        regulator_note: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            pushed = self._notices.approve(caller, notice_id, regulator_note, now)
            return {"notice_id": notice_id, "status": "approved", "anchor_pushed": pushed}
        return self._execute("approve_notice", caller, _op)

    def reject_notice(
        self,
        caller: str,
        notice_id: int,
        regulator_note: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._notices.reject(caller, notice_id, regulator_note, now)
            return {"notice_id": notice_id, "status": "rejected"}
        return self._execute("reject_notice", caller, _op)

    def get_notice(self, notice_id: int) -> Optional[NoticeView]:
        """Look up a notice with its acknowledgement count; None if missing."""
        try:
            return self._notices.get_notice(notice_id)
        except LedgerError:
            return None

    def notices_for_batch(self, batch_id: int) -> list[int]:
        return self._notices.notices_for_batch(batch_id)

    def anchor_verified_on_merkle(self, notice_id: int) -> bool:
        return self._notices.anchor_verified_on_merkle(notice_id)

    # ------------------------------------------------------------------
    # Root store
    # ------------------------------------------------------------------

    def submit_root(
        self,
        caller: str,
        batch_id: int,
        root: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Declare a root for a batch. Open to any caller."""
        def _op() -> dict[str, Any]:
            value = self._anchor.submit_root(caller, batch_id, root, now)
            return {"batch_id": batch_id, "root": value}
        return self._execute("submit_root", caller, _op)

    def get_root(self, batch_id: int) -> str:
        return self._anchor.get_root(batch_id)

    def verify_root(self, batch_id: int, proposed_root: str) -> bool:
        """False for a mismatch, a batch with no root, or a malformed root."""
        try:
            return self._anchor.verify_root(batch_id, proposed_root)
        except LedgerError:
            return False

    # ------------------------------------------------------------------
    # Audit trail and status
    # ------------------------------------------------------------------

    def events_for(
        self, subject_id: str, kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Audit records about one entity, e.g. "batch:1" or "notice:2"."""
        with self._ledger.reading():
            return self._ledger.event_log.events_for(subject_id, kind)

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        with self._ledger.reading():
            return {
                "batches": {
                    "total": self._registry.batch_count,
                    "by_state": self._registry.count_by_state(),
                },
                "notices": {
                    "total": self._notices.notice_count,
                    "by_status": self._notices.count_by_status(),
                },
                "roots": self._anchor.root_count,
                "roles": {
                    "owner": self._registry.owner,
                    "operator": self._registry.operator,
                    "regulator": self._notices.regulator,
                    "anchoring_enabled": self._notices.merkle_anchor is not None,
                },
                "events": {
                    "total": self._ledger.event_log.count,
                    "merkle_root": self._ledger.event_log.merkle_root(),
                },
                "persistence_degraded": self._persistence_degraded,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(
        self,
        action: str,
        caller: str,
        op: Callable[[], dict[str, Any]],
    ) -> ServiceResult:
        """Run one operation as an atomic unit and wrap the outcome.

        The whole call holds the sequencer so that the returned data and
        committed event ids belong to this operation alone.
        """
        with self._ledger.reading():
            try:
                data = op()
            except LedgerError as e:
                logger.warning("%s by %s rejected: %s", action, caller, e)
                return ServiceResult(success=False, errors=[str(e)], error_code=e.code)
            except OSError as e:
                logger.error("%s by %s not recorded: %s", action, caller, e)
                return ServiceResult(
                    success=False,
                    errors=[f"Event log failure: {e}"],
                    error_code="persistence",
                )

            data["event_ids"] = [e.event_id for e in self._ledger.last_committed]
            logger.info("%s by %s committed (%s)", action, caller, ", ".join(data["event_ids"]))

            warning = self._safe_persist_post_audit()
            if warning:
                data["warning"] = warning
            return ServiceResult(success=True, data=data)

    def _bootstrap(
        self, owner: str, regulator: Optional[str], anchoring_enabled: bool,
    ) -> None:
        """Record the initial role assignments of a fresh deployment."""
        with self._ledger.transaction():
            if regulator:
                self._notices.set_regulator(owner, regulator)
            if anchoring_enabled:
                self._notices.set_merkle_anchor(owner, self._anchor)
        self._safe_persist_post_audit()

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._registry = BatchRegistry.from_records(self._ledger, snapshot["registry"])
        self._anchor = MerkleAnchor.from_records(
            self._ledger, self._registry, snapshot.get("roots", {}),
        )
        self._notices = ChangeNoticeWorkflow.from_records(
            self._ledger, self._registry, snapshot["notices"], merkle_anchor=self._anchor,
        )

    def _persist_state(self) -> None:
        """Write the state snapshot (if wired). Can raise OSError."""
        if self._state_store is None:
            return
        self._state_store.save(
            registry=self._registry.to_records(),
            notices=self._notices.to_records(),
            roots=self._anchor.to_records(),
            event_count=self._ledger.event_log.count,
        )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after events have been committed.

        MUST NOT roll back in-memory state; the event log is already
        durable. On failure the snapshot is stale; the degraded flag is
        set for operator attention and a warning string is returned.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State snapshot write failed: %s", e)
            return f"Persistence degraded: {e}; state committed in event log but snapshot is stale"
