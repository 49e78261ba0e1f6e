"""Change notice workflow: role-gated notices with anchor push on approval.

Roles:
- owner: appoints the regulator, grants supplier/retailer capability,
  wires the root store.
- regulator: a single identity; approves or rejects submitted notices.
- supplier: capability flag; may create notices and submit its own.
- retailer: capability flag; granted and persisted, not yet consumed.

Flow:
    supplier creates notice (DRAFT) against an existing batch
    → the same supplier submits it (SUBMITTED)
    → regulator approves (APPROVED) or rejects (REJECTED)
    → on approval, a non-zero anchor is pushed into the root store
      under the notice's batch id, inside the same atomic unit.

Dependencies are injected: the batch registry (existence checks via
get_state) and, optionally, the root store. A failure in either call
fails the whole operation with no partial effect.

The acknowledgement counter and per-account acknowledgement flags are
part of the stored schema but no operation sets them yet.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, Optional

from batchledger.anchoring.merkle_anchor import BatchStateSource, MerkleAnchor
from batchledger.errors import (
    BadInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from batchledger.models.notice import (
    Notice,
    NoticeStatus,
    NoticeType,
    NoticeView,
    Role,
    Severity,
)
from batchledger.models.values import ZERO_BYTES32, is_zero_identity, to_bytes32
from batchledger.notices.notice_state_machine import NoticeStateMachine
from batchledger.persistence.event_log import EventKind
from batchledger.persistence.ledger import Ledger, Transaction


def notice_subject(notice_id: int) -> str:
    return f"notice:{notice_id}"


class ChangeNoticeWorkflow:
    """Creation, submission and regulator review of change notices.

    Usage:
        workflow = ChangeNoticeWorkflow(ledger, registry, owner="deployer")
        workflow.set_regulator("deployer", "fda")
        workflow.set_supplier("deployer", "acme", True)
        workflow.set_merkle_anchor("deployer", anchor)
        nid = workflow.create_notice("acme", batch_id, NoticeType.QUALITY,
                                     Severity.HIGH, effective, "Leak detected",
                                     anchor="0xabc...")
        workflow.submit("acme", nid)
        workflow.approve("fda", nid, "confirmed")
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: BatchStateSource,
        owner: str,
        regulator: Optional[str] = None,
        merkle_anchor: Optional[MerkleAnchor] = None,
    ) -> None:
        if is_zero_identity(owner):
            raise BadInputError("Workflow owner cannot be the zero identity")
        self._ledger = ledger
        self._registry = registry
        self._owner = owner.strip()
        self._regulator = regulator.strip() if regulator and not is_zero_identity(regulator) else ""
        self._merkle_anchor = merkle_anchor

        self._notices: dict[int, Notice] = {}
        self._next_id = 1
        self._notices_by_batch: dict[int, list[int]] = {}
        self._suppliers: set[str] = set()
        self._retailers: set[str] = set()
        # Latent acknowledgement schema
        self._ack_counts: dict[int, int] = {}
        self._acknowledged: set[tuple[int, str]] = set()

    # ------------------------------------------------------------------
    # Role management (owner only)
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def regulator(self) -> str:
        with self._ledger.reading():
            return self._regulator

    @property
    def merkle_anchor(self) -> Optional[MerkleAnchor]:
        with self._ledger.reading():
            return self._merkle_anchor

    def set_regulator(
        self, caller: str, new_regulator: str, now: Optional[datetime] = None,
    ) -> None:
        with self._ledger.transaction() as tx:
            self._require_owner(caller)
            if is_zero_identity(new_regulator):
                raise BadInputError("Regulator cannot be the zero identity")

            previous = self._regulator
            self._regulator = new_regulator.strip()

            def _rollback() -> None:
                self._regulator = previous

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.REGULATOR_CHANGED, caller, "workflow:regulator",
                {"old": previous, "new": self._regulator},
                now,
            )

    def set_supplier(
        self, caller: str, account: str, enabled: bool = True,
        now: Optional[datetime] = None,
    ) -> None:
        self._set_role(caller, Role.SUPPLIER, account, enabled, now)

    def set_retailer(
        self, caller: str, account: str, enabled: bool = True,
        now: Optional[datetime] = None,
    ) -> None:
        self._set_role(caller, Role.RETAILER, account, enabled, now)

    def set_merkle_anchor(
        self, caller: str, merkle_anchor: Optional[MerkleAnchor],
        now: Optional[datetime] = None,
    ) -> None:
        """Wire (or, with None, unwire) the root store."""
        with self._ledger.transaction() as tx:
            self._require_owner(caller)
            previous = self._merkle_anchor
            self._merkle_anchor = merkle_anchor

            def _rollback() -> None:
                self._merkle_anchor = previous

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.MERKLE_ANCHOR_CHANGED, caller, "workflow:merkle_anchor",
                {"configured": merkle_anchor is not None},
                now,
            )

    def is_supplier(self, account: str) -> bool:
        with self._ledger.reading():
            return account in self._suppliers

    def is_retailer(self, account: str) -> bool:
        with self._ledger.reading():
            return account in self._retailers

    # ------------------------------------------------------------------
    # Notice workflow
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
    ) -> int:
        """Create a DRAFT notice against an existing batch. Returns its id.

        Raises:
            UnauthorizedError: "Not supplier".
            NotFoundError: the batch does not exist.
            BadInputError: "Empty summary", unknown type/severity,
                malformed anchor.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        kind = _parse_enum(NoticeType, notice_type, "notice type")
        level = _parse_enum(Severity, severity, "severity")
        anchor_value = to_bytes32(anchor)

        with self._ledger.transaction() as tx:
            if caller not in self._suppliers:
                raise UnauthorizedError("Not supplier")
            self._registry.get_state(batch_id)
            if not summary:
                raise BadInputError("Empty summary")

            notice_id = self._next_id
            notice = Notice(
                notice_id=notice_id,
                batch_id=batch_id,
                creator=caller,
                created_utc=now,
                notice_type=kind,
                severity=level,
                effective_from=effective_from,
                summary=summary,
                details_uri=details_uri,
                anchor=anchor_value,
                status=NoticeStatus.DRAFT,
            )
            self._notices[notice_id] = notice
            self._next_id += 1
            index = self._notices_by_batch.setdefault(batch_id, [])
            index.append(notice_id)

            def _rollback() -> None:
                self._notices.pop(notice_id, None)
                self._next_id = notice_id
                index.remove(notice_id)
                if not index:
                    self._notices_by_batch.pop(batch_id, None)

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.NOTICE_CREATED, caller, notice_subject(notice_id),
                {
                    "notice_id": notice_id,
                    "batch_id": batch_id,
                    "notice_type": kind.value,
                    "severity": level.value,
                    "effective_from": effective_from.isoformat(),
                    "anchor": anchor_value,
                },
                now,
            )
        return notice_id

    def submit(
        self, caller: str, notice_id: int, now: Optional[datetime] = None,
    ) -> None:
        """DRAFT → SUBMITTED, by the notice's creator while still a supplier."""
        with self._ledger.transaction() as tx:
            notice = self._require_notice(notice_id)
            if caller != notice.creator:
                raise UnauthorizedError("Not creator")
            if caller not in self._suppliers:
                raise UnauthorizedError("Not supplier")
            self._transition(tx, notice, NoticeStatus.SUBMITTED)
            tx.emit(
                EventKind.NOTICE_SUBMITTED, caller, notice_subject(notice_id),
                {"notice_id": notice_id, "batch_id": notice.batch_id},
                now,
            )

    def approve(
        self,
        caller: str,
        notice_id: int,
        regulator_note: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """SUBMITTED → APPROVED. Returns True if an anchor was pushed.

        When a root store is wired and the notice carries a non-zero
        anchor, the anchor is submitted for the notice's batch as part of
        the same atomic unit.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._ledger.transaction() as tx:
            self._require_regulator(caller)
            notice = self._require_notice(notice_id)
            self._decide(tx, notice, NoticeStatus.APPROVED, regulator_note, now)
            tx.emit(
                EventKind.NOTICE_APPROVED, caller, notice_subject(notice_id),
                {
                    "notice_id": notice_id,
                    "batch_id": notice.batch_id,
                    "regulator_note": regulator_note,
                },
                now,
            )

            if self._merkle_anchor is None or notice.anchor == ZERO_BYTES32:
                return False

            self._merkle_anchor.submit_root(caller, notice.batch_id, notice.anchor, now)
            tx.emit(
                EventKind.ANCHOR_PUSHED, caller, notice_subject(notice_id),
                {
                    "notice_id": notice_id,
                    "batch_id": notice.batch_id,
                    "anchor": notice.anchor,
                },
                now,
            )
            return True

    def reject(
        self,
        caller: str,
        notice_id: int,
        regulator_note: str,
        now: Optional[datetime] = None,
    ) -> None:
        """SUBMITTED → REJECTED. Never touches the root store."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._ledger.transaction() as tx:
            self._require_regulator(caller)
            notice = self._require_notice(notice_id)
            self._decide(tx, notice, NoticeStatus.REJECTED, regulator_note, now)
            tx.emit(
                EventKind.NOTICE_REJECTED, caller, notice_subject(notice_id),
                {
                    "notice_id": notice_id,
                    "batch_id": notice.batch_id,
                    "regulator_note": regulator_note,
                },
                now,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_notice(self, notice_id: int) -> NoticeView:
        """Full notice record (a copy) plus its acknowledgement count."""
        with self._ledger.reading():
            notice = self._require_notice(notice_id)
            return NoticeView(
                notice=dataclasses.replace(notice),
                ack_count=self._ack_counts.get(notice_id, 0),
            )

    def notices_for_batch(self, batch_id: int) -> list[int]:
        """Notice ids raised against a batch, in creation order."""
        with self._ledger.reading():
            return list(self._notices_by_batch.get(batch_id, []))

    def has_acknowledged(self, notice_id: int, account: str) -> bool:
        with self._ledger.reading():
            return (notice_id, account) in self._acknowledged

    def anchor_verified_on_merkle(self, notice_id: int) -> bool:
        """Does the root on file for the notice's batch equal its anchor?

        False when no root store is wired, when the notice has no anchor,
        and for unknown notice ids (whose anchor reads as zero).
        """
        with self._ledger.reading():
            notice = self._notices.get(notice_id)
            merkle = self._merkle_anchor
            if merkle is None or notice is None or notice.anchor == ZERO_BYTES32:
                return False
            return merkle.verify_root(notice.batch_id, notice.anchor)

    @property
    def notice_count(self) -> int:
        with self._ledger.reading():
            return len(self._notices)

    def count_by_status(self) -> dict[str, int]:
        with self._ledger.reading():
            counts: dict[str, int] = {}
            for n in self._notices.values():
                counts[n.status.value] = counts.get(n.status.value, 0) + 1
            return counts

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        """Serialise workflow state for the state snapshot."""
        with self._ledger.reading():
            return {
                "owner": self._owner,
                "regulator": self._regulator,
                "merkle_anchor_configured": self._merkle_anchor is not None,
                "next_id": self._next_id,
                "suppliers": sorted(self._suppliers),
                "retailers": sorted(self._retailers),
                "notices_by_batch": {
                    str(k): list(v) for k, v in self._notices_by_batch.items()
                },
                "ack_counts": {str(k): v for k, v in self._ack_counts.items()},
                "acknowledged": sorted([nid, acct] for nid, acct in self._acknowledged),
                "notices": [
                    {
                        "notice_id": n.notice_id,
                        "batch_id": n.batch_id,
                        "creator": n.creator,
                        "created_utc": n.created_utc.isoformat(),
                        "notice_type": n.notice_type.value,
                        "severity": n.severity.value,
                        "effective_from": n.effective_from.isoformat(),
                        "summary": n.summary,
                        "details_uri": n.details_uri,
                        "anchor": n.anchor,
                        "status": n.status.value,
                        "regulator_note": n.regulator_note,
                        "decided_utc": (
                            n.decided_utc.isoformat() if n.decided_utc else None
                        ),
                    }
                    for n in self._notices.values()
                ],
            }

    @classmethod
    def from_records(
        cls,
        ledger: Ledger,
        registry: BatchStateSource,
        data: dict[str, Any],
        merkle_anchor: Optional[MerkleAnchor] = None,
    ) -> ChangeNoticeWorkflow:
        """Restore workflow state from a snapshot.

        The root store is re-wired only if it was wired when saved.
        """
        if not data.get("merkle_anchor_configured", True):
            merkle_anchor = None
        workflow = cls(
            ledger, registry,
            owner=data["owner"],
            regulator=data.get("regulator") or None,
            merkle_anchor=merkle_anchor,
        )
        for nd in data.get("notices", []):
            notice = Notice(
                notice_id=nd["notice_id"],
                batch_id=nd["batch_id"],
                creator=nd["creator"],
                created_utc=datetime.fromisoformat(nd["created_utc"]),
                notice_type=NoticeType(nd["notice_type"]),
                severity=Severity(nd["severity"]),
                effective_from=datetime.fromisoformat(nd["effective_from"]),
                summary=nd["summary"],
                details_uri=nd.get("details_uri", ""),
                anchor=nd.get("anchor", ZERO_BYTES32),
                status=NoticeStatus(nd["status"]),
                regulator_note=nd.get("regulator_note", ""),
                decided_utc=(
                    datetime.fromisoformat(nd["decided_utc"])
                    if nd.get("decided_utc") else None
                ),
            )
            workflow._notices[notice.notice_id] = notice
        workflow._next_id = data.get("next_id", len(workflow._notices) + 1)
        workflow._suppliers = set(data.get("suppliers", []))
        workflow._retailers = set(data.get("retailers", []))
        workflow._notices_by_batch = {
            int(k): list(v) for k, v in data.get("notices_by_batch", {}).items()
        }
        workflow._ack_counts = {int(k): v for k, v in data.get("ack_counts", {}).items()}
        workflow._acknowledged = {
            (int(nid), acct) for nid, acct in data.get("acknowledged", [])
        }
        return workflow

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_role(
        self,
        caller: str,
        role: Role,
        account: str,
        enabled: bool,
        now: Optional[datetime],
    ) -> None:
        with self._ledger.transaction() as tx:
            self._require_owner(caller)
            if is_zero_identity(account):
                raise BadInputError(f"Cannot grant {role.value} to the zero identity")

            members = self._suppliers if role == Role.SUPPLIER else self._retailers
            was_member = account in members
            if enabled:
                members.add(account)
            else:
                members.discard(account)

            def _rollback() -> None:
                if was_member:
                    members.add(account)
                else:
                    members.discard(account)

            tx.on_rollback(_rollback)
            tx.emit(
                EventKind.ROLE_CHANGED, caller, f"role:{role.value}:{account}",
                {"role": role.value, "account": account, "enabled": enabled},
                now,
            )

    def _transition(
        self, tx: Transaction, notice: Notice, target: NoticeStatus,
    ) -> None:
        errors = NoticeStateMachine.validate_transition(notice, target)
        if errors:
            raise InvalidStateError("; ".join(errors))

        previous = notice.status
        notice.status = target

        def _rollback() -> None:
            notice.status = previous

        tx.on_rollback(_rollback)

    def _decide(
        self,
        tx: Transaction,
        notice: Notice,
        target: NoticeStatus,
        regulator_note: str,
        now: datetime,
    ) -> None:
        self._transition(tx, notice, target)
        previous_note, previous_decided = notice.regulator_note, notice.decided_utc
        notice.regulator_note = regulator_note
        notice.decided_utc = now

        def _rollback() -> None:
            notice.regulator_note = previous_note
            notice.decided_utc = previous_decided

        tx.on_rollback(_rollback)

    def _require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise UnauthorizedError("Not owner")

    def _require_regulator(self, caller: str) -> None:
        if not self._regulator or caller != self._regulator:
            raise UnauthorizedError("Not regulator")

    def _require_notice(self, notice_id: int) -> Notice:
        notice = self._notices.get(notice_id)
        if notice is None:
            raise NotFoundError("Missing")
        return notice


def _parse_enum(enum_cls: Any, value: Any, label: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise BadInputError(f"Unknown {label}: {value!r}") from None
