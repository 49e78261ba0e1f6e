"""Tests for ChangeNoticeWorkflow: roles, notice flow and anchor push."""

from datetime import datetime, timezone

import pytest

from batchledger.anchoring.merkle_anchor import MerkleAnchor
from batchledger.errors import (
    BadInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from batchledger.models.batch import BatchState
from batchledger.models.notice import NoticeStatus, NoticeType, Severity
from batchledger.models.values import ZERO_ADDRESS, ZERO_BYTES32, to_bytes32
from batchledger.notices.change_notice import ChangeNoticeWorkflow
from batchledger.notices.notice_state_machine import NoticeStateMachine
from batchledger.persistence.event_log import EventKind, EventLog
from batchledger.persistence.ledger import Ledger
from batchledger.registry.batch_registry import BatchRegistry


NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
EFFECTIVE = datetime(2025, 4, 1, tzinfo=timezone.utc)
ANCHOR = "0x" + "cd" * 32


class _Setup:
    def __init__(self, anchored: bool = True) -> None:
        self.log = EventLog()
        self.ledger = Ledger(self.log)
        self.registry = BatchRegistry(self.ledger, owner="deployer", operator="ops")
        self.merkle = MerkleAnchor(self.ledger, self.registry)
        self.workflow = ChangeNoticeWorkflow(self.ledger, self.registry, owner="deployer")
        self.workflow.set_regulator("deployer", "fda", NOW)
        self.workflow.set_supplier("deployer", "acme", True, NOW)
        if anchored:
            self.workflow.set_merkle_anchor("deployer", self.merkle, NOW)
        self.batch_id = self.registry.create_batch(
            "acme", to_bytes32(1), "ipfs://meta/1", to_bytes32(101), NOW,
        )

    def notice(self, anchor: str | None = ANCHOR, caller: str = "acme") -> int:
        return self.workflow.create_notice(
            caller, self.batch_id, NoticeType.QUALITY, Severity.HIGH,
            EFFECTIVE, "Leak detected", "ipfs://details", anchor, NOW,
        )

    def submitted(self, anchor: str | None = ANCHOR) -> int:
        notice_id = self.notice(anchor)
        self.workflow.submit("acme", notice_id, NOW)
        return notice_id


class TestRoles:
    def test_only_owner_sets_roles(self) -> None:
        s = _Setup()
        with pytest.raises(UnauthorizedError, match="Not owner"):
            s.workflow.set_regulator("fda", "fda2", NOW)
        with pytest.raises(UnauthorizedError):
            s.workflow.set_supplier("acme", "beta", True, NOW)
        with pytest.raises(UnauthorizedError):
            s.workflow.set_retailer("acme", "shop", True, NOW)
        with pytest.raises(UnauthorizedError):
            s.workflow.set_merkle_anchor("acme", None, NOW)

    def test_zero_identities_rejected(self) -> None:
        s = _Setup()
        with pytest.raises(BadInputError):
            s.workflow.set_regulator("deployer", ZERO_ADDRESS, NOW)
        with pytest.raises(BadInputError):
            s.workflow.set_supplier("deployer", "", True, NOW)
        assert s.workflow.regulator == "fda"

    def test_retailer_flag(self) -> None:
        s = _Setup()
        s.workflow.set_retailer("deployer", "shop", True, NOW)
        assert s.workflow.is_retailer("shop")
        s.workflow.set_retailer("deployer", "shop", False, NOW)
        assert not s.workflow.is_retailer("shop")
        changes = s.log.events_for("role:retailer:shop", EventKind.ROLE_CHANGED)
        assert [e.payload["enabled"] for e in changes] == [True, False]

    def test_no_regulator_means_nobody_approves(self) -> None:
        ledger = Ledger()
        registry = BatchRegistry(ledger, owner="deployer")
        workflow = ChangeNoticeWorkflow(ledger, registry, owner="deployer")
        with pytest.raises(UnauthorizedError, match="Not regulator"):
            workflow.approve("", 1, "note", NOW)


class TestCreateNotice:
    def test_creates_draft(self) -> None:
        s = _Setup()
        notice_id = s.notice()
        assert notice_id == 1
        view = s.workflow.get_notice(notice_id)
        assert view.ack_count == 0
        notice = view.notice
        assert notice.status == NoticeStatus.DRAFT
        assert notice.creator == "acme"
        assert notice.created_utc == NOW
        assert notice.anchor == ANCHOR
        assert notice.details_uri == "ipfs://details"
        assert s.workflow.notices_for_batch(s.batch_id) == [1]

    def test_accepts_enum_values_as_strings(self) -> None:
        s = _Setup()
        notice_id = s.workflow.create_notice(
            "acme", s.batch_id, "labeling", "low", EFFECTIVE, "Label fix", now=NOW,
        )
        notice = s.workflow.get_notice(notice_id).notice
        assert notice.notice_type == NoticeType.LABELING
        assert notice.severity == Severity.LOW
        assert notice.anchor == ZERO_BYTES32

    def test_unknown_type(self) -> None:
        s = _Setup()
        with pytest.raises(BadInputError, match="Unknown notice type"):
            s.workflow.create_notice("acme", s.batch_id, "rumour", "low", EFFECTIVE, "x")

    def test_non_supplier(self) -> None:
        s = _Setup()
        with pytest.raises(UnauthorizedError, match="Not supplier"):
            s.notice(caller="stranger")
        assert s.workflow.notice_count == 0

    def test_missing_batch(self) -> None:
        s = _Setup()
        with pytest.raises(NotFoundError):
            s.workflow.create_notice(
                "acme", 99, NoticeType.RECALL, Severity.CRITICAL, EFFECTIVE, "x", now=NOW,
            )
        assert s.workflow.notices_for_batch(99) == []

    def test_empty_summary(self) -> None:
        s = _Setup()
        with pytest.raises(BadInputError, match="Empty summary"):
            s.workflow.create_notice(
                "acme", s.batch_id, NoticeType.OTHER, Severity.LOW, EFFECTIVE, "", now=NOW,
            )

    def test_terminal_batch_still_accepts_notices(self) -> None:
        s = _Setup()
        s.registry.recall("ops", s.batch_id, "r", NOW)
        assert s.registry.get_state(s.batch_id) == BatchState.RECALLED
        assert s.notice() == 1

    def test_ids_are_sequential_across_batches(self) -> None:
        s = _Setup()
        other = s.registry.create_batch("acme", to_bytes32(2), "ipfs://2", to_bytes32(102), NOW)
        s.notice()
        second = s.workflow.create_notice(
            "acme", other, NoticeType.OTHER, Severity.LOW, EFFECTIVE, "x", now=NOW,
        )
        assert second == 2
        assert s.workflow.notices_for_batch(other) == [2]


class TestSubmit:
    def test_creator_submits(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        assert s.workflow.get_notice(notice_id).notice.status == NoticeStatus.SUBMITTED

    def test_missing(self) -> None:
        s = _Setup()
        with pytest.raises(NotFoundError, match="Missing"):
            s.workflow.submit("acme", 3, NOW)

    def test_other_supplier_not_creator(self) -> None:
        s = _Setup()
        s.workflow.set_supplier("deployer", "beta", True, NOW)
        notice_id = s.notice()
        with pytest.raises(UnauthorizedError, match="Not creator"):
            s.workflow.submit("beta", notice_id, NOW)

    def test_creator_lost_supplier_role(self) -> None:
        s = _Setup()
        notice_id = s.notice()
        s.workflow.set_supplier("deployer", "acme", False, NOW)
        with pytest.raises(UnauthorizedError, match="Not supplier"):
            s.workflow.submit("acme", notice_id, NOW)

    def test_resubmit(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        with pytest.raises(InvalidStateError, match="Not draft"):
            s.workflow.submit("acme", notice_id, NOW)


class TestApprove:
    def test_approve_pushes_anchor(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        assert s.workflow.approve("fda", notice_id, "confirmed", NOW) is True

        notice = s.workflow.get_notice(notice_id).notice
        assert notice.status == NoticeStatus.APPROVED
        assert notice.regulator_note == "confirmed"
        assert notice.decided_utc == NOW
        assert s.merkle.get_root(s.batch_id) == ANCHOR
        assert s.workflow.anchor_verified_on_merkle(notice_id)

        kinds = [e.event_kind for e in s.log.events()[-3:]]
        assert kinds == [
            EventKind.NOTICE_APPROVED, EventKind.ROOT_SUBMITTED, EventKind.ANCHOR_PUSHED,
        ]
        assert s.log.last_event.actor_id == "fda"

    def test_approve_without_anchor(self) -> None:
        s = _Setup()
        notice_id = s.submitted(anchor=None)
        assert s.workflow.approve("fda", notice_id, "ok", NOW) is False
        assert s.merkle.root_count == 0
        assert not s.workflow.anchor_verified_on_merkle(notice_id)

    def test_approve_with_no_root_store(self) -> None:
        s = _Setup(anchored=False)
        notice_id = s.submitted()
        assert s.workflow.approve("fda", notice_id, "ok", NOW) is False
        assert s.merkle.root_count == 0
        assert not s.workflow.anchor_verified_on_merkle(notice_id)

    def test_approve_draft(self) -> None:
        s = _Setup()
        notice_id = s.notice()
        with pytest.raises(InvalidStateError, match="Not submitted"):
            s.workflow.approve("fda", notice_id, "x", NOW)

    def test_double_approve(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        s.workflow.approve("fda", notice_id, "first", NOW)
        with pytest.raises(InvalidStateError, match="Not submitted"):
            s.workflow.approve("fda", notice_id, "second", NOW)
        assert s.workflow.get_notice(notice_id).notice.regulator_note == "first"

    def test_non_regulator(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        with pytest.raises(UnauthorizedError, match="Not regulator"):
            s.workflow.approve("deployer", notice_id, "x", NOW)

    def test_regulator_checked_before_existence(self) -> None:
        s = _Setup()
        with pytest.raises(UnauthorizedError):
            s.workflow.approve("acme", 42, "x", NOW)
        with pytest.raises(NotFoundError, match="Missing"):
            s.workflow.approve("fda", 42, "x", NOW)

    def test_failed_anchor_push_rolls_back_approval(self) -> None:
        s = _Setup()
        notice_id = s.submitted()

        class BrokenAnchor(MerkleAnchor):
            def submit_root(self, caller, batch_id, root, now=None):
                raise NotFoundError("root store unavailable")

        s.workflow.set_merkle_anchor("deployer", BrokenAnchor(s.ledger, s.registry), NOW)
        before = s.log.count
        with pytest.raises(NotFoundError):
            s.workflow.approve("fda", notice_id, "confirmed", NOW)

        notice = s.workflow.get_notice(notice_id).notice
        assert notice.status == NoticeStatus.SUBMITTED
        assert notice.regulator_note == ""
        assert notice.decided_utc is None
        assert s.log.count == before

    def test_later_submission_overwrites_pushed_anchor(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        s.workflow.approve("fda", notice_id, "ok", NOW)
        s.merkle.submit_root("anyone", s.batch_id, to_bytes32(9), NOW)
        assert not s.workflow.anchor_verified_on_merkle(notice_id)


class TestReject:
    def test_reject_never_touches_roots(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        s.workflow.reject("fda", notice_id, "insufficient evidence", NOW)
        notice = s.workflow.get_notice(notice_id).notice
        assert notice.status == NoticeStatus.REJECTED
        assert notice.regulator_note == "insufficient evidence"
        assert s.merkle.root_count == 0

    def test_reject_then_approve(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        s.workflow.reject("fda", notice_id, "no", NOW)
        with pytest.raises(InvalidStateError):
            s.workflow.approve("fda", notice_id, "yes", NOW)

    def test_reject_requires_regulator(self) -> None:
        s = _Setup()
        notice_id = s.submitted()
        with pytest.raises(UnauthorizedError):
            s.workflow.reject("acme", notice_id, "x", NOW)


class TestQueriesAndPersistence:
    def test_unknown_notice(self) -> None:
        s = _Setup()
        with pytest.raises(NotFoundError):
            s.workflow.get_notice(1)
        assert not s.workflow.anchor_verified_on_merkle(1)
        assert not s.workflow.has_acknowledged(1, "shop")

    def test_count_by_status(self) -> None:
        s = _Setup()
        s.notice()
        approved = s.submitted(anchor=None)
        s.workflow.approve("fda", approved, "ok", NOW)
        assert s.workflow.count_by_status() == {"draft": 1, "approved": 1}

    def test_round_trip(self) -> None:
        s = _Setup()
        s.workflow.set_retailer("deployer", "shop", True, NOW)
        first = s.submitted()
        s.workflow.approve("fda", first, "ok", NOW)
        s.notice(anchor=None)

        restored = ChangeNoticeWorkflow.from_records(
            s.ledger, s.registry, s.workflow.to_records(), merkle_anchor=s.merkle,
        )
        assert restored.regulator == "fda"
        assert restored.is_supplier("acme")
        assert restored.is_retailer("shop")
        assert restored.get_notice(first) == s.workflow.get_notice(first)
        assert restored.notices_for_batch(s.batch_id) == [1, 2]
        assert restored.anchor_verified_on_merkle(first)

    def test_round_trip_keeps_unwired_root_store(self) -> None:
        s = _Setup(anchored=False)
        restored = ChangeNoticeWorkflow.from_records(
            s.ledger, s.registry, s.workflow.to_records(), merkle_anchor=s.merkle,
        )
        assert restored.merkle_anchor is None


class TestNoticeStateMachine:
    def test_reserved_statuses_unreachable(self) -> None:
        s = _Setup()
        notice = s.workflow.get_notice(s.submitted()).notice
        for target in (NoticeStatus.SUPERSEDED, NoticeStatus.CLOSED):
            errors = NoticeStateMachine.validate_transition(notice, target)
            assert errors == [f"Unreachable status: {target.value}"]

    def test_final_statuses(self) -> None:
        assert NoticeStateMachine.is_final(NoticeStatus.APPROVED)
        assert NoticeStateMachine.is_final(NoticeStatus.REJECTED)
        assert not NoticeStateMachine.is_final(NoticeStatus.DRAFT)
        assert NoticeStateMachine.valid_transitions(NoticeStatus.SUBMITTED) == {
            NoticeStatus.APPROVED, NoticeStatus.REJECTED,
        }
