"""Tests for MerkleAnchor: open root submission and verification."""

from datetime import datetime, timezone

import pytest

from batchledger.anchoring.merkle_anchor import MerkleAnchor
from batchledger.errors import BadInputError, NotFoundError
from batchledger.models.values import ZERO_BYTES32, to_bytes32
from batchledger.persistence.event_log import EventKind, EventLog
from batchledger.persistence.ledger import Ledger
from batchledger.registry.batch_registry import BatchRegistry


NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _make_anchor() -> tuple[MerkleAnchor, BatchRegistry, EventLog]:
    log = EventLog()
    ledger = Ledger(log)
    registry = BatchRegistry(ledger, owner="deployer", operator="ops")
    registry.create_batch("acme", to_bytes32(1), "ipfs://meta/1", to_bytes32(101), NOW)
    return MerkleAnchor(ledger, registry), registry, log


class TestSubmitRoot:
    def test_any_caller_may_submit(self) -> None:
        anchor, _, _ = _make_anchor()
        root = anchor.submit_root("anyone", 1, "0x" + "ab" * 32, NOW)
        assert root == "0x" + "ab" * 32
        assert anchor.get_root(1) == root

    def test_overwrite(self) -> None:
        anchor, _, log = _make_anchor()
        anchor.submit_root("a", 1, to_bytes32(5), NOW)
        anchor.submit_root("b", 1, to_bytes32(6), NOW)
        assert anchor.get_root(1) == to_bytes32(6)
        event = log.last_event
        assert event.event_kind == EventKind.ROOT_SUBMITTED
        assert event.payload["previous_root"] == to_bytes32(5)
        assert event.actor_id == "b"

    def test_zero_root_rejected(self) -> None:
        anchor, _, log = _make_anchor()
        before = log.count
        with pytest.raises(BadInputError, match="Root cannot be zero"):
            anchor.submit_root("a", 1, ZERO_BYTES32, NOW)
        assert anchor.root_count == 0
        assert log.count == before

    def test_unknown_batch(self) -> None:
        anchor, _, _ = _make_anchor()
        with pytest.raises(NotFoundError):
            anchor.submit_root("a", 2, to_bytes32(5), NOW)
        assert anchor.get_root(2) == ZERO_BYTES32

    def test_zero_checked_before_existence(self) -> None:
        anchor, _, _ = _make_anchor()
        with pytest.raises(BadInputError):
            anchor.submit_root("a", 99, ZERO_BYTES32, NOW)

    def test_terminal_batch_accepts_root(self) -> None:
        anchor, registry, _ = _make_anchor()
        registry.recall("ops", 1, "r", NOW)
        anchor.submit_root("a", 1, to_bytes32(5), NOW)
        assert anchor.verify_root(1, to_bytes32(5))


class TestVerifyRoot:
    def test_match_and_mismatch(self) -> None:
        anchor, _, _ = _make_anchor()
        anchor.submit_root("a", 1, to_bytes32(5), NOW)
        assert anchor.verify_root(1, to_bytes32(5))
        assert anchor.verify_root(1, "0x05")
        assert not anchor.verify_root(1, to_bytes32(6))

    def test_no_root_on_file(self) -> None:
        anchor, _, _ = _make_anchor()
        assert not anchor.verify_root(1, to_bytes32(5))
        assert not anchor.verify_root(1, ZERO_BYTES32)
        assert not anchor.verify_root(77, ZERO_BYTES32)

    def test_round_trip(self) -> None:
        anchor, registry, _ = _make_anchor()
        anchor.submit_root("a", 1, to_bytes32(5), NOW)
        restored = MerkleAnchor.from_records(Ledger(), registry, anchor.to_records())
        assert restored.get_root(1) == to_bytes32(5)
        assert restored.root_count == 1
