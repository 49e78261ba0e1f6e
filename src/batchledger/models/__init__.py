"""Core data models for the batch ledger."""

from batchledger.models.batch import TERMINAL_STATES, Batch, BatchState
from batchledger.models.notice import (
    Notice,
    NoticeStatus,
    NoticeType,
    NoticeView,
    Role,
    Severity,
)
from batchledger.models.values import (
    ZERO_ADDRESS,
    ZERO_BYTES32,
    is_zero_bytes32,
    is_zero_identity,
    to_bytes32,
)

__all__ = [
    "Batch",
    "BatchState",
    "TERMINAL_STATES",
    "Notice",
    "NoticeStatus",
    "NoticeType",
    "NoticeView",
    "Role",
    "Severity",
    "ZERO_ADDRESS",
    "ZERO_BYTES32",
    "is_zero_bytes32",
    "is_zero_identity",
    "to_bytes32",
]
