"""Change notice models: regulator-reviewed change requests on a batch.

Notice lifecycle:
    DRAFT → SUBMITTED → APPROVED | REJECTED

SUPERSEDED and CLOSED are reserved. No operation reaches them yet.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from batchledger.models.values import ZERO_BYTES32


class NoticeStatus(str, enum.Enum):
    """Workflow status of a change notice."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    CLOSED = "closed"


class NoticeType(str, enum.Enum):
    """What kind of change the notice announces."""
    RECALL = "recall"
    QUALITY = "quality"
    LABELING = "labeling"
    FORMULATION = "formulation"
    PACKAGING = "packaging"
    REGULATORY = "regulatory"
    OTHER = "other"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Role(str, enum.Enum):
    """Capabilities granted by the notice workflow owner."""
    SUPPLIER = "supplier"
    RETAILER = "retailer"


@dataclass
class Notice:
    """A change notice raised by a supplier against an existing batch.

    anchor is an optional integrity value (ZERO_BYTES32 when absent).
    regulator_note is filled in on approval or rejection.
    """
    notice_id: int
    batch_id: int
    creator: str
    created_utc: datetime
    notice_type: NoticeType
    severity: Severity
    effective_from: datetime
    summary: str
    details_uri: str = ""
    anchor: str = ZERO_BYTES32
    status: NoticeStatus = NoticeStatus.DRAFT
    regulator_note: str = ""
    decided_utc: Optional[datetime] = None


@dataclass(frozen=True)
class NoticeView:
    """A notice together with its acknowledgement counter."""
    notice: Notice
    ack_count: int
