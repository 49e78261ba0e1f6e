"""Notice status machine: DRAFT → SUBMITTED → APPROVED | REJECTED.

SUPERSEDED and CLOSED are declared statuses with no incoming
transitions. They are reserved, so any attempt to reach them fails.
"""

from __future__ import annotations

from batchledger.models.notice import Notice, NoticeStatus


_TRANSITIONS: dict[NoticeStatus, set[NoticeStatus]] = {
    NoticeStatus.DRAFT: {NoticeStatus.SUBMITTED},
    NoticeStatus.SUBMITTED: {NoticeStatus.APPROVED, NoticeStatus.REJECTED},
    NoticeStatus.APPROVED: set(),
    NoticeStatus.REJECTED: set(),
    NoticeStatus.SUPERSEDED: set(),
    NoticeStatus.CLOSED: set(),
}

# Which status each target requires, phrased the way callers see it.
_REQUIRED_MESSAGE: dict[NoticeStatus, str] = {
    NoticeStatus.SUBMITTED: "Not draft",
    NoticeStatus.APPROVED: "Not submitted",
    NoticeStatus.REJECTED: "Not submitted",
}


class NoticeStateMachine:
    """Validates notice status transitions. Pure computation."""

    @staticmethod
    def validate_transition(notice: Notice, target: NoticeStatus) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        if target in _TRANSITIONS.get(notice.status, set()):
            return []
        return [_REQUIRED_MESSAGE.get(target, f"Unreachable status: {target.value}")]

    @staticmethod
    def is_final(status: NoticeStatus) -> bool:
        return not _TRANSITIONS.get(status)

    @staticmethod
    def valid_transitions(status: NoticeStatus) -> set[NoticeStatus]:
        return set(_TRANSITIONS.get(status, set()))
