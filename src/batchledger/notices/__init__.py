"""Change notice workflow: supplier-raised, regulator-reviewed notices."""

from batchledger.notices.change_notice import ChangeNoticeWorkflow
from batchledger.notices.notice_state_machine import NoticeStateMachine

__all__ = ["ChangeNoticeWorkflow", "NoticeStateMachine"]
