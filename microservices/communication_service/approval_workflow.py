"""
Approval Workflow

Records who approved or rejected a broadcast, when, and why. Compliance
flags are surfaced as warnings and never block a decision.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .broadcast_state_machine import BroadcastStateMachine
from .models import (
    ApprovalRecord,
    ApprovalStatus,
    Broadcast,
    BroadcastStatus,
    PendingApprovalItem,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class ApprovalDecision:
    broadcast: Broadcast
    warnings: List[str] = field(default_factory=list)


class ApprovalWorkflow:
    """Gate around pending_approval -> approved / rejected"""

    def __init__(
        self,
        state_machine: Optional[BroadcastStateMachine] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.state_machine = state_machine or BroadcastStateMachine()
        self.clock = clock

    def compliance_warnings(self, broadcast: Broadcast) -> List[str]:
        return broadcast.compliance.warnings()

    def submit(self, broadcast: Broadcast, actor: str) -> ApprovalDecision:
        """Send a draft or rejected broadcast for approval"""
        self.state_machine.transition(
            broadcast, BroadcastStatus.PENDING_APPROVAL, actor=actor, now=self.clock()
        )
        # A resubmission starts a fresh decision; the old one stays in history
        broadcast.approval = ApprovalRecord(status=ApprovalStatus.PENDING)
        return ApprovalDecision(broadcast=broadcast, warnings=self.compliance_warnings(broadcast))

    def approve(self, broadcast: Broadcast, approver: str, comment: Optional[str] = None) -> ApprovalDecision:
        now = self.clock()
        self.state_machine.transition(
            broadcast, BroadcastStatus.APPROVED, actor=approver, reason=comment, now=now
        )
        broadcast.approval = ApprovalRecord(
            status=ApprovalStatus.APPROVED,
            approved_by=approver,
            approved_at=now,
            comment=comment,
        )

        warnings = self.compliance_warnings(broadcast)
        if warnings:
            logger.warning(
                f"Broadcast {broadcast.broadcast_id} approved by {approver} with compliance warnings: {warnings}"
            )
        return ApprovalDecision(broadcast=broadcast, warnings=warnings)

    def reject(self, broadcast: Broadcast, actor: str, reason: str) -> ApprovalDecision:
        now = self.clock()
        self.state_machine.transition(
            broadcast, BroadcastStatus.REJECTED, actor=actor, reason=reason, now=now
        )
        broadcast.approval = ApprovalRecord(
            status=ApprovalStatus.REJECTED,
            rejected_by=actor,
            rejected_at=now,
            rejection_reason=reason.strip(),
        )
        logger.info(f"Broadcast {broadcast.broadcast_id} rejected by {actor}: {reason}")
        return ApprovalDecision(broadcast=broadcast, warnings=self.compliance_warnings(broadcast))

    def pending_item(self, broadcast: Broadcast) -> PendingApprovalItem:
        return PendingApprovalItem(broadcast=broadcast, warnings=self.compliance_warnings(broadcast))


__all__ = ["ApprovalWorkflow", "ApprovalDecision"]
