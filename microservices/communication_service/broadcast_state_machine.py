"""
Broadcast State Machine

Owns the broadcast lifecycle. A transition either passes the table and its
guard and is applied with an audit entry, or raises InvalidTransitionError
with the broadcast left untouched.

    draft -> pending_approval -> approved -> scheduled -> sending -> sent
                              \\-> rejected -> pending_approval       \\-> failed
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .models import Broadcast, BroadcastStatus, StatusTransition, utc_now
from .protocols import InvalidTransitionError

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[BroadcastStatus, List[BroadcastStatus]] = {
    BroadcastStatus.DRAFT: [BroadcastStatus.PENDING_APPROVAL],
    BroadcastStatus.PENDING_APPROVAL: [BroadcastStatus.APPROVED, BroadcastStatus.REJECTED],
    BroadcastStatus.REJECTED: [BroadcastStatus.PENDING_APPROVAL],
    BroadcastStatus.APPROVED: [BroadcastStatus.SCHEDULED],
    BroadcastStatus.SCHEDULED: [BroadcastStatus.SENDING],
    BroadcastStatus.SENDING: [BroadcastStatus.SENT, BroadcastStatus.FAILED],
    BroadcastStatus.SENT: [],  # Terminal state
    BroadcastStatus.FAILED: [],  # Terminal state
}

# States in which content and targeting may still be edited
EDITABLE_STATES = frozenset({BroadcastStatus.DRAFT, BroadcastStatus.REJECTED})


class TransitionContext:
    """Inputs a guard may inspect"""

    def __init__(
        self,
        actor: str,
        reason: Optional[str] = None,
        send_immediately: bool = False,
        now: Optional[datetime] = None,
    ):
        self.actor = actor
        self.reason = reason
        self.send_immediately = send_immediately
        self.now = now or utc_now()


def _guard_submit(broadcast: Broadcast, ctx: TransitionContext) -> Optional[str]:
    if not broadcast.content or not broadcast.content.strip():
        return "Broadcast content must not be empty"
    if not broadcast.channels:
        return "Broadcast must target at least one channel"
    return None


def _guard_approve(broadcast: Broadcast, ctx: TransitionContext) -> Optional[str]:
    if not ctx.actor or not ctx.actor.strip():
        return "Approval requires an approver identity"
    return None


def _guard_reject(broadcast: Broadcast, ctx: TransitionContext) -> Optional[str]:
    if not ctx.actor or not ctx.actor.strip():
        return "Rejection requires a reviewer identity"
    if not ctx.reason or not ctx.reason.strip():
        return "Rejection requires a non-empty reason"
    return None


def _guard_schedule(broadcast: Broadcast, ctx: TransitionContext) -> Optional[str]:
    if ctx.send_immediately:
        return None
    if broadcast.schedule is None:
        return "Scheduling requires a future schedule time or immediate send"
    if broadcast.schedule <= ctx.now:
        return f"Schedule time {broadcast.schedule.isoformat()} is not in the future"
    return None


GUARDS: Dict[BroadcastStatus, Callable[[Broadcast, TransitionContext], Optional[str]]] = {
    BroadcastStatus.PENDING_APPROVAL: _guard_submit,
    BroadcastStatus.APPROVED: _guard_approve,
    BroadcastStatus.REJECTED: _guard_reject,
    BroadcastStatus.SCHEDULED: _guard_schedule,
}


class BroadcastStateMachine:
    """Applies lifecycle transitions to broadcasts"""

    def can_transition(self, current: BroadcastStatus, target: BroadcastStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, [])

    def allowed_targets(self, current: BroadcastStatus) -> List[BroadcastStatus]:
        return list(VALID_TRANSITIONS.get(current, []))

    def is_editable(self, broadcast: Broadcast) -> bool:
        return broadcast.status in EDITABLE_STATES

    def check(self, broadcast: Broadcast, target: BroadcastStatus, ctx: TransitionContext) -> None:
        """Raise InvalidTransitionError unless the transition would be applied"""
        current = broadcast.status
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move broadcast {broadcast.broadcast_id} from {current.value} to {target.value}",
                current_status=current,
                target_status=target,
            )

        guard = GUARDS.get(target)
        failure = guard(broadcast, ctx) if guard else None
        if failure:
            raise InvalidTransitionError(failure, current_status=current, target_status=target)

    def transition(
        self,
        broadcast: Broadcast,
        target: BroadcastStatus,
        actor: str,
        reason: Optional[str] = None,
        send_immediately: bool = False,
        now: Optional[datetime] = None,
    ) -> Broadcast:
        """Validate and apply a transition, appending to the audit history"""
        ctx = TransitionContext(actor=actor, reason=reason, send_immediately=send_immediately, now=now)
        self.check(broadcast, target, ctx)

        previous = broadcast.status
        if target == BroadcastStatus.SCHEDULED and send_immediately:
            broadcast.schedule = ctx.now
        broadcast.status = target
        broadcast.updated_at = ctx.now
        broadcast.history.append(
            StatusTransition(
                from_status=previous,
                to_status=target,
                actor=actor,
                at=ctx.now,
                reason=reason,
            )
        )

        logger.info(
            f"Broadcast {broadcast.broadcast_id}: {previous.value} -> {target.value} by {actor}"
        )
        return broadcast


__all__ = ["BroadcastStateMachine", "VALID_TRANSITIONS", "EDITABLE_STATES", "TransitionContext"]
