"""
Broadcast Service

Business logic for authoring, approving, scheduling and sending broadcasts.
Lifecycle rules live in the state machine, decisions in the approval
workflow and fan-out in the dispatcher; this layer sequences them around
persistence and events.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .approval_workflow import ApprovalDecision, ApprovalWorkflow
from .audience_resolver import AudienceResolver
from .broadcast_state_machine import BroadcastStateMachine
from .dispatcher import Dispatcher
from .events.models import CommunicationEventType
from .events.publishers import CommunicationEventPublisher
from .keyed_locks import KeyedLocks
from .models import (
    Broadcast,
    BroadcastCreateRequest,
    BroadcastListResponse,
    BroadcastStats,
    BroadcastStatsResponse,
    BroadcastStatus,
    BroadcastType,
    BroadcastUpdateRequest,
    CATEGORY_BY_TYPE,
    Channel,
    DeliveryOutcome,
    DispatchResult,
    EligibleClientsRequest,
    EligibleClientsResponse,
    PendingApprovalItem,
    StatusTransition,
    utc_now,
)
from .protocols import (
    BroadcastNotFoundError,
    BroadcastRepositoryProtocol,
    CommunicationValidationError,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class BroadcastService:
    """Broadcast service business logic layer"""

    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        repository: BroadcastRepositoryProtocol,
        resolver: AudienceResolver,
        dispatcher: Dispatcher,
        state_machine: Optional[BroadcastStateMachine] = None,
        approval_workflow: Optional[ApprovalWorkflow] = None,
        event_publisher: Optional[CommunicationEventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
        channel_unit_cost: Optional[Dict[str, float]] = None,
    ):
        self.repository = repository
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.state_machine = state_machine or BroadcastStateMachine()
        self.approval_workflow = approval_workflow or ApprovalWorkflow(self.state_machine, clock)
        self.event_publisher = event_publisher
        self.clock = clock
        self.channel_unit_cost = channel_unit_cost or {}
        self._locks = KeyedLocks()

    # ====================
    # Broadcast CRUD
    # ====================

    async def create_broadcast(self, request: BroadcastCreateRequest, created_by: str) -> Broadcast:
        """Create a broadcast in draft status"""
        self._validate_request(request)

        now = self.clock()
        broadcast = Broadcast(
            **request.model_dump(),
            created_by=created_by,
            created_at=now,
            updated_at=now,
            history=[StatusTransition(to_status=BroadcastStatus.DRAFT, actor=created_by, at=now)],
        )
        await self.repository.save_broadcast(broadcast)
        logger.info(f"Created broadcast {broadcast.broadcast_id} '{broadcast.title}' by {created_by}")

        await self._publish(CommunicationEventType.BROADCAST_CREATED, broadcast, actor=created_by)
        return broadcast

    async def get_broadcast(self, broadcast_id: str) -> Broadcast:
        broadcast = await self.repository.get_broadcast(broadcast_id)
        if not broadcast:
            raise BroadcastNotFoundError(f"Broadcast not found: {broadcast_id}")
        return broadcast

    async def list_broadcasts(
        self,
        broadcast_type: Optional[BroadcastType] = None,
        status: Optional[BroadcastStatus] = None,
        channel: Optional[Channel] = None,
        approval_status: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BroadcastListResponse:
        page = max(1, page)
        limit = max(1, min(limit, self.MAX_PAGE_SIZE))
        items, total = await self.repository.list_broadcasts(
            broadcast_type=broadcast_type,
            status=status,
            channel=channel,
            approval_status=approval_status,
            search=search,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return BroadcastListResponse(
            items=items,
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
        )

    async def update_broadcast(
        self, broadcast_id: str, request: BroadcastUpdateRequest, actor: str
    ) -> Broadcast:
        """Edit a draft or rejected broadcast in place"""
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            self._require_editable(broadcast, "edited")

            changes = request.model_dump(exclude_unset=True)
            if not changes:
                return broadcast
            try:
                updated = Broadcast.model_validate(
                    {**broadcast.model_dump(), **changes, "updated_at": self.clock()}
                )
            except ValidationError as e:
                raise CommunicationValidationError(_first_error(e), _first_field(e)) from e
            self._validate_broadcast(updated)

            await self.repository.save_broadcast(updated)
            logger.info(f"Updated broadcast {broadcast_id} fields {sorted(changes)} by {actor}")

        await self._publish(CommunicationEventType.BROADCAST_UPDATED, updated, actor=actor)
        return updated

    async def delete_broadcast(self, broadcast_id: str, actor: str) -> bool:
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            self._require_editable(broadcast, "deleted")
            deleted = await self.repository.delete_broadcast(broadcast_id)

        if deleted:
            logger.info(f"Deleted broadcast {broadcast_id} by {actor}")
            await self._publish(CommunicationEventType.BROADCAST_DELETED, broadcast, actor=actor)
        return deleted

    # ====================
    # Approval
    # ====================

    async def submit_for_approval(self, broadcast_id: str, actor: str) -> ApprovalDecision:
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            previous = broadcast.status
            decision = self.approval_workflow.submit(broadcast, actor)
            await self.repository.save_broadcast(broadcast)

        await self._publish_transition(broadcast, previous, actor, warnings=decision.warnings)
        return decision

    async def approve_broadcast(
        self, broadcast_id: str, approver: str, comment: Optional[str] = None
    ) -> ApprovalDecision:
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            previous = broadcast.status
            decision = self.approval_workflow.approve(broadcast, approver, comment)
            await self.repository.save_broadcast(broadcast)

        await self._publish_transition(broadcast, previous, approver, comment, decision.warnings)
        return decision

    async def reject_broadcast(self, broadcast_id: str, actor: str, reason: str) -> ApprovalDecision:
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            previous = broadcast.status
            decision = self.approval_workflow.reject(broadcast, actor, reason)
            await self.repository.save_broadcast(broadcast)

        await self._publish_transition(broadcast, previous, actor, reason, decision.warnings)
        return decision

    async def list_pending_approval(self, limit: int = 100) -> List[PendingApprovalItem]:
        items, _ = await self.repository.list_broadcasts(
            status=BroadcastStatus.PENDING_APPROVAL, limit=limit, offset=0
        )
        return [self.approval_workflow.pending_item(b) for b in items]

    # ====================
    # Scheduling & Sending
    # ====================

    async def schedule_broadcast(
        self,
        broadcast_id: str,
        actor: str,
        scheduled_at: Optional[datetime] = None,
        send_immediately: bool = False,
    ) -> Broadcast:
        """Move an approved broadcast to scheduled"""
        async with self._locks.hold(broadcast_id):
            previous, scheduled = await self._schedule(broadcast_id, actor, scheduled_at, send_immediately)

        await self._publish_transition(scheduled, previous, actor)
        return scheduled

    async def send_now(self, broadcast_id: str, actor: str) -> Broadcast:
        """
        Manual send trigger.

        An approved broadcast is scheduled for immediate send first; a
        scheduled one is dispatched regardless of its schedule time. Both
        steps run under one lock so the due poller cannot take the
        broadcast in between.
        """
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            if broadcast.status == BroadcastStatus.APPROVED:
                previous, scheduled = await self._schedule(broadcast_id, actor, None, True)
                await self._publish_transition(scheduled, previous, actor)
            broadcast, result = await self._dispatch_locked(broadcast_id, actor)

        if self.event_publisher:
            await self.event_publisher.publish_dispatch_finished(broadcast, result)
        return broadcast

    async def dispatch_due_broadcasts(self, now: Optional[datetime] = None) -> int:
        """Dispatch scheduled broadcasts whose time has come. Returns count dispatched."""
        now = now or self.clock()
        due = await self.repository.list_due_broadcasts(now)
        dispatched = 0
        for broadcast in due:
            try:
                await self._dispatch(broadcast.broadcast_id, "scheduler")
                dispatched += 1
            except InvalidTransitionError as e:
                # Picked up concurrently by a manual send
                logger.info(f"Skipping due broadcast {broadcast.broadcast_id}: {e}")
            except Exception as e:
                logger.error(f"Due broadcast {broadcast.broadcast_id} could not be dispatched: {e}", exc_info=True)
        if due:
            logger.info(f"Dispatched {dispatched} of {len(due)} due broadcasts")
        return dispatched

    async def _schedule(
        self,
        broadcast_id: str,
        actor: str,
        scheduled_at: Optional[datetime],
        send_immediately: bool,
    ) -> Tuple[BroadcastStatus, Broadcast]:
        # Caller holds the broadcast lock
        broadcast = await self.get_broadcast(broadcast_id)
        candidate = broadcast.model_copy(deep=True)
        if scheduled_at is not None:
            candidate.schedule = scheduled_at
        self.state_machine.transition(
            candidate,
            BroadcastStatus.SCHEDULED,
            actor=actor,
            send_immediately=send_immediately,
            now=self.clock(),
        )
        await self.repository.save_broadcast(candidate)
        return broadcast.status, candidate

    async def _dispatch(self, broadcast_id: str, actor: str) -> Broadcast:
        async with self._locks.hold(broadcast_id):
            broadcast, result = await self._dispatch_locked(broadcast_id, actor)

        if self.event_publisher:
            await self.event_publisher.publish_dispatch_finished(broadcast, result)
        return broadcast

    async def _dispatch_locked(
        self, broadcast_id: str, actor: str
    ) -> Tuple[Broadcast, Optional[DispatchResult]]:
        broadcast = await self.get_broadcast(broadcast_id)
        self.state_machine.transition(
            broadcast, BroadcastStatus.SENDING, actor=actor, now=self.clock()
        )
        await self.repository.save_broadcast(broadcast)
        await self._publish_transition(broadcast, BroadcastStatus.SCHEDULED, actor)

        result: Optional[DispatchResult] = None
        try:
            result = await self.dispatcher.send(broadcast)
        except Exception as e:
            logger.exception(f"Dispatch of broadcast {broadcast_id} could not start: {e}")
            self.state_machine.transition(
                broadcast, BroadcastStatus.FAILED, actor=actor, reason=str(e), now=self.clock()
            )
        else:
            self._apply_result(broadcast, result)
            if result.all_transports_down:
                reason = "All channel transports unavailable"
                logger.error(f"Broadcast {broadcast_id} failed: {reason}")
                self.state_machine.transition(
                    broadcast, BroadcastStatus.FAILED, actor=actor, reason=reason, now=self.clock()
                )
            else:
                reason = "Empty audience" if result.empty_audience else None
                self.state_machine.transition(
                    broadcast, BroadcastStatus.SENT, actor=actor, reason=reason, now=self.clock()
                )
                broadcast.sent_at = self.clock()

        # Terminal status and stats are stored before per-recipient outcomes
        await self.repository.save_broadcast(broadcast)

        if result is not None and result.outcomes:
            try:
                await self.repository.save_outcomes(broadcast_id, result.outcomes)
            except Exception as e:
                logger.error(
                    f"Failed to record {len(result.outcomes)} delivery outcomes "
                    f"for broadcast {broadcast_id}: {e}",
                    exc_info=True,
                )

        return broadcast, result

    def _apply_result(self, broadcast: Broadcast, result: DispatchResult) -> None:
        stats = broadcast.stats
        stats.total_recipients = result.total
        stats.sent_count = result.sent
        stats.failed_count = result.failed
        stats.empty_audience = result.empty_audience
        stats.per_channel = result.per_channel
        stats.per_variant = result.per_variant
        stats.total_cost = self._dispatch_cost(broadcast, result)
        stats.recompute_roi()

        if result.empty_audience:
            logger.warning(f"Broadcast {broadcast.broadcast_id} resolved to zero eligible recipients")

    def _dispatch_cost(self, broadcast: Broadcast, result: DispatchResult) -> Decimal:
        if broadcast.budget.cost_per_recipient is not None:
            return broadcast.budget.cost_per_recipient * result.sent
        cost = Decimal("0")
        for channel, counts in result.per_channel.items():
            cost += Decimal(str(self.channel_unit_cost.get(channel, 0))) * counts.sent
        return cost

    # ====================
    # Stats & Reporting
    # ====================

    async def get_stats(self, broadcast_id: str) -> BroadcastStatsResponse:
        broadcast = await self.get_broadcast(broadcast_id)
        return BroadcastStatsResponse(
            broadcast_id=broadcast.broadcast_id,
            status=broadcast.status,
            stats=broadcast.stats,
        )

    async def record_revenue(self, broadcast_id: str, amount: Decimal) -> BroadcastStats:
        """Add attributed revenue and recompute ROI"""
        async with self._locks.hold(broadcast_id):
            broadcast = await self.get_broadcast(broadcast_id)
            if broadcast.status != BroadcastStatus.SENT:
                raise InvalidTransitionError(
                    "Revenue can only be recorded for sent broadcasts",
                    current_status=broadcast.status,
                )
            broadcast.stats.revenue += amount
            broadcast.stats.recompute_roi()
            broadcast.updated_at = self.clock()
            await self.repository.save_broadcast(broadcast)
        return broadcast.stats

    async def get_history(self, broadcast_id: str) -> List[StatusTransition]:
        broadcast = await self.get_broadcast(broadcast_id)
        return broadcast.history

    async def list_recipients(
        self, broadcast_id: str, limit: int = 100, offset: int = 0
    ) -> List[DeliveryOutcome]:
        await self.get_broadcast(broadcast_id)
        return await self.repository.list_outcomes(broadcast_id, limit=limit, offset=offset)

    async def preview_audience(self, request: EligibleClientsRequest) -> EligibleClientsResponse:
        """Eligible recipients for targeting criteria before a broadcast exists"""
        category = request.category
        if not category:
            category = CATEGORY_BY_TYPE[request.type] if request.type else "offer"
        return await self.resolver.preview(
            request.target_audience,
            request.channels,
            category,
            include_recipients=request.include_recipients,
        )

    # ====================
    # Validation Helpers
    # ====================

    def _validate_request(self, request: BroadcastCreateRequest) -> None:
        if not request.title.strip():
            raise CommunicationValidationError("Title must not be blank", "title")
        if any(not client_id.strip() for client_id in request.target_audience.specific_clients):
            raise CommunicationValidationError("Client ids must not be blank", "target_audience")
        self._validate_ab_test(request.ab_test)

    def _validate_broadcast(self, broadcast: Broadcast) -> None:
        if not broadcast.title.strip():
            raise CommunicationValidationError("Title must not be blank", "title")
        self._validate_ab_test(broadcast.ab_test)

    def _validate_ab_test(self, ab_test) -> None:
        if not ab_test or not ab_test.enabled:
            return
        for variant in ab_test.variants:
            if not (variant.content or variant.subject):
                raise CommunicationValidationError(
                    f"Variant '{variant.name}' must override content or subject", "ab_test"
                )

    def _require_editable(self, broadcast: Broadcast, action: str) -> None:
        if not self.state_machine.is_editable(broadcast):
            raise InvalidTransitionError(
                f"Broadcast {broadcast.broadcast_id} cannot be {action} in status {broadcast.status.value}",
                current_status=broadcast.status,
            )

    # ====================
    # Event Publishing
    # ====================

    async def _publish(
        self, event_type: CommunicationEventType, broadcast: Broadcast, actor: Optional[str] = None
    ) -> None:
        if self.event_publisher:
            await self.event_publisher.publish_broadcast_event(event_type, broadcast, actor=actor)

    async def _publish_transition(
        self,
        broadcast: Broadcast,
        previous: BroadcastStatus,
        actor: str,
        reason: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        if self.event_publisher:
            await self.event_publisher.publish_transition(broadcast, previous, actor, reason, warnings)


def _first_error(error: ValidationError) -> str:
    errors = error.errors()
    return errors[0]["msg"] if errors else str(error)


def _first_field(error: ValidationError) -> Optional[str]:
    errors = error.errors()
    if errors and errors[0].get("loc"):
        return str(errors[0]["loc"][0])
    return None


__all__ = ["BroadcastService"]
