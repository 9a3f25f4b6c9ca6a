"""
Dispatcher

Fans a resolved audience out across channels with a bounded number of
in-flight sends. Every send is isolated: a failure is recorded as an
outcome and never aborts the rest of the run.
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .audience_resolver import AudienceResolver
from .models import (
    ABVariant,
    Broadcast,
    Channel,
    ChannelCounts,
    ClientRecord,
    DeliveryOutcome,
    DeliveryStatus,
    DispatchResult,
    RecipientChannelPlan,
)
from .protocols import (
    ChannelSenderProtocol,
    PartialDeliveryFailure,
    TransportUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class RenderedMessage:
    subject: Optional[str]
    body: str


Renderer = Callable[[RecipientChannelPlan, Optional[ABVariant]], RenderedMessage]


# ====================
# Variant Assignment
# ====================


def assign_variant(recipient_id: str, broadcast_id: str, variants: Sequence[ABVariant]) -> ABVariant:
    """
    Deterministic variant assignment.

    Hashes recipient id + broadcast id into [0, 1) and walks the cumulative
    normalized weights. Variants are ordered by name so input order does not
    change assignments.
    """
    if not variants:
        raise ValueError("No variants available")

    ordered = sorted(variants, key=lambda v: v.name)
    total_weight = sum(v.weight for v in ordered)

    hash_value = hashlib.md5(f"{recipient_id}:{broadcast_id}".encode()).hexdigest()
    point = (int(hash_value, 16) % 10000) / 10000

    cumulative = 0.0
    for variant in ordered:
        cumulative += variant.weight / total_weight
        if point < cumulative:
            return variant

    # Float rounding can leave the last sliver unassigned
    return ordered[-1]


# ====================
# Personalization
# ====================


def personalization_data(client: Optional[ClientRecord]) -> Dict[str, Any]:
    if client is None:
        return {}
    return {
        "name": client.name,
        "firstName": client.first_name,
        "email": client.email or "",
        "phone": client.phone or "",
        "city": client.city or "",
        "policyCount": client.policy_count,
    }


def substitute_variables(template: str, data: Dict[str, Any]) -> str:
    """Substitute {{variable}} placeholders with values"""
    if not template:
        return template

    def replace_var(match):
        value = data.get(match.group(1), "")
        return "" if value is None else str(value)

    return re.sub(r'\{\{(\w+)\}\}', replace_var, template)


def broadcast_renderer(broadcast: Broadcast) -> Renderer:
    """Renderer applying variant overrides, subject fallback and personalization"""
    email_config = broadcast.channel_configs.email

    def render(plan: RecipientChannelPlan, variant: Optional[ABVariant]) -> RenderedMessage:
        data = personalization_data(plan.client)
        content = (variant.content if variant and variant.content else None) or broadcast.content
        subject = None
        if plan.channel == Channel.EMAIL:
            subject = (
                (variant.subject if variant else None)
                or (email_config.subject if email_config else None)
                or broadcast.title
            )
            subject = substitute_variables(subject, data)
        return RenderedMessage(subject=subject, body=substitute_variables(content, data))

    return render


# ====================
# Dispatcher
# ====================


class Dispatcher:
    """Bounded, failure-isolated fan-out over a channel sender"""

    def __init__(
        self,
        resolver: AudienceResolver,
        sender: ChannelSenderProtocol,
        fan_out_limit: int = 10,
        send_timeout: Optional[float] = None,
    ):
        if fan_out_limit < 1:
            raise ValueError("fan_out_limit must be at least 1")
        self.resolver = resolver
        self.sender = sender
        self.fan_out_limit = fan_out_limit
        self.send_timeout = send_timeout

    async def send(self, broadcast: Broadcast) -> DispatchResult:
        """Resolve the final audience for a broadcast and deliver to it"""
        plans = await self.resolver.resolve(
            broadcast.target_audience, broadcast.channels, broadcast.category
        )

        variant_for = None
        if broadcast.ab_test and broadcast.ab_test.enabled:
            variants = broadcast.ab_test.variants
            variant_for = lambda client_id: assign_variant(client_id, broadcast.broadcast_id, variants)

        return await self.deliver(
            plans,
            broadcast_renderer(broadcast),
            variant_for=variant_for,
            broadcast_id=broadcast.broadcast_id,
        )

    async def deliver(
        self,
        plans: Sequence[RecipientChannelPlan],
        render: Renderer,
        variant_for: Optional[Callable[[str], ABVariant]] = None,
        broadcast_id: Optional[str] = None,
    ) -> DispatchResult:
        """Send one message per plan and aggregate the outcomes"""
        semaphore = asyncio.Semaphore(self.fan_out_limit)
        down: Set[Channel] = set()

        async def send_one(plan: RecipientChannelPlan) -> DeliveryOutcome:
            variant = variant_for(plan.client_id) if variant_for else None
            async with semaphore:
                error = await self._attempt(plan, variant, render, down)
            return DeliveryOutcome(
                broadcast_id=broadcast_id,
                client_id=plan.client_id,
                channel=plan.channel,
                address=plan.address,
                status=DeliveryStatus.FAILED if error else DeliveryStatus.SENT,
                variant=variant.name if variant else None,
                error=error,
            )

        outcomes = await asyncio.gather(*(send_one(plan) for plan in plans))
        result = self._aggregate(list(outcomes), down)

        if result.failed:
            failure = PartialDeliveryFailure(result.failed, result.total)
            logger.warning(f"Dispatch {broadcast_id or 'direct'}: {failure}")
        logger.info(
            f"Dispatch {broadcast_id or 'direct'} finished: "
            f"total={result.total} sent={result.sent} failed={result.failed}"
        )
        return result

    async def _attempt(
        self,
        plan: RecipientChannelPlan,
        variant: Optional[ABVariant],
        render: Renderer,
        down: Set[Channel],
    ) -> Optional[str]:
        """Send a single message, returning an error string or None"""
        if plan.channel in down:
            return f"Transport unavailable for channel {plan.channel.value}"

        try:
            message = render(plan, variant)
            call = self.sender.send(plan.address, plan.channel, message.subject, message.body)
            if self.send_timeout:
                result = await asyncio.wait_for(call, timeout=self.send_timeout)
            else:
                result = await call
        except TransportUnavailableError as e:
            if plan.channel not in down:
                logger.error(f"Channel {plan.channel.value} unavailable, failing remaining sends: {e}")
            down.add(plan.channel)
            return str(e)
        except asyncio.TimeoutError:
            logger.warning(f"Send to {plan.client_id} over {plan.channel.value} timed out")
            return "Send timed out"
        except Exception as e:
            logger.warning(f"Send to {plan.client_id} over {plan.channel.value} failed: {e}")
            return str(e) or type(e).__name__

        if not result.ok:
            logger.warning(
                f"Send to {plan.client_id} over {plan.channel.value} rejected: {result.error}"
            )
            return result.error or "Send rejected"
        return None

    @staticmethod
    def _aggregate(outcomes: List[DeliveryOutcome], down: Set[Channel]) -> DispatchResult:
        per_channel: Dict[str, ChannelCounts] = {}
        per_variant: Dict[str, ChannelCounts] = {}
        sent = failed = 0

        for outcome in outcomes:
            ok = outcome.status == DeliveryStatus.SENT
            buckets = [per_channel.setdefault(outcome.channel.value, ChannelCounts())]
            if outcome.variant:
                buckets.append(per_variant.setdefault(outcome.variant, ChannelCounts()))
            for counts in buckets:
                counts.total += 1
                if ok:
                    counts.sent += 1
                else:
                    counts.failed += 1
            if ok:
                sent += 1
            else:
                failed += 1

        return DispatchResult(
            total=len(outcomes),
            sent=sent,
            failed=failed,
            per_channel=per_channel,
            per_variant=per_variant,
            unavailable_channels=sorted(down, key=lambda c: c.value),
            outcomes=outcomes,
        )


__all__ = [
    "Dispatcher",
    "RenderedMessage",
    "assign_variant",
    "broadcast_renderer",
    "personalization_data",
    "substitute_variables",
]
