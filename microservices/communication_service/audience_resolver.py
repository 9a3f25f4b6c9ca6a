"""
Audience Resolver

Turns a TargetingSpec into a deduplicated, preference-filtered list of
recipient/channel plans. Ordering is stable (client id, then channel) so
previews and dispatches over an unchanged client set agree.
"""

import logging
from typing import Dict, Iterable, List, Sequence

from .models import (
    Channel,
    ClientRecord,
    EligibleClientsResponse,
    RecipientChannelPlan,
    TargetingSpec,
)
from .protocols import ClientDirectoryProtocol

logger = logging.getLogger(__name__)

# Fixed channel order used when sorting plans
CHANNEL_ORDER = {Channel.EMAIL: 0, Channel.SMS: 1, Channel.WHATSAPP: 2}


def matches_targeting(client: ClientRecord, spec: TargetingSpec) -> bool:
    """True when an active client matches any targeting criterion"""
    if not client.is_active:
        return False
    if spec.all_clients:
        return True
    if client.client_id in spec.specific_clients:
        return True
    if client.client_type is not None and client.client_type in spec.client_types:
        return True
    if client.tier_level is not None and client.tier_level in spec.tier_levels:
        return True
    return any(location.matches(client) for location in spec.locations)


def select_candidates(clients: Iterable[ClientRecord], spec: TargetingSpec) -> List[ClientRecord]:
    """Matching clients, deduplicated by id and sorted by id"""
    candidates: Dict[str, ClientRecord] = {}
    if spec.is_empty:
        return []
    for client in clients:
        if client.client_id not in candidates and matches_targeting(client, spec):
            candidates[client.client_id] = client
    return [candidates[client_id] for client_id in sorted(candidates)]


def build_plans(
    candidates: Sequence[ClientRecord],
    channels: Sequence[Channel],
    category: str,
) -> List[RecipientChannelPlan]:
    """Expand candidates into per-channel plans the client has opted into"""
    ordered_channels = sorted(set(channels), key=lambda c: CHANNEL_ORDER[c])
    plans = []
    for client in candidates:
        preferences = client.preferences
        for channel in ordered_channels:
            if not preferences.allows(channel, category):
                continue
            address = client.address_for(channel)
            if not address:
                logger.debug(f"Client {client.client_id} has no {channel.value} address, skipping")
                continue
            plans.append(
                RecipientChannelPlan(
                    client_id=client.client_id,
                    channel=channel,
                    address=address,
                    client=client,
                )
            )
    return plans


class AudienceResolver:
    """Resolves targeting specs against the client directory"""

    def __init__(self, client_directory: ClientDirectoryProtocol):
        self.client_directory = client_directory

    async def resolve(
        self,
        spec: TargetingSpec,
        channels: Sequence[Channel],
        category: str,
    ) -> List[RecipientChannelPlan]:
        """
        Resolve a spec into recipient/channel plans.

        An unmatched or empty spec yields an empty list; callers report that
        as zero eligible recipients.
        """
        if spec.is_empty or not channels:
            logger.info("Targeting spec selects no clients")
            return []

        clients = await self.client_directory.list_active_clients()
        candidates = select_candidates(clients, spec)
        plans = build_plans(candidates, channels, category)

        logger.info(
            f"Resolved audience: {len(candidates)} candidates, {len(plans)} plans "
            f"across {[c.value for c in channels]} for category '{category}'"
        )
        return plans

    async def preview(
        self,
        spec: TargetingSpec,
        channels: Sequence[Channel],
        category: str,
        include_recipients: bool = True,
    ) -> EligibleClientsResponse:
        """Eligible recipient count and list for authoring screens"""
        plans = await self.resolve(spec, channels, category)
        per_channel: Dict[str, int] = {}
        for plan in plans:
            per_channel[plan.channel.value] = per_channel.get(plan.channel.value, 0) + 1
        return EligibleClientsResponse(
            count=len(plans),
            unique_clients=len({plan.client_id for plan in plans}),
            empty_audience=not plans,
            per_channel=per_channel,
            recipients=plans if include_recipients else [],
        )

    async def plans_for_client(
        self,
        client_id: str,
        channels: Sequence[Channel],
        category: str,
    ) -> List[RecipientChannelPlan]:
        """Plans for a single known client, ignoring targeting"""
        client = await self.client_directory.get_client(client_id)
        if client is None:
            logger.warning(f"Client {client_id} not found in directory")
            return []
        return build_plans([client], channels, category)


__all__ = ["AudienceResolver", "matches_targeting", "select_candidates", "build_plans"]
