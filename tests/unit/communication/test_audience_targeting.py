"""
Unit Tests for Audience Targeting

Targeting criteria, candidate selection, preference filtering and
address requirements.
"""

import pytest

from microservices.communication_service.audience_resolver import (
    build_plans,
    matches_targeting,
    select_candidates,
)
from microservices.communication_service.models import (
    Channel,
    ChannelPreference,
    ClientType,
    CommunicationPreferences,
    TargetLocation,
    TierLevel,
)


class TestMatchesTargeting:
    """Criteria are OR-combined over active clients"""

    def test_all_clients_matches_active(self, factory):
        client = factory.make_client()
        assert matches_targeting(client, factory.make_targeting(all_clients=True))

    def test_inactive_client_never_matches(self, factory):
        client = factory.make_client(is_active=False)
        assert not matches_targeting(client, factory.make_targeting(all_clients=True))

    def test_specific_client(self, factory):
        client = factory.make_client(client_id="cli_0001")
        assert matches_targeting(client, factory.make_targeting(specific_clients=["cli_0001"]))
        assert not matches_targeting(client, factory.make_targeting(specific_clients=["cli_0002"]))

    def test_client_type(self, factory):
        client = factory.make_client(client_type=ClientType.CORPORATE)
        assert matches_targeting(client, factory.make_targeting(client_types=[ClientType.CORPORATE]))
        assert not matches_targeting(client, factory.make_targeting(client_types=[ClientType.GROUP]))

    def test_tier_level(self, factory):
        client = factory.make_client(tier_level=TierLevel.GOLD)
        assert matches_targeting(client, factory.make_targeting(tier_levels=[TierLevel.GOLD]))

    def test_criteria_are_or_combined(self, factory):
        # Given: targeting naming a tier the client lacks but a type it has
        client = factory.make_client(client_type=ClientType.GROUP, tier_level=TierLevel.BRONZE)
        spec = factory.make_targeting(tier_levels=[TierLevel.PLATINUM], client_types=[ClientType.GROUP])

        # Then: one satisfied criterion is enough
        assert matches_targeting(client, spec)

    def test_location_case_insensitive(self, factory):
        client = factory.make_client(city="Pune", state="Maharashtra")
        spec = factory.make_targeting(locations=[{"city": "pune"}])
        assert matches_targeting(client, spec)

    def test_location_requires_every_populated_field(self, factory):
        client = factory.make_client(city="Pune", state="Maharashtra")
        spec = factory.make_targeting(locations=[{"city": "Pune", "state": "Karnataka"}])
        assert not matches_targeting(client, spec)

    def test_empty_location_entry_matches_nothing(self, factory):
        assert not TargetLocation(city="  ").matches(factory.make_client())


class TestSelectCandidates:

    def test_empty_spec_selects_nobody(self, factory):
        clients = factory.make_clients(3)
        assert select_candidates(clients, factory.make_targeting()) == []

    def test_deduplicates_and_sorts_by_id(self, factory):
        # Given: the directory returns the same client twice, out of order
        a = factory.make_client(client_id="cli_b")
        b = factory.make_client(client_id="cli_a")
        spec = factory.make_targeting(all_clients=True)

        # When: selecting candidates
        result = select_candidates([a, b, a], spec)

        # Then: each client appears once in id order
        assert [c.client_id for c in result] == ["cli_a", "cli_b"]

    def test_same_input_same_output(self, factory):
        clients = factory.make_clients(20)
        spec = factory.make_targeting(tier_levels=[TierLevel.SILVER])
        first = [c.client_id for c in select_candidates(clients, spec)]
        second = [c.client_id for c in select_candidates(list(reversed(clients)), spec)]
        assert first == second


class TestPreferences:
    """Default and recorded per-channel preferences"""

    def test_default_preferences_allow_email_only(self):
        prefs = CommunicationPreferences.default()
        assert prefs.allows(Channel.EMAIL, "offer")
        assert not prefs.allows(Channel.SMS, "offer")
        assert not prefs.allows(Channel.WHATSAPP, "offer")

    def test_unrecorded_category_counts_as_opted_in(self):
        pref = ChannelPreference(enabled=True, categories={"newsletter": False})
        assert pref.allows("offer")
        assert not pref.allows("newsletter")

    def test_disabled_channel_blocks_every_category(self):
        pref = ChannelPreference(enabled=False, categories={"offer": True})
        assert not pref.allows("offer")


class TestBuildPlans:

    def test_opted_out_client_excluded(self, factory):
        # Given: client 1 opted out of email offers, client 2 opted in
        opted_out = factory.make_client(
            client_id="cli_0001",
            preferences=factory.make_preferences(email=True, categories={"offer": False}),
        )
        opted_in = factory.make_client(client_id="cli_0002")

        # When: building email plans for an offer
        plans = build_plans([opted_out, opted_in], [Channel.EMAIL], "offer")

        # Then: only client 2 is planned
        assert [(p.client_id, p.channel) for p in plans] == [("cli_0002", Channel.EMAIL)]

    def test_category_opt_out_is_channel_specific(self, factory):
        prefs = CommunicationPreferences(
            channels={
                Channel.EMAIL: ChannelPreference(enabled=True, categories={"offer": False}),
                Channel.SMS: ChannelPreference(enabled=True),
            }
        )
        client = factory.make_client(preferences=prefs)
        plans = build_plans([client], [Channel.EMAIL, Channel.SMS], "offer")
        assert [p.channel for p in plans] == [Channel.SMS]

    def test_missing_address_skips_channel(self, factory):
        client = factory.make_client(email=None)
        assert build_plans([client], [Channel.EMAIL], "offer") == []

    def test_whatsapp_falls_back_to_phone(self, factory):
        client = factory.make_client(
            phone="+919800000000",
            whatsapp=None,
            preferences=factory.make_preferences(email=False, whatsapp=True),
        )
        plans = build_plans([client], [Channel.WHATSAPP], "offer")
        assert len(plans) == 1
        assert plans[0].address == "+919800000000"

    def test_plans_ordered_by_client_then_channel(self, factory):
        prefs = factory.make_preferences(email=True, sms=True, whatsapp=True)
        clients = [
            factory.make_client(client_id="cli_0001", preferences=prefs),
            factory.make_client(client_id="cli_0002", preferences=prefs),
        ]
        plans = build_plans(clients, [Channel.WHATSAPP, Channel.EMAIL, Channel.SMS], "offer")
        assert [(p.client_id, p.channel.value) for p in plans] == [
            ("cli_0001", "email"),
            ("cli_0001", "sms"),
            ("cli_0001", "whatsapp"),
            ("cli_0002", "email"),
            ("cli_0002", "sms"),
            ("cli_0002", "whatsapp"),
        ]

    def test_plan_serialization_excludes_client(self, factory):
        plan = build_plans([factory.make_client()], [Channel.EMAIL], "offer")[0]
        assert "client" not in plan.model_dump()
