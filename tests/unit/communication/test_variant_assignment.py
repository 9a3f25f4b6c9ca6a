"""
Unit Tests for A/B Variant Assignment and Message Rendering

Deterministic hash-based assignment, weight distribution and
{{variable}} personalization.
"""

from collections import Counter

import pytest

from microservices.communication_service.dispatcher import (
    assign_variant,
    broadcast_renderer,
    substitute_variables,
)
from microservices.communication_service.models import (
    ABVariant,
    Channel,
    ChannelConfigs,
    EmailChannelConfig,
    RecipientChannelPlan,
)


def variants(**weights):
    return [ABVariant(name=name, content=f"{name} body", weight=w) for name, w in weights.items()]


class TestAssignVariant:

    def test_same_recipient_same_variant(self):
        pool = variants(A=1, B=1)
        first = assign_variant("cli_0001", "brd_1", pool)
        assert all(assign_variant("cli_0001", "brd_1", pool).name == first.name for _ in range(10))

    def test_input_order_does_not_matter(self):
        pool = variants(A=1, B=2, C=3)
        for i in range(50):
            recipient = f"cli_{i:04d}"
            assert (
                assign_variant(recipient, "brd_1", pool).name
                == assign_variant(recipient, "brd_1", list(reversed(pool))).name
            )

    def test_weights_are_normalized(self):
        # Given: weights 1:1 expressed two ways
        small = variants(A=1, B=1)
        large = variants(A=50, B=50)

        # Then: assignments are identical
        for i in range(100):
            recipient = f"cli_{i:04d}"
            assert assign_variant(recipient, "brd_1", small).name == assign_variant(recipient, "brd_1", large).name

    def test_distribution_follows_weights(self):
        # Given: a 1:3 split over 2000 recipients
        pool = variants(A=1, B=3)

        # When: assigning every recipient
        counts = Counter(assign_variant(f"cli_{i}", "brd_dist", pool).name for i in range(2000))

        # Then: the split is roughly 25/75
        assert 0.20 < counts["A"] / 2000 < 0.30
        assert 0.70 < counts["B"] / 2000 < 0.80

    def test_single_variant_takes_everyone(self):
        pool = variants(Only=1)
        assert assign_variant("cli_1", "brd_1", pool).name == "Only"

    def test_no_variants_raises(self):
        with pytest.raises(ValueError):
            assign_variant("cli_1", "brd_1", [])


class TestSubstituteVariables:

    def test_known_variables(self):
        result = substitute_variables("Hi {{firstName}} from {{city}}", {"firstName": "Asha", "city": "Pune"})
        assert result == "Hi Asha from Pune"

    def test_unknown_variable_becomes_empty(self):
        assert substitute_variables("Hi {{nickname}}!", {}) == "Hi !"

    def test_empty_template(self):
        assert substitute_variables("", {"name": "x"}) == ""


class TestBroadcastRenderer:

    def test_personalizes_body_and_uses_title_as_subject(self, factory):
        broadcast = factory.make_broadcast(title="Renewal time", content="Dear {{firstName}}, you hold {{policyCount}} policies")
        client = factory.make_client(name="Asha Rao", policy_count=3)
        plan = RecipientChannelPlan(client_id=client.client_id, channel=Channel.EMAIL, address=client.email, client=client)

        message = broadcast_renderer(broadcast)(plan, None)

        assert message.subject == "Renewal time"
        assert message.body == "Dear Asha, you hold 3 policies"

    def test_email_config_subject_overrides_title(self, factory):
        broadcast = factory.make_broadcast(
            channel_configs=ChannelConfigs(email=EmailChannelConfig(subject="Hello {{firstName}}")),
        )
        client = factory.make_client(name="Ravi Kumar")
        plan = RecipientChannelPlan(client_id=client.client_id, channel=Channel.EMAIL, address="r@example.com", client=client)

        assert broadcast_renderer(broadcast)(plan, None).subject == "Hello Ravi"

    def test_variant_overrides_content_and_subject(self, factory):
        broadcast = factory.make_broadcast(content="Base")
        variant = ABVariant(name="B", content="Variant body", subject="Variant subject")
        client = factory.make_client()
        plan = RecipientChannelPlan(client_id=client.client_id, channel=Channel.EMAIL, address="a@example.com", client=client)

        message = broadcast_renderer(broadcast)(plan, variant)

        assert message.body == "Variant body"
        assert message.subject == "Variant subject"

    def test_non_email_channels_have_no_subject(self, factory):
        broadcast = factory.make_broadcast(channels=[Channel.SMS])
        client = factory.make_client()
        plan = RecipientChannelPlan(client_id=client.client_id, channel=Channel.SMS, address=client.phone, client=client)

        assert broadcast_renderer(broadcast)(plan, None).subject is None
