"""
Component Tests for Dispatcher

Fan-out over a mocked channel sender: failure isolation, the in-flight
bound, transport outages, timeouts, personalization and A/B splits.
"""

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.communication_service.dispatcher import Dispatcher
from tests.contracts.communication.data_contract import (
    Channel,
    CommunicationTestDataFactory,
)
from microservices.communication_service.models import ChannelConfigs, DeliveryStatus, EmailChannelConfig


def _add_clients(mock_directory, count, **kwargs):
    clients = CommunicationTestDataFactory.make_clients(count, **kwargs)
    for client in clients:
        mock_directory.add(client)
    return clients


class TestDispatchFailureIsolation:
    """One failed send never aborts the rest of a run"""

    @pytest.mark.asyncio
    async def test_partial_failures_are_counted(self, factory, dispatcher, mock_directory, mock_sender):
        # Given: 100 email recipients, 30 of whom will be rejected
        clients = _add_clients(mock_directory, 100)
        mock_sender.fail_addresses = {c.email for c in clients[:30]}
        broadcast = factory.make_broadcast()

        # When: Dispatching
        result = await dispatcher.send(broadcast)

        # Then: Every recipient was attempted and counted
        assert result.total == 100
        assert result.sent == 70
        assert result.failed == 30
        assert result.per_channel["email"].sent == 70
        assert result.per_channel["email"].failed == 30
        assert len(result.outcomes) == 100
        failed = [o for o in result.outcomes if o.status == DeliveryStatus.FAILED]
        assert all(o.error == "mailbox unavailable" for o in failed)

    @pytest.mark.asyncio
    async def test_unexpected_sender_error_is_recorded(self, factory, dispatcher, mock_directory, mock_sender):
        # Given: One address makes the sender raise
        clients = _add_clients(mock_directory, 5)
        mock_sender.error_addresses = {clients[2].email}

        # When: Dispatching
        result = await dispatcher.send(factory.make_broadcast())

        # Then: The error is an outcome, the others still went out
        assert result.sent == 4
        assert result.failed == 1
        failed = next(o for o in result.outcomes if o.status == DeliveryStatus.FAILED)
        assert failed.client_id == clients[2].client_id
        assert "connection reset" in failed.error

    @pytest.mark.asyncio
    async def test_send_timeout_counts_as_failure(self, factory, resolver, mock_directory, mock_sender):
        # Given: A sender slower than the per-send timeout
        _add_clients(mock_directory, 3)
        mock_sender.delay = 0.2
        dispatcher = Dispatcher(resolver=resolver, sender=mock_sender, fan_out_limit=3, send_timeout=0.01)

        # When: Dispatching
        result = await dispatcher.send(factory.make_broadcast())

        # Then: Every send failed with a timeout
        assert result.failed == 3
        assert {o.error for o in result.outcomes} == {"Send timed out"}


class TestDispatchFanOut:
    """In-flight sends are bounded"""

    @pytest.mark.asyncio
    async def test_in_flight_sends_never_exceed_limit(self, factory, dispatcher, mock_directory, mock_sender):
        # Given: More recipients than the fan-out limit of 5
        _add_clients(mock_directory, 20)
        mock_sender.delay = 0.01

        # When: Dispatching
        result = await dispatcher.send(factory.make_broadcast())

        # Then: All sent, at most 5 at a time
        assert result.sent == 20
        assert 1 < mock_sender.max_in_flight <= 5

    @pytest.mark.asyncio
    async def test_limit_of_one_is_sequential(self, factory, resolver, mock_directory, mock_sender):
        _add_clients(mock_directory, 4)
        mock_sender.delay = 0.01
        dispatcher = Dispatcher(resolver=resolver, sender=mock_sender, fan_out_limit=1)

        await dispatcher.send(factory.make_broadcast())

        assert mock_sender.max_in_flight == 1

    def test_limit_must_be_positive(self, resolver, mock_sender):
        with pytest.raises(ValueError):
            Dispatcher(resolver=resolver, sender=mock_sender, fan_out_limit=0)


class TestTransportUnavailable:
    """A channel outage fails that channel only"""

    @pytest.mark.asyncio
    async def test_down_channel_fails_without_stopping_others(
        self, factory, dispatcher, mock_directory, mock_sender
    ):
        # Given: Clients reachable by email and SMS, with SMS down
        _add_clients(mock_directory, 6, preferences=factory.make_preferences(email=True, sms=True))
        mock_sender.down_channels = {Channel.SMS}
        broadcast = factory.make_broadcast(channels=[Channel.EMAIL, Channel.SMS])

        # When: Dispatching
        result = await dispatcher.send(broadcast)

        # Then: Email went out, SMS failed and is reported unavailable
        assert result.per_channel["email"].sent == 6
        assert result.per_channel["sms"].failed == 6
        assert result.unavailable_channels == [Channel.SMS]
        assert result.all_transports_down is False

    @pytest.mark.asyncio
    async def test_all_channels_down(self, factory, dispatcher, mock_directory, mock_sender):
        _add_clients(mock_directory, 3)
        mock_sender.down_channels = {Channel.EMAIL}

        result = await dispatcher.send(factory.make_broadcast())

        assert result.sent == 0
        assert result.failed == 3
        assert result.all_transports_down is True


class TestDispatchRendering:
    """Personalization and variants reach the sender"""

    @pytest.mark.asyncio
    async def test_variables_substituted_per_recipient(self, factory, dispatcher, mock_directory, mock_sender):
        # Given: A client named Meera Iyer
        mock_directory.add(factory.make_client(client_id="cli_0001", name="Meera Iyer", city="Pune"))
        broadcast = factory.make_broadcast(
            content="Hi {{firstName}} from {{city}}. Unknown: [{{missing}}]",
            channel_configs=ChannelConfigs(email=EmailChannelConfig(subject="Offer for {{name}}")),
        )

        # When: Dispatching
        await dispatcher.send(broadcast)

        # Then: Placeholders resolved, unknown ones blanked
        message = mock_sender.sent[0]
        assert message["body"] == "Hi Meera from Pune. Unknown: []"
        assert message["subject"] == "Offer for Meera Iyer"

    @pytest.mark.asyncio
    async def test_email_subject_falls_back_to_title(self, factory, dispatcher, mock_directory, mock_sender):
        mock_directory.add(factory.make_client())

        await dispatcher.send(factory.make_broadcast(title="Renewal Week"))

        assert mock_sender.sent[0]["subject"] == "Renewal Week"

    @pytest.mark.asyncio
    async def test_ab_variants_split_recipients(self, factory, dispatcher, mock_directory, mock_sender):
        # Given: A two-variant A/B test over 50 clients
        _add_clients(mock_directory, 50)
        broadcast = factory.make_broadcast(ab_test=factory.make_ab_test({"A": 1.0, "B": 1.0}))

        # When: Dispatching
        result = await dispatcher.send(broadcast)

        # Then: Every outcome carries a variant and per-variant counts add up
        assert all(o.variant in ("A", "B") for o in result.outcomes)
        assert sum(c.total for c in result.per_variant.values()) == 50
        assert set(result.per_variant) == {"A", "B"}
        bodies = {m["body"].split(" ")[1] for m in mock_sender.sent}
        assert bodies == {"A", "B"}

    @pytest.mark.asyncio
    async def test_empty_audience_sends_nothing(self, factory, dispatcher, mock_sender):
        result = await dispatcher.send(factory.make_broadcast())

        assert result.total == 0
        assert result.empty_audience is True
        assert mock_sender.sent == []
