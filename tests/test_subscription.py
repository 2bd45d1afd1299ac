"""
Subscription and batch subscription tests.
"""

import logging

import pytest

from conftest import flush
from triggerware import (
    BatchSubscription,
    FolQuery,
    Subscription,
    SubscriptionState,
    SubscriptionStateError,
    TriggerwareClient,
)
from triggerware.jsonrpc import ServerError
from triggerware.subscription import SubscriptionAction, next_state

QUERY = FolQuery("NEGATIVE-TWEET")
BASE = {"query": "NEGATIVE-TWEET", "language": "fol", "namespace": "AP5"}


class Printer(Subscription):
    def __init__(self, *args, **kwargs):
        self.received = []
        super().__init__(*args, **kwargs)

    def handle_notification(self, data):
        self.received.append(data)


@pytest.fixture
def sub_server(server):
    server.handlers["subscribe"] = lambda params: True
    server.handlers["unsubscribe"] = lambda params: True
    return server


class TestStateMachine:
    @pytest.mark.parametrize(
        "state, action, expected",
        [
            (SubscriptionState.UNREGISTERED, SubscriptionAction.ACTIVATE, SubscriptionState.ACTIVE),
            (SubscriptionState.ACTIVE, SubscriptionAction.DEACTIVATE, SubscriptionState.UNREGISTERED),
            (SubscriptionState.UNREGISTERED, SubscriptionAction.JOIN_BATCH, SubscriptionState.BATCHED),
            (SubscriptionState.BATCHED, SubscriptionAction.LEAVE_BATCH, SubscriptionState.UNREGISTERED),
        ],
    )
    def test_allowed_transitions(self, state, action, expected):
        assert next_state(state, action) is expected

    @pytest.mark.parametrize(
        "state, action",
        [
            (SubscriptionState.ACTIVE, SubscriptionAction.ACTIVATE),
            (SubscriptionState.BATCHED, SubscriptionAction.ACTIVATE),
            (SubscriptionState.UNREGISTERED, SubscriptionAction.DEACTIVATE),
            (SubscriptionState.BATCHED, SubscriptionAction.DEACTIVATE),
            (SubscriptionState.ACTIVE, SubscriptionAction.JOIN_BATCH),
            (SubscriptionState.BATCHED, SubscriptionAction.JOIN_BATCH),
            (SubscriptionState.UNREGISTERED, SubscriptionAction.LEAVE_BATCH),
            (SubscriptionState.ACTIVE, SubscriptionAction.LEAVE_BATCH),
        ],
    )
    def test_forbidden_transitions(self, state, action):
        with pytest.raises(SubscriptionStateError):
            next_state(state, action)


class TestIndividualSubscription:
    @pytest.mark.asyncio
    async def test_active_by_default(self, sub_server, client):
        printer = Printer(client, QUERY)
        await printer.registered()

        assert printer.label == "sub0"
        assert printer.active
        assert client.has_method("sub0")
        assert sub_server.params_of("subscribe") == [
            {**BASE, "method": "sub0", "label": "sub0", "combine": False}
        ]

    @pytest.mark.asyncio
    async def test_notifications_reach_the_handler(self, sub_server, client):
        printer = Printer(client, QUERY)
        await printer.registered()

        sub_server.invoke("sub0", ["2025-3-14", "6:45:00", "X-men is overrated", "movies"])
        await flush(client)

        assert printer.received == [["2025-3-14", "6:45:00", "X-men is overrated", "movies"]]

    @pytest.mark.asyncio
    async def test_activate_twice_fails(self, sub_server, client):
        printer = Printer(client, QUERY)
        await printer.registered()

        with pytest.raises(SubscriptionStateError):
            await printer.activate()
        assert len(sub_server.params_of("subscribe")) == 1

    @pytest.mark.asyncio
    async def test_deactivate(self, sub_server, client):
        printer = Printer(client, QUERY)
        await printer.registered()

        await printer.deactivate()
        assert printer.state is SubscriptionState.UNREGISTERED
        assert not client.has_method("sub0")
        assert sub_server.params_of("unsubscribe") == [
            {**BASE, "method": "sub0", "label": "sub0", "combine": False}
        ]

        with pytest.raises(SubscriptionStateError):
            await printer.deactivate()

    @pytest.mark.asyncio
    async def test_failed_subscribe_rolls_back(self, server, client):
        def reject(params):
            raise ServerError("unknown relation")

        server.handlers["subscribe"] = reject
        printer = Printer(client, QUERY, active=False)

        with pytest.raises(ServerError):
            await printer.activate()
        assert printer.state is SubscriptionState.UNREGISTERED
        assert not client.has_method(printer.label)

    @pytest.mark.asyncio
    async def test_labels_are_per_client(self, client):
        first = Printer(client, QUERY, active=False)
        second = Printer(client, QUERY, active=False)
        other = Printer(TriggerwareClient(), QUERY, active=False)

        assert (first.label, second.label, other.label) == ("sub0", "sub1", "sub0")

    def test_handler_must_be_overridden(self):
        class Silent(Subscription):
            pass

        client = TriggerwareClient()

        with pytest.raises(TypeError):
            Silent(client, QUERY, active=False)
        with pytest.raises(TypeError):
            Subscription(client, QUERY, active=False)

    @pytest.mark.asyncio
    async def test_failed_background_activation_is_logged(self, server, client, caplog):
        def reject(params):
            raise ServerError("unknown relation")

        server.handlers["subscribe"] = reject
        with caplog.at_level(logging.WARNING, logger="triggerware.query"):
            printer = Printer(client, QUERY)
            await flush(client)

        assert "Background registration of Printer failed" in caplog.text
        with pytest.raises(ServerError):
            await printer.registered()
        assert not client.has_method(printer.label)


class TestBatchSubscription:
    @pytest.mark.asyncio
    async def test_join_batch(self, sub_server, client):
        batch = BatchSubscription(client)
        printer = Printer(client, QUERY, active=False)

        await printer.add_to_batch(batch)

        assert batch.method_name == "batch0"
        assert client.has_method("batch0")
        assert not client.has_method(printer.label)
        assert printer.state is SubscriptionState.BATCHED
        assert printer.batch is batch
        assert batch.subscriptions == [printer]
        assert sub_server.params_of("subscribe") == [
            {**BASE, "method": "batch0", "label": "sub0", "combine": True}
        ]

    @pytest.mark.asyncio
    async def test_batched_subscription_cannot_be_activated(self, sub_server, client):
        batch = BatchSubscription(client)
        printer = Printer(client, QUERY, active=False)
        await batch.add_subscription(printer)

        with pytest.raises(SubscriptionStateError):
            await printer.activate()
        with pytest.raises(SubscriptionStateError):
            await printer.deactivate()

        assert printer.batch is batch
        assert batch.subscriptions == [printer]
        assert len(sub_server.params_of("subscribe")) == 1

    @pytest.mark.asyncio
    async def test_active_subscription_cannot_join(self, sub_server, client):
        batch = BatchSubscription(client)
        printer = Printer(client, QUERY)
        await printer.registered()

        with pytest.raises(SubscriptionStateError):
            await printer.add_to_batch(batch)
        assert batch.subscriptions == []
        assert printer.active

    @pytest.mark.asyncio
    async def test_batch_of_another_client_is_rejected(self, sub_server, client):
        batch = BatchSubscription(TriggerwareClient())
        printer = Printer(client, QUERY, active=False)

        with pytest.raises(SubscriptionStateError):
            await printer.add_to_batch(batch)
        assert printer.state is SubscriptionState.UNREGISTERED
        assert sub_server.calls == []

    @pytest.mark.asyncio
    async def test_combined_notification_fans_out_in_order(self, sub_server, client):
        batch = BatchSubscription(client)
        first = Printer(client, QUERY, active=False)
        second = Printer(client, QUERY, active=False)
        await first.add_to_batch(batch)
        await second.add_to_batch(batch)

        sub_server.invoke(
            "batch0",
            {
                "matches": [
                    {"label": "sub0", "tuples": [["t1"], ["t2"]]},
                    {"label": "sub7", "tuples": [["lost"]]},
                    {"label": "sub1", "tuples": [["u1"]]},
                ]
            },
        )
        await flush(client)

        assert first.received == [["t1"], ["t2"]]
        assert second.received == [["u1"]]
        assert [m for m in sub_server.transport.responses() if "error" in m] == []

    @pytest.mark.asyncio
    async def test_remove_from_batch(self, sub_server, client):
        batch = BatchSubscription(client)
        printer = Printer(client, QUERY, active=False)
        await printer.add_to_batch(batch)

        await printer.remove_from_batch()

        assert printer.state is SubscriptionState.UNREGISTERED
        assert printer.batch is None
        assert batch.subscriptions == []
        assert sub_server.params_of("unsubscribe") == [
            {**BASE, "method": "batch0", "label": "sub0", "combine": True}
        ]

        sub_server.invoke("batch0", {"matches": [{"label": "sub0", "tuples": [["late"]]}]})
        await flush(client)
        assert printer.received == []

    @pytest.mark.asyncio
    async def test_removing_a_non_member_fails_without_side_effects(self, sub_server, client):
        batch = BatchSubscription(client)
        member = Printer(client, QUERY, active=False)
        outsider = Printer(client, QUERY, active=False)
        await member.add_to_batch(batch)
        calls_before = list(sub_server.calls)

        with pytest.raises(SubscriptionStateError):
            await outsider.remove_from_batch()
        with pytest.raises(SubscriptionStateError):
            await batch.remove_subscription(outsider)

        assert sub_server.calls == calls_before
        assert batch.subscriptions == [member]
        assert outsider.state is SubscriptionState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_close_unregisters_the_batch_method(self, client):
        batch = BatchSubscription(client)
        assert batch.close() is True
        assert not client.has_method(batch.method_name)
