"""Subscriptions to server-pushed query results, individually or in batches.

A subscription is in exactly one of three states. It starts unregistered, and
from there it can either be activated on its own (the server invokes the
subscription's own label for every new tuple) or join a batch (the server
invokes the batch's method with the tuples of all its members at once). It has
to return to unregistered before switching between the two.
"""

import abc
import enum
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable

import logfire
from pydantic import JsonValue

from .errors import SubscriptionStateError
from .models import CombinedNotification
from .query import AbstractQuery, Query

if TYPE_CHECKING:
    from .client import TriggerwareClient

logger = logging.getLogger(__name__)


class SubscriptionState(enum.Enum):
    UNREGISTERED = "unregistered"
    ACTIVE = "active"
    BATCHED = "batched"


class SubscriptionAction(enum.Enum):
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    JOIN_BATCH = "join_batch"
    LEAVE_BATCH = "leave_batch"


_TRANSITIONS: dict[SubscriptionAction, tuple[SubscriptionState, SubscriptionState]] = {
    SubscriptionAction.ACTIVATE: (SubscriptionState.UNREGISTERED, SubscriptionState.ACTIVE),
    SubscriptionAction.DEACTIVATE: (SubscriptionState.ACTIVE, SubscriptionState.UNREGISTERED),
    SubscriptionAction.JOIN_BATCH: (SubscriptionState.UNREGISTERED, SubscriptionState.BATCHED),
    SubscriptionAction.LEAVE_BATCH: (SubscriptionState.BATCHED, SubscriptionState.UNREGISTERED),
}


def next_state(state: SubscriptionState, action: SubscriptionAction) -> SubscriptionState:
    """The state a subscription moves to when ``action`` is applied in ``state``.

    Raises:
        SubscriptionStateError: If the action is not allowed in that state.
    """
    required, target = _TRANSITIONS[action]
    if state is not required:
        raise SubscriptionStateError(
            f"Cannot {action.value.replace('_', ' ')} a subscription that is {state.value}"
        )
    return target


class Subscription(AbstractQuery):
    """Receives the tuples a query produces as the server's data changes.

    Subclasses override ``handle_notification``, which is called once per
    tuple. With ``active=True`` (the default) the subscription activates itself
    in the background; pass ``active=False`` to add it to a batch instead.

    Example:
        ```python
        class EventPrinter(Subscription):
            def handle_notification(self, data):
                print("received data:", data)

        printer = EventPrinter(client, FolQuery("NEGATIVE-TWEET"))
        await printer.registered()
        ```

    Args:
        client (TriggerwareClient): The client to subscribe on
        query (Query): The query whose new results are pushed
        active (bool): Whether to activate immediately
    """

    def __init__(self, client: "TriggerwareClient", query: Query, active: bool = True):
        super().__init__(client, query)
        self.label = client.next_label("sub")
        self.state = SubscriptionState.UNREGISTERED
        self.batch: "BatchSubscription | None" = None
        if active:
            self._register_in_background(self.activate())

    @property
    def active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE

    def _subscribe_params(self, method: str, combine: bool) -> dict[str, Any]:
        params = self.base_params
        params.update({"method": method, "label": self.label, "combine": combine})
        return params

    async def _transition(
        self,
        action: SubscriptionAction,
        rpc_method: str,
        params: dict[str, Any],
        apply: Callable[[], Any] | None = None,
        undo: Callable[[], Any] | None = None,
    ):
        # routing is in place before the reply can arrive
        previous = self.state
        target = next_state(previous, action)
        if apply is not None:
            apply()
        self.state = target
        try:
            with logfire.span("{rpc_method} {label=}", rpc_method=rpc_method, label=self.label):
                await self._client.call(rpc_method, params)
        except BaseException:
            if undo is not None:
                undo()
            self.state = previous
            raise

    async def activate(self):
        """Subscribes this subscription on its own.

        Raises:
            SubscriptionStateError: If it is already active or in a batch.
        """
        await self._transition(
            SubscriptionAction.ACTIVATE,
            "subscribe",
            self._subscribe_params(self.label, combine=False),
            apply=lambda: self._client.add_method(self.label, self._on_notification),
            undo=lambda: self._client.remove_method(self.label),
        )

    async def deactivate(self):
        """Cancels an individual subscription.

        Raises:
            SubscriptionStateError: If it is not active, or is in a batch.
        """
        await self._transition(
            SubscriptionAction.DEACTIVATE,
            "unsubscribe",
            self._subscribe_params(self.label, combine=False),
        )
        self._client.remove_method(self.label)

    async def add_to_batch(self, batch: "BatchSubscription"):
        """Subscribes as a member of a batch.

        Raises:
            SubscriptionStateError: If already in a batch, currently active,
                or if the batch belongs to another client.
        """
        if batch.client is not self._client:
            raise SubscriptionStateError("The batch belongs to a different client")

        def join():
            self.batch = batch
            batch._members[self.label] = self

        def undo():
            self.batch = None
            batch._members.pop(self.label, None)

        await self._transition(
            SubscriptionAction.JOIN_BATCH,
            "subscribe",
            self._subscribe_params(batch.method_name, combine=True),
            apply=join,
            undo=undo,
        )

    async def remove_from_batch(self):
        """Leaves the batch this subscription belongs to.

        Raises:
            SubscriptionStateError: If it is not in a batch.
        """
        batch = self.batch
        method = batch.method_name if batch is not None else self.label
        await self._transition(
            SubscriptionAction.LEAVE_BATCH,
            "unsubscribe",
            self._subscribe_params(method, combine=True),
        )
        if batch is not None:
            batch._members.pop(self.label, None)
        self.batch = None

    async def _on_notification(self, params: JsonValue):
        await self._deliver(params)

    async def _deliver(self, data: JsonValue):
        result = self.handle_notification(data)
        if inspect.isawaitable(result):
            await result

    @abc.abstractmethod
    def handle_notification(self, data: JsonValue):
        """Called once for every tuple pushed to this subscription. May be a coroutine.

        Every subclass must override it.
        """


class BatchSubscription:
    """A group of subscriptions whose notifications arrive together.

    The server invokes one method for the whole batch with a payload of the
    form ``{"matches": [{"label": ..., "tuples": [...]}, ...]}``; each tuple is
    handed to the member with that label, in order. Labels of subscriptions
    that are no longer members are ignored.
    """

    def __init__(self, client: "TriggerwareClient"):
        self._client = client
        self.method_name = client.next_label("batch")
        self._members: dict[str, Subscription] = {}
        client.add_method(self.method_name, self._on_notification)

    @property
    def client(self) -> "TriggerwareClient":
        return self._client

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._members.values())

    async def add_subscription(self, subscription: Subscription):
        await subscription.add_to_batch(self)

    async def remove_subscription(self, subscription: Subscription):
        """Removes a member.

        Raises:
            SubscriptionStateError: If the subscription is not a member of this batch.
        """
        if self._members.get(subscription.label) is not subscription:
            raise SubscriptionStateError(
                f"Subscription {subscription.label} is not a member of {self.method_name}"
            )
        await subscription.remove_from_batch()

    async def _on_notification(self, params: JsonValue):
        notification = CombinedNotification.model_validate(params)
        for match in notification.matches:
            member = self._members.get(match.label)
            if member is None:
                logger.debug(
                    "Ignoring tuples for %s, not a member of %s",
                    match.label,
                    self.method_name,
                )
                continue
            for data in match.tuples:
                await member._deliver(data)

    def close(self) -> bool:
        """Stops receiving notifications for this batch."""
        return self._client.remove_method(self.method_name)
