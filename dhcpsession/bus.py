"""
Lease event bus
"""

import asyncio
from contextlib import suppress
import inspect
import logging
from typing import Callable

from dhcpsession.event import Event
from dhcpsession.eventqueue import EventQueue
from dhcpsession.exceptions import QueueFull, SubscriberDeliveryFailed


logger = logging.getLogger("event-bus")


DEFAULT_QUEUE_SIZE = 256


class CallbackSubscriber:
    """
    Adapts a plain callable to the subscriber interface.
    """
    def __init__(self, callback: Callable):
        self.callback = callback

    def on_lease_event(self, event: Event):
        return self.callback(event)

    def __repr__(self):
        return f"CallbackSubscriber({getattr(self.callback, '__name__', self.callback)!r})"


class Subscription:
    """
    Represents a subscription to the bus.
    """
    def __init__(self, subscriber, params: dict):
        self.subscriber = subscriber
        self.params = params
        self.active = True

    def match(self, event: Event):
        """
        Match the event params.

        Only params that have been specified will be considered. If no params were
        given, all events will match.
        """
        for item, value in self.params.items():
            if getattr(event, item, None) != value:
                return False
        return True

    def deliver(self, event: Event):
        result = self.subscriber.on_lease_event(event)
        if inspect.isawaitable(result):
            # Synchronous delivery cannot wait for a coroutine
            result.close()
            raise TypeError(
                f"{self.subscriber!r} returned an awaitable; subscribe it with queued=True"
            )

    def close(self):
        self.active = False


class QueuedSubscription(Subscription):
    """
    A subscription delivered from the event loop instead of the publisher.

    Events are handed over through a bounded ``EventQueue`` so publishing never
    waits for the subscriber. If the subscriber falls behind and the queue is
    full, new events are dropped and counted in ``dropped``.
    """
    def __init__(self, subscriber, params: dict, maxsize: int, loop: asyncio.AbstractEventLoop):
        super().__init__(subscriber, params)
        self.loop = loop
        self.queue = EventQueue(maxsize)
        self.dropped = 0
        self.task: asyncio.Task | None = None
        self.loop.add_reader(self.queue, self.handle_queue)

    def deliver(self, event: Event):
        try:
            self.queue.put(event)
        except QueueFull:
            self.dropped += 1
            logger.warning(f"Dropping {event} for slow subscriber {self.subscriber!r}")

    def handle_queue(self):
        # Stop watching the queue while draining, the fd stays readable until
        # every item has been consumed
        self.loop.remove_reader(self.queue)
        self.task = self.loop.create_task(self.drain())

    async def drain(self):
        try:
            while self.active:
                try:
                    event = self.queue.get()
                except BlockingIOError:
                    break
                try:
                    result = self.subscriber.on_lease_event(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(f"Failure in queued subscriber {self.subscriber!r} for {event}")
        finally:
            if self.active:
                self.loop.add_reader(self.queue, self.handle_queue)

    async def join(self):
        """
        Wait until every queued event has been handled.
        """
        while self.active and (len(self.queue) or (self.task and not self.task.done())):
            if self.task and not self.task.done():
                await self.task
            else:
                await asyncio.sleep(0)

    def close(self):
        if not self.active:
            return
        super().close()
        self.loop.remove_reader(self.queue)
        if self.task and not self.task.done():
            self.task.cancel()
        self.queue.close()


class EventBus:
    """
    Fan-out of lease events to subscribers.

    A subscriber is any object with an ``on_lease_event(event)`` method. By
    default it is called synchronously from ``publish()``. Subscribers that need
    to do slow or asynchronous work should subscribe with ``queued=True``.
    """
    def __init__(self):
        self.subscriptions: list[Subscription] = []

    def subscribe(self, subscriber, queued: bool = False, maxsize: int = DEFAULT_QUEUE_SIZE, **params) -> Subscription:
        """
        Subscribe to lease events.

        If any ``params`` are given, the subscriber only receives events whose
        attributes match, eg. ``interface="eth0"``.
        """
        if not hasattr(subscriber, "on_lease_event"):
            if not callable(subscriber):
                raise TypeError(f"{subscriber!r} is not a lease event subscriber")
            subscriber = CallbackSubscriber(subscriber)

        if queued:
            subscription = QueuedSubscription(
                subscriber, params, maxsize, asyncio.get_running_loop()
            )
        else:
            subscription = Subscription(subscriber, params)

        logger.debug(f"New subscriber {subscriber!r}")
        # Replace rather than mutate so an in-flight publish keeps its snapshot
        self.subscriptions = self.subscriptions + [subscription]
        return subscription

    def unsubscribe(self, subscription: Subscription):
        """
        Remove a subscription. Unsubscribing twice is harmless.
        """
        if subscription not in self.subscriptions:
            return
        logger.debug(f"Removing subscriber {subscription.subscriber!r}")
        self.subscriptions = [s for s in self.subscriptions if s is not subscription]
        subscription.close()

    def publish(self, event: Event) -> list[SubscriberDeliveryFailed]:
        """
        Publish an event to every matching subscriber.

        Returns the failed deliveries. A failing subscriber never prevents
        delivery to the others.
        """
        logger.debug(f"Publishing event: {event}")
        failures = []
        for subscription in self.subscriptions:
            if not subscription.active or not subscription.match(event):
                continue
            try:
                subscription.deliver(event)
            except Exception as e:
                logger.exception(f"Failure in subscriber {subscription.subscriber!r} for {event}")
                failures.append(SubscriberDeliveryFailed(subscription.subscriber, event, e))
        return failures

    def close(self):
        for subscription in self.subscriptions:
            subscription.close()
        self.subscriptions = []

    async def join(self):
        "Wait for every queued subscriber to catch up"
        for subscription in self.subscriptions:
            if isinstance(subscription, QueuedSubscription):
                with suppress(asyncio.CancelledError):
                    await subscription.join()
