"""In-process publish/subscribe of job events."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

from .models import BaseEvent

LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[BaseEvent], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("callback",)

    def __init__(self, callback: EventCallback) -> None:
        self.callback = callback


class EventBus:
    """Fans events out to the subscribers of one job, in subscription order.

    Callbacks run synchronously on the publisher's thread. A callback that raises
    is logged and does not prevent delivery to the remaining subscribers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[_Subscription]] = {}

    def subscribe(self, job_id: str, callback: EventCallback) -> Unsubscribe:
        subscription = _Subscription(callback)
        with self._lock:
            self._subscribers.setdefault(job_id, []).append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                entries = self._subscribers.get(job_id)
                if entries is None or subscription not in entries:
                    return
                entries.remove(subscription)
                if not entries:
                    del self._subscribers[job_id]

        return unsubscribe

    def publish(self, job_id: str, event: BaseEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscribers.get(job_id, ()))
        for subscription in subscriptions:
            try:
                subscription.callback(event)
            except Exception:
                LOGGER.exception("Event subscriber for job %s failed on %s", job_id, event.type)

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, ()))

    def has_subscribers(self, job_id: str) -> bool:
        return self.subscriber_count(job_id) > 0

    def clear(self, job_id: str | None = None) -> None:
        with self._lock:
            if job_id is None:
                self._subscribers.clear()
            else:
                self._subscribers.pop(job_id, None)
