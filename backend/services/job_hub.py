from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Callable

from models.job import JobEvent

# Queue item marking the end of a job's stream.
CLOSED = None

SubscriberQueue = asyncio.Queue["JobEvent | None"]


class JobHub:
    """
    In-memory pubsub fanning job events out to live subscribers.

    Unlike a latest-wins hub, queues are unbounded: a subscriber must see
    every progress message and exactly one terminal event, in order.
    ``close`` ends every stream for a job.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, set[SubscriberQueue]] = defaultdict(set)

    async def subscribe(
        self,
        job_id: str,
        initial: Callable[[], list[JobEvent]] | None = None,
    ) -> SubscriberQueue:
        """
        Register a queue for ``job_id``.

        ``initial`` is evaluated under the hub lock and its events are queued
        first, so no publish can slip between the snapshot and registration.
        If the snapshot already ends in a terminal event the queue is closed
        and never registered.
        """
        q: SubscriberQueue = asyncio.Queue()
        async with self._lock:
            events = initial() if initial is not None else []
            for event in events:
                q.put_nowait(event)
            if events and events[-1].is_terminal:
                q.put_nowait(CLOSED)
            else:
                self._subscribers[job_id].add(q)
        return q

    async def unsubscribe(self, job_id: str, q: SubscriberQueue) -> None:
        async with self._lock:
            subs = self._subscribers.get(job_id)
            if not subs:
                return
            subs.discard(q)
            if not subs:
                self._subscribers.pop(job_id, None)

    def _deliver(self, job_id: str, event: JobEvent) -> None:
        for q in self._subscribers.get(job_id, set()):
            q.put_nowait(event)
        if event.is_terminal:
            for q in self._subscribers.pop(job_id, set()):
                q.put_nowait(CLOSED)

    async def publish(self, job_id: str, event: JobEvent) -> None:
        async with self._lock:
            self._deliver(job_id, event)

    async def update(self, job_id: str, change: Callable[[], JobEvent]) -> JobEvent:
        """
        Run ``change`` under the hub lock and deliver the event it returns.

        Callers mutate job state inside ``change`` so a concurrent ``subscribe``
        sees either the old state plus this event, or the new state alone.
        """
        async with self._lock:
            event = change()
            self._deliver(job_id, event)
        return event

    async def subscriber_count(self, job_id: str) -> int:
        async with self._lock:
            return len(self._subscribers.get(job_id, ()))
