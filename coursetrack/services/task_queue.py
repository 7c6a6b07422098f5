"""Hand-off queue for outbound notifications.

The engine never talks to SMS/WhatsApp/e-mail providers itself.  It
pushes a task onto the ``notifications`` queue and the worker process
(``python -m coursetrack.worker``) hands it to the dispatch collaborator.

Redis lists give FIFO order: LPUSH on enqueue, BRPOP in the worker.
Delivery is at-most-once; a worker crash mid-task loses that task.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from coursetrack.core.metrics import QUEUE_DEPTH
from coursetrack.db.redis import redis_pool

NOTIFICATIONS_QUEUE = "notifications"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        pending = self._queues.setdefault(queue, [])
        pending.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        pending = self._queues.get(queue, [])
        if not pending:
            return None
        task = pending.pop(0)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        body = json.dumps({"id": task.id, "queue": task.queue, "payload": task.payload})
        depth = await self._redis.lpush(f"{self._PREFIX}{queue}", body)
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, body = result
        return Task(**json.loads(body))

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


class Outbox:
    """Notifications staged by one unit of work.

    Nothing reaches the queue until ``flush`` is called, which the owner of
    the unit of work does only after its writes are committed.  An outbox
    that is never flushed (the work raised) sends nothing.
    """

    def __init__(self, queue: str = NOTIFICATIONS_QUEUE) -> None:
        self.queue = queue
        self._pending: list[dict] = []

    def add(self, kind: str, **payload) -> None:
        self._pending.append({"kind": kind, **payload})

    @property
    def pending(self) -> tuple[dict, ...]:
        return tuple(self._pending)

    async def flush(self) -> list[Task]:
        sent = [await task_queue.enqueue(self.queue, payload) for payload in self._pending]
        self._pending.clear()
        return sent


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
