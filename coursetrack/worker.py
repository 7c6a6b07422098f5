"""Background worker process.

RUN:  python -m coursetrack.worker

Drains the notifications queue filled by progress_service (content and
course completions, live-session outcomes and absences) and hands each
event to the dispatch collaborator.  Same image as the API, different
command:

  api:    uvicorn coursetrack.main:app --host 0.0.0.0 --port 8000
  worker: python -m coursetrack.worker
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from coursetrack.core.config import SETTINGS
from coursetrack.core.logging import setup_logging
from coursetrack.services.task_queue import NOTIFICATIONS_QUEUE, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("coursetrack.worker")

HANDLERS: dict[str, TaskHandler] = {}

# Notification kinds the dispatch collaborator has templates for.
NOTIFICATION_KINDS = frozenset(
    {
        "content_completed",
        "course_completed",
        "live_session_outcome",
        "live_session_absence",
    }
)


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(NOTIFICATIONS_QUEUE)
async def handle_notification(payload: dict) -> None:
    """Hand one notification event to the dispatch collaborator.

    This is the boundary of the engine: the structured log line below is
    the hand-off record the dispatch collaborator ships from.  Message
    wording and channel routing are decided on its side.
    Unknown kinds are rejected so a producer bug shows up in this log
    instead of as a blank message.
    """
    kind = payload.get("kind")
    if kind not in NOTIFICATION_KINDS:
        raise ValueError(f"unknown notification kind {kind!r}")
    logger.info(
        "Dispatching %s to student=%s",
        kind,
        payload.get("student_id"),
        extra={
            "student_id": payload.get("student_id"),
            "course_id": payload.get("course_id"),
            "content_id": payload.get("content_id"),
        },
    )


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle a single task.  Returns False when the queue was empty."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # at-most-once: a failed task is logged and dropped
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        drained = True
        for queue_name in queues:
            if await process_one(queue_name):
                drained = False
        if drained:
            # in-memory dequeue does not block
            await asyncio.sleep(1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
