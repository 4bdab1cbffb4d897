import asyncio
import logging
from typing import Coroutine, Set


def spawn_tracked(tasks: Set[asyncio.Task], work: Coroutine, description: str) -> asyncio.Task:
    """Start `work` as a background task held in `tasks` until it finishes.

    A failure of the task is logged as soon as it finishes instead of
    surfacing later as an unretrieved task exception.
    """
    task = asyncio.create_task(work)
    tasks.add(task)

    def _on_done(t: asyncio.Task) -> None:
        tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logging.error(f"Background task {description} failed: {exc!r}")

    task.add_done_callback(_on_done)
    return task


async def cancel_all(tasks: Set[asyncio.Task]) -> None:
    """Cancel every task still running and wait for them to finish."""
    for task in list(tasks):
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
