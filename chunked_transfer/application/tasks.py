"""Helpers for running sibling tasks that fail together."""

import asyncio
from typing import List


async def gather_or_cancel(tasks: List[asyncio.Task]):
    """
    Wait for all tasks; the first one to fail cancels the rest.

    The failing task's exception is re-raised once every sibling has
    finished cancelling, so the caller sees exactly one error.
    """
    if not tasks:
        return

    try:
        done, pending = await asyncio.wait(
            tasks, return_when=asyncio.FIRST_EXCEPTION
        )
    except asyncio.CancelledError:
        await _cancel_all(tasks)
        raise

    failures = [
        task.exception()
        for task in tasks
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if failures:
        await _cancel_all(pending)
        raise failures[0]


async def _cancel_all(tasks):
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
