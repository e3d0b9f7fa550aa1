"""Async utilities shared across ragctx modules."""

import asyncio


def run_async(coro):
    """Run an async coroutine in a sync context.

    NOTE: This is for sync callers only (scripts, sync web handlers).
    From async code, await the coroutine directly.

    Raises RuntimeError if called from an async context.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        coro.close()
        raise RuntimeError(
            "Cannot use sync method from async context. "
            "Use the async version (e.g., retrieve_context instead of retrieve_context_sync)."
        )
    return asyncio.run(coro)
