"""ragctx shared utilities library.

This module contains cross-cutting utilities used across the ragctx codebase:
- async_utils: running the async pipeline from sync callers
"""

from ragctx.lib.async_utils import run_async

__all__ = ["run_async"]
