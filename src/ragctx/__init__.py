"""ragctx - Context Retrieval & Assembly Engine.

Gathers candidate memories, conversation messages and document chunks,
ranks and deduplicates them, balances source diversity and assembles the
best subset into a token-budgeted context block for LLM prompts.
"""

from importlib.metadata import version

from ragctx.cache import ContextCache
from ragctx.config import RagContextConfig
from ragctx.engine import ContextEngine
from ragctx.formatting import format_context_for_prompt
from ragctx.models import AssembledContext, ItemType, RetrievalOptions, SearchCandidate

__version__ = version("ragctx")
__all__ = [
    "AssembledContext",
    "ContextCache",
    "ContextEngine",
    "ItemType",
    "RagContextConfig",
    "RetrievalOptions",
    "SearchCandidate",
    "format_context_for_prompt",
    "__version__",
]
