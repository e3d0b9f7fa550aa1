"""Prompt formatting for assembled contexts."""

from datetime import UTC, datetime

from ragctx.models import AssembledContext, ContextItem, ItemType

MAX_MEMORIES_SHOWN = 10
MAX_MESSAGES_SHOWN = 8
MAX_DOCUMENTS_SHOWN = 6
MESSAGE_PREVIEW_CHARS = 200
DOCUMENT_PREVIEW_CHARS = 300


def _format_date(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).strftime("%Y-%m-%d")


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def format_context_for_prompt(
    context: AssembledContext,
    include_metadata: bool = True,
) -> str:
    """Render an assembled context as markdown sections grouped by source.

    Args:
        context: Output of ContextEngine.retrieve_context()
        include_metadata: Prepend a one-line summary of counts and relevance

    Returns:
        Markdown text ready for prompt injection
    """
    if not context.items:
        return "No relevant context found."

    lines = ["## Relevant Context", ""]

    if include_metadata:
        summary = context.summary
        lines.append(
            f"**Summary**: {summary.memories_count} memories, "
            f"{summary.messages_count} messages, {summary.documents_count} documents | "
            f"Average relevance: {summary.avg_relevance_score:.2f} | "
            f"Token budget: {context.total_tokens}"
        )
        lines.append("")

    def of_type(item_type: ItemType) -> list[ContextItem]:
        return [item for item in context.items if item.type == item_type]

    memories = of_type(ItemType.MEMORY)
    if memories:
        lines.append("### Personal Knowledge & Preferences")
        for item in memories[:MAX_MEMORIES_SHOWN]:
            lines.append(
                f"- **{_format_date(item.timestamp)}** (score: {item.score:.2f}): {item.content}"
            )
        lines.append("")

    messages = of_type(ItemType.MESSAGE)
    if messages:
        lines.append("### Recent Conversation Context")
        for item in messages[:MAX_MESSAGES_SHOWN]:
            role = str(item.metadata.get("role") or "unknown")
            lines.append(
                f"- **{role.upper()}** ({_format_date(item.timestamp)}): "
                f"{_truncate(item.content, MESSAGE_PREVIEW_CHARS)}"
            )
        lines.append("")

    documents = of_type(ItemType.DOCUMENT)
    if documents:
        lines.append("### Relevant Documentation")
        for item in documents[:MAX_DOCUMENTS_SHOWN]:
            title = item.metadata.get("documentTitle") or "Untitled"
            lines.append(
                f"- **{title}** (score: {item.score:.2f}): "
                f"{_truncate(item.content, DOCUMENT_PREVIEW_CHARS)}"
            )
        lines.append("")

    return "\n".join(lines)
