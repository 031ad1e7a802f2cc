"""Builds the CONTEXT block of a prompt from ranked chunks under a character budget."""

from typing import Iterable

from shared.clients.rag.models.IndexedChunk import ScoredChunk

CONTEXT_SEPARATOR = "\n\n"


def assemble_context(chunks: Iterable[ScoredChunk | str], max_chars: int) -> str:
    """Join ranked chunk texts with a blank line, keeping whole chunks only.

    Stops at the first chunk that would push the result (separators included)
    over `max_chars`; later, smaller chunks are not used to fill the gap so
    the rank order stays intact.

    Args:
        chunks (Iterable[ScoredChunk | str]): Search hits (or bare texts) in ranked order.
        max_chars (int): Character budget of the returned context.

    Returns:
        str: The context, "" when nothing matched or nothing fits.
    """
    parts: list[str] = []
    used = 0
    for chunk in chunks:
        text = chunk if isinstance(chunk, str) else chunk.text
        added = len(text) + (len(CONTEXT_SEPARATOR) if parts else 0)
        if used + added > max_chars:
            break
        parts.append(text)
        used += added
    return CONTEXT_SEPARATOR.join(parts)


class ContextAssembler:
    """Builds the grounding context for one question within a fixed budget."""

    def __init__(self, max_chars: int = 12000) -> None:
        self.max_chars = max_chars

    def assemble(self, chunks: Iterable[ScoredChunk | str], max_chars: int | None = None) -> str:
        return assemble_context(chunks, self.max_chars if max_chars is None else max_chars)
