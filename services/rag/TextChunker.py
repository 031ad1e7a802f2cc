"""Fixed-size, overlapping character windows over a document text."""

import math
from typing import Iterator

from shared.exceptions import EmptyInput, InvalidConfig


class TextChunks:
    """Lazy, restartable sequence of overlapping chunks of `text`.

    Window i spans [i * (chunk_size - overlap), i * (chunk_size - overlap) + chunk_size)
    clipped to the text length. Iteration ends with the first window that
    reaches the end of the text, so trailing windows fully contained in the
    previous one are never produced.

    Args:
        text (str): The document text, must contain non-whitespace characters.
        chunk_size (int): Characters per window, > 0.
        overlap (int): Characters shared by consecutive windows, 0 <= overlap < chunk_size.

    Raises:
        InvalidConfig: If the window parameters cannot make progress.
        EmptyInput: If the text is empty or whitespace-only.
    """

    def __init__(self, text: str, chunk_size: int, overlap: int) -> None:
        validate_chunk_config(chunk_size, overlap)
        if not text or not text.strip():
            raise EmptyInput("Cannot chunk an empty text.")
        self.text = text
        self.chunk_size = chunk_size
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap

    def spans(self) -> Iterator[tuple[int, str]]:
        """Yield (start offset, chunk text) pairs in document order."""
        length = len(self.text)
        start = 0
        while start < length:
            end = min(start + self.chunk_size, length)
            yield start, self.text[start:end]
            if end >= length:
                break
            start += self.step

    def __iter__(self) -> Iterator[str]:
        for _, chunk in self.spans():
            yield chunk

    def __len__(self) -> int:
        length = len(self.text)
        if length <= self.chunk_size:
            return 1
        return math.ceil((length - self.overlap) / self.step)


def validate_chunk_config(chunk_size: int, overlap: int) -> None:
    """Raise InvalidConfig unless chunk_size > overlap >= 0."""
    if chunk_size <= 0:
        raise InvalidConfig(f"Chunk size must be positive, got {chunk_size}.")
    if overlap < 0:
        raise InvalidConfig(f"Chunk overlap must not be negative, got {overlap}.")
    if overlap >= chunk_size:
        raise InvalidConfig(f"Chunk overlap ({overlap}) must be smaller than the chunk size ({chunk_size}).")


def split_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split a text into overlapping chunks.

    Args:
        text (str): The full document text.
        chunk_size (int): Characters per chunk.
        overlap (int): Character overlap between consecutive chunks.

    Returns:
        list[str]: Ordered list of text chunks.
    """
    return list(TextChunks(text, chunk_size, overlap))
