import math

import pytest

from services.rag.TextChunker import TextChunks, split_text, validate_chunk_config
from shared.exceptions import EmptyInput, InvalidConfig


def test_exact_boundaries_without_overlap():
    assert split_text("A B C D E", chunk_size=2, overlap=0) == ["A ", "B ", "C ", "D ", "E"]


def test_spans_follow_the_window_rule():
    chunks = TextChunks("abcdefghij", chunk_size=4, overlap=1)
    assert list(chunks.spans()) == [(0, "abcd"), (3, "defg"), (6, "ghij")]


def test_text_shorter_than_window_is_one_chunk():
    assert split_text("short", chunk_size=100, overlap=10) == ["short"]


@pytest.mark.parametrize("chunk_size, overlap", [(1, 0), (2, 1), (5, 2), (7, 0), (10, 9), (13, 4)])
def test_count_and_coverage(chunk_size, overlap):
    for length in range(1, 60):
        text = "".join(chr(ord("a") + i % 26) for i in range(length))
        chunks = TextChunks(text, chunk_size, overlap)
        spans = list(chunks.spans())

        expected = 1 if length <= chunk_size else math.ceil((length - overlap) / (chunk_size - overlap))
        assert len(spans) == expected == len(chunks)

        covered = set()
        for offset, chunk in spans:
            assert text[offset:offset + len(chunk)] == chunk
            assert len(chunk) <= chunk_size
            covered.update(range(offset, offset + len(chunk)))
        assert covered == set(range(length))


def test_iteration_is_restartable():
    chunks = TextChunks("one two three four five", chunk_size=6, overlap=2)
    assert list(chunks) == list(chunks)


@pytest.mark.parametrize("chunk_size, overlap", [(10, 10), (10, 11), (0, 0), (-5, 0), (10, -1)])
def test_invalid_config_fails_fast(chunk_size, overlap):
    with pytest.raises(InvalidConfig):
        TextChunks("some text", chunk_size, overlap)
    with pytest.raises(InvalidConfig):
        validate_chunk_config(chunk_size, overlap)


@pytest.mark.parametrize("text", ["", "   ", "\n\t "])
def test_blank_text_is_rejected(text):
    with pytest.raises(EmptyInput):
        split_text(text, chunk_size=10, overlap=2)
