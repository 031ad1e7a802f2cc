from services.rag.ContextAssembler import ContextAssembler, assemble_context
from shared.clients.rag.models.IndexedChunk import IndexedChunk, ScoredChunk


def _hit(text: str, seq: int) -> ScoredChunk:
    chunk = IndexedChunk(document_id="doc", chunk_index=seq, text=text, vector=(1.0,), seq=seq)
    return ScoredChunk(chunk=chunk, score=1.0 / seq)


def test_joins_in_rank_order_with_blank_line():
    hits = [_hit("first", 1), _hit("second", 2), _hit("third", 3)]
    assert assemble_context(hits, max_chars=100) == "first\n\nsecond\n\nthird"


def test_no_chunks_gives_empty_context():
    assert assemble_context([], max_chars=100) == ""


def test_budget_keeps_whole_chunks_only():
    hits = [_hit("aaaa", 1), _hit("bbbb", 2), _hit("c", 3)]
    # "aaaa\n\nbbbb" is 10 characters, the separator counts
    assert assemble_context(hits, max_chars=10) == "aaaa\n\nbbbb"
    assert assemble_context(hits, max_chars=9) == "aaaa"
    assert assemble_context(hits, max_chars=3) == ""


def test_never_exceeds_budget():
    texts = ["x" * n for n in (5, 17, 3, 9, 30, 1)]
    for budget in range(0, 80):
        context = assemble_context(texts, max_chars=budget)
        assert len(context) <= budget
        if context:
            assert all(part in texts for part in context.split("\n\n"))


def test_assembler_uses_configured_budget():
    assembler = ContextAssembler(max_chars=6)
    assert assembler.assemble(["abc", "def"]) == "abc"
    assert assembler.assemble(["abc", "def"], max_chars=8) == "abc\n\ndef"
