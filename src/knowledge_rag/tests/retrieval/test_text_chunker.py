import re

import pytest

from knowledge_rag.common.exceptions import ChunkingConfigError
from knowledge_rag.common.tokenisation import (
    HeuristicTokenCounter,
    HuggingFaceTokenCounter,
    TiktokenTokenCounter,
)
from knowledge_rag.retrieval.text_splitter import TextChunker, get_chunks_from_text


def _chunker(chunk_size: int, overlap_size: int, **kwargs) -> TextChunker:
    """Chunker over a one-character-per-token stream."""
    return TextChunker(
        chunk_size=chunk_size,
        overlap_size=overlap_size,
        token_counter=HeuristicTokenCounter(chars_per_token=1),
        **kwargs,
    )


def _text(n: int) -> str:
    letters = "abcdefghijklmnopqrstuvwxyz"
    return "".join(letters[i % len(letters)] for i in range(n))


def test_sliding_window_start_offsets():
    chunks = _chunker(100, 20).chunk(_text(250), "doc")

    assert [c.start_offset for c in chunks] == [0, 80, 160]
    assert [c.end_offset for c in chunks] == [100, 180, 250]
    assert [c.token_count for c in chunks] == [100, 100, 90]


def test_chunk_ids_and_indexes_follow_document():
    chunks = _chunker(100, 20).chunk(_text(250), "doc-1")

    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert [c.id for c in chunks] == ["doc-1-chunk-0", "doc-1-chunk-1", "doc-1-chunk-2"]
    assert all(c.document_id == "doc-1" for c in chunks)


def test_consecutive_chunks_overlap_exactly():
    text = _text(1000)
    chunks = _chunker(64, 16).chunk(text, "doc")

    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_offset > prev.start_offset
        assert prev.end_offset - nxt.start_offset == 16
        assert prev.content[-16:] == nxt.content[:16]
    assert all(c.token_count <= 64 for c in chunks)


def test_chunks_cover_content_without_gaps():
    text = _text(537)
    chunks = _chunker(50, 10).chunk(text, "doc")

    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_offset <= prev.end_offset
    for c in chunks:
        assert text[c.start_offset:c.end_offset] == c.content
        assert c.content


def test_short_document_yields_single_chunk():
    chunks = _chunker(100, 20).chunk("short text", "doc")

    assert len(chunks) == 1
    assert chunks[0].content == "short text"
    assert chunks[0].start_offset == 0
    assert chunks[0].end_offset == len("short text")


@pytest.mark.parametrize("content", ["", "   ", "\n\t\n"])
def test_blank_content_yields_no_chunks(content):
    assert _chunker(100, 20).chunk(content, "doc") == []


def test_whitespace_only_windows_are_skipped():
    content = "abcdefghij" + " " * 10 + "\n" * 10 + "klmnopqrst"

    chunks = _chunker(10, 0).chunk(content, "doc")

    assert [(c.start_offset, c.end_offset) for c in chunks] == [(0, 10), (30, 40)]
    assert [c.chunk_index for c in chunks] == [0, 1]
    assert [c.id for c in chunks] == ["doc-chunk-0", "doc-chunk-1"]


def test_zero_overlap_gives_disjoint_chunks():
    chunks = _chunker(10, 0).chunk(_text(30), "doc")

    assert [(c.start_offset, c.end_offset) for c in chunks] == [(0, 10), (10, 20), (20, 30)]


@pytest.mark.parametrize(
    "chunk_size, overlap_size",
    [(100, 100), (100, 150), (0, 0), (-5, 0), (10, -1)],
)
def test_invalid_configuration_is_rejected(chunk_size, overlap_size):
    with pytest.raises(ChunkingConfigError):
        TextChunker(chunk_size=chunk_size, overlap_size=overlap_size)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        TextChunker(chunk_size=10, overlap_size=10)


def test_max_chunks_ceiling():
    chunker = _chunker(10, 5, max_chunks=3)

    with pytest.raises(ChunkingConfigError):
        chunker.chunk(_text(100), "doc")


def test_from_config_dict_reads_sizes_and_accepts_overlap_alias():
    chunker = TextChunker.from_config_dict({"chunk_size": 300, "overlap": 30})

    assert chunker.chunk_size == 300
    assert chunker.overlap_size == 30
    assert chunker.stride == 270


def test_default_token_counter_uses_four_chars_per_token():
    chunks = TextChunker(chunk_size=10, overlap_size=2).chunk(_text(100), "doc")

    assert [c.start_offset for c in chunks] == [0, 32, 64]
    assert chunks[0].end_offset == 40


def test_get_chunks_from_text_helper():
    chunks = get_chunks_from_text(
        _text(250),
        "doc",
        token_counter=HeuristicTokenCounter(chars_per_token=1),
        chunk_size=100,
        overlap=20,
    )

    assert len(chunks) == 3


class WordPieceEncoding:
    """Mimics ``tiktoken.Encoding``: a token is a word with its trailing whitespace."""

    def encode(self, text):
        return [m.group(0) for m in re.finditer(r"\S+\s*|\s+", text)]

    def decode_with_offsets(self, tokens):
        offsets, pos = [], 0
        for tok in tokens:
            offsets.append(pos)
            pos += len(tok)
        return "".join(tokens), offsets


class WordTokenizer:
    """Mimics a fast Hugging Face tokenizer: words only, whitespace is not a token."""

    def encode(self, text, add_special_tokens=False):
        return [m.group(0) for m in re.finditer(r"\S+", text)]

    def __call__(self, text, add_special_tokens=False, return_offsets_mapping=False):
        return {"offset_mapping": [(m.start(), m.end()) for m in re.finditer(r"\S+", text)]}


SAMPLE = (
    "Knowledge bases store documents as overlapping chunks.\n\n"
    "Each chunk is embedded once and normalised, then compared with the query.   "
    "Ranking uses cosine similarity mapped onto the unit interval."
)


@pytest.fixture(
    params=[
        TiktokenTokenCounter(encoding_name="word-pieces", _enc=WordPieceEncoding()),
        HuggingFaceTokenCounter(tokenizer=WordTokenizer()),
    ],
    ids=["tiktoken", "huggingface"],
)
def word_counter(request):
    return request.param


def test_multi_character_tokens_tile_the_text(word_counter):
    chunks = TextChunker(5, 0, token_counter=word_counter).chunk(SAMPLE, "doc")

    assert len(chunks) > 3
    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(SAMPLE)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.end_offset == nxt.start_offset
    assert "".join(c.content for c in chunks) == SAMPLE
    assert all(c.content.strip() for c in chunks)


def test_multi_character_tokens_with_overlap(word_counter):
    chunks = TextChunker(6, 2, token_counter=word_counter).chunk(SAMPLE, "doc")

    starts = [c.start_offset for c in chunks]
    ends = [c.end_offset for c in chunks]
    assert starts == sorted(set(starts))
    assert ends == sorted(set(ends))
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_offset < prev.end_offset
    for c in chunks:
        assert c.content == SAMPLE[c.start_offset : c.end_offset]
        assert c.content.strip()
        assert word_counter.count(c.content) == c.token_count
    assert ends[-1] == len(SAMPLE)


def test_token_counts_from_library_counters(word_counter):
    assert word_counter.count("") == 0
    assert word_counter.count("two words") == 2
    assert word_counter.token_offsets("") == []
