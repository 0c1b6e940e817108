"""Unit tests for the TextChunker strategies."""

from __future__ import annotations

import pytest

from src.models.rag import ChunkingStrategy, ChunkingStrategyType, TextChunk
from src.services.ingestion.chunker import TextChunker, validate_chunking_params
from src.utils.errors import ConfigError


def _rebuild(chunks: list[TextChunk]) -> str:
    """Concatenate chunks, dropping the part each one shares with its predecessor."""
    text = chunks[0].text
    for previous, current in zip(chunks, chunks[1:]):
        text += current.text[previous.end - current.start :]
    return text


def _assert_slices(source: str, chunks: list[TextChunk]) -> None:
    for i, chunk in enumerate(chunks):
        assert chunk.index == i
        assert chunk.text == source[chunk.start : chunk.end]


class TestFixedSize:
    def test_250_chars_with_100_20(self) -> None:
        text = "".join(chr(ord("a") + i % 26) for i in range(250))
        chunks = TextChunker(ChunkingStrategyType.FIXED_SIZE, 100, 20).chunk(text)

        assert [len(c.text) for c in chunks] == [100, 100, 90]
        assert [c.start for c in chunks] == [0, 80, 160]
        assert chunks[1].text[:20] == chunks[0].text[-20:]
        assert chunks[2].text[:20] == chunks[1].text[-20:]

    def test_round_trip(self) -> None:
        text = "The quick brown fox jumps over the lazy dog. " * 40
        chunks = TextChunker(ChunkingStrategyType.FIXED_SIZE, 128, 32).chunk(text)

        _assert_slices(text, chunks)
        assert _rebuild(chunks) == text

    def test_short_text_is_one_chunk(self) -> None:
        chunks = TextChunker(ChunkingStrategyType.FIXED_SIZE, 100, 20).chunk("short text")
        assert len(chunks) == 1
        assert chunks[0].text == "short text"
        assert (chunks[0].start, chunks[0].end) == (0, 10)

    def test_exact_multiple_has_no_empty_tail(self) -> None:
        chunks = TextChunker(ChunkingStrategyType.FIXED_SIZE, 100, 0).chunk("x" * 200)
        assert [len(c.text) for c in chunks] == [100, 100]

    @pytest.mark.parametrize("text", ["", "   ", "\n\n", "\t  \n  "])
    def test_blank_text(self, text: str) -> None:
        assert TextChunker().chunk(text) == []


class TestSentence:
    def test_cuts_at_sentence_ends(self) -> None:
        text = " ".join(f"Sentence number {i} is right here." for i in range(30))
        chunks = TextChunker(ChunkingStrategyType.SENTENCE, 100, 20).chunk(text)

        assert len(chunks) > 1
        _assert_slices(text, chunks)
        assert _rebuild(chunks) == text
        for chunk in chunks[:-1]:
            assert len(chunk.text) <= 100
            assert chunk.text.rstrip().endswith(".")

    def test_does_not_cut_after_abbreviations(self) -> None:
        text = "Dr. Smith met Mr. Jones at the lab. " * 10
        chunks = TextChunker(ChunkingStrategyType.SENTENCE, 60, 10).chunk(text)

        for chunk in chunks[:-1]:
            tail = chunk.text.rstrip()
            assert tail.endswith("lab.")
            assert not tail.endswith(("Dr.", "Mr."))

    def test_falls_back_to_hard_cut_without_boundaries(self) -> None:
        text = "x" * 250
        chunks = TextChunker(ChunkingStrategyType.SENTENCE, 100, 20).chunk(text)
        assert [len(c.text) for c in chunks] == [100, 100, 90]


class TestParagraph:
    def test_cuts_at_blank_lines(self) -> None:
        paragraphs = [f"Paragraph {i} talks about topic {i} briefly." for i in range(12)]
        text = "\n\n".join(paragraphs)
        chunks = TextChunker(ChunkingStrategyType.PARAGRAPH, 120, 15).chunk(text)

        assert len(chunks) > 1
        _assert_slices(text, chunks)
        assert _rebuild(chunks) == text
        for chunk in chunks[:-1]:
            assert chunk.text.endswith("\n\n")
            assert len(chunk.text) <= 120

    def test_long_paragraph_uses_sentence_boundary(self) -> None:
        text = " ".join(f"Clause {i} ends here." for i in range(40))
        chunks = TextChunker(ChunkingStrategyType.PARAGRAPH, 80, 10).chunk(text)

        for chunk in chunks[:-1]:
            assert chunk.text.rstrip().endswith(".")


class TestSlidingWindow:
    def test_word_windows(self) -> None:
        text = "one two three four five six seven eight nine ten"
        chunks = TextChunker(ChunkingStrategyType.SLIDING_WINDOW, 4, 2).chunk(text)

        assert [c.text.split() for c in chunks] == [
            ["one", "two", "three", "four"],
            ["three", "four", "five", "six"],
            ["five", "six", "seven", "eight"],
            ["seven", "eight", "nine", "ten"],
        ]
        _assert_slices(text, chunks)
        assert _rebuild(chunks) == text

    def test_fewer_words_than_window(self) -> None:
        chunks = TextChunker(ChunkingStrategyType.SLIDING_WINDOW, 50, 10).chunk("just a few words")
        assert len(chunks) == 1
        assert chunks[0].text == "just a few words"


class TestConfiguration:
    @pytest.mark.parametrize(
        ("size", "overlap"),
        [(0, 0), (-5, 0), (100, -1), (100, 100), (100, 150)],
    )
    def test_invalid_params(self, size: int, overlap: int) -> None:
        with pytest.raises(ConfigError):
            validate_chunking_params(size, overlap)
        with pytest.raises(ConfigError):
            TextChunker(ChunkingStrategyType.FIXED_SIZE, size, overlap)

    def test_for_strategy_none_uses_defaults(self) -> None:
        chunker = TextChunker.for_strategy(None)
        assert chunker.strategy_type == ChunkingStrategyType.FIXED_SIZE
        chunks = chunker.chunk("a" * 1500)
        assert [len(c.text) for c in chunks] == [1000, 700]

    def test_for_strategy_uses_stored_values(self) -> None:
        strategy = ChunkingStrategy(
            name="words", type=ChunkingStrategyType.SLIDING_WINDOW, chunk_size=3, chunk_overlap=1
        )
        chunker = TextChunker.for_strategy(strategy)
        assert chunker.strategy_type == ChunkingStrategyType.SLIDING_WINDOW
        assert len(chunker.chunk("a b c d e")) == 2
