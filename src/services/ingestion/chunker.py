"""Text chunking with exact overlaps and boundary-aware cut points.

Splits cleansed text into :class:`~src.models.rag.TextChunk` slices for
embedding.  Four strategies are supported:

* ``fixed_size`` -- hard cuts every ``chunk_size`` characters.
* ``sentence`` -- cut at the last sentence boundary that fits, using an
  abbreviation-aware splitter that does not break on "Dr.", "vs.", etc.
* ``paragraph`` -- cut at the last blank line that fits, falling back to a
  sentence boundary, then whitespace, then a hard cut.
* ``sliding_window`` -- windows of ``chunk_size`` words stepping by
  ``chunk_size - chunk_overlap`` words.

Every chunk is a slice of the source (``text == source[start:end]``) and
the next chunk starts exactly ``chunk_overlap`` units before the previous
one ended, so concatenating the non-overlapping tails rebuilds the input.
"""

from __future__ import annotations

import re
from typing import Callable

import structlog

from src.models.rag import ChunkingStrategy, ChunkingStrategyType, TextChunk
from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

# Common abbreviations that should NOT trigger a sentence split.
# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "No",
        "Fig",
        "vs",
        "etc",
        "approx",
        "e.g",
        "i.e",
        "inc",
        "ltd",
        "co",
    }
)

_ABBREVIATION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=len, reverse=True)) + r")\."
)
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*\s+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n\s*")
_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\S+")

# (source, masked source, lo, hi) -> cut position in (lo, hi], or None.
_BoundaryFinder = Callable[[str, str, int, int], "int | None"]


def validate_chunking_params(chunk_size: int, chunk_overlap: int) -> None:
    """Raise ``ConfigError`` unless ``0 <= chunk_overlap < chunk_size``."""
    if chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ConfigError(f"chunk_overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ConfigError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def _mask_abbreviations(text: str) -> str:
    """Replace the period after known abbreviations with ``\\x00``.

    The replacement keeps the length unchanged, so offsets found in the
    masked text are valid in the original.
    """
    return _ABBREVIATION_RE.sub(lambda m: m.group(0)[:-1] + "\x00", text)


def _last_match_end(pattern: re.Pattern[str], text: str, lo: int, hi: int) -> int | None:
    best: int | None = None
    for match in pattern.finditer(text, max(0, lo - 1), hi):
        if lo < match.end() <= hi:
            best = match.end()
    return best


def _sentence_boundary(_text: str, masked: str, lo: int, hi: int) -> int | None:
    return _last_match_end(_SENTENCE_END_RE, masked, lo, hi)


def _paragraph_boundary(text: str, masked: str, lo: int, hi: int) -> int | None:
    return (
        _last_match_end(_PARAGRAPH_BREAK_RE, text, lo, hi)
        or _sentence_boundary(text, masked, lo, hi)
        or _last_match_end(_WHITESPACE_RE, text, lo, hi)
    )


def _hard_cut(_text: str, _masked: str, _lo: int, _hi: int) -> int | None:
    return None


class TextChunker:
    """Splits text according to one chunking strategy.

    Parameters
    ----------
    strategy_type:
        Which splitting rule to apply.
    chunk_size:
        Maximum chunk length: characters, or words for ``sliding_window``.
    chunk_overlap:
        Units shared by consecutive chunks.
    """

    _FINDERS: dict[ChunkingStrategyType, _BoundaryFinder] = {
        ChunkingStrategyType.FIXED_SIZE: _hard_cut,
        ChunkingStrategyType.SENTENCE: _sentence_boundary,
        ChunkingStrategyType.PARAGRAPH: _paragraph_boundary,
    }

    def __init__(
        self,
        strategy_type: ChunkingStrategyType = ChunkingStrategyType.FIXED_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        validate_chunking_params(chunk_size, chunk_overlap)
        self._type = strategy_type
        self._chunk_size = chunk_size
        self._overlap = chunk_overlap

    @classmethod
    def for_strategy(cls, strategy: ChunkingStrategy | None) -> TextChunker:
        """Build a chunker from a stored strategy; ``None`` gives fixed_size 1000/200."""
        if strategy is None:
            return cls()
        return cls(strategy.type, strategy.chunk_size, strategy.chunk_overlap)

    @property
    def strategy_type(self) -> ChunkingStrategyType:
        return self._type

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into overlapping chunks.  Blank input returns ``[]``."""
        if not text or not text.strip():
            return []

        if self._type == ChunkingStrategyType.SLIDING_WINDOW:
            chunks = self._chunk_words(text)
        else:
            chunks = self._chunk_chars(text, self._FINDERS[self._type])

        logger.debug(
            "chunking_complete",
            strategy=self._type.value,
            num_chunks=len(chunks),
            chunk_size=self._chunk_size,
            chunk_overlap=self._overlap,
        )
        return chunks

    # ------------------------------------------------------------------
    # Character strategies
    # ------------------------------------------------------------------

    def _chunk_chars(self, text: str, find_boundary: _BoundaryFinder) -> list[TextChunk]:
        masked = _mask_abbreviations(text) if find_boundary is not _hard_cut else text
        length = len(text)
        chunks: list[TextChunk] = []
        start = 0
        while True:
            hi = min(start + self._chunk_size, length)
            end = hi
            if hi < length:
                # The cut must leave more than the overlap behind, or the
                # next chunk would not advance.
                end = find_boundary(text, masked, start + self._overlap, hi) or hi
            chunks.append(TextChunk(index=len(chunks), text=text[start:end], start=start, end=end))
            if end >= length:
                return chunks
            start = end - self._overlap

    # ------------------------------------------------------------------
    # Word windows
    # ------------------------------------------------------------------

    def _chunk_words(self, text: str) -> list[TextChunk]:
        words = list(_WORD_RE.finditer(text))
        step = self._chunk_size - self._overlap
        chunks: list[TextChunk] = []
        first = 0
        while True:
            last = min(first + self._chunk_size, len(words))
            start = 0 if first == 0 else words[first].start()
            end = len(text) if last == len(words) else words[last].start()
            chunks.append(TextChunk(index=len(chunks), text=text[start:end], start=start, end=end))
            if last == len(words):
                return chunks
            first += step
