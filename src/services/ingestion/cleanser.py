"""Document text cleansing.

Two layers:

1. :class:`CleansingPipeline` -- deterministic regex passes, applied in a
   fixed order when enabled by the :class:`~src.models.rag.CleansingConfig`:
   header/footer stripping, page-number lines, URL/e-mail removal, custom
   rules, whitespace normalization, encoding repair.

2. :class:`LLMCleanser` -- wraps the pipeline.  When the config names an
   ``llm_model_id`` the deterministic output is sent to a chat model for a
   rewrite.  The LLM stage is best-effort: a failure is logged and the
   deterministic result is kept.
"""

from __future__ import annotations

import math
import re
from collections import Counter

import structlog

from src.interfaces.llm_provider import ILLMProvider
from src.models.rag import CleansingConfig, CustomCleansingRule
from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

# Used when neither the request, the collection nor the store names a config.
BUILTIN_CLEANSING = CleansingConfig(
    name="builtin",
    remove_headers=False,
    remove_footers=False,
    remove_page_numbers=False,
    normalize_whitespace=True,
    fix_encoding=True,
)

_EDGE_LINES = 3

# UTF-8 text that was decoded as Latin-1/cp1252.  Longer keys come first so
# the bare "â€" prefix only catches what the specific keys missed.
_MOJIBAKE: list[tuple[str, str]] = [
    ("\u00e2\u20ac\u2122", "'"),
    ("\u00e2\u20ac\u02dc", "'"),
    ("\u00e2\u20ac\u0153", '"'),
    ("\u00e2\u20ac\u009d", '"'),
    ("\u00e2\u20ac\u201d", "\u2014"),
    ("\u00e2\u20ac\u201c", "\u2013"),
    ("\u00e2\u20ac\u00a6", "..."),
    ("\u00e2\u20ac", '"'),
    ("\u00c3\u00a9", "\u00e9"),
    ("\u00c3\u00a8", "\u00e8"),
    ("\u00c3\u00a2", "\u00e2"),
    ("\u00c3\u00a7", "\u00e7"),
    ("\u00c3\u00bc", "\u00fc"),
    ("\u00c3\u00b6", "\u00f6"),
    ("\u00c3\u00a4", "\u00e4"),
    ("\u00c3\u00a0", "\u00e0"),
    ("\u00c3 ", "\u00e0"),
    ("\u00a0", " "),
]

# Control characters other than \t, \n and \f.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0d-\x1f\x7f-\x9f]")

_HEADER_RES = [
    re.compile(r"^(page|document|chapter|section)\s*\d+", re.IGNORECASE),
    re.compile(r"^(confidential|proprietary|draft)\b", re.IGNORECASE),
    re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),
]
_FOOTER_RES = [
    re.compile(r"^(copyright|©|\(c\))", re.IGNORECASE),
    re.compile(r"^(page|p\.)\s*\d+", re.IGNORECASE),
    re.compile(r"confidential|proprietary", re.IGNORECASE),
    re.compile(r"all rights reserved", re.IGNORECASE),
]
_ALL_CAPS_RE = re.compile(r"^[A-Z][A-Z\s]*$")

_PAGE_NUMBER_RES = [
    re.compile(r"^[ \t]*\d+[ \t]*$", re.MULTILINE),
    re.compile(r"^[ \t]*page[ \t]+\d+([ \t]+of[ \t]+\d+)?[ \t]*$", re.MULTILINE | re.IGNORECASE),
    re.compile(r"^[ \t]*\d+[ \t]*/[ \t]*\d+[ \t]*$", re.MULTILINE),
    re.compile(r"^[ \t]*-[ \t]*\d+[ \t]*-[ \t]*$", re.MULTILINE),
]

_URL_RE = re.compile(r"https?://\S+")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_RULE_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "g": 0}

DEFAULT_LLM_PROMPT = """You clean text extracted from documents so it can be indexed for search.

Instructions:
1. Fix broken formatting, hyphenation and line wrapping
2. Correct obvious spelling errors
3. Remove leftover headers, footers and page furniture
4. Keep paragraph structure, facts, numbers and technical terms unchanged

Return only the cleaned text, with no commentary.

Text to clean:
{text}"""

_LLM_SYSTEM_PROMPT = "You are a careful text-cleaning assistant."


def compile_rule(rule: CustomCleansingRule) -> re.Pattern[str]:
    """Compile a custom rule, raising ``ConfigError`` on a bad pattern or flag."""
    flags = 0
    for flag in rule.flags:
        if flag not in _RULE_FLAGS:
            raise ConfigError(f"Unknown regex flag {flag!r} in cleansing rule {rule.pattern!r}")
        flags |= _RULE_FLAGS[flag]
    try:
        return re.compile(rule.pattern, flags)
    except re.error as exc:
        raise ConfigError(f"Invalid cleansing rule pattern {rule.pattern!r}: {exc}") from exc


def _line_key(line: str) -> str:
    """Normalise a line for repetition checks: case, spacing and digits ignored."""
    return re.sub(r"\d+", "#", " ".join(line.lower().split()))


def _edge_indices(lines: list[str], from_top: bool) -> list[int]:
    indices = range(len(lines)) if from_top else range(len(lines) - 1, -1, -1)
    picked: list[int] = []
    for i in indices:
        if lines[i].strip():
            picked.append(i)
            if len(picked) == _EDGE_LINES:
                break
    return picked


def _is_header_line(line: str) -> bool:
    if any(pattern.search(line) for pattern in _HEADER_RES):
        return True
    return len(line) < 50 and bool(_ALL_CAPS_RE.match(line))


def _is_footer_line(line: str) -> bool:
    return any(pattern.search(line) for pattern in _FOOTER_RES)


class CleansingPipeline:
    """Deterministic, regex-based text cleanser."""

    def cleanse(self, text: str, config: CleansingConfig | None = None) -> str:
        """Return *text* cleansed according to *config* (``None`` = built-in defaults)."""
        config = config or BUILTIN_CLEANSING
        original_length = len(text)

        if config.remove_headers or config.remove_footers:
            text = self.remove_boilerplate(text, config.remove_headers, config.remove_footers)
        if config.remove_page_numbers:
            text = self.remove_page_numbers(text)
        if config.remove_urls:
            text = _URL_RE.sub("", text)
        if config.remove_emails:
            text = _EMAIL_RE.sub("", text)
        for rule in config.custom_rules:
            text = compile_rule(rule).sub(rule.replacement, text)
        if config.normalize_whitespace:
            text = self.normalize_whitespace(text)
        if config.fix_encoding:
            text = self.fix_encoding(text)

        logger.debug(
            "cleansing_complete",
            config=config.name,
            chars_before=original_length,
            chars_after=len(text),
        )
        return text

    # ------------------------------------------------------------------
    # Headers and footers
    # ------------------------------------------------------------------

    def remove_boilerplate(self, text: str, headers: bool = True, footers: bool = True) -> str:
        """Strip running headers/footers.

        With form-feed separated pages, lines repeated near the top or bottom
        of at least half the pages are removed.  A single page falls back to
        pattern heuristics.
        """
        pages = text.split("\f")
        if len(pages) >= 2:
            return "\f".join(self._strip_repeated(pages, headers, footers))
        if headers:
            text = self._strip_header_patterns(text)
        if footers:
            text = self._strip_footer_patterns(text)
        return text

    @staticmethod
    def _strip_repeated(pages: list[str], headers: bool, footers: bool) -> list[str]:
        page_lines = [page.split("\n") for page in pages]
        positions: list[list[int]] = []
        counts: Counter[str] = Counter()
        for lines in page_lines:
            picked: list[int] = []
            if headers:
                picked.extend(_edge_indices(lines, from_top=True))
            if footers:
                picked.extend(_edge_indices(lines, from_top=False))
            positions.append(picked)
            counts.update({_line_key(lines[i]) for i in picked})

        threshold = max(2, math.ceil(len(pages) / 2))
        repeated = {key for key, count in counts.items() if count >= threshold}

        cleaned: list[str] = []
        for lines, picked in zip(page_lines, positions, strict=True):
            doomed = {i for i in picked if _line_key(lines[i]) in repeated}
            cleaned.append("\n".join(line for i, line in enumerate(lines) if i not in doomed))
        return cleaned

    @staticmethod
    def _strip_header_patterns(text: str) -> str:
        lines = text.split("\n")
        kept = [line for i, line in enumerate(lines) if not (i < 5 and _is_header_line(line.strip()))]
        return "\n".join(kept)

    @staticmethod
    def _strip_footer_patterns(text: str) -> str:
        lines = text.split("\n")
        footer_start = len(lines)
        for i in range(len(lines) - 1, max(-1, len(lines) - 11), -1):
            line = lines[i].strip()
            if _is_footer_line(line):
                footer_start = i
            elif len(line) > 50:
                break
        return "\n".join(lines[:footer_start])

    # ------------------------------------------------------------------
    # Simple passes
    # ------------------------------------------------------------------

    @staticmethod
    def remove_page_numbers(text: str) -> str:
        for pattern in _PAGE_NUMBER_RES:
            text = pattern.sub("", text)
        return text

    @staticmethod
    def normalize_whitespace(text: str) -> str:
        text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
        text = text.replace("\t", "    ")
        text = re.sub(r" +", " ", text)
        text = re.sub(r" +\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    @staticmethod
    def fix_encoding(text: str) -> str:
        for broken, fixed in _MOJIBAKE:
            text = text.replace(broken, fixed)
        return _CONTROL_RE.sub("", text)


class LLMCleanser:
    """Deterministic cleansing followed by an optional LLM rewrite.

    Parameters
    ----------
    pipeline:
        The deterministic stage; always runs first.
    llm_provider:
        Chat-completion provider.  ``None`` disables the LLM stage even when
        a config names a model.
    temperature, max_tokens:
        Sampling parameters for the rewrite call.
    """

    def __init__(
        self,
        pipeline: CleansingPipeline | None = None,
        llm_provider: ILLMProvider | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> None:
        self._pipeline = pipeline or CleansingPipeline()
        self._llm = llm_provider
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def cleanse(self, text: str, config: CleansingConfig | None = None) -> str:
        cleaned = self._pipeline.cleanse(text, config)
        if config is None or not config.llm_model_id or not cleaned.strip():
            return cleaned
        if self._llm is None:
            logger.warning("llm_cleansing_skipped", reason="no_llm_provider", model=config.llm_model_id)
            return cleaned

        try:
            answer = await self._llm.complete(
                system_prompt=_LLM_SYSTEM_PROMPT,
                user_prompt=self.build_prompt(cleaned, config),
                model=config.llm_model_id,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("llm_cleansing_failed", model=config.llm_model_id, error=str(exc))
            return cleaned

        answer = answer.strip()
        if not answer:
            logger.warning("llm_cleansing_failed", model=config.llm_model_id, error="empty response")
            return cleaned
        logger.info("llm_cleansing_applied", model=config.llm_model_id, chars=len(answer))
        return answer

    @staticmethod
    def build_prompt(text: str, config: CleansingConfig) -> str:
        prompt = config.llm_prompt or DEFAULT_LLM_PROMPT
        extra: list[str] = []
        if config.remove_urls:
            extra.append("- Remove all URLs")
        if config.remove_emails:
            extra.append("- Remove all e-mail addresses")
        if extra and "Return only the cleaned text" in prompt:
            prompt = prompt.replace(
                "Return only the cleaned text",
                "Additional requirements:\n" + "\n".join(extra) + "\n\nReturn only the cleaned text",
                1,
            )
        if "{text}" not in prompt:
            return f"{prompt}\n\n{text}"
        return prompt.replace("{text}", text)
