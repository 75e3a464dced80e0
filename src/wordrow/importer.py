"""Parse raw pasted or uploaded text into titled, tokenized sentences."""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass

import regex

from .locale_support import DEFAULT_FACILITY, LocaleFacility
from .models import ImportedSentence, ImportedText

logger = logging.getLogger(__name__)

DEFAULT_LANG = "en"

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
MASK32 = 0xFFFFFFFF

_WHITESPACE_SPLIT_RE = regex.compile(r"(\s+)")
_WORD_CHAR_RE = regex.compile(r"[\p{L}\p{N}]")
# A separator run may not start with a kept hyphen or apostrophe form.
_SEPARATOR_SPLIT_RE = regex.compile(r"((?:(?![-'’])[^\p{L}\p{N}_]+))")
_APOSTROPHE_RE = regex.compile(r"['’]")
_QUOTE_RUN_RE = regex.compile(r"^[\"“”«»‚‘’]+$")
_PUNCT_OR_SYMBOL_RE = regex.compile(r"[\p{P}\p{S}]")

_SINGLE_QUOTES = frozenset("'‘’")
_ACRONYM_RE = regex.compile(r"^(?:[A-Z]\.)+[A-Z]?$")
ABBREVIATIONS = frozenset({"e.g.", "i.e.", "etc.", "vs.", "cf.", "dr.", "mr.", "mrs."})


class TextImportError(ValueError):
    """Import failure whose message is shown to the user as-is."""

    default_message = "Text import failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class EmptyInput(TextImportError):
    default_message = "Text import is empty. Add a title and at least one sentence."


class MissingTitle(TextImportError):
    default_message = "Add a title on the first line before importing."


class NoSentences(TextImportError):
    default_message = "No sentences were found. Add at least one sentence per line."


class DuplicateText(TextImportError):
    default_message = "This text matches one that already exists in your library."


@dataclass(frozen=True)
class LanguageHeader:
    """Language detected from the optional ``lang=`` line."""

    lang_full: str
    lang_base: str
    consumes_line: bool


def normalize_raw_text(raw: str) -> str:
    """Strip byte-order marks and convert CRLF/CR line endings to LF."""
    normalized = raw.replace("\ufeff", "").replace("\r\n", "\n").replace("\r", "\n")
    if not normalized.strip():
        raise EmptyInput()
    return normalized


def parse_imported_text(raw: str, facility: LocaleFacility = DEFAULT_FACILITY) -> ImportedText:
    """Parse title, optional language header and one sentence per line."""
    normalized = normalize_raw_text(raw)
    lines = normalized.split("\n")

    title = lines[0].strip()
    if not title:
        raise MissingTitle()

    header = detect_language(lines[1] if len(lines) > 1 else None, facility)
    start_index = 2 if header.consumes_line else 1

    sentences: list[ImportedSentence] = []
    for line_index in range(start_index, len(lines)):
        trimmed = lines[line_index].strip()
        if not trimmed:
            continue
        surface_tokens = tokenize(trimmed)
        if not surface_tokens:
            continue
        candidate_tokens = tuple(
            normalize_candidate_token(token, header.lang_full, header.lang_base, facility)
            for token in surface_tokens
        )
        sentences.append(
            ImportedSentence(
                surface_tokens=tuple(surface_tokens),
                candidate_tokens=candidate_tokens,
                seed=sentence_seed(trimmed, line_index),
            )
        )

    if not sentences:
        raise NoSentences()

    return ImportedText(
        title=title,
        lang_full=header.lang_full,
        lang_base=header.lang_base,
        sentences=tuple(sentences),
    )


def detect_language(line: str | None, facility: LocaleFacility = DEFAULT_FACILITY) -> LanguageHeader:
    """Read a ``lang=<tag>`` header line, defaulting to English when absent."""
    default = LanguageHeader(lang_full=DEFAULT_LANG, lang_base=DEFAULT_LANG, consumes_line=False)
    if not line:
        return default
    trimmed = line.strip()
    if not trimmed.lower().startswith("lang="):
        return default

    raw_tag = trimmed[trimmed.index("=") + 1 :].strip()
    lang_full = _canonicalize_lang(raw_tag, facility)
    lang_base = lang_full.split("-", 1)[0] or DEFAULT_LANG
    return LanguageHeader(lang_full=lang_full, lang_base=lang_base, consumes_line=True)


def _canonicalize_lang(tag: str, facility: LocaleFacility) -> str:
    if not tag:
        return DEFAULT_LANG
    try:
        return facility.canonicalize_tag(tag).lower()
    except ValueError:
        logger.warning("Falling back to %r language tag, unable to parse %r", DEFAULT_LANG, tag)
        return DEFAULT_LANG


def tokenize(sentence: str) -> list[str]:
    """Split one sentence into display tokens.

    Whitespace separates groups. Inside a group, runs of characters that are
    not letters, numbers, hyphens or apostrophes act as boundaries: quote runs
    attach to the following word, other mid-group runs are dropped, and
    trailing runs stay on the preceding word for display.
    """
    tokens: list[str] = []
    buffer = ""
    prev_had_whitespace = False

    for group in _WHITESPACE_SPLIT_RE.split(sentence):
        if not group:
            continue
        if group.isspace():
            prev_had_whitespace = True
            continue

        parts = _SEPARATOR_SPLIT_RE.split(group)
        for index, part in enumerate(parts):
            if not part:
                continue
            is_separator = not _WORD_CHAR_RE.search(_APOSTROPHE_RE.sub("", part, count=1))
            if not is_separator:
                tokens.append(buffer + part)
                buffer = ""
                prev_had_whitespace = False
                continue

            is_quote = bool(_QUOTE_RUN_RE.match(part))
            has_upcoming_word = any(_WORD_CHAR_RE.search(rest) for rest in parts[index + 1 :] if rest)
            if has_upcoming_word:
                if is_quote:
                    buffer += part
            else:
                attached = part if is_quote or not prev_had_whitespace else f" {part}"
                if tokens:
                    tokens[-1] += attached
                else:
                    buffer += attached
            prev_had_whitespace = False

    if buffer and tokens:
        tokens[-1] += buffer
    return tokens


def normalize_candidate_token(
    token: str,
    lang_full: str,
    lang_base: str,
    facility: LocaleFacility = DEFAULT_FACILITY,
) -> str:
    """Return the case-folded matching form of a surface token."""
    locales = [lang for lang in (lang_full, lang_base) if lang]
    if len(locales) == 2 and locales[0] == locales[1]:
        locales.pop()

    normalized = unicodedata.normalize("NFC", token).strip()
    if not normalized:
        return ""

    start = 0
    end = len(normalized)
    saw_opening_quote = False

    while start < end:
        char = normalized[start]
        if char in _SINGLE_QUOTES:
            saw_opening_quote = True
            start += 1
        elif _is_punct_or_space(char):
            start += 1
        else:
            break

    while end > start:
        char = normalized[end - 1]
        if char in _SINGLE_QUOTES:
            # Possessive or elided forms keep their quote unless it closes an opening one.
            if not saw_opening_quote:
                break
            saw_opening_quote = False
            end -= 1
        elif char == ".":
            if is_acronym_or_abbreviation(normalized[start:end]):
                break
            end -= 1
        elif _is_punct_or_space(char):
            end -= 1
        else:
            break

    trimmed = normalized[start:end].strip()
    if not trimmed:
        return ""
    return facility.lowercase(trimmed, locales)


def is_acronym_or_abbreviation(text: str) -> bool:
    """Return whether a token ending in a period keeps that period."""
    return bool(_ACRONYM_RE.match(text)) or text.lower() in ABBREVIATIONS


def sentence_seed(sentence: str, line_index: int) -> int:
    """FNV-1a 32-bit hash of ``"<sentence>|<line_index>"`` over UTF-16 code units."""
    payload = f"{sentence}|{line_index}".encode("utf-16-le")
    value = FNV_OFFSET_BASIS
    for offset in range(0, len(payload), 2):
        value ^= payload[offset] | (payload[offset + 1] << 8)
        value = (value * FNV_PRIME) & MASK32
    return value


def _is_punct_or_space(char: str) -> bool:
    return char.isspace() or bool(_PUNCT_OR_SYMBOL_RE.match(char))
