"""Small locale facility used for tag canonicalization and case folding."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Protocol

# language[-script][-region][-variant...], extensions and private use are not accepted.
_TAG_RE = re.compile(
    r"^(?P<language>[a-z]{2,3}|[a-z]{5,8})"
    r"(?:-(?P<script>[a-z]{4}))?"
    r"(?:-(?P<region>[a-z]{2}|\d{3}))?"
    r"(?P<variants>(?:-(?:[a-z\d]{5,8}|\d[a-z\d]{3}))*)$",
    re.IGNORECASE,
)

_LANGUAGE_ALIASES = {
    "iw": "he",
    "in": "id",
    "ji": "yi",
    "jw": "jv",
    "mo": "ro",
}

_DOTTED_I_LANGUAGES = {"tr", "az"}


class LocaleFacility(Protocol):
    """Interface the importer relies on for locale-sensitive behaviour."""

    def canonicalize_tag(self, tag: str) -> str: ...

    def lowercase(self, text: str, locales: Sequence[str]) -> str: ...


class DefaultLocaleFacility:
    """Pure-Python facility: BCP-47 shape check plus dotted-I aware lowercasing."""

    def canonicalize_tag(self, tag: str) -> str:
        """Return the canonical casing of a language tag or raise ValueError."""
        match = _TAG_RE.match(tag.strip())
        if match is None:
            raise ValueError(f"Invalid language tag: {tag!r}")
        language = match.group("language").lower()
        parts = [_LANGUAGE_ALIASES.get(language, language)]
        script = match.group("script")
        if script:
            parts.append(script.title())
        region = match.group("region")
        if region:
            parts.append(region.upper())
        variants = match.group("variants")
        if variants:
            parts.extend(item.lower() for item in variants.split("-") if item)
        return "-".join(parts)

    def lowercase(self, text: str, locales: Sequence[str]) -> str:
        """Lowercase using the first usable locale, falling back to default rules."""
        for locale in locales:
            try:
                canonical = self.canonicalize_tag(locale)
            except ValueError:
                continue
            base = canonical.split("-", 1)[0]
            if base in _DOTTED_I_LANGUAGES:
                return text.replace("I", "ı").replace("İ", "i").lower()
            return text.lower()
        return text.lower()


DEFAULT_FACILITY = DefaultLocaleFacility()
