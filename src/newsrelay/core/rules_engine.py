"""Exclusion keyword compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from newsrelay.core.dedup import normalize_for_fingerprint
from newsrelay.core.models import ExclusionRule


@dataclass(frozen=True)
class ExclusionMatch:
    """A keyword hit with a human-readable reason."""

    keyword: str
    reason: str


def normalize_keyword(keyword: str) -> str:
    """Return the stored form of a keyword (trimmed, lower-cased)."""

    return normalize_for_fingerprint(keyword)


def build_keywords(rules: Iterable[ExclusionRule]) -> List[str]:
    """Normalize active rules into the keyword list used for matching.

    Inactive rules and blank keywords are dropped so matching never has to
    care about them.
    """

    keywords: List[str] = []
    for rule in rules:
        if not rule.is_active:
            continue
        keyword = normalize_keyword(rule.keyword)
        if keyword and keyword not in keywords:
            keywords.append(keyword)
    return keywords


def match_exclusions(text: str, keywords: Iterable[str]) -> Optional[ExclusionMatch]:
    """Return the first keyword contained in the text, if any.

    Matching is a case-insensitive substring test over whitespace-collapsed
    text, so "Sports" in a title hits the keyword "sports".
    """

    lowered = normalize_for_fingerprint(text)
    for keyword in keywords:
        if keyword in lowered:
            return ExclusionMatch(keyword=keyword, reason=f'Excluded by keyword filter: "{keyword}"')
    return None
