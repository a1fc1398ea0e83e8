"""Two-stage item filter.

Stage A is a local, exact keyword exclusion. Stage B asks a remote
classifier for a semantic decision and is only reached when Stage A passes,
so cheap rejections never cost a remote call.

Stage B is advisory: anything short of a well-formed answer accepts the
item with confidence 0. Losing an item silently is worse than over-posting.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from newsrelay.core.errors import FilterParseError
from newsrelay.core.models import CandidateItem, ExclusionRule, FilterDecision
from newsrelay.core.ports import ClassifierPort, StoragePort
from newsrelay.core.prompts import build_classification_prompt
from newsrelay.core.rules_engine import build_keywords, match_exclusions, normalize_keyword

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 50
DEFAULT_CATEGORY = "Unknown"
DEFAULT_REASON = "Classification completed"

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def _fail_open(reason: str, stage: str = "B") -> FilterDecision:
    return FilterDecision(
        accept=True,
        reason=f"{reason} - defaulting to allow",
        confidence=0,
        category=DEFAULT_CATEGORY,
        stage=stage,
        fallback=True,
    )


def strip_code_fence(response: str) -> str:
    """Remove a surrounding Markdown code fence, if present."""

    text = response.strip()
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def _coerce_confidence(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if not 0 <= value <= 100:
        return DEFAULT_CONFIDENCE
    return int(round(value))


def _coerce_text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def parse_classifier_response(response: str) -> FilterDecision:
    """Parse the classifier's JSON answer into a Stage B decision.

    Raises FilterParseError when the text is not a JSON object. Missing or
    out-of-range fields fall back to defaults instead of failing.
    """

    try:
        parsed = json.loads(strip_code_fence(response))
    except ValueError as exc:
        raise FilterParseError(f"classifier response is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise FilterParseError("classifier response is not a JSON object")

    decision = parsed.get("decision")
    accept = decision if isinstance(decision, bool) else True
    reason = _coerce_text(parsed.get("reason"), DEFAULT_REASON)
    return FilterDecision(
        accept=accept,
        reason=f"Classifier: {reason}",
        confidence=_coerce_confidence(parsed.get("confidence")),
        category=_coerce_text(parsed.get("category"), DEFAULT_CATEGORY),
        stage="B",
        fallback=not isinstance(decision, bool),
    )


class FilterManager:
    """Runs Stage A and Stage B and owns the exclusion rule collection."""

    def __init__(self, storage: StoragePort, classifier: Optional[ClassifierPort] = None) -> None:
        self._storage = storage
        self._classifier = classifier

    def add_rule(self, keyword: str) -> ExclusionRule:
        normalized = normalize_keyword(keyword)
        if not normalized:
            raise ValueError("Keyword must not be empty")
        rule = self._storage.add_exclusion_rule(normalized)
        LOGGER.info("Exclusion rule added: %s (%s)", rule.keyword, rule.id)
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        removed = self._storage.remove_exclusion_rule(rule_id)
        if removed:
            LOGGER.info("Exclusion rule removed: %s", rule_id)
        else:
            LOGGER.warning("Exclusion rule not found: %s", rule_id)
        return removed

    def list_rules(self) -> list[ExclusionRule]:
        return self._storage.list_exclusion_rules(active_only=True)

    def _keywords(self) -> list[str]:
        return build_keywords(self.list_rules())

    def stage_a(self, item: CandidateItem, keywords: Optional[list[str]] = None) -> FilterDecision:
        """Reject the item if its title or body contains an active keyword."""

        try:
            if keywords is None:
                keywords = self._keywords()
            hit = match_exclusions(f"{item.title} {item.body}", keywords)
        except Exception:
            LOGGER.exception("Stage A failed for %s", item.title)
            return _fail_open("Stage A error", stage="A")

        if hit:
            LOGGER.info("Stage A rejected %s (%s)", item.title, hit.keyword)
            return FilterDecision(accept=False, reason=hit.reason, stage="A")
        return FilterDecision(accept=True, reason="Passed keyword filter", stage="A")

    async def stage_b(self, item: CandidateItem, keywords: Optional[list[str]] = None) -> FilterDecision:
        """Ask the remote classifier; fail open on any problem."""

        if self._classifier is None:
            LOGGER.warning("No classifier configured, accepting %s", item.title)
            return _fail_open("No classifier configured")

        try:
            if keywords is None:
                keywords = self._keywords()
            prompt = build_classification_prompt(item.title, item.body, keywords)
            LOGGER.info("Classifying %s (%s keywords)", item.title, len(keywords))
            response = await self._classifier.classify(prompt)
        except Exception:
            LOGGER.exception("Classifier call failed for %s", item.title)
            return _fail_open("Classifier error")

        if not response:
            LOGGER.warning("Classifier returned no response for %s", item.title)
            return _fail_open("Classifier returned no response")

        try:
            decision = parse_classifier_response(response)
        except FilterParseError:
            LOGGER.warning("Unparseable classifier response for %s: %r", item.title, response[:200])
            return _fail_open("Classifier response parsing error")

        LOGGER.info(
            "Stage B %s %s (confidence=%s, category=%s): %s",
            "accepted" if decision.accept else "rejected",
            item.title,
            decision.confidence,
            decision.category,
            decision.reason,
        )
        return decision

    async def should_post_item(self, item: CandidateItem) -> FilterDecision:
        """Combined decision: a Stage A rejection is final, else Stage B decides."""

        try:
            keywords = self._keywords()
        except Exception:
            LOGGER.exception("Could not load exclusion rules for %s", item.title)
            keywords = None

        if keywords is not None:
            stage_a = self.stage_a(item, keywords)
            if not stage_a.accept:
                return stage_a
        return await self.stage_b(item, keywords or [])
