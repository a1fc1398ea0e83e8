from __future__ import annotations

from typing import Sequence

DEFAULT_EXCLUDED_THEMES = (
    "sports, religion, celebrities, advertisements for a product or brand, clickbait"
)

CLASSIFICATION_PROMPT = """You are a news content filter. Analyze the following news article and decide if it should be posted.

FILTERING CRITERIA:
{keywords_section}

NEWS ARTICLE:
Title: {title}
Description: {body}

INSTRUCTIONS:
1. If there are keywords, the article must NOT be semantically related to any of them.
2. By default, reject these themes: {default_themes}.
3. Consider context, synonyms, and semantic meaning, not just exact keyword matches.
4. Be reasonably strict but not overly restrictive.
5. Respond ONLY in valid JSON.

RESPONSE FORMAT (must be valid JSON):
{{
  "decision": true | false,
  "confidence": number between 0 and 100,
  "reason": short explanation of the decision,
  "category": one label such as Technology, Science, Politics
}}
"""


def build_classification_prompt(
    title: str,
    body: str,
    keywords: Sequence[str],
    default_themes: str = DEFAULT_EXCLUDED_THEMES,
) -> str:
    if keywords:
        keywords_section = f"Keywords: {', '.join(keywords)}"
    else:
        keywords_section = "No specific keywords defined."
    return CLASSIFICATION_PROMPT.format(
        keywords_section=keywords_section,
        title=title,
        body=body,
        default_themes=default_themes,
    ).strip()
