"""AI categorization of bookmarks.

Talks to an OpenAI-compatible chat completions endpoint and asks for a JSON
object. Every public method degrades to the rule-based fallback when no API key
is configured or the upstream call fails, so callers on the save path never see
an exception from here.
"""

from __future__ import annotations

import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field

import httpx
from rapidfuzz import fuzz, process

from shelfmark.services.common import domain_of, parse_tags
from shelfmark.services.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

BOOKMARK_CATEGORIES = (
    "Technology",
    "Business",
    "Education",
    "Entertainment",
    "Health",
    "News",
    "Shopping",
    "Social",
    "Travel",
    "Finance",
    "Sports",
    "Science",
    "Art & Design",
    "Food & Cooking",
    "Productivity",
    "Development",
    "Marketing",
    "Research",
    "Documentation",
    "Tools",
)

FALLBACK_CONFIDENCE = 0.6
TAG_FOLD_THRESHOLD = 90

_FALLBACK_RULES = (
    (("github", "code", "programming"), "Development", ["programming", "code"]),
    (("business", "startup", "entrepreneur"), "Business", ["business"]),
    (("learn", "tutorial", "course"), "Education", ["learning", "tutorial"]),
    (("news", "article"), "News", ["news", "article"]),
    (("tool", "app", "software"), "Tools", ["tools", "software"]),
)


@dataclass
class Categorization:
    category: str
    tags: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    summary: str = ""
    confidence: float = FALLBACK_CONFIDENCE
    subcategory: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class Categorizer:
    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "Categorizer":
        return cls(
            api_key=config.get("AI_API_KEY", ""),
            base_url=config.get("AI_BASE_URL", "https://api.openai.com/v1"),
            model=config.get("AI_MODEL", "gpt-4o-mini"),
            timeout=config.get("AI_TIMEOUT", 20.0),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def categorize(
        self,
        title: str,
        url: str,
        description: str | None = None,
        content: str | None = None,
    ) -> Categorization:
        if not self.enabled:
            return fallback_categorization(title, url, description)
        try:
            payload = self._complete_json(
                _categorization_prompt(title, url, description, content),
                temperature=0.3,
            )
            return _parse_categorization(payload)
        except UpstreamServiceError as exc:
            logger.warning("AI categorization failed for %s: %s", url, exc)
            return fallback_categorization(title, url, description)

    def suggest_tags(
        self,
        title: str,
        url: str,
        description: str | None = None,
        category: str | None = None,
    ) -> list[str]:
        if not self.enabled:
            return fallback_tags(title, url, category)
        try:
            payload = self._complete_json(
                _suggestion_prompt(title, url, description, category),
                temperature=0.4,
            )
        except UpstreamServiceError as exc:
            logger.warning("AI tag suggestion failed for %s: %s", url, exc)
            return fallback_tags(title, url, category)

        tags = [tag for tag in parse_tags(payload.get("tags") or []) if len(tag) < 30]
        return tags[:8] or fallback_tags(title, url, category)

    def batch_categorize(self, records, batch_size: int = 5, pause: float = 1.0) -> dict:
        """Categorize records keyed by id.

        Each chunk of ``batch_size`` records goes upstream concurrently, with
        ``pause`` seconds between chunks to stay under provider rate limits.
        """
        rows = list(records)
        if not self.enabled:
            return {
                row.id: fallback_categorization(row.title, row.url, row.description)
                for row in rows
            }

        results = {}
        for start in range(0, len(rows), batch_size):
            chunk = rows[start : start + batch_size]
            with ThreadPoolExecutor(max_workers=len(chunk)) as executor:
                futures = {
                    executor.submit(
                        self.categorize, row.title, row.url, row.description
                    ): row.id
                    for row in chunk
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            if start + batch_size < len(rows):
                time.sleep(pause)
        return results

    def _complete_json(self, prompt: str, temperature: float) -> dict:
        body = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {
                    "role": "system",
                    "content": "You organize bookmarks. Reply with a single JSON object.",
                },
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.base_url}/chat/completions", headers=headers, json=body
                )
                response.raise_for_status()
                data = response.json()
            text = data["choices"][0]["message"]["content"]
            payload = json.loads(text)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamServiceError(f"{exc.__class__.__name__}: {exc}") from exc
        if not isinstance(payload, dict):
            raise UpstreamServiceError("categorizer returned a non-object payload")
        return payload


def _categorization_prompt(title, url, description, content) -> str:
    lines = [
        "Analyze this bookmark and categorize it.",
        "",
        f"Title: {title}",
        f"URL: {url}",
        f"Description: {description or 'No description provided'}",
    ]
    if content:
        lines.append(f"Content Preview: {content[:500]}")
    lines += [
        "",
        f"Available categories: {', '.join(BOOKMARK_CATEGORIES)}",
        "",
        "Return JSON with keys: category (one of the available categories),",
        "subcategory (optional string), tags (5-8 short lowercase tags),",
        "keywords (important keywords), summary (1-2 sentences),",
        "confidence (number between 0 and 1).",
    ]
    return "\n".join(lines)


def _suggestion_prompt(title, url, description, category) -> str:
    return "\n".join(
        [
            "Suggest 5-8 practical, searchable tags for this bookmark.",
            f"Title: {title}",
            f"URL: {url}",
            f"Description: {description or 'No description'}",
            f"Category: {category or 'Unknown'}",
            'Return JSON: {"tags": ["..."]}',
        ]
    )


def _parse_categorization(payload: dict) -> Categorization:
    category = str(payload.get("category") or "").strip()
    if not category:
        raise UpstreamServiceError("categorizer response has no category")
    try:
        confidence = float(payload.get("confidence", FALLBACK_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = FALLBACK_CONFIDENCE
    keywords = payload.get("keywords") or []
    if not isinstance(keywords, list):
        keywords = []
    return Categorization(
        category=category,
        subcategory=(str(payload.get("subcategory")).strip() or None)
        if payload.get("subcategory")
        else None,
        tags=parse_tags(payload.get("tags") or []),
        keywords=[str(word).strip() for word in keywords if str(word).strip()],
        summary=str(payload.get("summary") or "").strip(),
        confidence=min(max(confidence, 0.0), 1.0),
    )


def fallback_categorization(
    title: str, url: str, description: str | None = None
) -> Categorization:
    title_l = (title or "").lower()
    combined = f"{title_l} {(url or '').lower()} {(description or '').lower()}"

    category = "Technology"
    tags: list[str] = []
    for markers, rule_category, rule_tags in _FALLBACK_RULES:
        if any(marker in combined for marker in markers):
            category = rule_category
            tags.extend(rule_tags)
            break

    domain = domain_of(url)
    if domain:
        tags.append(domain)

    keywords = [word for word in title_l.split(" ") if len(word) > 3][:5]
    return Categorization(
        category=category,
        tags=tags[:5],
        keywords=keywords,
        summary=description or f"Bookmark from {url}",
        confidence=FALLBACK_CONFIDENCE,
    )


def fallback_tags(title: str, url: str, category: str | None = None) -> list[str]:
    tags: list[str] = []
    if category:
        tags.append(category.lower())
    domain = domain_of(url)
    if domain:
        tags.append(domain)
    words = [
        word
        for word in re.split(r"\s+", (title or "").lower())
        if 3 < len(word) < 15
    ]
    tags.extend(words[:3])
    return parse_tags(tags)[:5]


def fold_into_existing(suggested: list[str], existing: list[str]) -> list[str]:
    """Map each suggestion onto a near-identical tag the user already has."""
    folded: list[str] = []
    for tag in suggested:
        match = process.extractOne(
            tag, existing, scorer=fuzz.ratio, score_cutoff=TAG_FOLD_THRESHOLD
        )
        name = match[0] if match else tag
        if name not in folded:
            folded.append(name)
    return folded
