"""Intent extraction — free text to a weighted keyword set and a category label.

Pure functions only. Empty, punctuation-only or non-Latin input produces an
Intent with no keywords and the "general" category; nothing here raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

GENERAL_CATEGORY = "general"

_STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "was", "are", "been", "be", "me", "my",
    "i", "we", "our", "you", "your", "it", "its", "this", "that", "these",
    "those", "some", "any", "all", "every", "each", "into", "when", "then",
    "want", "need", "would", "like", "please", "can", "could", "should",
})

_MIN_TOKEN_LEN = 3

# Importance multipliers for tokens that carry more intent than average.
_KEYWORD_WEIGHTS: dict[str, float] = {
    "ai": 3.0,
    "agent": 3.0,
    "automate": 2.5,
    "intelligent": 2.5,
    "analyze": 2.0,
    "generate": 2.0,
    "process": 2.0,
    "create": 2.0,
    "api": 1.5,
    "webhook": 1.5,
    "database": 1.5,
    "integrate": 1.5,
}
_DEFAULT_WEIGHT = 1.0
_CATEGORY_WEIGHT = 0.5

# Category -> synonyms. Order is the tie-break when two categories score equally.
CATEGORY_LEXICON: dict[str, tuple[str, ...]] = {
    "communication": (
        "email", "mail", "send", "message", "notify", "notification", "reply",
        "forward", "announce", "broadcast", "newsletter", "digest", "inbox",
    ),
    "scheduling": (
        "schedule", "daily", "weekly", "hourly", "monthly", "cron", "minute",
        "morning", "nightly", "recurring", "periodic", "interval",
    ),
    "monitoring": (
        "monitor", "alert", "watch", "track", "observe", "detect", "uptime",
        "health", "check", "status", "ping",
    ),
    "web_scraping": (
        "scrape", "scraping", "crawl", "crawler", "website", "html", "page",
        "extract", "parse",
    ),
    "data_processing": (
        "transform", "clean", "aggregate", "merge", "filter", "process",
        "convert", "normalize", "validate", "enrich", "csv", "json", "data",
    ),
    "integration": (
        "sync", "integrate", "connect", "bridge", "api", "webhook", "forward",
        "transfer", "migrate", "replicate", "endpoint", "http",
    ),
    "research": (
        "research", "analyze", "search", "summarize", "investigate", "explore",
        "discover", "gather", "collect",
    ),
    "content": (
        "write", "generate", "compose", "draft", "produce", "author", "blog",
        "post", "article",
    ),
    "support": (
        "support", "help", "assist", "ticket", "customer", "service",
        "resolve", "answer", "inquiry",
    ),
    "orchestration": (
        "orchestrate", "coordinate", "manage", "route", "distribute",
        "organize", "automate", "pipeline", "workflow",
    ),
    "devops": (
        "deploy", "build", "release", "compile", "package", "git", "pipeline",
    ),
    "decision": (
        "decide", "choose", "select", "evaluate", "compare", "assess",
        "classify", "categorize", "route",
    ),
}

_NON_WORD = re.compile(r"[^a-z0-9\s]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Intent:
    """Immutable view of a user's automation request.

    keywords:   Ordered, de-duplicated tokens plus matched category names.
    weights:    Keyword -> importance weight.
    category:   Best-scoring category, or "general".
    categories: Every category with at least one synonym hit, best first.
    """

    raw: str
    keywords: tuple[str, ...] = ()
    weights: dict[str, float] = field(default_factory=dict)
    category: str = GENERAL_CATEGORY
    categories: tuple[str, ...] = ()

    @property
    def keyword_set(self) -> frozenset[str]:
        return frozenset(self.keywords)

    @property
    def normalized(self) -> str:
        return normalize_text(self.raw)

    @property
    def is_empty(self) -> bool:
        return not self.keywords


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", (text or "").lower().strip())


def tokenize(text: str) -> list[str]:
    """Lower-case, strip punctuation, drop stop words and short tokens."""
    cleaned = _NON_WORD.sub(" ", (text or "").lower())
    tokens: list[str] = []
    for tok in cleaned.split():
        if len(tok) < _MIN_TOKEN_LEN and tok not in _KEYWORD_WEIGHTS:
            continue
        if tok in _STOP_WORDS or tok in tokens:
            continue
        tokens.append(tok)
    return tokens


def _synonym_hit(token: str, synonym: str) -> bool:
    if token == synonym:
        return True
    if len(token) < 4 or len(synonym) < 4:
        return False
    return synonym in token or token in synonym


def score_categories(tokens: list[str], weights: dict[str, float]) -> dict[str, float]:
    """Sum of token weights per category over synonym/substring hits."""
    scores: dict[str, float] = {}
    for category, synonyms in CATEGORY_LEXICON.items():
        total = 0.0
        for tok in tokens:
            if any(_synonym_hit(tok, syn) for syn in synonyms):
                total += weights.get(tok, _DEFAULT_WEIGHT)
        if total > 0:
            scores[category] = total
    return scores


def extract_intent(text: str) -> Intent:
    tokens = tokenize(text)
    weights = {tok: _KEYWORD_WEIGHTS.get(tok, _DEFAULT_WEIGHT) for tok in tokens}

    scores = score_categories(tokens, weights)
    order = list(CATEGORY_LEXICON)
    ranked = sorted(scores, key=lambda c: (-scores[c], order.index(c)))

    keywords = list(tokens)
    for category in ranked:
        if category not in weights:
            keywords.append(category)
            weights[category] = _CATEGORY_WEIGHT

    return Intent(
        raw=text or "",
        keywords=tuple(keywords),
        weights=weights,
        category=ranked[0] if ranked else GENERAL_CATEGORY,
        categories=tuple(ranked),
    )


def keyword_matches(template_keyword: str, intent_keywords: frozenset[str]) -> bool:
    """Fuzzy keyword match: exact, or containment either way for tokens of 3+ chars."""
    tk = template_keyword.lower()
    if tk in intent_keywords:
        return True
    if len(tk) < _MIN_TOKEN_LEN:
        return False
    return any(
        len(ik) >= _MIN_TOKEN_LEN and (ik in tk or tk in ik)
        for ik in intent_keywords
    )


def keyword_overlap(template_keywords: tuple[str, ...] | list[str], intent: Intent) -> float:
    """Fraction of template keywords matched by the intent, in [0, 1]."""
    if not template_keywords or intent.is_empty:
        return 0.0
    intent_kw = intent.keyword_set
    hits = sum(1 for kw in template_keywords if keyword_matches(kw, intent_kw))
    return hits / len(template_keywords)
