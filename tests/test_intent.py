"""Intent extraction: tokenization, category scoring and fuzzy keyword overlap."""

from __future__ import annotations

import pytest

from workflow_reliability.knowledge.intent import (
    GENERAL_CATEGORY,
    extract_intent,
    keyword_matches,
    keyword_overlap,
    normalize_text,
    tokenize,
)


class TestTokenize:
    def test_drops_stop_words_and_short_tokens(self):
        assert tokenize("Send me a daily email digest") == ["send", "daily", "email", "digest"]

    def test_strips_punctuation_and_dedupes(self):
        assert tokenize("Email, email!! EMAIL?") == ["email"]

    def test_weighted_short_token_kept(self):
        assert "ai" in tokenize("an ai agent")

    @pytest.mark.parametrize("text", ["", "   ", "!!! ???", None])
    def test_empty_input(self, text):
        assert tokenize(text) == []


class TestExtractIntent:
    def test_daily_email_digest(self):
        intent = extract_intent("send me a daily email digest")
        assert intent.category == "communication"
        assert intent.keywords == ("send", "daily", "email", "digest", "communication", "scheduling")
        assert intent.categories[:2] == ("communication", "scheduling")
        assert intent.weights["communication"] == 0.5

    def test_monitoring_request(self):
        intent = extract_intent("alert me when my website is down")
        assert intent.category == "monitoring"
        assert "alert" in intent.keywords

    @pytest.mark.parametrize("text, category", [
        ("autoreply", "communication"),
        ("gmail", "communication"),
        ("rescheduled", "scheduling"),
        ("healthcheck", "monitoring"),
    ])
    def test_category_by_substring(self, text, category):
        assert extract_intent(text).category == category

    def test_short_synonym_needs_exact_token(self):
        assert extract_intent("gitlab").categories == ()

    def test_importance_weights(self):
        intent = extract_intent("automate database sync")
        assert intent.weights["automate"] == 2.5
        assert intent.weights["database"] == 1.5
        assert intent.weights["sync"] == 1.0

    @pytest.mark.parametrize("text", ["", "???", "a an the"])
    def test_empty_intent_is_general(self, text):
        intent = extract_intent(text)
        assert intent.is_empty
        assert intent.category == GENERAL_CATEGORY
        assert intent.categories == ()

    def test_normalized_text(self):
        intent = extract_intent("  Send   Me\tA Digest ")
        assert intent.normalized == "send me a digest"
        assert normalize_text("A  B") == "a b"


class TestKeywordOverlap:
    def test_exact_and_containment(self):
        kws = frozenset({"scheduling", "email"})
        assert keyword_matches("email", kws)
        assert keyword_matches("schedule", kws)
        assert keyword_matches("Emails", frozenset({"email"}))

    def test_short_tokens_need_exact_match(self):
        assert not keyword_matches("ai", frozenset({"maintain"}))
        assert keyword_matches("ai", frozenset({"ai"}))

    def test_overlap_ratio(self):
        intent = extract_intent("send me a daily email digest")
        overlap = keyword_overlap(("email", "digest", "slack", "webhook"), intent)
        assert overlap == pytest.approx(0.5)

    def test_empty_sides(self):
        intent = extract_intent("send an email")
        assert keyword_overlap((), intent) == 0.0
        assert keyword_overlap(("email",), extract_intent("")) == 0.0
