"""Tests for the pattern matcher."""

from detectify.analyzer.matcher import MatchOptions, PatternMatcher
from detectify.analyzer.metrics import metrics
from detectify.analyzer.pattern_store import PatternStore

DRIFT_HTML = '<html><head><script src="https://js.driftt.com/include/123/abc.js"></script></head></html>'
CHAT_DIV_HTML = '<html><body><div class="chat-widget"></div></body></html>'
CHAT_DIV_META_HTML = (
    '<html><head><meta name="chat-config" content="on"></head>'
    '<body><div class="chat-widget"></div></body></html>'
)
CONTACT_FORM_HTML = (
    '<html><body><div class="chat-widget"></div><meta name="chat-config" content="on">'
    '<form action="/contact" class="contact-form"><textarea name="your-message"></textarea></form>'
    '<a href="mailto:info@example.com">Email</a></body></html>'
)

ADVANCED = MatchOptions(advanced=True)
DEEP = MatchOptions(advanced=True, deep_verification=True)


def _matcher() -> PatternMatcher:
    return PatternMatcher(PatternStore())


class TestMatch:
    def test_match_is_repeatable(self):
        matcher = _matcher()
        first = matcher.match(DRIFT_HTML, "https://example.com", ADVANCED)
        second = matcher.match(DRIFT_HTML, "https://example.com", ADVANCED)
        assert first == second
        assert first

    def test_empty_html_has_no_evidence(self):
        assert _matcher().match("", "https://example.com", ADVANCED) == []

    def test_basic_tier_excludes_provider_signatures(self):
        evidence = _matcher().match(DRIFT_HTML)
        assert {e.tier.value for e in evidence} == {"basic"}
        advanced = _matcher().match(DRIFT_HTML, "https://example.com", ADVANCED)
        assert any(e.tier.value == "advanced" for e in advanced)


class TestVendorCrediting:
    def test_specific_vendor_needs_one_hit(self):
        summary = _matcher().analyze(DRIFT_HTML, "https://example.com")
        assert summary.vendors == ["Drift"]
        assert summary.vendor_hits["Drift"] >= 1

    def test_single_generic_hit_is_not_enough(self):
        summary = _matcher().analyze(CHAT_DIV_HTML, "https://example.com")
        assert summary.vendors == []
        assert summary.has_chat_elements
        assert not summary.has_meta_tags

    def test_independent_meta_signal_credits_generic_label(self):
        summary = _matcher().analyze(CHAT_DIV_META_HTML, "https://example.com")
        assert summary.vendors == ["Website Chatbot"]
        assert summary.has_meta_tags

    def test_false_positive_content_raises_generic_threshold(self):
        summary = _matcher().analyze(CONTACT_FORM_HTML, "https://example.com")
        assert summary.false_positive
        assert summary.false_positive_hits >= 2
        assert "Website Chatbot" not in summary.vendors

    def test_hint_credits_generic_label_with_one_hit(self):
        options = MatchOptions(vendor_hints=("Website Chatbot",))
        summary = _matcher().analyze(CHAT_DIV_HTML, "https://example.com", options)
        assert summary.vendors == ["Website Chatbot"]

    def test_deep_verification_drops_uncorroborated_vendor(self):
        html = "<p>We love crisp autumn mornings.</p>"
        shallow = _matcher().analyze(html, "https://example.com", ADVANCED)
        assert "Crisp" in shallow.vendors

        deep = _matcher().analyze(html, "https://example.com", DEEP)
        assert "Crisp" not in deep.vendors
        assert deep.dropped_vendors == ["Crisp"]

    def test_deep_verification_keeps_provider_backed_vendor(self):
        summary = _matcher().analyze(DRIFT_HTML, "https://example.com", DEEP)
        assert summary.vendors == ["Drift"]
        assert summary.advanced_hits["Drift"] >= 1


class TestDenyList:
    def test_denylisted_host_short_circuits(self):
        summary = _matcher().analyze(DRIFT_HTML, "https://kentdentists.com")
        assert summary.denylisted
        assert summary.vendors == []
        assert summary.evidence == []

    def test_match_returns_no_evidence_for_denylisted_url(self):
        matcher = _matcher()
        assert matcher.match(DRIFT_HTML, "https://www.kentdentists.com/about", ADVANCED) == []
        assert matcher.match(DRIFT_HTML, "https://example.com", ADVANCED)

    def test_metrics_record_vendor_detection(self):
        _matcher().analyze(DRIFT_HTML, "https://example.com")
        labels = metrics.get_summary()["labels"]
        assert labels["Drift"]["detections"] == 1
