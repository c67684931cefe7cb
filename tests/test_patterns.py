"""Tests for the pattern library and its refreshing store."""

from pathlib import Path

from detectify.analyzer.pattern_store import PatternStore
from detectify.analyzer.patterns import (
    CATEGORY_FALSE_POSITIVE,
    PatternLibrary,
    PatternSignature,
    PatternTier,
    PatternType,
    build_default_signatures,
)


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _write_patterns(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "patterns.yaml"
    path.write_text(text)
    return path


class TestPatternLibrary:
    def test_default_library_contains_known_vendors(self):
        library = PatternLibrary()
        for vendor in ("Intercom", "Drift", "Zendesk Chat", "Tawk.to", "Website Chatbot"):
            assert vendor in library.vendors
        assert "elements" not in library.vendors

    def test_generic_labels(self):
        library = PatternLibrary()
        assert library.is_generic("Website Chatbot")
        assert library.is_generic("Custom Chat")
        assert not library.is_generic("Intercom")

    def test_tier_filter(self):
        library = PatternLibrary()
        basic = library.for_tiers([PatternTier.BASIC])
        assert basic
        assert all(sig.tier == PatternTier.BASIC for sig in basic)
        assert len(library.for_tiers(list(PatternTier))) == len(library.signatures)

    def test_default_signatures_compile(self):
        for sig in build_default_signatures():
            assert sig.regex.pattern == sig.pattern

    def test_case_sensitive_globals(self):
        sig = PatternSignature("Intercom", r"\bIntercom", PatternType.SCRIPT_REFERENCE, PatternTier.ADVANCED, True)
        assert sig.search("window.Intercom('boot')") == "Intercom"
        assert sig.search("intercom") is None

    def test_deny_list_lookup(self):
        library = PatternLibrary()
        assert library.is_false_positive_domain("https://www.kentdentists.com")
        assert not library.is_false_positive_domain("https://example.com")


class TestPatternStore:
    def test_builtin_library_without_file(self):
        store = PatternStore()
        library = store.get()
        assert library.version == "builtin"
        assert store.loaded_at is not None

    def test_refreshes_after_ttl(self):
        clock = _Clock()
        store = PatternStore(ttl_seconds=300, clock=clock)
        first = store.get()
        clock.now += 299
        assert store.get() is first
        assert not store.is_stale()
        clock.now += 1
        assert store.is_stale()
        assert store.get() is not first

    def test_yaml_overrides(self, tmp_path):
        path = _write_patterns(
            tmp_path,
            """
version: "2024-06"
vendors:
  Acme Chat:
    - acmechat\\.js
false_positive_content:
  - booking-form
false_positive_domains:
  - Example-Dental.com
disabled_vendors:
  - Olark
generic_min_hits: 3
""",
        )
        library = PatternStore(patterns_file=path).get()

        assert library.version == "2024-06"
        assert "Acme Chat" in library.vendors
        assert "Olark" not in library.vendors
        assert "example-dental.com" in library.false_positive_domains
        assert library.generic_min_hits == 3
        assert library.generic_min_hits_suppressed == 4
        assert any(
            sig.label == CATEGORY_FALSE_POSITIVE and sig.pattern == "booking-form"
            for sig in library.signatures
        )

    def test_invalid_patterns_are_skipped(self, tmp_path):
        path = _write_patterns(
            tmp_path,
            """
vendors:
  Broken:
    - "([unclosed"
  Fine:
    - finechat
""",
        )
        library = PatternStore(patterns_file=path).get()
        assert "Broken" not in library.vendors
        assert "Fine" in library.vendors

    def test_unparseable_file_falls_back_to_builtin(self, tmp_path):
        path = _write_patterns(tmp_path, "vendors: [unclosed")
        library = PatternStore(patterns_file=path).get()
        assert library.version == "builtin"

    def test_extra_false_positive_domains(self):
        store = PatternStore(extra_false_positive_domains=["Clinic.example"])
        assert store.get().is_false_positive_domain("https://clinic.example/")

    def test_refresh_failure_keeps_previous_library(self, monkeypatch):
        clock = _Clock()
        store = PatternStore(ttl_seconds=10, clock=clock)
        first = store.get()
        clock.now += 60

        def _boom():
            raise RuntimeError("disk gone")

        monkeypatch.setattr(store, "load", _boom)
        assert store.get() is first
        assert not store.is_stale()

    def test_reload_picks_up_file_changes(self, tmp_path):
        path = _write_patterns(tmp_path, "vendors:\n  First:\n    - firstchat\n")
        store = PatternStore(patterns_file=path, ttl_seconds=3600)
        assert "First" in store.get().vendors

        path.write_text("vendors:\n  Second:\n    - secondchat\n")
        assert "Second" not in store.get().vendors
        assert "Second" in store.reload().vendors
