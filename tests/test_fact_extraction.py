"""Tests for fact_extraction.py - extraction, aliasing and merge.

These tests verify:
1. PatternFactExtractor only tries the facts the credited node declares
2. Default patterns come from runtime.yaml
3. Aliasing maps raw names to canonical names (identity when unmapped)
4. merge_facts is a union: re-applying the same facts adds nothing
"""

from __future__ import annotations

from flowctl.runtime.fact_extraction import (
    ExtractionRequest,
    ExtractionResult,
    NullFactExtractor,
    PatternFactExtractor,
    apply_aliases,
    merge_facts,
)
from flowctl.runtime.state import RuntimeState


class TestPatternFactExtractor:
    """Regex extraction scoped to the credited node."""

    def test_extracts_email(self, extractor, contact_flow):
        request = ExtractionRequest.for_node(contact_flow.node("contact-1"), "it's john@x.com")
        assert extractor.extract(request).facts == frozenset({"email"})

    def test_extracts_phone(self, extractor, contact_flow):
        request = ExtractionRequest.for_node(
            contact_flow.node("contact-1"), "call me at +1 555 123 4567"
        )
        assert extractor.extract(request).facts == frozenset({"phone"})

    def test_only_declared_facts_are_tried(self, extractor, contact_flow):
        """book-1 produces nothing, so an email in the message is ignored."""
        request = ExtractionRequest.for_node(contact_flow.node("book-1"), "john@x.com")
        assert extractor.extract(request).is_empty

    def test_no_message(self, extractor, contact_flow):
        request = ExtractionRequest.for_node(contact_flow.node("contact-1"), None)
        assert extractor.extract(request) == ExtractionResult()

    def test_wanted_includes_canonical_names(self, contact_flow):
        request = ExtractionRequest.for_node(contact_flow.node("contact-1"), "x")
        assert request.wanted == frozenset({"email", "phone", "contact_email", "contact_phone"})

    def test_default_patterns_from_config(self, contact_flow):
        extractor = PatternFactExtractor()
        assert {"email", "phone"} <= extractor.fact_names
        request = ExtractionRequest.for_node(contact_flow.node("contact-1"), "JOHN@X.COM")
        assert "email" in extractor.extract(request).facts

    def test_null_extractor(self, contact_flow):
        request = ExtractionRequest.for_node(contact_flow.node("contact-1"), "john@x.com")
        assert NullFactExtractor().extract(request).is_empty


class TestAliasing:
    def test_apply_aliases(self, contact_flow):
        assert apply_aliases(contact_flow, ["email", "budget"]) == frozenset(
            {"contact_email", "budget"}
        )

    def test_merge_returns_new_facts(self, contact_flow):
        state = RuntimeState()
        assert merge_facts(state, contact_flow, ["email"]) == {"contact_email"}
        assert state.facts == {"contact_email"}

    def test_merge_is_idempotent(self, contact_flow):
        state = RuntimeState()
        merge_facts(state, contact_flow, ["email", "phone"])
        snapshot = set(state.facts)

        assert merge_facts(state, contact_flow, ["email", "phone"]) == set()
        assert state.facts == snapshot

    def test_raw_and_canonical_names_merge_to_one_fact(self, contact_flow):
        state = RuntimeState()
        merge_facts(state, contact_flow, ["email", "contact_email"])
        assert state.facts == {"contact_email"}
