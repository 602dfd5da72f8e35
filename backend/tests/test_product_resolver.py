"""
test_product_resolver.py — Unit tests for product matching and resolution.

Tests cover:
  - Each matching strategy in order: exact, FLX parametric, substring, token overlap
  - Source precedence: manual > learned > catalogue
  - Raw product validation and rejection reasons
  - Edge rules applied to resolved times
  - The explicit DEFAULT fallback policy
"""

import pytest

from smartquote.models.quote_schema import CatalogueEntry, RawProduct
from smartquote.services.catalogue_index import CatalogueIndex
from smartquote.services.product_resolver import (
    ProductResolver,
    find_best_match_key,
    standardize_product_name,
    validate_raw_product,
)


def _snapshot(*keys):
    return CatalogueIndex(keys).current


# ---------------------------------------------------------------------------
# Matching strategies
# ---------------------------------------------------------------------------

class TestMatching:

    def test_exact_normalized(self, resolver):
        match = resolver.match("flx-4p")
        assert match.key == "FLX 4P"
        assert match.source == "catalogue"

    def test_flx_person_count_reversed(self, resolver):
        assert resolver.match("4P FLX").key == "FLX 4P"

    def test_flx_falls_back_to_generic_variant(self, resolver):
        """FLX-COWORK-4P-L2400 is not in the small catalogue; FLX 4P is."""
        assert resolver.match("FLX-COWORK-4P-L2400").key == "FLX 4P"

    def test_flx_prefers_specific_size(self, default_resolver):
        assert default_resolver.match("FLX 6P L4200").key == "FLX-COWORK-6P-L4200"

    def test_substring(self, resolver):
        assert resolver.match("POWER-MODULE-BLACK").key == "POWER-MODULE"

    def test_longest_substring_wins(self):
        snap = _snapshot("CAGE", "CAGE-SOFA")
        assert find_best_match_key("CAGE-SOFA-XL", snap) == "CAGE-SOFA"

    def test_substring_tie_goes_to_first_key(self):
        snap = _snapshot("AB-1", "AB-2")
        assert find_best_match_key("AB", snap) == "AB-1"

    def test_token_overlap(self, resolver):
        """CHAIR JUST A shares three tokens with JUST-A-CHAIR but no substring."""
        assert resolver.match("CHAIR JUST A").key == "JUST-A-CHAIR"

    def test_token_overlap_by_containment(self, resolver):
        """CHAIRS contains CHAIR and JUSTS contains JUST: two overlapping tokens."""
        assert resolver.match("CHAIRS JUSTS").key == "JUST-A-CHAIR"

    def test_token_overlap_below_floor_rejected(self, resolver):
        """CAGE-BENCH shares only CAGE with CAGE-SOFA-L1800; two are needed."""
        assert resolver.match("CAGE-BENCH") is None

    def test_single_shared_token_does_not_match(self, resolver):
        """MODULE-FRAME shares only MODULE with POWER-MODULE."""
        assert resolver.match("MODULE-FRAME") is None

    def test_no_match(self, resolver):
        assert resolver.match("XYZ-999") is None

    def test_empty_snapshot(self):
        assert find_best_match_key("FLX 4P", _snapshot()) is None


# ---------------------------------------------------------------------------
# Source precedence
# ---------------------------------------------------------------------------

class TestSourcePrecedence:

    def test_manual_beats_learned_and_catalogue(self, resolver):
        manual = {"FLX 4P": CatalogueEntry(install_time_hours=2.0)}
        learned = {"FLX 4P": CatalogueEntry(install_time_hours=1.8)}
        match = resolver.match("FLX-4P", manual, learned)
        assert match.source == "user-inputted"
        assert match.entry.install_time_hours == 2.0

    def test_manual_is_fuzzy(self, resolver):
        manual = {"CUSTOM-DESK": CatalogueEntry(install_time_hours=0.9)}
        match = resolver.match("CUSTOM-DESK-L1600", manual)
        assert match.source == "user-inputted"
        assert match.key == "CUSTOM-DESK"

    def test_learned_beats_catalogue(self, resolver):
        learned = {"flx 4p": CatalogueEntry(install_time_hours=1.8)}
        match = resolver.match("FLX-4P", learned=learned)
        assert match.source == "learned"
        assert match.key == "flx 4p"

    def test_learned_is_exact_only(self, resolver):
        learned = {"POWER-MODULE-X": CatalogueEntry(install_time_hours=5.0)}
        match = resolver.match("POWER-MODULE", learned=learned)
        assert match.source == "catalogue"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:

    def test_valid_product(self, make_raw):
        assert validate_raw_product(make_raw("FLX 4P", quantity=999)) is None

    @pytest.mark.parametrize("code,quantity,raw,reason", [
        ("", 1, "desk", "missing product code"),
        ("   ", 1, "desk", "missing product code"),
        ("A" * 50, 1, "desk", "product code too long"),
        ("FLX 4P", 0, "desk", "non-positive quantity 0"),
        ("FLX 4P", -2, "desk", "non-positive quantity -2"),
        ("FLX 4P", 1000, "desk", "implausible quantity 1000"),
    ])
    def test_rejection_reasons(self, make_raw, code, quantity, raw, reason):
        assert validate_raw_product(make_raw(code, quantity=quantity, raw=raw)) == reason

    def test_clean_description_alone_is_enough(self, make_raw):
        assert validate_raw_product(make_raw("FLX 4P", raw="", clean="Bench desk")) is None

    def test_empty_description_is_accepted(self, make_raw):
        assert validate_raw_product(make_raw("FLX 4P", raw="", clean="")) is None

    def test_rejected_products_are_unresolved(self, resolver, make_raw):
        products = [
            make_raw("FLX 4P", quantity=0, line_number=1),
            make_raw("POWER-MODULE", quantity=2, line_number=2),
        ]
        outcome = resolver.resolve(products)
        assert [p.line_number for p in outcome.unresolved] == [1]
        assert outcome.rejections == {1: "non-positive quantity 0"}
        assert [p.line_number for p in outcome.resolved] == [2]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestResolve:

    def test_resolved_fields(self, resolver, make_raw):
        """3 × POWER-MODULE: 3 × 0.2h = 0.6h, 3 × 0.035 m³ = 0.105 m³."""
        outcome = resolver.resolve([make_raw("POWER-MODULE", quantity=3)])
        product = outcome.resolved[0]
        assert product.time_per_unit == pytest.approx(0.2)
        assert product.total_time == pytest.approx(0.6)
        assert product.total_waste == pytest.approx(0.105)
        assert product.is_heavy is False
        assert product.matched_key == "POWER-MODULE"
        assert product.description == "Line 1 - POWER-MODULE"

    def test_four_person_flx_pair(self, default_resolver, make_raw):
        """2 × 4P FLX: 2 × 1.45h = 2.90h, 2 × 0.035 m³ = 0.07 m³, heavy."""
        product = default_resolver.resolve([make_raw("4P FLX", quantity=2)]).resolved[0]
        assert product.total_time == pytest.approx(2.90)
        assert product.total_waste == pytest.approx(0.07)
        assert product.is_heavy is True
        assert product.source == "catalogue"

    def test_four_person_flx_pair_without_description(self, default_resolver):
        """A bare code line: 2 × 4P FLX, no description text at all."""
        product = RawProduct(
            line_number=1,
            product_code="4P FLX",
            raw_description="",
            clean_description="",
            quantity=2,
        )
        outcome = default_resolver.resolve([product])

        assert outcome.unresolved == []
        assert outcome.rejections == {}
        resolved = outcome.resolved[0]
        assert resolved.total_time == pytest.approx(2.90)
        assert resolved.total_waste == pytest.approx(0.07)
        assert resolved.is_heavy is True
        assert resolved.source == "catalogue"
        assert resolved.description == "Line 1 - 4P FLX"

    def test_standardized_name_prefers_clean_description(self, make_raw):
        product = make_raw("POWER-MODULE", line_number=7, clean="Power module")
        assert standardize_product_name(product) == "Line 7 - Power module"

    def test_preserves_input_order(self, resolver, make_raw):
        products = [
            make_raw("JUST-A-CHAIR", line_number=3),
            make_raw("XYZ-999", line_number=1),
            make_raw("FLX 4P", line_number=2),
        ]
        outcome = resolver.resolve(products)
        assert [p.line_number for p in outcome.resolved] == [3, 2]
        assert [p.line_number for p in outcome.unresolved] == [1]
        assert outcome.rejections == {}

    def test_edge_rule_applied(self, default_resolver, make_raw):
        """BASS-TAPERED-LARGE 2.05h + 0.25h + 0.08h (400mm over 2000) = 2.38h."""
        product = make_raw("BASS-TAPERED-LARGE", quantity=2, raw="Bass tapered table L2400")
        resolved = default_resolver.resolve([product]).resolved[0]
        assert resolved.time_per_unit == pytest.approx(2.38)
        assert resolved.total_time == pytest.approx(4.76)

    def test_manual_override_source(self, resolver, make_raw):
        manual = {"POWER-MODULE": CatalogueEntry(install_time_hours=0.5, is_heavy=True)}
        resolved = resolver.resolve([make_raw("POWER-MODULE")], manual_overrides=manual).resolved[0]
        assert resolved.source == "user-inputted"
        assert resolved.time_per_unit == 0.5
        assert resolved.is_heavy is True

    def test_replace_catalogue(self, resolver, make_raw):
        resolver.replace_catalogue({"NEW-DESK": CatalogueEntry(install_time_hours=1.1)})
        assert resolver.match("NEW-DESK").key == "NEW-DESK"
        assert resolver.match("FLX 4P") is None


# ---------------------------------------------------------------------------
# DEFAULT fallback policy
# ---------------------------------------------------------------------------

class TestDefaultPolicy:

    def test_unresolved_get_default(self, resolver, make_raw):
        outcome = resolver.resolve([make_raw("XYZ-999", quantity=3)])
        assert outcome.resolved == []

        defaulted = resolver.apply_default_policy(outcome)
        assert defaulted.unresolved == []
        product = defaulted.resolved[0]
        assert product.source == "default"
        assert product.matched_key == "DEFAULT"
        assert product.total_time == pytest.approx(0.99)

    def test_malformed_stay_unresolved(self, resolver, make_raw):
        outcome = resolver.resolve([make_raw("XYZ-999", quantity=1000)])
        defaulted = resolver.apply_default_policy(outcome)
        assert defaulted.resolved == []
        assert len(defaulted.unresolved) == 1
        assert defaulted.rejections == {1: "implausible quantity 1000"}

    def test_without_default_entry_unchanged(self, make_raw):
        resolver = ProductResolver({"FLX 4P": CatalogueEntry(install_time_hours=1.45)})
        outcome = resolver.resolve([make_raw("XYZ-999")])
        assert resolver.apply_default_policy(outcome) is outcome
