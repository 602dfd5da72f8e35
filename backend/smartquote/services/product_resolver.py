"""
Product Resolver — turns extracted line items into catalogue-backed products.

Sources are consulted in strict precedence:
    manual overrides (per quote)  → source "user-inputted"
    session-learned entries       → source "learned"   (normalized direct lookup)
    product catalogue             → source "catalogue"

Within a source, a code is matched by the first strategy that hits:
    1. exact normalized key
    2. parametric FLX codes: specific size variant, then generic variants
    3. substring containment either way, longest matched substring wins
    4. token overlap (either token containing the other), accepted only
       when overlap ≥ min(2, input tokens)

Anything that does not match is returned unresolved.  The resolver never
invents a catalogue entry; falling back to the DEFAULT entry is an explicit
caller policy (``apply_default_policy``).
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional

from smartquote.config import MAX_PRODUCT_CODE_LENGTH, MAX_SANE_QUANTITY
from smartquote.models.quote_schema import (
    CatalogueEntry,
    ProductSource,
    RawProduct,
    ResolvedProduct,
)
from smartquote.services.catalogue_index import (
    CatalogueIndex,
    IndexSnapshot,
    normalize_code,
    tokenize_code,
)
from smartquote.services.edge_rules import EdgeRuleEngine

logger = logging.getLogger("smartquote-api.resolver")

DEFAULT_ENTRY_KEY = "DEFAULT"

_PERSON_COUNT_RE = re.compile(r"(?<![A-Z0-9])(\d+)P(?![A-Z])")
_SIZE_RE = re.compile(r"L?(\d{4})")


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def _flx_candidates(code: str) -> List[str]:
    """Candidate keys for FLX person-count codes, most specific first."""
    upper = code.upper()
    if "FLX" not in normalize_code(upper):
        return []

    person = _PERSON_COUNT_RE.search(upper) or re.search(r"FLX(\d+)P", normalize_code(upper))
    if not person:
        return []
    count = person.group(1)

    candidates: List[str] = []
    if count != "1":
        for size_match in _SIZE_RE.finditer(upper):
            size = int(size_match.group(1))
            if 1000 <= size <= 5000:
                candidates.append(f"FLX-COWORK-{count}P-L{size}")
                break

    candidates.extend([
        f"FLX {count}P",
        f"{count}P FLX",
        f"FLX-{count}P",
        f"FLX-COWORK-{count}P",
    ])
    return candidates


def _token_overlaps(token: str, key_tokens: FrozenSet[str]) -> bool:
    return any(token in key_token or key_token in token for key_token in key_tokens)


def find_best_match_key(code: str, snapshot: IndexSnapshot) -> Optional[str]:
    """Return the canonical key in ``snapshot`` that best matches ``code``."""
    lookup = normalize_code(code)
    if not lookup or not len(snapshot):
        return None

    # 1. Exact
    exact = snapshot.normalized.get(lookup)
    if exact is not None:
        return exact

    # 2. Parametric
    for candidate in _flx_candidates(code):
        hit = snapshot.lookup(candidate)
        if hit is not None:
            return hit

    # 3. Substring, longest matched substring; dict order keeps ties stable
    best_key: Optional[str] = None
    best_len = 0
    for norm_key, canonical in snapshot.normalized.items():
        if norm_key in lookup or lookup in norm_key:
            matched = min(len(norm_key), len(lookup))
            if matched > best_len:
                best_len = matched
                best_key = canonical
    if best_key is not None:
        return best_key

    # 4. Token overlap with a floor of two tokens
    input_tokens = set(tokenize_code(code))
    if not input_tokens:
        return None
    best_overlap = 0
    for canonical, key_tokens in zip(snapshot.keys, snapshot.key_tokens):
        overlap = sum(1 for token in input_tokens if _token_overlaps(token, key_tokens))
        if overlap > best_overlap:
            best_overlap = overlap
            best_key = canonical
    if best_key is not None and best_overlap >= min(2, len(input_tokens)):
        return best_key
    return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolutionMatch:
    entry: CatalogueEntry
    source: ProductSource
    key: Optional[str]


@dataclass
class ResolutionOutcome:
    resolved: List[ResolvedProduct] = field(default_factory=list)
    unresolved: List[RawProduct] = field(default_factory=list)
    # line_number → reason, for unresolved products rejected as malformed
    rejections: Dict[int, str] = field(default_factory=dict)


def validate_raw_product(product: RawProduct) -> Optional[str]:
    """Return a rejection reason for a malformed product, or None if it is usable."""
    if not product.product_code or not product.product_code.strip():
        return "missing product code"
    if len(product.product_code) >= MAX_PRODUCT_CODE_LENGTH:
        return "product code too long"
    if product.quantity <= 0:
        return f"non-positive quantity {product.quantity}"
    if product.quantity >= MAX_SANE_QUANTITY:
        return f"implausible quantity {product.quantity}"
    return None


def standardize_product_name(product: RawProduct) -> str:
    label = product.clean_description or product.product_code
    return f"Line {product.line_number} - {label}"


class ProductResolver:
    """
    Resolves RawProducts against manual, learned and catalogue sources.

    The catalogue is injected once; manual overrides and learned entries are
    per-call because they belong to a single quote / session.
    """

    def __init__(
        self,
        catalogue: Mapping[str, CatalogueEntry],
        rule_engine: Optional[EdgeRuleEngine] = None,
    ) -> None:
        self.catalogue: Dict[str, CatalogueEntry] = dict(catalogue)
        self.rule_engine = rule_engine or EdgeRuleEngine()
        self._catalogue_index = CatalogueIndex(self.catalogue.keys())
        self._manual_index = CatalogueIndex()

    def replace_catalogue(self, catalogue: Mapping[str, CatalogueEntry]) -> None:
        """Swap in a new catalogue snapshot wholesale."""
        self.catalogue = dict(catalogue)
        self._catalogue_index.snapshot_for(self.catalogue.keys())

    # -- matching ----------------------------------------------------------

    def match(
        self,
        product_code: str,
        manual_overrides: Optional[Mapping[str, CatalogueEntry]] = None,
        learned: Optional[Mapping[str, CatalogueEntry]] = None,
    ) -> Optional[ResolutionMatch]:
        if manual_overrides:
            snapshot = self._manual_index.snapshot_for(manual_overrides.keys())
            key = find_best_match_key(product_code, snapshot)
            if key is not None:
                return ResolutionMatch(manual_overrides[key], "user-inputted", key)

        if learned:
            normalized = normalize_code(product_code)
            for learned_key, entry in learned.items():
                if normalize_code(learned_key) == normalized:
                    return ResolutionMatch(entry, "learned", learned_key)

        catalogue = self.catalogue
        snapshot = self._catalogue_index.snapshot_for(catalogue.keys())
        key = find_best_match_key(product_code, snapshot)
        if key is not None:
            return ResolutionMatch(catalogue[key], "catalogue", key)
        return None

    # -- resolution ----------------------------------------------------------

    def build_resolved(self, product: RawProduct, match: ResolutionMatch) -> ResolvedProduct:
        description = product.raw_description or product.clean_description
        time_per_unit = self.rule_engine.apply(
            product.product_code, description, match.entry.install_time_hours
        )
        waste_per_unit = match.entry.waste_volume_m3
        return ResolvedProduct(
            **product.model_dump(),
            description=standardize_product_name(product),
            time_per_unit=time_per_unit,
            total_time=product.quantity * time_per_unit,
            waste_per_unit=waste_per_unit,
            total_waste=product.quantity * waste_per_unit,
            is_heavy=match.entry.is_heavy,
            source=match.source,
            matched_key=match.key,
        )

    def resolve(
        self,
        products: List[RawProduct],
        manual_overrides: Optional[Mapping[str, CatalogueEntry]] = None,
        learned: Optional[Mapping[str, CatalogueEntry]] = None,
    ) -> ResolutionOutcome:
        outcome = ResolutionOutcome()
        for product in products:
            reason = validate_raw_product(product)
            if reason:
                logger.info(
                    "raw product rejected",
                    extra={"line_number": product.line_number, "product_code": product.product_code, "reason": reason},
                )
                outcome.unresolved.append(product)
                outcome.rejections[product.line_number] = reason
                continue

            match = self.match(product.product_code, manual_overrides, learned)
            if match is None:
                outcome.unresolved.append(product)
                continue
            outcome.resolved.append(self.build_resolved(product, match))

        logger.info(
            "products resolved",
            extra={"resolved_count": len(outcome.resolved), "unresolved_count": len(outcome.unresolved)},
        )
        return outcome

    def apply_default_policy(self, outcome: ResolutionOutcome) -> ResolutionOutcome:
        """
        Resolve leftover well-formed products with the catalogue DEFAULT entry.

        Malformed products stay unresolved.  Without a DEFAULT entry the outcome
        is returned unchanged.
        """
        default_entry = self.catalogue.get(DEFAULT_ENTRY_KEY)
        if default_entry is None:
            return outcome

        result = ResolutionOutcome(resolved=list(outcome.resolved), rejections=dict(outcome.rejections))
        match = ResolutionMatch(default_entry, "default", DEFAULT_ENTRY_KEY)
        for product in outcome.unresolved:
            if validate_raw_product(product):
                result.unresolved.append(product)
            else:
                result.resolved.append(self.build_resolved(product, match))
        return result
