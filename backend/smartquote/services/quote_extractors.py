"""
Quote extractors — LLM-backed conversion of quote documents into RawProducts.

Two strategies share the same request building and post-processing:

  FastQuoteExtractor      single JSON call, heuristic per-product confidence,
                          fixed overall confidence; retries only on zero products
  AccurateQuoteExtractor  model-reported confidences adjusted by heuristics,
                          low-confidence lines moved to review, adaptive retries

Post-processing (both):
  - ES- / ESSENTIALS_ code prefixes stripped
  - invalid lines dropped (quantity 1..999, code length 1..49, raw text present)
  - non-product lines dropped, accessories moved to excluded for review
  - power / data items consolidated into one POWER-MODULE line
  - clean descriptions keep their sizing (fallback from code / raw text, DIA → D)

PDF attachments are flattened to text with pdfplumber; image attachments are
sent through the vision call.
"""
import asyncio
import base64
import binascii
import io
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pdfplumber

from smartquote.config import (
    ACCURATE_DROP_BELOW,
    ACCURATE_EXTRACTOR_MODEL,
    ACCURATE_PASS_CONFIDENCE,
    ACCURATE_REVIEW_BELOW,
    EXTRACTOR_MAX_ATTEMPTS,
    FAST_EXTRACTOR_CONFIDENCE,
    FAST_EXTRACTOR_MODEL,
    MAX_PRODUCT_CODE_LENGTH,
    MAX_SANE_QUANTITY,
)
from smartquote.models.quote_schema import Attachment, QuoteDetails, RawProduct
from smartquote.services.errors import ExtractionError
from smartquote.services.llm_client import LLMClient

logger = logging.getLogger("smartquote-api.extractors")

ContentPart = Union[str, Attachment]

POWER_MODULE_CODE = "POWER-MODULE"
POWER_MODULE_DESCRIPTION = "Consolidated Power/Data Modules"

_PREFIX_RE = re.compile(r"^(?:ESSENTIALS|ES)[-_]", re.IGNORECASE)
_WELL_FORMED_CODE_RE = re.compile(r"^[A-Z0-9\-_]{3,20}$", re.IGNORECASE)
_SIZING_TOKEN_RE = re.compile(r"\b[LWH]?\d{3,4}|\bD\d{3,4}")
_SIZING_RE = re.compile(r"\b[LWH]?\d{3,4}(?:\s*[xX×]\s*[LWH]?\d{3,4})*\b|\bD\d{3,4}\b")
_CODE_SIZE_RE = re.compile(r"\b[LWH]?\d{3,4}(?:[xX×][LWH]?\d{3,4})*\b")
_RAW_SIZE_RE = re.compile(r"\b[LWH]?\d{3,4}(?:\s*[xX×]\s*[LWH]?\d{3,4})*\b")
_DIAMETER_RE = re.compile(r"\b(?:DIAMETER|DIA)\s*(\d+)\b", re.IGNORECASE)
_EDGE_DASHES_RE = re.compile(r"^[-–—\s]+|[-–—\s]+$")
_WS_RE = re.compile(r"\s+")

_NON_PRODUCT_MARKERS = ("delivery & installation", "section", "heading", "total")
_FAST_POWER_KEYWORDS = ("power", "pixel", "pds", "data", "usb", "module")
_ACCURATE_POWER_KEYWORDS = _FAST_POWER_KEYWORDS + ("electrical",)

_DETAIL_KEYS = {
    "client": "client",
    "project": "project",
    "quote_ref": "quote_ref",
    "quoteRef": "quote_ref",
    "delivery_address": "delivery_address",
    "deliveryAddress": "delivery_address",
    "collection_address": "collection_address",
    "collectionAddress": "collection_address",
}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_RESPONSE_SCHEMA = {
    "details": {
        "client": "client / company name or null",
        "project": "project or job reference or null",
        "quote_ref": "quote reference number or null",
        "delivery_address": "SITE / INSTALLATION address incl. UK postcode, or null",
        "collection_address": "COLLECTION / WAREHOUSE address if different from site, or null",
    },
    "products": [
        {
            "line_number": "int, original line number (or line index)",
            "product_code": "short identifier, e.g. FLX-4P-2816-A, ES-/ESSENTIALS_ prefix removed",
            "raw_description": "FULL, UNMODIFIED text of the product line",
            "clean_description": "product type + dimensions only, e.g. 'FLX 4P L2800 x W1600'",
            "quantity": "int",
        }
    ],
}

FAST_SYSTEM_PROMPT = (
    "Extract furniture quote data into JSON. Parse product lines and quote metadata.\n\n"
    "Quote details: client, project, quote_ref, delivery_address (where the work is done: "
    "'Site:', 'Install at:', 'Delivery to:'), collection_address ('Collect from:', 'Warehouse:').\n\n"
    "Products:\n"
    "1. Extract items with product codes (in brackets/parentheses or at line start)\n"
    "2. Remove 'ES-' or 'ESSENTIALS_' prefix from codes\n"
    "3. Skip: 'tray', 'access door', 'delivery & installation', 'insert' (unless with 'pedestal')\n"
    "4. Power items: any line with power / pixel / pds / data / usb / module\n\n"
    "Descriptions: raw_description is the FULL ORIGINAL TEXT unchanged. clean_description is "
    "product type + dimensions only; KEEP all sizing (L2000, W800, H750, D1200), remove colours/finishes.\n\n"
    f"Return JSON following this schema exactly:\n{json.dumps(_RESPONSE_SCHEMA, indent=2)}\n"
    "Return an empty products array if no products are found."
)

ACCURATE_SYSTEM_PROMPT = (
    "Extract furniture quote data into JSON. Be thorough and FLEXIBLE with product recognition.\n\n"
    "Quote details: client, project, quote_ref, delivery_address (site / installation address), "
    "collection_address (warehouse address if different from site).\n\n"
    "Products:\n"
    "1. Codes appear in many formats: in brackets 'Desk (FLX-4P)', after colons 'Product: FLX-4P', "
    "at line start, with underscores 'FLX_4P_L2800' or reordered '4P FLX'.\n"
    "2. Known ranges: FLX (Single, 4P, 6P, 8P), Bass, Just A Chair, Hi-Lo, Workaround / Woody, "
    "Credenza / Enza, Cage, pedestals, power modules.\n"
    "3. If no clear code exists, build one from the description (e.g. 'DESK-L1400').\n"
    "4. Skip only obvious non-products: headers, totals, delivery notes, section dividers.\n\n"
    "For every product add 'confidence' (0-1): how sure you are that code, quantity and "
    "description were read correctly. Add a top-level 'overall_confidence' (0-1).\n\n"
    f"Base schema:\n{json.dumps(_RESPONSE_SCHEMA, indent=2)}"
)

_BASE_USER_PROMPT = "Extract products and quote details from the documents below:"

_RETRY_HINTS = {
    "no_products": (
        "The previous pass found no products. Be VERY flexible: include anything that looks "
        "like furniture or equipment, partial codes, and any line with a quantity."
    ),
    "low_confidence": (
        "The previous pass was unsure. Re-read every line carefully and copy product codes "
        "and quantities exactly as written."
    ),
    "missing_quantities": (
        "The previous pass missed quantities. Every product must have an integer quantity; "
        "use 1 only where the document clearly lists a single item."
    ),
}


# ---------------------------------------------------------------------------
# Post-processing helpers
# ---------------------------------------------------------------------------

def strip_code_prefix(code: str) -> str:
    return _PREFIX_RE.sub("", (code or "").strip())


def clean_json_response(text: str) -> str:
    """Strip markdown fences and surrounding prose from an LLM JSON reply."""
    text = (text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    if text and text[0] not in "[{":
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]
    return text


def parse_llm_json(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(clean_json_response(text))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Extractor returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError("Extractor returned JSON that is not an object")
    return data


def parse_details(data: Dict[str, Any]) -> QuoteDetails:
    raw = data.get("details")
    if not isinstance(raw, dict):
        return QuoteDetails()
    values = {}
    for key, value in raw.items():
        target = _DETAIL_KEYS.get(key)
        if target and isinstance(value, str) and value.strip():
            values[target] = value.strip()
    return QuoteDetails(**values)


def coerce_product(item: Any, confidence: Optional[float] = None) -> Optional[RawProduct]:
    """Validate one extracted line; None if it is unusable."""
    if not isinstance(item, dict):
        return None
    line_number = item.get("line_number")
    code = item.get("product_code")
    raw_description = item.get("raw_description")
    clean_description = item.get("clean_description") or ""
    quantity = item.get("quantity")

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return None
    if isinstance(line_number, bool) or not isinstance(line_number, int):
        return None
    if not isinstance(code, str) or not isinstance(raw_description, str):
        return None

    code = strip_code_prefix(code)
    if not (0 < quantity < MAX_SANE_QUANTITY):
        return None
    if not (0 < len(code) < MAX_PRODUCT_CODE_LENGTH):
        return None
    if not raw_description.strip():
        return None

    return RawProduct(
        line_number=line_number,
        product_code=code,
        raw_description=raw_description,
        clean_description=clean_description if isinstance(clean_description, str) else "",
        quantity=quantity,
        confidence=confidence,
    )


def fast_confidence(product: RawProduct) -> float:
    """0.5 base, +0.2 well-formed code, +0.15 quantity under 100, +0.15 sizing."""
    confidence = 0.5
    if _WELL_FORMED_CODE_RE.match(product.product_code):
        confidence += 0.2
    if 0 < product.quantity < 100:
        confidence += 0.15
    if _SIZING_TOKEN_RE.search(product.clean_description):
        confidence += 0.15
    return round(min(confidence, 1.0), 4)


def enhanced_confidence(product: RawProduct, model_confidence: Optional[float]) -> float:
    """Adjust the model's own confidence with the same signals the fast pass uses."""
    confidence = model_confidence if model_confidence is not None else ACCURATE_PASS_CONFIDENCE
    if _WELL_FORMED_CODE_RE.match(product.product_code):
        confidence += 0.1
    if 0 < product.quantity < 100:
        confidence += 0.05
    if _SIZING_TOKEN_RE.search(product.clean_description):
        confidence += 0.1
    if len(product.product_code) < 3 or len(product.product_code) > 30:
        confidence -= 0.15
    return round(max(0.0, min(1.0, confidence)), 4)


def format_clean_description(product: RawProduct) -> str:
    clean = product.clean_description or ""
    if not _SIZING_RE.search(clean):
        size = _CODE_SIZE_RE.search(product.product_code) or _RAW_SIZE_RE.search(product.raw_description)
        if size:
            clean = f"{clean} {size.group(0)}"
    clean = _DIAMETER_RE.sub(r"D\1", clean)
    clean = _WS_RE.sub(" ", clean.strip())
    return _EDGE_DASHES_RE.sub("", clean)


def apply_naming_rules(
    products: List[RawProduct],
    power_keywords: Sequence[str] = _FAST_POWER_KEYWORDS,
) -> Tuple[List[RawProduct], List[RawProduct]]:
    """
    Split products into (included, excluded) using the standard naming rules.

    Non-product lines are dropped entirely, accessories go to excluded for
    review, and power / data items are summed into one POWER-MODULE line that
    keeps the first power item's line number.
    """
    included: List[RawProduct] = []
    excluded: List[RawProduct] = []

    for product in products:
        lower = product.raw_description.lower()
        if any(marker in lower for marker in _NON_PRODUCT_MARKERS):
            continue
        is_accessory = (
            "tray" in lower
            or "access door" in lower
            or ("insert" in lower and "pedestal" not in lower)
        )
        (excluded if is_accessory else included).append(product)

    regular: List[RawProduct] = []
    power: List[RawProduct] = []
    for product in included:
        lower_code = product.product_code.lower()
        lower_desc = product.raw_description.lower()
        if any(kw in lower_code or kw in lower_desc for kw in power_keywords):
            power.append(product)
        else:
            regular.append(product)

    def _formatted(p: RawProduct) -> RawProduct:
        return p.model_copy(update={"clean_description": format_clean_description(p)})

    result = [_formatted(p) for p in regular]
    if power:
        result.append(RawProduct(
            line_number=power[0].line_number,
            product_code=POWER_MODULE_CODE,
            raw_description=POWER_MODULE_DESCRIPTION,
            clean_description=POWER_MODULE_DESCRIPTION,
            quantity=sum(p.quantity for p in power),
        ))
    return result, [_formatted(p) for p in excluded]


def attachment_text(attachment: Attachment) -> str:
    """Flatten a PDF attachment to text, one block per page."""
    try:
        pdf_bytes = base64.b64decode(attachment.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExtractionError(f"Attachment is not valid base64: {e}") from e

    pages: List[str] = []
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                text = page.extract_text() or ""
                if text.strip():
                    pages.append(text)
    except Exception as e:
        raise ExtractionError(f"Could not read PDF attachment: {e}") from e
    return "\n\n".join(pages)


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

@dataclass
class ExtractionOutcome:
    products: List[RawProduct] = field(default_factory=list)
    details: QuoteDetails = field(default_factory=QuoteDetails)
    excluded_products: List[RawProduct] = field(default_factory=list)
    confidence_score: float = 0.0          # 0–100
    attempts: int = 1
    warnings: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)


class QuoteExtractor(ABC):
    """Shared request building and the LLM call for both strategies."""

    name: str = "extractor"
    model: str = FAST_EXTRACTOR_MODEL
    system_prompt: str = FAST_SYSTEM_PROMPT

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        retry_delay: float = 1.0,
        max_attempts: int = EXTRACTOR_MAX_ATTEMPTS,
    ) -> None:
        self.client = client or LLMClient()
        self.retry_delay = retry_delay
        self.max_attempts = max(1, max_attempts)

    def _user_prompt(self, attempt: int, issues: Sequence[str] = ()) -> str:
        return _BASE_USER_PROMPT

    def _generation_params(self, attempt: int) -> Dict[str, float]:
        return {"temperature": 0.3, "top_p": 0.9}

    async def _split_content(self, content: Sequence[ContentPart]) -> Tuple[str, List[Tuple[str, str]]]:
        texts: List[str] = []
        images: List[Tuple[str, str]] = []
        loop = asyncio.get_running_loop()
        for part in content:
            if isinstance(part, Attachment):
                if part.mime_type == "application/pdf":
                    # pdfplumber blocks, so it runs off the event loop
                    texts.append(await loop.run_in_executor(None, attachment_text, part))
                elif part.mime_type.startswith("image/"):
                    images.append((part.mime_type, part.data))
                else:
                    logger.warning("unsupported attachment skipped", extra={"mime_type": part.mime_type})
            elif str(part).strip():
                texts.append(str(part))
        return "\n\n---\n\n".join(t for t in texts if t.strip()), images

    async def _call(self, content: Sequence[ContentPart], attempt: int, issues: Sequence[str] = ()) -> Dict[str, Any]:
        text, images = await self._split_content(content)
        if not text.strip() and not images:
            raise ExtractionError("No content was provided to parse.")

        prompt = self._user_prompt(attempt, issues)
        params = self._generation_params(attempt)

        if images:
            vision_prompt = f"{self.system_prompt}\n\n{prompt}"
            if text:
                vision_prompt += f"\n\n{text}"
            raw = await self.client.vision(
                images, vision_prompt, model=self.model, temperature=params["temperature"], json_mode=True,
            )
        else:
            raw = await self.client.chat(
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": f"{prompt}\n\n{text}"},
                ],
                model=self.model,
                json_mode=True,
                **params,
            )
        return parse_llm_json(raw)

    @abstractmethod
    async def extract(self, content: Sequence[ContentPart], attempt: int = 1) -> ExtractionOutcome:
        """Run one extraction pass over ``content``."""

    def _is_satisfied(self, outcome: ExtractionOutcome) -> bool:
        return bool(outcome.products)

    async def parse(self, content: Sequence[ContentPart]) -> ExtractionOutcome:
        """Run up to ``max_attempts`` extractions, retrying on errors and empty results."""
        last_error: Optional[Exception] = None
        last_outcome: Optional[ExtractionOutcome] = None
        issues: List[str] = []

        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = await self._extract_with_issues(content, attempt, issues)
            except ExtractionError as e:
                last_error = e
                logger.warning(f"{self.name} attempt {attempt} failed: {e}")
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            outcome.attempts = attempt
            last_outcome = outcome
            if self._is_satisfied(outcome):
                return outcome
            issues = outcome.issues
            logger.info(
                f"{self.name} attempt {attempt} unsatisfied, retrying",
                extra={"issues": ",".join(issues), "product_count": len(outcome.products)},
            )

        if last_outcome is not None:
            return self._finalise_unsatisfied(last_outcome)
        raise ExtractionError(str(last_error) if last_error else f"{self.name} failed to parse quote content")

    async def _extract_with_issues(
        self, content: Sequence[ContentPart], attempt: int, issues: Sequence[str]
    ) -> ExtractionOutcome:
        return await self.extract(content, attempt)

    def _finalise_unsatisfied(self, outcome: ExtractionOutcome) -> ExtractionOutcome:
        return outcome


class FastQuoteExtractor(QuoteExtractor):
    """Single-pass extractor. Overall confidence is a fixed assumption."""

    name = "fast"
    model = FAST_EXTRACTOR_MODEL
    system_prompt = FAST_SYSTEM_PROMPT

    def _user_prompt(self, attempt: int, issues: Sequence[str] = ()) -> str:
        if attempt > 1:
            return (
                f"{_BASE_USER_PROMPT}\n\nBe more flexible with product code formats. Look for patterns "
                "like XX-XXX, XXXX_XX, etc. Extract all visible product identifiers."
            )
        return _BASE_USER_PROMPT

    async def extract(self, content: Sequence[ContentPart], attempt: int = 1) -> ExtractionOutcome:
        data = await self._call(content, attempt)
        items = data.get("products") if isinstance(data.get("products"), list) else []

        valid = [p for p in (coerce_product(item) for item in items) if p is not None]
        scored = [p.model_copy(update={"confidence": fast_confidence(p)}) for p in valid]
        included, excluded = apply_naming_rules(scored, _FAST_POWER_KEYWORDS)

        return ExtractionOutcome(
            products=included,
            details=parse_details(data),
            excluded_products=excluded,
            confidence_score=FAST_EXTRACTOR_CONFIDENCE,
            attempts=attempt,
            issues=[] if included else ["no_products"],
        )


class AccurateQuoteExtractor(QuoteExtractor):
    """
    Multi-pass extractor with model-reported confidence.

    Each product's confidence is the model's value adjusted by heuristics.
    Lines under 0.3 are dropped, lines under 0.7 go to excluded for review.
    Retries get hints built from the previous pass's issues and slightly
    warmer sampling.
    """

    name = "accurate"
    model = ACCURATE_EXTRACTOR_MODEL
    system_prompt = ACCURATE_SYSTEM_PROMPT

    def _user_prompt(self, attempt: int, issues: Sequence[str] = ()) -> str:
        if attempt <= 1 or not issues:
            return _BASE_USER_PROMPT
        hints = "\n".join(f"- {_RETRY_HINTS[i]}" for i in issues if i in _RETRY_HINTS)
        return f"{_BASE_USER_PROMPT}\n\nATTEMPT {attempt}:\n{hints}"

    def _generation_params(self, attempt: int) -> Dict[str, float]:
        step = max(0, attempt - 1)
        return {"temperature": round(0.3 + 0.05 * step, 2), "top_p": round(min(0.9 + 0.02 * step, 1.0), 2)}

    async def extract(
        self, content: Sequence[ContentPart], attempt: int = 1, issues: Sequence[str] = ()
    ) -> ExtractionOutcome:
        data = await self._call(content, attempt, issues)
        items = data.get("products") if isinstance(data.get("products"), list) else []

        missing_quantity = 0
        kept: List[RawProduct] = []
        for item in items:
            if isinstance(item, dict) and not isinstance(item.get("quantity"), int):
                missing_quantity += 1
            model_conf = item.get("confidence") if isinstance(item, dict) else None
            if isinstance(model_conf, bool) or not isinstance(model_conf, (int, float)):
                model_conf = None
            product = coerce_product(item)
            if product is None:
                continue
            confidence = enhanced_confidence(product, model_conf)
            if confidence < ACCURATE_DROP_BELOW:
                continue
            kept.append(product.model_copy(update={"confidence": confidence}))

        included, excluded = apply_naming_rules(kept, _ACCURATE_POWER_KEYWORDS)
        review = [p for p in included if p.confidence is not None and p.confidence < ACCURATE_REVIEW_BELOW]
        included = [p for p in included if p.confidence is None or p.confidence >= ACCURATE_REVIEW_BELOW]
        excluded = excluded + review

        overall = data.get("overall_confidence")
        if isinstance(overall, bool) or not isinstance(overall, (int, float)):
            scores = [p.confidence for p in included + review if p.confidence is not None]
            overall = sum(scores) / len(scores) if scores else 0.0
        confidence_score = round(max(0.0, min(1.0, float(overall))) * 100, 2)

        found_issues: List[str] = []
        if not included:
            found_issues.append("no_products")
        if confidence_score < ACCURATE_PASS_CONFIDENCE * 100:
            found_issues.append("low_confidence")
        if missing_quantity:
            found_issues.append("missing_quantities")

        return ExtractionOutcome(
            products=included,
            details=parse_details(data),
            excluded_products=excluded,
            confidence_score=confidence_score,
            attempts=attempt,
            issues=found_issues,
        )

    async def _extract_with_issues(
        self, content: Sequence[ContentPart], attempt: int, issues: Sequence[str]
    ) -> ExtractionOutcome:
        return await self.extract(content, attempt, issues)

    def _is_satisfied(self, outcome: ExtractionOutcome) -> bool:
        return bool(outcome.products) and "low_confidence" not in outcome.issues

    def _finalise_unsatisfied(self, outcome: ExtractionOutcome) -> ExtractionOutcome:
        outcome.warnings.append(
            f"Accurate extraction not satisfied after {outcome.attempts} attempts "
            f"({', '.join(outcome.issues) or 'unknown issue'}); returning last result"
        )
        return outcome
