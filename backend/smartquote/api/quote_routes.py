"""
Quote API — parsing, product resolution and quote calculation.

  POST   /api/quotes/parse             document content → ParseResult
  POST   /api/quotes/resolve           raw products → resolved / unresolved
  POST   /api/quotes/calculate         resolved products + parameters → CalculationResults
  POST   /api/quotes/quote             raw products + parameters → resolve + calculate
  DELETE /api/quotes/parse-cache       drop all cached parse results
  GET    /api/quotes/parse-cache/stats cache size and age
"""
import logging
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from smartquote.api.deps import QuoteServices, get_services
from smartquote.models.quote_schema import (
    Attachment,
    CalculationResults,
    CatalogueEntry,
    ParseMode,
    ParseResult,
    QuoteParameters,
    RawProduct,
    ResolvedProduct,
)
from smartquote.services.errors import ParsingFailedError
from smartquote.services.product_resolver import ResolutionOutcome

logger = logging.getLogger("smartquote-api.routes")
router = APIRouter(prefix="/api/quotes", tags=["Quotes"])


# ── Request / response models ──────────────────────────────────────────────────

class ParseRequest(BaseModel):
    content: List[Union[str, Attachment]] = Field(..., min_length=1, description="Text segments and base64 attachments")
    mode: ParseMode = "hybrid"
    use_cache: bool = True


class ResolveRequest(BaseModel):
    products: List[RawProduct]
    manual_overrides: Dict[str, CatalogueEntry] = Field(default_factory=dict)
    learned: Dict[str, CatalogueEntry] = Field(default_factory=dict)
    apply_default: bool = Field(False, description="Resolve leftovers with the DEFAULT catalogue entry")


class ResolveResponse(BaseModel):
    resolved: List[ResolvedProduct]
    unresolved: List[RawProduct]
    rejections: Dict[int, str] = Field(default_factory=dict)


class CalculateRequest(BaseModel):
    products: List[ResolvedProduct]
    parameters: QuoteParameters = Field(default_factory=QuoteParameters)


class QuoteRequest(ResolveRequest):
    parameters: QuoteParameters = Field(default_factory=QuoteParameters)


class QuoteResponse(ResolveResponse):
    results: Optional[CalculationResults] = None


def _resolve(services: QuoteServices, req: ResolveRequest) -> ResolutionOutcome:
    outcome = services.resolver.resolve(req.products, req.manual_overrides, req.learned)
    if req.apply_default:
        outcome = services.resolver.apply_default_policy(outcome)
    return outcome


# ── Routes ─────────────────────────────────────────────────────────────────────

@router.post("/parse", response_model=ParseResult)
async def parse_document(req: ParseRequest, services: QuoteServices = Depends(get_services)):
    try:
        return await services.orchestrator.parse(req.content, mode=req.mode, use_cache=req.use_cache)
    except ParsingFailedError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_products(req: ResolveRequest, services: QuoteServices = Depends(get_services)):
    outcome = _resolve(services, req)
    return ResolveResponse(resolved=outcome.resolved, unresolved=outcome.unresolved, rejections=outcome.rejections)


@router.post("/calculate", response_model=CalculationResults)
async def calculate_quote(req: CalculateRequest, services: QuoteServices = Depends(get_services)):
    return services.calculator.calculate_all(req.products, req.parameters)


@router.post("/quote", response_model=QuoteResponse)
async def build_quote(req: QuoteRequest, services: QuoteServices = Depends(get_services)):
    """
    Resolve then calculate.  ``results`` covers the resolved products only;
    unresolved lines are returned for manual time entry.
    """
    outcome = _resolve(services, req)
    results = services.calculator.calculate_all(outcome.resolved, req.parameters) if outcome.resolved else None
    return QuoteResponse(
        resolved=outcome.resolved,
        unresolved=outcome.unresolved,
        rejections=outcome.rejections,
        results=results,
    )


@router.delete("/parse-cache")
async def clear_parse_cache(services: QuoteServices = Depends(get_services)):
    cleared = services.orchestrator.clear_cache()
    logger.info("parse cache cleared", extra={"cleared_entries": cleared})
    return {"cleared": cleared}


@router.get("/parse-cache/stats")
async def parse_cache_stats(services: QuoteServices = Depends(get_services)):
    return services.orchestrator.cache.stats()
