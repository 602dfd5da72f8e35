"""
Hybrid Parsing Orchestrator.

Coordinates the fast and accurate extraction strategies:

  fast      fast strategy only
  accurate  accurate strategy only (fast strategy as a last resort)
  hybrid    accurate strategy raced against a timer
              ├─ finished, confidence ≥ minimum  → accurate result
              ├─ finished, confidence < minimum  → fast pass for corroboration,
              │                                    accurate products kept + warning
              └─ timed out / failed             → fast result + failure reason

Results are cached by content hash; a cache hit skips both strategies.  An
abandoned accurate call keeps running in the background but its result is
discarded and never cached.
"""
import asyncio
import logging
import time
from typing import Awaitable, List, Optional, Protocol, Sequence, Set

from smartquote.config import PARSE_MIN_CONFIDENCE, PARSE_TIMEOUT_SECONDS
from smartquote.models.quote_schema import ParseMode, ParseResult
from smartquote.services.errors import ParsingFailedError
from smartquote.services.parse_cache import ContentPart, ParseCache, content_hash
from smartquote.services.perf_monitor import ParseMetricsTracker, tracker as default_tracker
from smartquote.services.quote_extractors import ExtractionOutcome

logger = logging.getLogger("smartquote-api.hybrid_parser")


class ExtractionStrategy(Protocol):
    name: str

    def parse(self, content: Sequence[ContentPart]) -> Awaitable[ExtractionOutcome]:
        ...


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class HybridParsingOrchestrator:

    def __init__(
        self,
        fast: ExtractionStrategy,
        accurate: ExtractionStrategy,
        cache: Optional[ParseCache] = None,
        timeout_seconds: float = PARSE_TIMEOUT_SECONDS,
        min_confidence: float = PARSE_MIN_CONFIDENCE,
        metrics: Optional[ParseMetricsTracker] = None,
    ) -> None:
        self.fast = fast
        self.accurate = accurate
        self.cache = cache if cache is not None else ParseCache()
        self.timeout_seconds = timeout_seconds
        self.min_confidence = min_confidence
        self.metrics = metrics or default_tracker
        # Abandoned accurate calls; held so they are not garbage-collected mid-flight
        self._abandoned: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def parse(
        self,
        content: Sequence[ContentPart],
        mode: ParseMode = "hybrid",
        use_cache: bool = True,
    ) -> ParseResult:
        key = content_hash(content)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                result, age_ms = cached
                self.metrics.record_cache_hit()
                logger.info("parse cache hit", extra={"parse_method": result.method, "cache_age_ms": round(age_ms, 2)})
                return result.model_copy(update={"cache_age_ms": age_ms})

        start = time.perf_counter()
        if mode == "fast":
            result = await self._run_fast(content, start)
        elif mode == "accurate":
            result = await self._run_accurate(content, start)
        else:
            result = await self._run_hybrid(content, start)

        self.metrics.record_parse(
            result.method,
            result.duration_ms,
            fallback=bool(result.warnings) and result.method != "accurate",
        )
        if use_cache:
            self.cache.put(key, result)
        logger.info(
            "document parsed",
            extra={
                "parse_method": result.method,
                "duration_ms": result.duration_ms,
                "product_count": len(result.products),
                "confidence_score": result.confidence_score,
            },
        )
        return result

    def clear_cache(self) -> int:
        return self.cache.clear()

    @property
    def pending_abandoned(self) -> int:
        return len(self._abandoned)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _to_result(
        self,
        outcome: ExtractionOutcome,
        method: str,
        start: float,
        warnings: Optional[List[str]] = None,
    ) -> ParseResult:
        return ParseResult(
            products=list(outcome.products),
            excluded_products=list(outcome.excluded_products),
            details=outcome.details,
            confidence_score=max(0.0, min(100.0, outcome.confidence_score)),
            method=method,
            warnings=list(outcome.warnings) + list(warnings or []),
            duration_ms=_elapsed_ms(start),
            attempts=outcome.attempts,
        )

    async def _fast_or_fail(self, content: Sequence[ContentPart], reason: Optional[str]) -> ExtractionOutcome:
        try:
            return await self.fast.parse(content)
        except Exception as e:
            self.metrics.record_error(self.fast.name)
            message = f"Fast strategy failed: {e}"
            if reason:
                message = f"{reason}; {message}"
            logger.error(message)
            raise ParsingFailedError(message) from e

    async def _run_fast(self, content: Sequence[ContentPart], start: float) -> ParseResult:
        outcome = await self._fast_or_fail(content, None)
        return self._to_result(outcome, "fast", start)

    async def _run_accurate(self, content: Sequence[ContentPart], start: float) -> ParseResult:
        try:
            outcome = await self.accurate.parse(content)
        except Exception as e:
            self.metrics.record_error(self.accurate.name)
            reason = f"Accurate strategy failed: {e}"
            logger.warning(reason)
            fast_outcome = await self._fast_or_fail(content, reason)
            return self._to_result(fast_outcome, "fast", start, [f"{reason}. Used fast strategy instead."])
        return self._to_result(outcome, "accurate", start)

    async def _run_hybrid(self, content: Sequence[ContentPart], start: float) -> ParseResult:
        accurate_task = asyncio.ensure_future(self.accurate.parse(content))
        timer = asyncio.ensure_future(asyncio.sleep(self.timeout_seconds))
        try:
            await asyncio.wait({accurate_task, timer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            timer.cancel()

        reason: Optional[str] = None
        if not accurate_task.done():
            reason = f"Accurate strategy timed out after {self.timeout_seconds:g}s"
            self._abandon(accurate_task)
        elif accurate_task.exception() is not None:
            reason = f"Accurate strategy failed: {accurate_task.exception()}"

        if reason is not None:
            self.metrics.record_error(self.accurate.name)
            logger.warning(reason)
            fast_outcome = await self._fast_or_fail(content, reason)
            return self._to_result(fast_outcome, "fast", start, [f"{reason}. Used fast strategy instead."])

        outcome: ExtractionOutcome = accurate_task.result()
        if outcome.confidence_score >= self.min_confidence:
            return self._to_result(outcome, "accurate", start)

        # Low confidence: keep the accurate products, fast pass only corroborates
        warning = (
            f"Accurate strategy confidence {outcome.confidence_score:.1f} below "
            f"{self.min_confidence:.1f}; kept accurate products"
        )
        try:
            fast_outcome = await self.fast.parse(content)
            warning += (
                f" (accurate found {len(outcome.products)} products, "
                f"fast found {len(fast_outcome.products)})"
            )
        except Exception as e:
            self.metrics.record_error(self.fast.name)
            warning += f" (fast corroboration failed: {e})"
        logger.warning(warning)
        return self._to_result(outcome, "accurate_fallback_fast", start, [warning])

    def _abandon(self, task: asyncio.Task) -> None:
        """Let an in-flight call finish on its own; its result is dropped."""
        self._abandoned.add(task)

        def _discard(t: asyncio.Task) -> None:
            self._abandoned.discard(t)
            if t.cancelled():
                return
            if t.exception() is not None:
                logger.debug("abandoned accurate call failed", extra={"error": str(t.exception())})
            else:
                logger.debug("abandoned accurate call finished late; result discarded")

        task.add_done_callback(_discard)

