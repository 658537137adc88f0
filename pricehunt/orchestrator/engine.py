"""Self-Healing Orchestrator: drives every source's retrieval chain for a query.

Per source, tiers are tried in order until one yields products:

1. native API
2. static fetch of the search URL, then extraction
3. rendered fetch of the search URL, then extraction
4. rendered fetch of each alternate URL, then extraction
5. batched AI escalation over markup retained from 2-4 (deferred until
   every batch has finished)

Contract:
- Sources with an OPEN circuit are skipped without touching the network.
- Sources run in fixed-size batches; a batch finishes before the next starts.
- Health is recorded exactly once per attempted source.
- A source that ends with nothing yields a cached result or an explicit
  failure, never silence.
- ``Completed`` is always the last event of a run.
- No tier failure escapes its source's pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable

from pricehunt.config.settings import PriceHuntConfig
from pricehunt.config.sources import Source
from pricehunt.errors import EscalationError, FailureKind, RenderError, TransportError
from pricehunt.extraction.extractor import AdaptiveExtractor
from pricehunt.extraction.models import ExtractionCandidate, ExtractionHints
from pricehunt.health.monitor import HealthMonitor
from pricehunt.orchestrator.attempts import (
    ScrapeAttempt,
    ScrapeFailure,
    ScrapeSuccess,
    mean_confidence,
)
from pricehunt.retrieval.blocking import detect_hard_block
from pricehunt.retrieval.protocols import (
    EscalationClient,
    NativeApiClient,
    Renderer,
    ResultCache,
    StaticFetcher,
)
from pricehunt.retrieval.static import browser_headers
from pricehunt.signals.events import Completed, Failed, Result, Skipped, Started
from pricehunt.signals.stream import EventEmitter, EventStream
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    query: str
    locale: str
    successes: set[str] = field(default_factory=set)
    pending: list[tuple[Source, ScrapeFailure]] = field(default_factory=list)


class SelfHealingOrchestrator:
    """Coordinates retrieval, extraction, health, cache and escalation."""

    def __init__(
        self,
        *,
        health: HealthMonitor,
        extractor: AdaptiveExtractor,
        native_api: NativeApiClient,
        static_fetcher: StaticFetcher,
        renderer: Renderer,
        escalation: EscalationClient,
        cache: ResultCache,
        config: PriceHuntConfig | None = None,
    ) -> None:
        self._health = health
        self._extractor = extractor
        self._native_api = native_api
        self._static = static_fetcher
        self._renderer = renderer
        self._escalation = escalation
        self._cache = cache
        self._config = config or PriceHuntConfig()

    @property
    def health(self) -> HealthMonitor:
        return self._health

    def run(self, sources: list[Source], query: str, locale: str | None = None) -> EventStream:
        """Start a search. Work begins when the returned stream is first read."""
        run_id = uuid.uuid4().hex[:12]
        ledger_path = None
        if self._config.storage.event_ledger:
            ledger_path = self._config.storage.events_dir / f"{run_id}.jsonl"
        emitter = EventEmitter(run_id, ledger_path)
        state = _RunState(query=query, locale=locale or self._config.default_locale)
        return EventStream(emitter, lambda stream: self._drive(stream, list(sources), state))

    # --- Run driver ---

    async def _drive(self, stream: EventStream, sources: list[Source], state: _RunState) -> None:
        emitter = stream.emitter
        await emitter.emit(Started, query=state.query, source_count=len(sources))
        logger.info("Run %s: %d sources for %r", emitter.run_id, len(sources), state.query)

        batch_size = self._config.orchestrator.batch_size
        idle_s = self._config.orchestrator.reader_idle_s
        remaining = list(sources)
        while remaining:
            await stream.wait_for_reader(idle_s)
            if stream.detached:
                logger.info(
                    "Run %s: consumer detached, %d sources not started",
                    emitter.run_id,
                    len(remaining),
                )
                break
            # Circuits are consulted only when a batch is about to start.
            batch: list[Source] = []
            while remaining and len(batch) < batch_size:
                source = remaining.pop(0)
                if self._health.should_attempt(source.id):
                    batch.append(source)
                else:
                    await emitter.emit(Skipped, source=source.id, reason="Circuit breaker open")
            if batch:
                await asyncio.gather(
                    *(self._run_source(emitter, state, source) for source in batch)
                )

        if state.pending:
            await stream.wait_for_reader(idle_s)
            await self._settle_pending(stream, state)

        await emitter.emit(
            Completed,
            success_count=len(state.successes),
            total_count=len(sources),
            disabled_sources=self._health.disabled_sources(),
        )

    async def _run_source(self, emitter: EventEmitter, state: _RunState, source: Source) -> None:
        try:
            attempt = await self._scrape(source, state.query, state.locale)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.RETRIEVAL_TIER_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source.id,
                tier="chain",
            )
            attempt = ScrapeFailure(FailureKind.UNEXPECTED, f"Unexpected error: {exc}")

        if isinstance(attempt, ScrapeSuccess):
            await self._publish(emitter, state, source, attempt)
        elif attempt.escalatable:
            state.pending.append((source, attempt))
        else:
            self._health.record_outcome(source.id, False, 0, reason=attempt.reason)
            await self._fall_back(emitter, state, source, attempt)

    async def _settle_pending(self, stream: EventStream, state: _RunState) -> None:
        if stream.detached:
            logger.info("Run %s: consumer detached, skipping escalation", stream.run_id)
            results: dict[str, Any] = {}
        else:
            results = await self._escalate(state.pending, state.query)

        default = self._config.orchestrator.ai_default_confidence
        for source, failure in state.pending:
            outcome = results.get(source.id)
            if isinstance(outcome, list) and outcome:
                success = ScrapeSuccess(
                    candidates=outcome,
                    avg_confidence=mean_confidence(outcome, default),
                    tier="escalation",
                )
                await self._publish(stream.emitter, state, source, success, ai_derived=True)
                continue
            reason = failure.reason
            if isinstance(outcome, EscalationError):
                reason = f"{reason}; escalation failed: {outcome}"
            self._health.record_outcome(source.id, False, 0, reason=reason)
            await self._fall_back(stream.emitter, state, source, failure)

    async def _escalate(
        self, pending: list[tuple[Source, ScrapeFailure]], query: str
    ) -> dict[str, list[ExtractionCandidate] | EscalationError]:
        batch = [(source, failure.markup or "", source.base_url) for source, failure in pending]
        timeout_s = self._config.timeouts.escalation_s
        logger.info("Escalating %d sources in one batch", len(batch))
        try:
            return await asyncio.wait_for(
                self._escalation.extract_many(batch, query), timeout=timeout_s
            )
        except Exception as exc:
            message = (
                f"timed out after {timeout_s:.0f}s"
                if isinstance(exc, asyncio.TimeoutError)
                else str(exc)
            )
            emit_structured_error(
                logger,
                code=ErrorCode.AI_ESCALATION_FAILED,
                message=message,
                suppressed=True,
                details={"sources": [source.id for source, _ in pending]},
            )
            return {}

    # --- Outcome publication ---

    async def _publish(
        self,
        emitter: EventEmitter,
        state: _RunState,
        source: Source,
        success: ScrapeSuccess,
        ai_derived: bool = False,
    ) -> None:
        fingerprint = success.fingerprint.value if success.fingerprint else None
        if fingerprint is not None:
            self._health.has_structure_changed(source.id, fingerprint)
        self._health.record_outcome(
            source.id, True, len(success.candidates), fingerprint=fingerprint
        )
        self._cache_set(state, source, success.candidates)
        state.successes.add(source.id)
        await emitter.emit(
            Result,
            source=source.id,
            items=success.candidates,
            confidence=success.avg_confidence,
            ai_derived=ai_derived,
        )

    async def _fall_back(
        self, emitter: EventEmitter, state: _RunState, source: Source, failure: ScrapeFailure
    ) -> None:
        items, is_stale = self._cache_get(state, source)
        if items:
            state.successes.add(source.id)
            await emitter.emit(
                Result,
                source=source.id,
                items=items,
                confidence=self._config.orchestrator.cache_confidence,
                from_cache=True,
                is_stale=is_stale,
            )
            return
        await emitter.emit(
            Failed,
            source=source.id,
            reason=failure.reason,
            failure_kind=failure.failure_kind.value,
        )

    def _cache_get(
        self, state: _RunState, source: Source
    ) -> tuple[list[ExtractionCandidate] | None, bool]:
        try:
            return self._cache.get(state.query, source.id, state.locale)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.CACHE_OPERATION_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source.id,
            )
            return None, False

    def _cache_set(
        self, state: _RunState, source: Source, items: list[ExtractionCandidate]
    ) -> None:
        try:
            self._cache.set(state.query, source.id, state.locale, items)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.CACHE_OPERATION_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source.id,
            )

    # --- Strategy chain ---

    async def _scrape(self, source: Source, query: str, locale: str) -> ScrapeAttempt:
        timeouts = self._config.timeouts
        last = ScrapeFailure(FailureKind.EXTRACTION_EMPTY, "No products found")
        retained: str | None = None

        outcome, failure = await self._call(
            source,
            "native_api",
            self._native_api.call(source, query, locale),
            timeouts.native_api_s,
        )
        if failure is not None:
            last = failure
        elif outcome.kind == "success" and outcome.items:
            return ScrapeSuccess(
                candidates=outcome.items,
                avg_confidence=mean_confidence(outcome.items),
                tier="native_api",
            )
        elif outcome.kind == "failure":
            last = ScrapeFailure(FailureKind.TRANSPORT, f"native_api: {outcome.reason}")

        search_url = source.search_url(query)
        if not source.requires_rendering:
            response, failure = await self._call(
                source,
                "static",
                self._static.get(search_url, browser_headers(locale)),
                timeouts.static_fetch_s,
            )
            if failure is not None:
                last = failure
            else:
                _, body = response
                attempt, keep = self._examine(
                    source,
                    body,
                    "static",
                    min_chars=self._config.orchestrator.min_static_body_chars,
                )
                if isinstance(attempt, ScrapeSuccess):
                    return attempt
                last, retained = attempt, keep or retained

        targets = [("primary_render", search_url, timeouts.primary_render_s)]
        targets.extend(
            (f"alternate_render_{i}", url, timeouts.alternate_render_s)
            for i, url in enumerate(source.alternate_urls(query), start=1)
        )
        for tier, url, timeout_s in targets:
            html, failure = await self._call(
                source,
                tier,
                self._renderer.render(url, locale, source.wait_selector, timeout_s),
                timeout_s,
                bounded=False,
            )
            if failure is not None:
                last = failure
                continue
            if not html:
                last = ScrapeFailure(FailureKind.RENDER, f"{tier}: render returned no markup")
                continue
            attempt, keep = self._examine(source, html, tier, min_chars=1)
            if isinstance(attempt, ScrapeSuccess):
                return attempt
            last, retained = attempt, keep or retained

        if retained is not None:
            return ScrapeFailure(last.failure_kind, last.reason, markup=retained)
        return last

    def _examine(
        self,
        source: Source,
        markup: str,
        tier: str,
        *,
        min_chars: int,
    ) -> tuple[ScrapeAttempt, str | None]:
        """Run extraction on fetched markup. Also returns the markup when worth escalating."""
        if not markup or len(markup) < min_chars:
            size = len(markup or "")
            return (
                ScrapeFailure(
                    FailureKind.EXTRACTION_EMPTY, f"{tier}: body too small ({size} chars)"
                ),
                None,
            )

        block = detect_hard_block(markup)
        if block.blocked:
            logger.info("%s: %s blocked by %s", source.id, tier, block.indicator)
            return ScrapeFailure(FailureKind.BLOCKED, f"{tier}: blocked ({block.indicator})"), None

        keep = markup if len(markup) >= self._config.vertex.min_markup_chars else None
        hints = ExtractionHints(base_url=source.base_url)
        try:
            report = self._extractor.extract_with_report(markup, source, hints)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.EXTRACTION_TIER_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source.id,
                tier=tier,
            )
            return ScrapeFailure(FailureKind.UNEXPECTED, f"{tier}: extraction error"), keep

        if not report.candidates:
            return ScrapeFailure(FailureKind.EXTRACTION_EMPTY, f"{tier}: no products found"), keep
        return (
            ScrapeSuccess(
                candidates=report.candidates,
                avg_confidence=report.average_confidence,
                tier=tier,
                fingerprint=report.fingerprint,
            ),
            None,
        )

    async def _call(
        self,
        source: Source,
        tier: str,
        awaitable: Awaitable[Any],
        timeout_s: float,
        *,
        bounded: bool = True,
    ) -> tuple[Any, ScrapeFailure | None]:
        """Await one collaborator call under its tier timeout, converting failures.

        With ``bounded=False`` the collaborator enforces ``timeout_s`` itself.
        """
        try:
            if not bounded:
                return await awaitable, None
            return await asyncio.wait_for(awaitable, timeout=timeout_s), None
        except asyncio.TimeoutError:
            return None, ScrapeFailure(
                FailureKind.TIMEOUT, f"{tier}: timed out after {timeout_s:.0f}s"
            )
        except TransportError as exc:
            return None, ScrapeFailure(FailureKind.TRANSPORT, f"{tier}: {exc}")
        except RenderError as exc:
            return None, ScrapeFailure(FailureKind.RENDER, f"{tier}: {exc}")
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.RETRIEVAL_TIER_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source.id,
                tier=tier,
            )
            return None, ScrapeFailure(FailureKind.UNEXPECTED, f"{tier}: {exc}")
