"""Builds the extraction core from configuration.

Every component is constructed once here and passed by reference; nothing
holds module-level state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pricehunt.cache.memory import TTLResultCache
from pricehunt.config.settings import PriceHuntConfig
from pricehunt.config.sources import Source, load_sources
from pricehunt.escalation.engine import VertexEscalationClient
from pricehunt.extraction.extractor import AdaptiveExtractor
from pricehunt.extraction.selectors import LearnedSelectorTable
from pricehunt.health.monitor import HealthMonitor
from pricehunt.health.store import InMemoryHealthStore, JsonHealthStore
from pricehunt.orchestrator.engine import SelfHealingOrchestrator
from pricehunt.retrieval.native_api import JsonApiClient
from pricehunt.retrieval.renderer import PlaywrightRenderer
from pricehunt.retrieval.static import HttpxStaticFetcher

logger = logging.getLogger(__name__)


@dataclass
class Core:
    config: PriceHuntConfig
    sources: list[Source]
    health: HealthMonitor
    selectors: LearnedSelectorTable
    extractor: AdaptiveExtractor
    cache: TTLResultCache
    renderer: PlaywrightRenderer
    escalation: VertexEscalationClient
    orchestrator: SelfHealingOrchestrator

    def source(self, source_id: str) -> Source | None:
        return next((s for s in self.sources if s.id == source_id), None)

    async def startup(self) -> None:
        if await self.escalation.initialize():
            logger.info("AI escalation enabled (%s)", self.config.vertex.flash_model)
        else:
            logger.info("AI escalation disabled: no Vertex project configured")

    async def shutdown(self) -> None:
        await self.renderer.stop()


def build_core(config: PriceHuntConfig | None = None, persistent: bool = True) -> Core:
    """Wire every component. ``persistent=False`` keeps all state in memory."""
    config = config or PriceHuntConfig()
    storage = config.storage

    sources = load_sources(storage.sources_file)

    if persistent:
        health_store = JsonHealthStore(storage.health_dir)
        selectors_path = storage.selectors_path
    else:
        health_store = InMemoryHealthStore()
        selectors_path = None

    health = HealthMonitor(store=health_store, config=config.health)
    selectors = LearnedSelectorTable(
        path=selectors_path, eviction_misses=config.extraction.selector_eviction_misses
    )
    extractor = AdaptiveExtractor(config.extraction, selectors)
    cache = TTLResultCache(
        config.cache, quick_commerce=[s.id for s in sources if s.quick_commerce]
    )
    renderer = PlaywrightRenderer(config.browser)
    escalation = VertexEscalationClient(config.vertex, config.extraction, config.orchestrator)
    orchestrator = SelfHealingOrchestrator(
        health=health,
        extractor=extractor,
        native_api=JsonApiClient(config.orchestrator, config.extraction),
        static_fetcher=HttpxStaticFetcher(config.browser),
        renderer=renderer,
        escalation=escalation,
        cache=cache,
        config=config,
    )
    return Core(
        config=config,
        sources=sources,
        health=health,
        selectors=selectors,
        extractor=extractor,
        cache=cache,
        renderer=renderer,
        escalation=escalation,
        orchestrator=orchestrator,
    )
