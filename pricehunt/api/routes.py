"""REST and WebSocket routes for PriceHunt.

Provides endpoints for:
- Source catalogue and live health
- Manual circuit resets
- Running a search, either collected in one response or streamed
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import BaseModel, Field, ValidationError, field_validator

from pricehunt.api.auth import require_api_auth, token_is_valid
from pricehunt.config.sources import Source
from pricehunt.health.models import HealthView
from pricehunt.orchestrator.factory import Core, build_core
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

router = APIRouter()


def get_core(app: FastAPI) -> Core:
    """The app's component graph, built from the environment on first use."""
    core = getattr(app.state, "core", None)
    if core is None:
        core = app.state.core = build_core()
    return core


def _core_dependency(request: Request) -> Core:
    return get_core(request.app)


# --- Request/Response Models ---


class SearchRequest(BaseModel):
    query: str
    locale: str | None = None
    sources: list[str] | None = Field(
        default=None, description="Source ids to search; all sources when omitted"
    )

    @field_validator("query")
    @classmethod
    def _validate_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        if len(value) > 200:
            raise ValueError("query must be at most 200 characters")
        return value


class SourceStatus(BaseModel):
    id: str
    base_url: str
    requires_rendering: bool
    quick_commerce: bool
    has_native_api: bool
    health: HealthView | None = None


class SearchResponse(BaseModel):
    run_id: str
    events: list[dict[str, Any]]


def _select_sources(core: Core, requested: list[str] | None) -> list[Source]:
    if requested is None:
        return list(core.sources)
    selected = []
    unknown = []
    for source_id in requested:
        source = core.source(source_id)
        if source is None:
            unknown.append(source_id)
        else:
            selected.append(source)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown sources: {', '.join(unknown)}")
    return selected


# --- Endpoints ---


@router.get("/sources", response_model=list[SourceStatus])
async def list_sources(
    _: str = Depends(require_api_auth), core: Core = Depends(_core_dependency)
) -> list[SourceStatus]:
    """Every configured source with its current health view."""
    views = {view.source_id: view for view in core.health.snapshot()}
    return [
        SourceStatus(
            id=source.id,
            base_url=source.base_url,
            requires_rendering=source.requires_rendering,
            quick_commerce=source.quick_commerce,
            has_native_api=source.api_template is not None,
            health=views.get(source.id),
        )
        for source in core.sources
    ]


@router.get("/sources/disabled")
async def list_disabled_sources(
    _: str = Depends(require_api_auth), core: Core = Depends(_core_dependency)
) -> dict[str, list[str]]:
    return {"disabled": core.health.disabled_sources()}


@router.post("/sources/{source_id}/reset")
async def reset_source(
    source_id: str,
    _: str = Depends(require_api_auth),
    core: Core = Depends(_core_dependency),
) -> dict[str, str]:
    """Close a source's circuit and clear its history."""
    if core.source(source_id) is None:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    core.health.reset(source_id)
    return {"source_id": source_id, "status": "reset"}


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    _: str = Depends(require_api_auth),
    core: Core = Depends(_core_dependency),
) -> SearchResponse:
    """Run a search to completion and return every event in order."""
    sources = _select_sources(core, request.sources)
    stream = core.orchestrator.run(sources, request.query, request.locale)
    events = await stream.collect()
    return SearchResponse(
        run_id=stream.run_id, events=[event.model_dump(mode="json") for event in events]
    )


# --- WebSocket streaming ---


@router.websocket("/search/ws")
async def search_stream(websocket: WebSocket, token: str = Query(default="")) -> None:
    """Stream a search's events as they are emitted.

    The client sends one JSON search request after connecting. Pass the
    token as a query parameter for authentication. Disconnecting detaches
    the run: in-flight work finishes, nothing new starts.
    """
    if not token_is_valid(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    core = get_core(websocket.app)

    try:
        request = SearchRequest.model_validate(await websocket.receive_json())
        sources = _select_sources(core, request.sources)
    except WebSocketDisconnect:
        return
    except (ValidationError, ValueError) as exc:
        await websocket.close(code=4400, reason=str(exc)[:120])
        return
    except HTTPException as exc:
        await websocket.close(code=4400, reason=str(exc.detail)[:120])
        return

    stream = core.orchestrator.run(sources, request.query, request.locale)
    async with stream:
        async for event in stream:
            try:
                await websocket.send_text(event.model_dump_json())
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.API_WEBSOCKET_SEND_FAILED,
                    message=str(exc),
                    suppressed=True,
                    details={"run_id": stream.run_id},
                )
                return
    await websocket.close()
