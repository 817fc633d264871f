"""Entry point for the FastAPI-powered ReelDuel game server."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .errors import GameError
from .models import ChoiceRequest, ReplacementRequest, SessionFilters
from .services.assembler import RecommendationRequestAssembler
from .services.catalogue import CatalogueCache
from .services.game import MAX_PICKS, GameService
from .services.pair_selector import PairSelector
from .services.recommender import OpenAIRecommender
from .services.session_engine import SessionEngine
from .services.session_store import InMemorySessionStore
from .services.snapshots import CatalogueSnapshotStore
from .services.title_lists import TitleListClient
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

DEFAULT_PICKS = 6

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    openai_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openai_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    scrape_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(20.0, connect=10.0),
            follow_redirects=True,
            headers={"Accept-Language": "en-US,en;q=0.9"},
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb = TMDBClient(settings, tmdb_http_client)
    title_lists = TitleListClient(
        scrape_http_client, request_delay=settings.scrape_delay_seconds
    )
    catalogue = CatalogueCache(
        settings,
        tmdb,
        title_lists,
        CatalogueSnapshotStore(database.session_factory),
    )
    engine = SessionEngine(
        InMemorySessionStore(settings.session_ttl_seconds),
        catalogue,
        PairSelector(),
        default_total_rounds=settings.default_total_rounds,
        sweep_interval_seconds=settings.session_sweep_interval,
    )
    game_service = GameService(
        catalogue,
        engine,
        RecommendationRequestAssembler(settings.late_round_weight),
        OpenAIRecommender(settings, openai_http_client, tmdb, catalogue),
        tmdb,
    )

    app.state.game_service = game_service
    app.state.database = database
    await catalogue.start()
    await engine.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await engine.stop()
        await catalogue.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Pick one of two movies per round and get recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_game_service(app: FastAPI) -> GameService:
    service = getattr(app.state, "game_service", None)
    if not isinstance(service, GameService):
        raise RuntimeError("Game service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/catalogue")
    async def catalogue_endpoint(request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        grouped = request.query_params.get("grouped") == "1"
        try:
            display = service.display()
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache(display.to_payload(grouped=grouped))

    @fastapi_app.get("/api/recs")
    async def picks_endpoint(request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        limit = _coerce_int(request.query_params.get("limit"), default=DEFAULT_PICKS)
        limit = min(limit or DEFAULT_PICKS, MAX_PICKS)
        try:
            movies = service.picks(limit)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache({"movies": [movie.to_payload() for movie in movies]})

    @fastapi_app.get("/api/trailers")
    async def trailers_endpoint(request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        raw_ids = request.query_params.get("ids")
        if not raw_ids:
            raise HTTPException(
                status_code=400, detail="Missing ids parameter", headers=NO_CACHE_HEADERS
            )
        ids = [
            value
            for value in (_coerce_int(part.strip()) for part in raw_ids.split(","))
            if value is not None
        ]
        if not ids:
            raise HTTPException(
                status_code=400, detail="No valid ids provided", headers=NO_CACHE_HEADERS
            )
        return _no_cache(await service.trailers(ids))

    @fastapi_app.get("/api/catalogue-all")
    async def catalogue_status_endpoint() -> JSONResponse:
        service = get_game_service(fastapi_app)
        return _no_cache(service.status().to_payload())

    @fastapi_app.post("/api/session/start")
    async def start_session_endpoint(request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        payload = await _json_body(request)
        try:
            filters = SessionFilters.model_validate(payload)
        except ValidationError as exc:
            raise _validation_error(exc) from exc
        return _no_cache(_dump(service.start(filters)))

    @fastapi_app.get("/api/session/{session_id}/round")
    async def round_endpoint(session_id: str) -> JSONResponse:
        service = get_game_service(fastapi_app)
        try:
            response = service.get_round(session_id)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache(_dump(response))

    @fastapi_app.post("/api/session/choose")
    async def choose_endpoint(request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        payload = await _json_body(request)
        try:
            choice = ChoiceRequest.model_validate(payload)
        except ValidationError as exc:
            raise _validation_error(exc) from exc
        try:
            response = service.choose_movie(choice.session_id, choice.chosen_movie_id)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache(_dump(response))

    @fastapi_app.post("/api/session/{session_id}/skip")
    async def skip_endpoint(session_id: str) -> JSONResponse:
        service = get_game_service(fastapi_app)
        try:
            response = service.skip_round(session_id)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache(_dump(response))

    @fastapi_app.get("/api/session/{session_id}/recommendations")
    async def recommendations_endpoint(session_id: str) -> JSONResponse:
        service = get_game_service(fastapi_app)
        try:
            response = await service.get_recommendations(session_id)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache(response.to_payload())

    @fastapi_app.post("/api/session/{session_id}/replace")
    async def replace_endpoint(session_id: str, request: Request) -> JSONResponse:
        service = get_game_service(fastapi_app)
        payload = await _json_body(request)
        try:
            replacement = ReplacementRequest.model_validate(payload)
        except ValidationError as exc:
            raise _validation_error(exc) from exc
        try:
            recommendation = await service.replace_recommendation(
                session_id, replacement.exclude_ids
            )
        except GameError as exc:
            raise _http_error(exc) from exc
        return _no_cache({"recommendation": _dump(recommendation)})


async def _json_body(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Invalid JSON body", headers=NO_CACHE_HEADERS
        ) from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=400, detail="Invalid payload", headers=NO_CACHE_HEADERS
        )
    return payload


def _http_error(exc: GameError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code, detail=exc.to_payload(), headers=NO_CACHE_HEADERS
    )


def _validation_error(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=json.loads(exc.json(include_url=False)),
        headers=NO_CACHE_HEADERS,
    )


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _no_cache(payload: Any) -> JSONResponse:
    return JSONResponse(payload, headers=NO_CACHE_HEADERS)


def _coerce_int(value: Any, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
