"""Entry point for the FastAPI host of the resolution engine."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException

from .config import settings
from .database import Database
from .models import WesternId
from .services.cinemeta import CinemetaClient
from .services.engine import ResolutionEngine
from .services.identity import IdentityStore
from .services.kitsu import KitsuClient
from .services.mapping_index import MappingIndexLoader

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    kitsu_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.kitsu_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    cinemeta_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    sources_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    engine = ResolutionEngine(
        MappingIndexLoader(settings, sources_http_client),
        KitsuClient(settings, kitsu_http_client),
        CinemetaClient(cinemeta_http_client, str(settings.cinemeta_url)),
        IdentityStore(database.session_factory),
    )

    app.state.engine = engine
    app.state.database = database
    await engine.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await engine.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Cross-catalog identity and episode alignment for anime and TV",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_engine(app: FastAPI) -> ResolutionEngine:
    engine = getattr(app.state, "engine", None)
    if not isinstance(engine, ResolutionEngine):
        raise RuntimeError("Resolution engine not initialised")
    return engine


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/debug/index")
    async def index_stats() -> dict[str, Any]:
        return get_engine(fastapi_app).index.stats()

    @fastapi_app.get("/debug/franchise/{western_id}")
    async def franchise_debug(western_id: str) -> dict[str, Any]:
        if WesternId.parse(western_id) is None:
            raise HTTPException(status_code=400, detail="Unsupported identifier")
        info = await get_engine(fastapi_app).franchise_debug_info(western_id)
        if info is None:
            raise HTTPException(status_code=404, detail="Franchise not found")
        return info.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "seasonbridge.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
