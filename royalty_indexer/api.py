"""
FastAPI application serving read-only royalty queries.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db, get_engine, init_database
from .errors import SaleNotFound
from .events import ArtifactRef
from .query import QueryService
from .runtime import Runtime, build_runtime

# Initialize structured logging
logger = structlog.get_logger()

router = APIRouter()


def get_query_service(db: Session = Depends(get_db)) -> QueryService:
    return QueryService(db)


def _artifact(origin: str, local_id: int) -> ArtifactRef:
    try:
        return ArtifactRef(origin=origin, local_id=local_id)
    except ValidationError:
        raise HTTPException(status_code=404, detail="Artifact not found")


@router.get("/healthz", tags=["system"])
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("royalty-indexer")}


@router.get("/royalties/{beneficiary}", tags=["royalties"])
def get_royalties(
    beneficiary: str, queries: QueryService = Depends(get_query_service)
) -> Dict[str, Any]:
    """Pending balance and the sales that credited a beneficiary."""
    return queries.beneficiary_summary(beneficiary)


@router.get("/sales", tags=["sales"])
def list_sales(
    beneficiary: Optional[str] = None,
    limit: int = Query(1000, ge=1, le=10_000),
    offset: int = Query(0, ge=0),
    queries: QueryService = Depends(get_query_service),
) -> List[Dict[str, Any]]:
    """All sales, newest first."""
    return queries.sales(beneficiary=beneficiary, limit=limit, offset=offset)


@router.get("/publications", tags=["artifacts"])
def list_publications(
    limit: int = Query(1000, ge=1, le=10_000),
    offset: int = Query(0, ge=0),
    queries: QueryService = Depends(get_query_service),
) -> List[Dict[str, Any]]:
    """All published artifacts, newest first."""
    return queries.publications(limit=limit, offset=offset)


@router.get("/parameters", tags=["royalties"])
def get_parameters(queries: QueryService = Depends(get_query_service)) -> Dict[str, Any]:
    """Royalty parameters currently in force."""
    return queries.latest_parameters()


@router.get("/dependencies/{origin}/{local_id}", tags=["artifacts"])
def get_dependencies(
    origin: str, local_id: int, queries: QueryService = Depends(get_query_service)
) -> Dict[str, Any]:
    """Dependency closure of an artifact, ascending depth."""
    return queries.dependencies(_artifact(origin, local_id))


@router.get("/graph/{origin}/{local_id}", tags=["artifacts"])
def get_graph(
    origin: str, local_id: int, queries: QueryService = Depends(get_query_service)
) -> Dict[str, Any]:
    """Dependencies and dependents of an artifact."""
    return queries.graph(_artifact(origin, local_id))


@router.get("/royaltytree/{sale_id}", tags=["royalties"])
def get_royalty_tree(
    sale_id: str, queries: QueryService = Depends(get_query_service)
) -> Dict[str, Any]:
    """Allocation breakdown of a sale."""
    try:
        return queries.royalty_tree(sale_id)
    except SaleNotFound:
        raise HTTPException(status_code=404, detail="Sale not found")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=repr(exc),
    )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[Runtime] = None,
) -> FastAPI:
    """Create the query API.

    The lifespan creates missing tables and, when enabled, runs the
    maintenance sweep alongside the server.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Royalty Indexer API")
        active = runtime
        try:
            engine = runtime.session_factory.kw.get("bind") if runtime else get_engine()
            init_database(engine)
            if settings.sweep_enabled:
                active = active or build_runtime(settings=settings)
                await active.sweep.start()
        except Exception as e:
            logger.error(f"Failed to start application: {e}")
            raise

        app.state.runtime = active
        yield

        logger.info("Shutting down Royalty Indexer API")
        if active is not None:
            await active.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Royalty indexer for published artifacts and their dependency graphs",
        version=importlib.metadata.version("royalty-indexer"),
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(router)
    return app


app = create_app()
