# policy_service.py
"""
HTTP entry point for the policy server.

The lifespan handler composes store, embedding client, repository and
matching service, initializes the repository before the first request is
served, and shuts everything down on exit.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ai_services import build_embedding_client
from config import Settings, configure_logging, load_settings
from ingest import PolicyStore
from policies import (
    NotFoundError,
    NotReadyError,
    Policy,
    PolicyMatchingService,
    PolicyRepository,
    ServiceUnavailableError,
)
from policies.exceptions import ValidationError

logger = logging.getLogger(__name__)


class MatchRequest(BaseModel):
    query: str
    k: int = 5
    min_score: float = 0.0


class MatchResult(BaseModel):
    id: str
    title: str
    score: float


class PolicySummary(BaseModel):
    id: str
    title: str
    source_path: str
    embedded: bool


class PolicyDetail(PolicySummary):
    body: str
    metadata: Dict[str, Any] = {}
    embedding_error: Optional[str] = None


class StatusResponse(BaseModel):
    status: str
    policies: int
    embedded: int


def build_services(settings: Settings) -> Tuple[PolicyRepository, PolicyMatchingService]:
    """Compose the object graph from settings."""
    client = build_embedding_client(settings)
    store = PolicyStore(strict_parsing=settings.strict_parsing)
    repository = PolicyRepository(
        store,
        client,
        data_folder=settings.data_folder,
        strict_embedding=settings.strict_embedding,
    )
    matching_service = PolicyMatchingService(repository, client, default_timeout=settings.match_timeout)
    return repository, matching_service


def _summary(policy: Policy) -> PolicySummary:
    return PolicySummary(
        id=policy.id,
        title=policy.title,
        source_path=policy.source_path,
        embedded=policy.is_embedded,
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[PolicyRepository] = None,
    matching_service: Optional[PolicyMatchingService] = None,
) -> FastAPI:
    """Build the FastAPI app. Injected services are used as-is (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        repo, service = repository, matching_service
        if repo is None or service is None:
            repo, service = build_services(settings or load_settings())

        await run_in_threadpool(repo.initialize)
        for warning in repo.warnings:
            logger.warning(f"Policy file skipped at startup: {warning.path} ({warning.reason})")

        app.state.repository = repo
        app.state.matching_service = service
        try:
            yield
        finally:
            service.close()
            repo.shutdown()

    app = FastAPI(title="PCheck Policy Server", lifespan=lifespan)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(ServiceUnavailableError)
    async def unavailable_handler(request: Request, exc: ServiceUnavailableError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(NotReadyError)
    async def not_ready_handler(request: Request, exc: NotReadyError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/", response_model=StatusResponse)
    def read_root(request: Request):
        repo: PolicyRepository = request.app.state.repository
        if not repo.is_ready:
            return StatusResponse(status=repo.status.value, policies=0, embedded=0)
        return StatusResponse(status=repo.status.value, policies=len(repo.all()), embedded=repo.embedded_count)

    @app.get("/policies", response_model=List[PolicySummary])
    def list_policies(request: Request):
        return [_summary(p) for p in request.app.state.repository.all()]

    @app.get("/policies/{policy_id}", response_model=PolicyDetail)
    def get_policy(policy_id: str, request: Request):
        policy = request.app.state.repository.find_by_id(policy_id)
        return PolicyDetail(
            **_summary(policy).model_dump(),
            body=policy.body,
            metadata=dict(policy.metadata),
            embedding_error=policy.embedding_error,
        )

    @app.post("/match", response_model=List[MatchResult])
    def match_policies(req: MatchRequest, request: Request):
        results = request.app.state.matching_service.match(req.query, k=req.k, min_score=req.min_score)
        return [MatchResult(id=r.policy.id, title=r.policy.title, score=r.score) for r in results]

    return app


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=5000)
