# dogs_service/adapters/web/fastapi.py
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Callable, Optional

import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from dogs_service.adapters.cat_facts_client import CatFactsHttpClient
from dogs_service.core.exceptions import CallCancelled, GateClosed, UpstreamError
from dogs_service.core.interfaces.dog_repository import DogRepositoryPort
from dogs_service.core.interfaces.http_client import HttpClientPort
from dogs_service.core.logging_config import correlation_id_var
from dogs_service.core.models.cat_fact import CatFactsResponse
from dogs_service.core.models.dog import Dog, DogClassic
from dogs_service.core.models.problem import ProblemResponse
from dogs_service.core.resilience.events import CallMetricsSink
from dogs_service.core.services.risky_client import RiskyClient
from dogs_service.core.services.runner import StartupRunner
from dogs_service.core.settings import logger

API_VERSION_HEADER = "X-API-Version"
SUPPORTED_DOG_API_VERSIONS = ("1.0", "1.1")
DEFAULT_DOG_API_VERSION = "1.1"


# Driver adapter: depends on the core ports, the core does not depend on it.
def create_app(
    dog_repository: DogRepositoryPort,
    http_client: HttpClientPort,
    cat_facts_factory: Callable[[HttpClientPort], CatFactsHttpClient],
    risky_client_factory: Optional[Callable[[], RiskyClient]] = None,
    run_startup_report: bool = False,
    call_metrics: Optional[CallMetricsSink] = None,
):
    """Create the FastAPI app.

    Concrete infrastructure (repository, HTTP client, resilient clients) is
    assembled outside and passed in as instances or factories. This keeps the
    web adapter focused on HTTP concerns and lifecycle orchestration.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with http_client as client:
            cat_facts = cat_facts_factory(client)
            app.state.cat_facts = cat_facts
            app.state.startup_report = None
            try:
                if run_startup_report and risky_client_factory is not None:
                    runner = StartupRunner(dog_repository, cat_facts, risky_client_factory())
                    app.state.startup_report = await runner.run()
                yield
            finally:
                cat_facts.close()

    app = FastAPI(title="Dogs Service", lifespan=lifespan)

    def render_problem(problem: ProblemResponse, *, include_request_id: bool = False) -> JSONResponse:
        if include_request_id:
            problem = problem.with_request_id(correlation_id_var.get())
        payload = jsonable_encoder(problem.model_dump(exclude_none=True))
        return JSONResponse(status_code=problem.status, content=payload)

    def build_problem(status: int, title: str, detail: str, request: Request) -> ProblemResponse:
        return ProblemResponse(title=title, status=status, detail=detail, instance=str(request.url))

    # Correlation ID middleware: assigns per-request id (header override) and exposes it to logging
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        cid = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        token = correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Request-ID"] = cid
        return response

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        problem = exc.response.model_copy(update={"instance": str(request.url)})
        return render_problem(problem, include_request_id=problem.status >= 500)

    @app.exception_handler(GateClosed)
    async def gate_closed_handler(request: Request, exc: GateClosed):
        logger.warning(f"[web:gate-closed] gate={exc.gate_name} url={request.url}")
        problem = build_problem(503, "Service Unavailable", str(exc), request)
        return render_problem(problem, include_request_id=True)

    @app.exception_handler(CallCancelled)
    async def call_cancelled_handler(request: Request, exc: CallCancelled):
        problem = build_problem(504, "Upstream Call Cancelled", str(exc), request)
        return render_problem(problem, include_request_id=True)

    @app.get("/dogs")
    async def list_dogs(request: Request, version: Optional[str] = None):
        requested = request.headers.get(API_VERSION_HEADER) or version or DEFAULT_DOG_API_VERSION
        if requested not in SUPPORTED_DOG_API_VERSIONS:
            problem = build_problem(
                status=400,
                title="Unsupported API Version",
                detail=f"Version '{requested}' is not one of {', '.join(SUPPORTED_DOG_API_VERSIONS)}",
                request=request,
            )
            return render_problem(problem)
        dogs = await dog_repository.find_all()
        if requested == "1.0":
            return [DogClassic.from_dog(d).model_dump(by_alias=True) for d in dogs]
        return [d.model_dump() for d in dogs]

    @app.get("/dogs/search", response_model=list[Dog])
    async def search_dogs(name: str):
        return list(await dog_repository.find_by_name(name))

    @app.get("/dogs/{dog_id}", response_model=Dog)
    async def get_dog(request: Request, dog_id: int):
        dog = await dog_repository.find_by_id(dog_id)
        if dog is None:
            problem = build_problem(404, "Dog Not Found", f"Dog '{dog_id}' not found", request)
            return render_problem(problem)
        return dog

    @app.get("/facts", response_model=CatFactsResponse)
    async def cat_facts():
        return await app.state.cat_facts.facts()

    @app.get("/health")
    async def health():
        gate = app.state.cat_facts.gate
        return {
            "status": "ok",
            "gates": {gate.name: jsonable_encoder(asdict(gate.stats()))},
            "calls": call_metrics.snapshot() if call_metrics else {},
        }

    return app
