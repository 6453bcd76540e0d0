"""Control plane FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, request logging, CORS),
the workload/workflow routers, the OAuth and admin routers, and the
reclamation scheduler, with every outbound client injected.

Usage:
    # Local development (in-memory clients)
    from idp_control_plane.app import create_app, PlatformSettings
    app = create_app(PlatformSettings())

    # Non-local (real clients built from settings)
    settings = PlatformSettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    app = create_app(settings, stack_client=fake_stacks, ...)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .errors import PlatformError
from .observability import configure_logging
from .observability.metrics import metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .protocols import EnvironmentApi, RepositoryApi, StackApi
from .provisioning import (
    KINDS,
    DeploymentLauncher,
    OrchestratorConfig,
    PulumiTemplateRenderer,
    TemplateRenderer,
    WorkloadOrchestrator,
)
from .reclamation import DeletionCriteria, ReclamationScheduler
from .settings import PlatformSettings

logger = logging.getLogger(__name__)

LOCAL_ORGANIZATION = "local-org"
LOCAL_BLUEPRINT_REPOSITORY = "local/blueprints"


@dataclass(frozen=True)
class AppDependencies:
    """Container for the injected clients and the services built on them.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    stacks: StackApi
    environments: EnvironmentApi
    repositories: RepositoryApi
    renderer: TemplateRenderer
    launcher: DeploymentLauncher
    orchestrators: dict[str, WorkloadOrchestrator]
    scheduler: ReclamationScheduler


def _build_inmemory_clients() -> tuple[StackApi, EnvironmentApi, RepositoryApi, TemplateRenderer]:
    """Construct in-memory clients for local development, sharing one journal."""
    from .inmemory import (
        InMemoryEnvironmentClient,
        InMemoryRepositoryClient,
        InMemoryStackClient,
        InMemoryTemplateRenderer,
    )

    journal: list[str] = []
    return (
        InMemoryStackClient(journal),
        InMemoryEnvironmentClient(journal),
        InMemoryRepositoryClient(journal),
        InMemoryTemplateRenderer(journal),
    )


def _build_remote_clients(
    settings: PlatformSettings, http_client: httpx.AsyncClient,
) -> tuple[StackApi, EnvironmentApi, RepositoryApi]:
    from .providers import EnvironmentClient, RepositoryClient, StackClient

    stacks = StackClient(
        api_token=settings.stack_api_token,
        base_url=settings.stack_api_base_url,
        http_client=http_client,
        timeout_seconds=settings.http_timeout_seconds,
    )
    environments = EnvironmentClient(
        api_token=settings.stack_api_token,
        base_url=settings.stack_api_base_url,
        http_client=http_client,
        timeout_seconds=settings.http_timeout_seconds,
    )
    repositories = RepositoryClient(
        access_token=settings.github_token,
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        base_url=settings.github_api_base_url,
        http_client=http_client,
        timeout_seconds=settings.http_timeout_seconds,
    )
    return stacks, environments, repositories


def _error_response(request: Request, exc: PlatformError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "code": exc.code,
            "message": exc.message,
            "request_id": request_id,
        },
    )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: PlatformSettings | None = None,
    *,
    stack_client: StackApi | None = None,
    environment_client: EnvironmentApi | None = None,
    repository_client: RepositoryApi | None = None,
    renderer: TemplateRenderer | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create a configured control-plane FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        stack_client..renderer: Client overrides. When None, local mode uses
            the in-memory implementations and non-local mode builds the real
            HTTP clients from settings.
        http_client: Shared ``httpx.AsyncClient`` for the real clients. When
            None in non-local mode, one is created and closed on shutdown.

    Returns:
        Configured FastAPI application ready for uvicorn.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = PlatformSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Control plane settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    configure_logging(environment=settings.environment)

    owned_http_client: httpx.AsyncClient | None = None
    organization = settings.organization
    blueprint_repository = settings.blueprint_repository

    if settings.is_local:
        # Local mode: fill any missing client with its in-memory fake
        stacks, environments, repositories, local_renderer = _build_inmemory_clients()
        stacks = stack_client or stacks
        environments = environment_client or environments
        repositories = repository_client or repositories
        renderer = renderer or local_renderer
        organization = organization or LOCAL_ORGANIZATION
        blueprint_repository = blueprint_repository or LOCAL_BLUEPRINT_REPOSITORY
    else:
        if stack_client is None or environment_client is None or repository_client is None:
            if http_client is None:
                owned_http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
                http_client = owned_http_client
            remote = _build_remote_clients(settings, http_client)
            stack_client = stack_client or remote[0]
            environment_client = environment_client or remote[1]
            repository_client = repository_client or remote[2]
        stacks, environments, repositories = stack_client, environment_client, repository_client
        renderer = renderer or PulumiTemplateRenderer()

    launcher = DeploymentLauncher()
    config = OrchestratorConfig(
        organization=organization,
        blueprint_repository=blueprint_repository,
    )
    orchestrators = {
        kind.plural: WorkloadOrchestrator(
            kind=kind,
            config=config,
            stacks=stacks,
            environments=environments,
            repositories=repositories,
            renderer=renderer,
            launcher=launcher,
        )
        for kind in KINDS
    }
    scheduler = ReclamationScheduler(
        stacks,
        organization=organization,
        criteria=DeletionCriteria(
            tag_key=settings.reclamation_tag_key,
            tag_value=settings.reclamation_tag_value,
        ),
        interval_seconds=settings.reclamation_interval_seconds,
        pass_timeout_seconds=settings.reclamation_timeout_seconds,
    )
    deps = AppDependencies(
        stacks=stacks,
        environments=environments,
        repositories=repositories,
        renderer=renderer,
        launcher=launcher,
        orchestrators=orchestrators,
        scheduler=scheduler,
    )

    # Lifespan
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Control plane startup (environment=%s, organization=%s)",
            settings.environment,
            organization,
        )
        if settings.reclamation_enabled:
            scheduler.start()
        yield
        await scheduler.stop()
        await launcher.aclose()
        for client in (stacks, environments, repositories):
            await client.aclose()
        if owned_http_client is not None:
            await owned_http_client.aclose()
        logger.info("Control plane shutdown")

    app = FastAPI(
        title="IDP Control Plane",
        description="Provisioning and reclamation of platform workloads",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    @app.exception_handler(PlatformError)
    async def platform_error_handler(request: Request, exc: PlatformError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error_response(request, exc)

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> Logging -> Metrics -> CORS -> route handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    # Request-ID first so every log line of the request carries it
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    from .routes.admin import create_admin_router
    from .routes.github import create_github_router
    from .routes.workloads import create_workloads_router

    for orchestrator in orchestrators.values():
        app.include_router(create_workloads_router(orchestrator))
    app.include_router(create_github_router(repositories))
    app.include_router(create_admin_router(scheduler))

    return app


# For uvicorn, use --factory flag:
#   uvicorn idp_control_plane.app.main:create_app --factory
# This avoids executing create_app() at import time.
