"""Workload provisioning orchestrator.

Drives the create / update / delete / details / list operations for one
workload kind. Every operation is a strict sequence of remote calls with no
compensation: the first failing step raises with the step name prefixed to
the message, and side effects of earlier steps remain in place.

The ``(organization, project, stack)`` triple is the only correlation handle
across the stack API, the environment API and deployment settings:

  project = request.blueprint
  stack   = normalize_name(request.name)

Workload existence is derived from stack tags, never stored locally.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError, NotFoundError, PlatformError, ValidationError, require
from ..observability.logging import SECRET_KEY_MARKERS
from ..protocols import EnvironmentApi, RepositoryApi, StackApi
from ..providers.environment_client import EnvironmentDefinition
from ..providers.repository_client import RepoCreationRequest
from ..providers.stack_client import STACK_PERMISSION_ADMIN
from ..providers.stack_models import (
    DeploymentHandle,
    GitSource,
    LogPage,
    Stack,
    StackFilter,
    StackRef,
    Tag,
)
from .launcher import DeploymentLauncher
from .models import RepoCreationResult, WorkloadRequest, WorkloadView
from .naming import normalize_name
from .scaffold import TemplateRenderer
from .tags import AUTO_DELETE_TAG, PROJECT_ID_TAG, RESERVED_TAG_KEYS, STAGE_TAG, WorkloadKind

logger = logging.getLogger(__name__)

NO_UPDATES = 'no updates'
DEFAULT_LOG_POLL_SECONDS = 2.0


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Fixed inputs of the orchestrator, taken from settings."""

    organization: str
    blueprint_repository: str = ''
    team_permission: int = STACK_PERMISSION_ADMIN
    repo_description: str = 'Generated repository via Pulumi IDP'
    repo_private: bool = False
    protected_branches: tuple[str, ...] = ('main',)
    require_reviews: bool = True
    commit_message: str = 'Add Pulumi project files'
    project_description: str = 'Pulumi project created via Pulumi IDP'
    log_poll_seconds: float = DEFAULT_LOG_POLL_SECONDS

    @property
    def shared_repository_url(self) -> str:
        return f'https://github.com/{self.blueprint_repository}.git'


def redact_config(config: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose name contains a secret marker (case-insensitive)."""
    return {
        key: value
        for key, value in config.items()
        if not any(marker in key.lower() for marker in SECRET_KEY_MARKERS)
    }


@contextmanager
def _step(context: str) -> Iterator[None]:
    try:
        yield
    except PlatformError as exc:
        raise exc.with_context(context)


class WorkloadOrchestrator:
    """Provisioning and teardown of one ``WorkloadKind``.

    One instance per kind; workloads and workflows differ only in the tag key
    that marks their stacks.
    """

    def __init__(
        self,
        *,
        kind: WorkloadKind,
        config: OrchestratorConfig,
        stacks: StackApi,
        environments: EnvironmentApi,
        repositories: RepositoryApi,
        renderer: TemplateRenderer,
        launcher: DeploymentLauncher,
    ) -> None:
        self._kind = kind
        self._config = config
        self._stacks = stacks
        self._environments = environments
        self._repositories = repositories
        self._renderer = renderer
        self._launcher = launcher

    @property
    def kind(self) -> WorkloadKind:
        return self._kind

    @property
    def organization(self) -> str:
        return self._config.organization

    # ── Create ───────────────────────────────────────────────────

    async def create_workload(self, request: WorkloadRequest) -> RepoCreationResult:
        """Create the stack, grant, tag, optionally bootstrap a repository, then deploy.

        The deployment trigger is detached: success here says nothing about
        the deployment outcome.
        """
        name = require(request.name, 'name')
        blueprint = require(request.blueprint, 'blueprint')
        custom_tags = self._validate_custom_tags(request)
        if not self._repositories.is_configured:
            raise ConfigurationError('source-control access token is not configured')
        if not request.cookiecut:
            self._require_shared_repository()

        slug = normalize_name(name)
        if not slug:
            raise ValidationError(f'name {name!r} has no slug-safe characters', field='name')
        ref = StackRef(self._config.organization, blueprint, slug)
        log_extra = {'stack_ref': str(ref), 'kind': self._kind.name}

        with _step('failed to create stack'):
            await self._stacks.create_stack(ref.organization, ref.project, ref.stack)

        if request.team:
            with _step('failed to grant stack access to team'):
                await self._stacks.grant_stack_access_to_team(
                    ref.organization,
                    request.team,
                    ref.project,
                    ref.stack,
                    self._config.team_permission,
                )
        else:
            logger.info('No team on request, skipping stack grant for %s', ref, extra=log_extra)

        tags = [
            Tag(self._kind.tag_key, name),
            Tag(PROJECT_ID_TAG, request.project_id),
            Tag(STAGE_TAG, request.stage),
            *custom_tags,
        ]
        for tag in tags:
            with _step(f'failed to set stack tag {tag.key}'):
                await self._stacks.set_stack_tag(ref.organization, ref.project, ref.stack, tag)

        if request.cookiecut:
            result, source = await self._bootstrap_repository(request, slug, blueprint)
        else:
            shared = self._config.shared_repository_url
            source = GitSource(repo_url=shared, repo_dir=blueprint)
            result = RepoCreationResult(
                repo_url=shared,
                clone_url=shared,
                message='Deployment started from the shared blueprint repository',
            )

        self._launcher.launch(
            str(ref),
            self.trigger_deployment(
                ref, source, stage=request.stage, config=request.merged_config(),
            ),
        )
        logger.info('%s created: %s', self._kind.noun, ref, extra=log_extra)
        return result

    async def _bootstrap_repository(
        self, request: WorkloadRequest, slug: str, blueprint: str,
    ) -> tuple[RepoCreationResult, GitSource]:
        repo_request = RepoCreationRequest(
            repo_name=slug,
            description=self._config.repo_description,
            private=self._config.repo_private,
            enable_branch_protection=bool(self._config.protected_branches),
            protected_branches=self._config.protected_branches,
            require_reviews=self._config.require_reviews,
        )
        with _step('failed to create repository'):
            repo = await self._repositories.create_repository(repo_request)

        with tempfile.TemporaryDirectory(prefix='pulumi-project-') as scratch:
            with _step('failed to create Pulumi project'):
                await self._renderer.render(
                    normalize_name(blueprint),
                    Path(scratch),
                    project_name=slug,
                    description=self._config.project_description,
                )
            with _step('failed to commit project files'):
                commit = await self._repositories.commit_directory(
                    repo.owner, repo.name, scratch, self._config.commit_message,
                )

        if repo_request.enable_branch_protection:
            for branch in repo_request.protected_branches:
                with _step(f'failed to set up branch protection for {branch}'):
                    await self._repositories.set_branch_protection(
                        repo.owner, repo.name, branch, repo_request.require_reviews,
                    )

        result = RepoCreationResult(
            repo_url=repo.html_url,
            clone_url=repo.clone_url,
            message='Repository created successfully with Pulumi project files',
        )
        return result, GitSource(repo_url=repo.clone_url, repo_dir='/', branch=commit.ref)

    # ── Deployment trigger ───────────────────────────────────────

    async def trigger_deployment(
        self,
        ref: StackRef,
        source: GitSource | None,
        *,
        stage: str,
        config: dict[str, Any],
    ) -> DeploymentHandle:
        """Environment, then deployment settings, then an ``update`` deployment.

        Any failure stops the sequence. With ``source=None`` the settings
        already stored on the stack are inherited unchanged.
        """
        org, project, stack = ref.organization, ref.project, ref.stack
        with _step('failed to create environment'):
            await self._environments.create_environment(org, project, stack)
        with _step('failed to update environment'):
            await self._environments.update_environment(
                org,
                project,
                stack,
                EnvironmentDefinition(
                    imports=(stage,) if stage else (),
                    pulumi_config=config,
                ),
            )
        if source is not None:
            with _step('failed to create deployment settings'):
                await self._stacks.create_deployment_settings(org, project, stack, source)
        with _step('failed to create deployment'):
            return await self._stacks.create_deployment(org, project, stack, operation='update')

    # ── Update / delete ──────────────────────────────────────────

    async def update_workload(
        self, organization: str, project: str, stack: str, request: WorkloadRequest,
    ) -> DeploymentHandle:
        """Re-run the deployment trigger against an existing stack."""
        ref = self._validate_ref(organization, project, stack)
        target = normalize_name(request.name or stack)
        if target != normalize_name(stack):
            raise ValidationError(
                f'name {request.name!r} does not match stack {stack!r}', field='name',
            )
        source = None
        if not request.cookiecut:
            self._require_shared_repository()
            source = GitSource(repo_url=self._config.shared_repository_url, repo_dir=project)

        handle = await self.trigger_deployment(
            ref, source, stage=request.stage, config=request.merged_config(),
        )
        logger.info('%s update requested: %s', self._kind.noun, ref)
        return handle

    async def delete_workload(
        self, organization: str, project: str, stack: str,
    ) -> DeploymentHandle:
        """Request a destroy deployment, then mark the stack for reclamation."""
        ref = self._validate_ref(organization, project, stack)
        with _step('failed to request destroy deployment'):
            handle = await self._stacks.create_deployment(
                organization, project, stack, operation='destroy',
            )
        with _step(f'failed to set stack tag {AUTO_DELETE_TAG}'):
            await self._stacks.set_stack_tag(
                organization, project, stack, Tag(AUTO_DELETE_TAG, 'true'),
            )
        logger.info('%s marked for reclamation: %s', self._kind.noun, ref)
        return handle

    # ── Reads ────────────────────────────────────────────────────

    async def get_workload_details(
        self, organization: str, project: str, stack: str,
    ) -> WorkloadView:
        ref = self._validate_ref(organization, project, stack)
        with _step('failed to open environment'):
            values = await self._environments.open_and_read_environment(
                organization, project, stack,
            )
        config = values.get('pulumiConfig')
        if not isinstance(config, dict):
            raise NotFoundError(f"'pulumiConfig' not found in environment {project}/{stack}")

        matches = await self._find_stacks(ref)
        if not matches:
            raise NotFoundError(f'no stacks found for {self._kind.name} {stack}')
        enriched = [await self._enrich(match) for match in matches]
        latest = max(enriched, key=lambda item: item.last_update)

        return WorkloadView(
            name=stack,
            blueprint=project,
            blueprint_name=project,
            project_id=latest.tags.get(PROJECT_ID_TAG, ''),
            stage=latest.tags.get(STAGE_TAG, ''),
            stack=latest.to_dict(),
            advanced=[redact_config(config)],
        )

    async def _find_stacks(self, ref: StackRef) -> list[Stack]:
        # The kind tag holds the display name; fall back to the slug within the project.
        with _step('failed to list stacks'):
            stacks = await self._stacks.list_all_stacks(
                StackFilter(
                    organization=ref.organization,
                    tag_name=self._kind.tag_key,
                    tag_value=ref.stack,
                ),
            )
            if stacks:
                return stacks
            candidates = await self._stacks.list_all_stacks(
                StackFilter(
                    organization=ref.organization,
                    project=ref.project,
                    tag_name=self._kind.tag_key,
                ),
            )
        return [item for item in candidates if item.stack_name == ref.stack]

    async def _enrich(self, stack: Stack) -> Stack:
        """Attach the latest deployment result/id and the current tag set."""
        org = stack.org_name or self._config.organization
        project, name = stack.project_name, stack.stack_name
        with _step(f'failed to read deployments for {org}/{project}/{name}'):
            deployment = await self._stacks.get_latest_deployment(org, project, name)
            current = await self._stacks.get_stack(org, project, name)
        return replace(
            stack,
            result=deployment.status if deployment else NO_UPDATES,
            deployment_id=deployment.id if deployment else '',
            tags=dict(current.tags),
        )

    async def list_workloads(
        self, workload: str | None = None, project_id: str | None = None,
    ) -> list[Stack]:
        """Every stack of this kind, enriched, optionally filtered by project id."""
        filters = StackFilter(
            organization=self._config.organization,
            tag_name=self._kind.tag_key,
            tag_value=workload or '',
        )
        with _step('failed to list stacks'):
            stacks = await self._stacks.list_all_stacks(filters)
        enriched = [await self._enrich(stack) for stack in stacks]
        if project_id:
            enriched = [item for item in enriched if item.tags.get(PROJECT_ID_TAG) == project_id]
        return enriched

    async def get_deployment_logs(
        self,
        organization: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = '',
    ) -> LogPage:
        self._validate_ref(organization, project, stack)
        require(deployment_id, 'deployment_id')
        with _step('failed to fetch deployment logs'):
            return await self._stacks.get_deployment_logs(
                organization, project, stack, deployment_id, continuation_token,
            )

    async def iter_deployment_logs(
        self,
        organization: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = '',
    ) -> AsyncIterator[LogPage]:
        """Yield log pages, polling on a fixed delay until there is no next token."""
        token = continuation_token
        while True:
            page = await self.get_deployment_logs(
                organization, project, stack, deployment_id, token,
            )
            yield page
            if not page.next_token:
                return
            token = page.next_token
            await asyncio.sleep(self._config.log_poll_seconds)

    # ── Validation ───────────────────────────────────────────────

    @staticmethod
    def _validate_ref(organization: str, project: str, stack: str) -> StackRef:
        return StackRef(
            require(organization, 'organization'),
            require(project, 'project'),
            require(stack, 'stack'),
        )

    @staticmethod
    def _validate_custom_tags(request: WorkloadRequest) -> list[Tag]:
        tags = []
        for tag in request.tags:
            key = require(tag.key, 'tags.key')
            if key in RESERVED_TAG_KEYS:
                raise ValidationError(f'tag key {key!r} is reserved', field='tags')
            tags.append(Tag(key, tag.value))
        return tags

    def _require_shared_repository(self) -> None:
        if not self._config.blueprint_repository:
            raise ConfigurationError('shared blueprint repository is not configured')
