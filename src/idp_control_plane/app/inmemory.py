"""In-memory client implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the client protocols but
keep everything in dicts (no persistence across restarts).

Every fake records its calls in ``calls`` and appends ``"<service>.<op>"`` to
a ``journal`` list that several fakes can share, so tests can assert the
cross-client ordering of a sequence. ``fail(op, error)`` makes an operation
raise; ``delay(op, seconds)`` makes it slow.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import AsyncIterator
from dataclasses import replace
from pathlib import Path
from typing import Any

from .errors import PlatformError, UpstreamError, UpstreamNotFoundError, ValidationError
from .providers.environment_client import EnvironmentDefinition
from .providers.repository_client import (
    CommitResult,
    OAuthToken,
    RepoCreationRequest,
    Repository,
    collect_files,
)
from .providers.stack_models import (
    Deployment,
    DeploymentHandle,
    GitSource,
    LogPage,
    Stack,
    StackFilter,
    StackPage,
    Tag,
    Team,
)

_Key = tuple[str, str, str]


class _RecordingFake:
    service = "fake"

    def __init__(self, journal: list[str] | None = None) -> None:
        self.journal: list[str] = journal if journal is not None else []
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False
        self._failures: dict[str, PlatformError] = {}
        self._delays: dict[str, float] = {}

    def fail(self, operation: str, error: PlatformError | None = None) -> None:
        """Make ``operation`` raise ``error`` (an UpstreamError 500 by default)."""
        self._failures[operation] = error or UpstreamError(
            self.service, 500, f"{operation} failed",
        )

    def delay(self, operation: str, seconds: float) -> None:
        self._delays[operation] = seconds

    def reset_failures(self) -> None:
        self._failures.clear()
        self._delays.clear()

    def ops(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        self.journal.append(f"{self.service}.{operation}")
        seconds = self._delays.get(operation)
        if seconds:
            await asyncio.sleep(seconds)
        error = self._failures.get(operation)
        if error is not None:
            raise copy.copy(error)

    async def aclose(self) -> None:
        self.closed = True


class InMemoryStackClient(_RecordingFake):
    service = "stack"

    def __init__(self, journal: list[str] | None = None, *, page_size: int = 100) -> None:
        super().__init__(journal)
        self.page_size = page_size
        self.stacks: dict[_Key, Stack] = {}
        self.settings: dict[_Key, GitSource] = {}
        self.deployments: dict[_Key, list[Deployment]] = {}
        self.grants: list[tuple[str, str, str, str, int]] = []
        self.teams: list[Team] = []
        self.logs: dict[str, list[LogPage]] = {}
        self._clock = 0
        self._deployment_seq = 0

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    def _get(self, key: _Key) -> Stack:
        stack = self.stacks.get(key)
        if stack is None:
            raise UpstreamNotFoundError(self.service, f"stack {'/'.join(key)} not found")
        return stack

    def seed_stack(
        self,
        organization: str,
        project: str,
        stack: str,
        *,
        tags: dict[str, str] | None = None,
        last_update: int | None = None,
        with_settings: bool = False,
    ) -> Stack:
        """Insert a stack directly, bypassing the journal."""
        key = (organization, project, stack)
        record = Stack(
            org_name=organization,
            project_name=project,
            stack_name=stack,
            last_update=last_update if last_update is not None else self._tick(),
            tags=dict(tags or {}),
        )
        self.stacks[key] = record
        if with_settings:
            self.settings[key] = GitSource(repo_url=f"https://example.invalid/{project}.git")
        return record

    # ── Stacks ───────────────────────────────────────────────────

    async def create_stack(self, organization: str, project: str, stack: str) -> Stack:
        await self._record("create_stack", organization, project, stack)
        key = (organization, project, stack)
        if key in self.stacks:
            raise UpstreamError(self.service, 409, f"stack {'/'.join(key)} already exists")
        record = Stack(
            org_name=organization,
            project_name=project,
            stack_name=stack,
            last_update=self._tick(),
        )
        self.stacks[key] = record
        return record

    async def delete_stack(self, organization: str, project: str, stack: str) -> None:
        await self._record("delete_stack", organization, project, stack)
        key = (organization, project, stack)
        self._get(key)
        del self.stacks[key]
        self.settings.pop(key, None)
        self.deployments.pop(key, None)

    async def get_stack(self, organization: str, project: str, stack: str) -> Stack:
        await self._record("get_stack", organization, project, stack)
        return self._get((organization, project, stack))

    async def list_stacks(self, filters: StackFilter | None = None) -> StackPage:
        filters = filters or StackFilter()
        await self._record("list_stacks", filters)
        matches = [
            stack
            for stack in self.stacks.values()
            if (not filters.organization or stack.org_name == filters.organization)
            and (not filters.project or stack.project_name == filters.project)
            and (not filters.tag_name or filters.tag_name in stack.tags)
            and (not filters.tag_value or stack.tags.get(filters.tag_name) == filters.tag_value)
        ]
        # List results do not carry tags.
        listed = [replace(stack, tags={}) for stack in matches]
        start = int(filters.continuation_token or 0)
        end = start + self.page_size
        token = str(end) if end < len(listed) else ""
        return StackPage(stacks=tuple(listed[start:end]), continuation_token=token)

    async def iter_stacks(self, filters: StackFilter | None = None) -> AsyncIterator[Stack]:
        current = filters or StackFilter()
        while True:
            page = await self.list_stacks(current)
            for stack in page.stacks:
                yield stack
            if not page.continuation_token:
                return
            current = replace(current, continuation_token=page.continuation_token)

    async def list_all_stacks(self, filters: StackFilter | None = None) -> list[Stack]:
        return [stack async for stack in self.iter_stacks(filters)]

    async def set_stack_tag(self, organization: str, project: str, stack: str, tag: Tag) -> None:
        await self._record("set_stack_tag", organization, project, stack, tag)
        key = (organization, project, stack)
        current = self._get(key)
        self.stacks[key] = replace(current, tags={**current.tags, tag.key: tag.value})

    # ── Deployments ──────────────────────────────────────────────

    async def create_deployment_settings(
        self, organization: str, project: str, stack: str, source: GitSource,
    ) -> dict[str, Any]:
        await self._record("create_deployment_settings", organization, project, stack, source)
        key = (organization, project, stack)
        self._get(key)
        self.settings[key] = source
        return {"repoURL": source.repo_url, "repoDir": source.repo_dir}

    async def create_deployment(
        self, organization: str, project: str, stack: str, *, operation: str = "update",
    ) -> DeploymentHandle:
        await self._record("create_deployment", organization, project, stack, operation)
        key = (organization, project, stack)
        self._get(key)
        if key not in self.settings:
            raise UpstreamError(
                self.service, 400, f"no deployment settings for {'/'.join(key)}",
            )
        self._deployment_seq += 1
        deployment = Deployment(
            id=f"dep-{self._deployment_seq}",
            status="not-started",
            version=self._deployment_seq,
            operation=operation,
        )
        self.deployments.setdefault(key, []).append(deployment)
        self.stacks[key] = replace(self.stacks[key], last_update=self._tick())
        return DeploymentHandle(
            id=deployment.id, status=deployment.status, version=deployment.version,
        )

    async def get_latest_deployment(
        self, organization: str, project: str, stack: str,
    ) -> Deployment | None:
        await self._record("get_latest_deployment", organization, project, stack)
        history = self.deployments.get((organization, project, stack)) or []
        return history[-1] if history else None

    async def get_deployment_logs(
        self,
        organization: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = "",
    ) -> LogPage:
        await self._record(
            "get_deployment_logs", organization, project, stack, deployment_id, continuation_token,
        )
        pages = self.logs.get(deployment_id)
        if pages is None:
            raise UpstreamNotFoundError(self.service, f"deployment {deployment_id} not found")
        index = int(continuation_token or 0)
        if index >= len(pages):
            return LogPage()
        return pages[index]

    # ── Teams ────────────────────────────────────────────────────

    async def list_teams(self, organization: str) -> list[Team]:
        await self._record("list_teams", organization)
        return list(self.teams)

    async def grant_stack_access_to_team(
        self, organization: str, team: str, project: str, stack: str, permission: int = 103,
    ) -> None:
        await self._record("grant_stack_access_to_team", organization, team, project, stack)
        self._get((organization, project, stack))
        self.grants.append((organization, team, project, stack, permission))


class InMemoryEnvironmentClient(_RecordingFake):
    service = "environment"

    def __init__(self, journal: list[str] | None = None) -> None:
        super().__init__(journal)
        self.environments: dict[_Key, dict[str, Any]] = {}

    def seed_environment(
        self, organization: str, project: str, name: str, values: dict[str, Any],
    ) -> None:
        self.environments[(organization, project, name)] = dict(values)

    async def create_environment(self, organization: str, project: str, name: str) -> bool:
        await self._record("create_environment", organization, project, name)
        key = (organization, project, name)
        if key in self.environments:
            return False
        self.environments[key] = {}
        return True

    async def update_environment(
        self, organization: str, project: str, name: str, definition: EnvironmentDefinition,
    ) -> None:
        await self._record("update_environment", organization, project, name, definition)
        key = (organization, project, name)
        if key not in self.environments:
            raise UpstreamNotFoundError(self.service, f"environment {'/'.join(key)} not found")
        self.environments[key] = {
            "imports": list(definition.imports),
            "pulumiConfig": dict(definition.pulumi_config),
        }

    async def open_and_read_environment(
        self, organization: str, project: str, name: str,
    ) -> dict[str, Any]:
        await self._record("open_and_read_environment", organization, project, name)
        key = (organization, project, name)
        if key not in self.environments:
            raise UpstreamNotFoundError(self.service, f"environment {'/'.join(key)} not found")
        values = copy.deepcopy(self.environments[key])
        values.pop("imports", None)
        return values


class InMemoryRepositoryClient(_RecordingFake):
    service = "github"

    def __init__(
        self,
        journal: list[str] | None = None,
        *,
        configured: bool = True,
        owner: str = "idp-bot",
        default_branch: str = "main",
    ) -> None:
        super().__init__(journal)
        self._configured = configured
        self.owner = owner
        self.default_branch = default_branch
        self.repositories: dict[str, Repository] = {}
        self.commits: dict[str, list[str]] = {}
        self.protections: list[tuple[str, str, str, bool]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def exchange_code_for_token(self, code: str) -> OAuthToken:
        if not code:
            raise ValidationError("missing required field: code", field="code")
        await self._record("exchange_code_for_token", code)
        return OAuthToken(access_token=f"gho_{code}", token_type="bearer", scope="repo")

    async def create_repository(self, request: RepoCreationRequest) -> Repository:
        await self._record("create_repository", request)
        if request.repo_name in self.repositories:
            raise UpstreamError(self.service, 422, "name already exists on this account")
        repo = Repository(
            owner=self.owner,
            name=request.repo_name,
            html_url=f"https://github.com/{self.owner}/{request.repo_name}",
            clone_url=f"https://github.com/{self.owner}/{request.repo_name}.git",
        )
        self.repositories[repo.name] = repo
        return repo

    async def commit_directory(
        self, owner: str, repo: str, root: str | Path, message: str = "Add Pulumi project files",
    ) -> CommitResult:
        await self._record("commit_directory", owner, repo, message)
        if repo not in self.repositories:
            raise UpstreamNotFoundError(self.service, f"repository {owner}/{repo} not found")
        self.commits[repo] = collect_files(root)
        return CommitResult(sha=uuid.uuid4().hex, branch=self.default_branch)

    async def set_branch_protection(
        self, owner: str, repo: str, branch: str, require_reviews: bool = False,
    ) -> None:
        await self._record("set_branch_protection", owner, repo, branch, require_reviews)
        self.protections.append((owner, repo, branch, require_reviews))


class InMemoryTemplateRenderer(_RecordingFake):
    """Writes a minimal project instead of running the CLI."""

    service = "renderer"

    async def render(
        self, template: str, target_dir: Path, *, project_name: str, description: str,
    ) -> None:
        await self._record("render", template, project_name)
        target = Path(target_dir)
        (target / "Pulumi.yaml").write_text(
            f"name: {project_name}\ndescription: {description}\ntemplate: {template}\n",
        )
        (target / "src").mkdir(exist_ok=True)
        (target / "src" / "index.ts").write_text("export {};\n")
