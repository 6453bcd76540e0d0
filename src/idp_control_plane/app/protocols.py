"""Client protocol interfaces for dependency injection.

The orchestrator and the reclamation scheduler depend on these contracts,
not on the HTTP clients. The app factory wires the real clients in non-local
environments and the in-memory fakes in local mode and tests.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .providers.environment_client import EnvironmentDefinition
from .providers.repository_client import (
    CommitResult,
    OAuthToken,
    RepoCreationRequest,
    Repository,
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
)


@runtime_checkable
class StackApi(Protocol):
    """Stack registry, deployments and team grants."""

    async def create_stack(self, organization: str, project: str, stack: str) -> Stack: ...
    async def delete_stack(self, organization: str, project: str, stack: str) -> None: ...
    async def get_stack(self, organization: str, project: str, stack: str) -> Stack: ...
    async def list_stacks(self, filters: StackFilter | None = None) -> StackPage: ...
    def iter_stacks(self, filters: StackFilter | None = None) -> AsyncIterator[Stack]: ...
    async def list_all_stacks(self, filters: StackFilter | None = None) -> list[Stack]: ...
    async def set_stack_tag(self, organization: str, project: str, stack: str, tag: Tag) -> None: ...
    async def create_deployment_settings(
        self, organization: str, project: str, stack: str, source: GitSource,
    ) -> dict[str, Any]: ...
    async def create_deployment(
        self, organization: str, project: str, stack: str, *, operation: str = 'update',
    ) -> DeploymentHandle: ...
    async def get_latest_deployment(
        self, organization: str, project: str, stack: str,
    ) -> Deployment | None: ...
    async def get_deployment_logs(
        self,
        organization: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = '',
    ) -> LogPage: ...
    async def grant_stack_access_to_team(
        self, organization: str, team: str, project: str, stack: str, permission: int = 103,
    ) -> None: ...
    async def aclose(self) -> None: ...


@runtime_checkable
class EnvironmentApi(Protocol):
    """Per-stack configuration environments."""

    async def create_environment(self, organization: str, project: str, name: str) -> bool: ...
    async def update_environment(
        self, organization: str, project: str, name: str, definition: EnvironmentDefinition,
    ) -> None: ...
    async def open_and_read_environment(
        self, organization: str, project: str, name: str,
    ) -> dict[str, Any]: ...
    async def aclose(self) -> None: ...


@runtime_checkable
class RepositoryApi(Protocol):
    """Source-control repositories and OAuth."""

    @property
    def is_configured(self) -> bool: ...
    async def exchange_code_for_token(self, code: str) -> OAuthToken: ...
    async def create_repository(self, request: RepoCreationRequest) -> Repository: ...
    async def commit_directory(
        self, owner: str, repo: str, root: str | Path, message: str = ...,
    ) -> CommitResult: ...
    async def set_branch_protection(
        self, owner: str, repo: str, branch: str, require_reviews: bool = False,
    ) -> None: ...
    async def aclose(self) -> None: ...
