"""Async HTTP client for the infrastructure-stack API.

Covers the stack registry (create, get, list, delete, tags), deployments
(settings, create, latest, logs) and team grants. Every call carries the
fixed ``Accept`` version header and ``Authorization: token <value>``.

The client is a pure request/response wrapper: it never caches stacks and
never retries. Status checks follow the API contract exactly, e.g. tag
writes and team grants must answer 204.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import Any

import httpx

from ..errors import UpstreamError, ValidationError
from .base import DEFAULT_TIMEOUT_SECONDS, BaseApiClient
from .stack_models import (
    Deployment,
    DeploymentHandle,
    GitSource,
    LogLine,
    LogPage,
    Stack,
    StackFilter,
    StackPage,
    Tag,
    Team,
)

logger = logging.getLogger(__name__)

DEFAULT_STACK_API_URL = "https://api.pulumi.com/api"
DEFAULT_API_VERSION = "application/vnd.pulumi+8"

DEPLOYMENT_OPERATIONS = frozenset({"update", "destroy"})

# Stack permission levels understood by the team-permission endpoint.
STACK_PERMISSION_READ = 101
STACK_PERMISSION_WRITE = 102
STACK_PERMISSION_ADMIN = 103


class StackClient(BaseApiClient):
    """Typed wrapper over the stack API.

    Args:
        api_token: Access token sent as ``Authorization: token <value>``.
        base_url: API root, e.g. ``https://api.pulumi.com/api``.
        api_version: Value of the ``Accept`` header pinned on every call.
        http_client: Injected ``httpx.AsyncClient``; one is created if omitted.
        timeout_seconds: Per-request timeout.
    """

    service = "stack"

    def __init__(
        self,
        *,
        api_token: str,
        base_url: str = DEFAULT_STACK_API_URL,
        api_version: str = DEFAULT_API_VERSION,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not api_token:
            raise ValueError("api_token is required")
        super().__init__(
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self._api_token = api_token
        self._api_version = api_version

    def _default_headers(self) -> dict[str, str]:
        return {
            "Accept": self._api_version,
            "Content-Type": "application/json",
            "Authorization": f"token {self._api_token}",
        }

    # ── Stacks ───────────────────────────────────────────────────

    async def create_stack(self, organization: str, project: str, stack: str) -> Stack:
        """Create ``stack`` under ``organization/project``."""
        resp = await self._request(
            "POST",
            f"/stacks/{organization}/{project}",
            json={"stackName": stack},
            expected=(200, 201),
        )
        payload = self._json(resp) if resp.content else {}
        created = Stack.from_api(payload) if isinstance(payload, dict) else None
        logger.info(
            "Stack created: %s/%s/%s",
            organization,
            project,
            stack,
            extra={"organization": organization, "project": project, "stack": stack},
        )
        if created is None or not created.stack_name:
            return Stack(org_name=organization, project_name=project, stack_name=stack)
        return created

    async def delete_stack(self, organization: str, project: str, stack: str) -> None:
        """Delete a stack record.

        Raises UpstreamNotFoundError if the stack is already gone.
        """
        if not (organization and project and stack):
            raise ValidationError("organization, project, and stack are required")
        await self._request(
            "DELETE",
            f"/stacks/{organization}/{project}/{stack}",
            expected=(204,),
        )
        logger.info(
            "Stack deleted: %s/%s/%s",
            organization,
            project,
            stack,
            extra={"organization": organization, "project": project, "stack": stack},
        )

    async def get_stack(self, organization: str, project: str, stack: str) -> Stack:
        resp = await self._request("GET", f"/stacks/{organization}/{project}/{stack}")
        payload = self._json(resp)
        fetched = Stack.from_api(payload)
        # Some deployments of the API omit the identifiers on the single-stack view.
        return replace(
            fetched,
            org_name=fetched.org_name or organization,
            project_name=fetched.project_name or project,
            stack_name=fetched.stack_name or stack,
        )

    async def list_stacks(self, filters: StackFilter | None = None) -> StackPage:
        """Return one page of stacks matching ``filters``."""
        params = (filters or StackFilter()).to_params()
        resp = await self._request("GET", "/user/stacks", params=params)
        payload = self._json(resp)
        if not isinstance(payload, dict):
            raise UpstreamError(
                self.service,
                resp.status_code,
                f"Expected object from /user/stacks, got {type(payload).__name__}",
            )
        stacks = tuple(Stack.from_api(item) for item in payload.get("stacks") or [])
        return StackPage(
            stacks=stacks,
            continuation_token=payload.get("continuationToken", "") or "",
        )

    async def iter_stacks(self, filters: StackFilter | None = None) -> AsyncIterator[Stack]:
        """Yield every matching stack, following continuation tokens."""
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

    async def set_stack_tag(
        self, organization: str, project: str, stack: str, tag: Tag,
    ) -> None:
        """Upsert one tag. The API must answer 204."""
        await self._request(
            "POST",
            f"/stacks/{organization}/{project}/{stack}/tags",
            json={"name": tag.key, "value": tag.value},
            expected=(204,),
        )
        logger.debug(
            "Stack tag set: %s/%s/%s %s",
            organization,
            project,
            stack,
            tag.key,
        )

    # ── Deployments ──────────────────────────────────────────────

    async def create_deployment_settings(
        self, organization: str, project: str, stack: str, source: GitSource,
    ) -> dict[str, Any]:
        """Store the git source and pre-run commands deployments inherit."""
        body: dict[str, Any] = {
            "sourceContext": {
                "git": {
                    "repoURL": source.repo_url,
                    "branch": source.branch,
                },
            },
            "operationContext": {
                "preRunCommands": [
                    f"pulumi stack select {organization}/{stack}",
                    f"pulumi config env add {project}/{stack} -y",
                ],
            },
        }
        if source.repo_dir:
            body["sourceContext"]["git"]["repoDir"] = source.repo_dir

        resp = await self._request(
            "POST",
            f"/stacks/{organization}/{project}/{stack}/deployments/settings",
            json=body,
        )
        return self._json(resp) if resp.content else {}

    async def create_deployment(
        self,
        organization: str,
        project: str,
        stack: str,
        *,
        operation: str = "update",
    ) -> DeploymentHandle:
        """Request a deployment that inherits the stack's stored settings.

        Deployment settings must already exist for the stack.
        """
        if operation not in DEPLOYMENT_OPERATIONS:
            raise ValidationError(
                f"unsupported deployment operation {operation!r}", field="operation",
            )
        resp = await self._request(
            "POST",
            f"/stacks/{organization}/{project}/{stack}/deployments",
            json={"operation": operation, "inheritSettings": True},
            expected=(200, 202),
        )
        payload = self._json(resp) if resp.content else {}
        handle = DeploymentHandle.from_api(payload if isinstance(payload, dict) else {})
        logger.info(
            "Deployment requested: %s/%s/%s operation=%s id=%s",
            organization,
            project,
            stack,
            operation,
            handle.id or "-",
            extra={"stack": stack, "operation": operation, "deployment_id": handle.id},
        )
        return handle

    async def get_latest_deployment(
        self, organization: str, project: str, stack: str,
    ) -> Deployment | None:
        """Return the most recent deployment, or None when the stack has none."""
        resp = await self._request(
            "GET",
            f"/stacks/{organization}/{project}/{stack}/deployments",
            params={"page": "1", "pageSize": "1"},
        )
        payload = self._json(resp)
        deployments = (payload.get("deployments") or []) if isinstance(payload, dict) else []
        if not deployments:
            return None
        return Deployment.from_api(deployments[0])

    async def get_deployment_logs(
        self,
        organization: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = "",
    ) -> LogPage:
        params = {"continuationToken": continuation_token} if continuation_token else None
        resp = await self._request(
            "GET",
            f"/stacks/{organization}/{project}/{stack}/deployments/{deployment_id}/logs",
            params=params,
        )
        payload = self._json(resp)
        if not isinstance(payload, dict):
            return LogPage()
        return LogPage(
            lines=tuple(LogLine.from_api(line) for line in payload.get("lines") or []),
            next_token=payload.get("nextToken", "") or "",
        )

    # ── Teams ────────────────────────────────────────────────────

    async def list_teams(self, organization: str) -> list[Team]:
        resp = await self._request("GET", f"/orgs/{organization}/teams")
        payload = self._json(resp)
        teams = (payload.get("teams") or []) if isinstance(payload, dict) else []
        return [Team.from_api(team) for team in teams]

    async def grant_stack_access_to_team(
        self,
        organization: str,
        team: str,
        project: str,
        stack: str,
        permission: int = STACK_PERMISSION_ADMIN,
    ) -> None:
        """Add a stack permission to ``team``. The API must answer 204."""
        await self._request(
            "PATCH",
            f"/orgs/{organization}/teams/{team}",
            json={
                "addStackPermission": {
                    "projectName": project,
                    "stackName": stack,
                    "permission": permission,
                },
            },
            expected=(204,),
        )
        logger.info(
            "Granted team %s permission %d on %s/%s/%s",
            team,
            permission,
            organization,
            project,
            stack,
        )
