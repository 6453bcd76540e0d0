"""Async HTTP client for the environments (ESC) API.

Each workload owns one environment named after its stack, under the
blueprint's project. The environment imports the stage environment and holds
the merged ``pulumiConfig`` overrides that deployments pick up through
``pulumi config env add``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import UpstreamError
from .base import DEFAULT_TIMEOUT_SECONDS, BaseApiClient
from .stack_client import DEFAULT_API_VERSION, DEFAULT_STACK_API_URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EnvironmentDefinition:
    imports: tuple[str, ...] = ()
    pulumi_config: dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {"values": {"pulumiConfig": dict(self.pulumi_config)}}
        if self.imports:
            document["imports"] = list(self.imports)
        return document


def _unwrap_value(node: Any) -> Any:
    """Collapse an evaluated value tree into plain Python values.

    Evaluated environments wrap every node as ``{"value": ..., "trace": ...}``
    with nested objects and lists wrapped the same way.
    """
    if isinstance(node, dict) and "value" in node:
        return _unwrap_value(node["value"])
    if isinstance(node, dict):
        return {key: _unwrap_value(child) for key, child in node.items()}
    if isinstance(node, list):
        return [_unwrap_value(child) for child in node]
    return node


class EnvironmentClient(BaseApiClient):
    """Create, define, open and read environments.

    Shares the stack API's token and version header; paths live under
    ``<base_url>/esc``.
    """

    service = "environment"

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
            base_url=f"{base_url.rstrip('/')}/esc",
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

    async def create_environment(self, organization: str, project: str, name: str) -> bool:
        """Create the environment. Returns False if it already exists."""
        try:
            await self._request(
                "POST",
                f"/environments/{organization}",
                json={"project": project, "name": name},
                expected=(200, 201),
            )
        except UpstreamError as exc:
            if exc.status_code == 409:
                logger.debug("Environment already exists: %s/%s/%s", organization, project, name)
                return False
            raise
        logger.info("Environment created: %s/%s/%s", organization, project, name)
        return True

    async def update_environment(
        self,
        organization: str,
        project: str,
        name: str,
        definition: EnvironmentDefinition,
    ) -> None:
        """Replace the environment definition.

        The endpoint takes YAML; JSON is a subset of YAML, so the document is
        sent JSON-encoded.
        """
        await self._request(
            "PATCH",
            f"/environments/{organization}/{project}/{name}",
            content=json.dumps(definition.to_document()),
            headers={"Content-Type": "application/x-yaml"},
        )
        logger.info(
            "Environment updated: %s/%s/%s imports=%s keys=%d",
            organization,
            project,
            name,
            ",".join(definition.imports) or "-",
            len(definition.pulumi_config),
        )

    async def open_environment(self, organization: str, project: str, name: str) -> str:
        """Evaluate the environment and return the open-session id."""
        resp = await self._request(
            "POST", f"/environments/{organization}/{project}/{name}/open",
        )
        open_id = (self._json(resp) or {}).get("id", "")
        if not open_id:
            raise UpstreamError(self.service, resp.status_code, "open returned no session id")
        return open_id

    async def read_open_environment(
        self, organization: str, project: str, name: str, open_id: str,
    ) -> dict[str, Any]:
        resp = await self._request(
            "GET", f"/environments/{organization}/{project}/{name}/open/{open_id}",
        )
        payload = self._json(resp) or {}
        properties = payload.get("properties") or {}
        return {key: _unwrap_value(value) for key, value in properties.items()}

    async def open_and_read_environment(
        self, organization: str, project: str, name: str,
    ) -> dict[str, Any]:
        open_id = await self.open_environment(organization, project, name)
        return await self.read_open_environment(organization, project, name, open_id)
