"""Typed records for the infrastructure-stack API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class Tag:
    key: str
    value: str = ""


@dataclass(frozen=True, slots=True)
class StackRef:
    """The ``(org, project, stack)`` triple that correlates one workload everywhere."""

    organization: str
    project: str
    stack: str

    def __str__(self) -> str:
        return f"{self.organization}/{self.project}/{self.stack}"


@dataclass(frozen=True, slots=True)
class Stack:
    """A stack as returned by list/get, optionally enriched with deployment info."""

    org_name: str
    project_name: str
    stack_name: str
    last_update: int = 0
    resource_count: int = 0
    result: str = ""
    deployment_id: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> StackRef:
        return StackRef(self.org_name, self.project_name, self.stack_name)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Stack:
        # List/get use orgName/projectName/stackName; create uses organization/project/name.
        return cls(
            org_name=payload.get("orgName") or payload.get("organization", ""),
            project_name=payload.get("projectName") or payload.get("project", ""),
            stack_name=payload.get("stackName") or payload.get("name", ""),
            last_update=int(payload.get("lastUpdate") or 0),
            resource_count=int(payload.get("resourceCount") or 0),
            result=payload.get("result", "") or "",
            deployment_id=payload.get("deploymentId", "") or "",
            tags=dict(payload.get("tags") or {}),
            outputs=dict(payload.get("outputs") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "orgName": self.org_name,
            "projectName": self.project_name,
            "stackName": self.stack_name,
            "lastUpdate": self.last_update,
            "resourceCount": self.resource_count,
            "result": self.result,
            "deploymentId": self.deployment_id,
            "tags": dict(self.tags),
            "outputs": dict(self.outputs),
        }


@dataclass(frozen=True, slots=True)
class StackFilter:
    """Query parameters for ``GET /user/stacks``."""

    organization: str = ""
    project: str = ""
    tag_name: str = ""
    tag_value: str = ""
    continuation_token: str = ""

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.organization:
            params["organization"] = self.organization
        if self.project:
            params["project"] = self.project
        if self.tag_name:
            params["tagName"] = self.tag_name
        if self.tag_value:
            params["tagValue"] = self.tag_value
        if self.continuation_token:
            params["continuationToken"] = self.continuation_token
        return params


@dataclass(frozen=True, slots=True)
class StackPage:
    stacks: tuple[Stack, ...]
    continuation_token: str = ""


@dataclass(frozen=True, slots=True)
class Deployment:
    id: str
    status: str = ""
    version: int = 0
    operation: str = ""
    created: str = ""
    modified: str = ""

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Deployment:
        return cls(
            id=payload.get("id", ""),
            status=payload.get("status", ""),
            version=int(payload.get("version") or 0),
            operation=payload.get("pulumiOperation") or payload.get("operation", "") or "",
            created=payload.get("created", ""),
            modified=payload.get("modified", ""),
        )


@dataclass(frozen=True, slots=True)
class DeploymentHandle:
    """Result of requesting a deployment; says nothing about its outcome."""

    id: str
    status: str = ""
    url: str = ""
    version: int = 0

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> DeploymentHandle:
        return cls(
            id=payload.get("id", ""),
            status=payload.get("status", ""),
            url=payload.get("url", ""),
            version=int(payload.get("version") or 0),
        )


@dataclass(frozen=True, slots=True)
class GitSource:
    """Where a deployment pulls its program from."""

    repo_url: str
    repo_dir: str = ""
    branch: str = "refs/heads/main"


@dataclass(frozen=True, slots=True)
class LogLine:
    line: str = ""
    header: str = ""
    timestamp: datetime | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> LogLine:
        raw_ts = payload.get("timestamp")
        timestamp = None
        if raw_ts:
            try:
                timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))
            except ValueError:
                timestamp = None
        return cls(
            line=payload.get("line", "") or "",
            header=payload.get("header", "") or "",
            timestamp=timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
        if self.header:
            data["header"] = self.header
        if self.line:
            data["line"] = self.line
        return data


@dataclass(frozen=True, slots=True)
class LogPage:
    lines: tuple[LogLine, ...] = ()
    next_token: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"lines": [line.to_dict() for line in self.lines]}
        if self.next_token:
            data["nextToken"] = self.next_token
        return data


@dataclass(frozen=True, slots=True)
class Team:
    name: str
    display_name: str = ""
    kind: str = ""
    description: str = ""

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Team:
        return cls(
            name=payload.get("name", ""),
            display_name=payload.get("displayName", ""),
            kind=payload.get("kind", ""),
            description=payload.get("description", ""),
        )
