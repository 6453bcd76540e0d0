"""Request and response bodies for workload provisioning.

Wire names are camelCase (``blueprintName``, ``projectId``); Python
attributes are snake_case. Both spellings are accepted on input.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TagBody(BaseModel):
    key: str
    value: str = ''


class WorkloadRequest(BaseModel):
    """A provisioning (or re-deployment) request for one workload."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ''
    blueprint: str = ''
    blueprint_name: str = Field(default='', alias='blueprintName')
    project_id: str = Field(default='', alias='projectId')
    stage: str = ''
    team: str = ''
    tags: list[TagBody] = Field(default_factory=list)
    advanced: list[dict[str, Any]] = Field(default_factory=list)
    cookiecut: bool = False

    def merged_config(self) -> dict[str, Any]:
        """Flatten ``advanced`` into one mapping; later maps win on key collision."""
        merged: dict[str, Any] = {}
        for overrides in self.advanced:
            merged.update(overrides)
        return merged


class RepoCreationResult(BaseModel):
    """Returned by create. ``success`` says nothing about the deployment outcome."""

    repo_url: str
    clone_url: str
    message: str
    success: bool = True


class WorkloadView(BaseModel):
    """Details of one provisioned workload, reconstructed from tags and its environment."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    blueprint: str
    blueprint_name: str = Field(default='', serialization_alias='blueprintName')
    project_id: str = Field(default='', serialization_alias='projectId')
    stage: str = ''
    stack: dict[str, Any] = Field(default_factory=dict)
    advanced: list[dict[str, Any]] = Field(default_factory=list)
