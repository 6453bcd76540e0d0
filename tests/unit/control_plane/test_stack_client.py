"""Tests for StackClient: headers, status contracts, pagination, error mapping."""
from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from idp_control_plane.app.errors import (
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamTimeoutError,
    ValidationError,
)
from idp_control_plane.app.providers.stack_client import StackClient
from idp_control_plane.app.providers.stack_models import GitSource, StackFilter, Tag


# ─────────────────────── helpers ───────────────────────


def _response(status_code: int = 200, json_data=None, text: str | None = None) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.test")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text or "", request=request)


def _make_client(*responses: httpx.Response) -> tuple[StackClient, AsyncMock]:
    http = AsyncMock(spec=httpx.AsyncClient)
    http.request = AsyncMock(side_effect=list(responses))
    client = StackClient(
        api_token="pul-secret",
        base_url="https://api.example.test/api",
        http_client=http,
        timeout_seconds=5,
    )
    return client, http


def _call(http: AsyncMock, index: int = 0):
    args, kwargs = http.request.call_args_list[index]
    return args[0], args[1], kwargs


# ─────────────────────── construction ───────────────────────


def test_requires_token():
    with pytest.raises(ValueError):
        StackClient(api_token="")


@pytest.mark.asyncio
async def test_headers_and_timeout_on_every_call():
    client, http = _make_client(_response(200, {"orgName": "acme", "projectName": "p", "stackName": "s"}))
    await client.get_stack("acme", "p", "s")

    method, url, kwargs = _call(http)
    assert method == "GET"
    assert url == "https://api.example.test/api/stacks/acme/p/s"
    assert kwargs["headers"]["Authorization"] == "token pul-secret"
    assert kwargs["headers"]["Accept"] == "application/vnd.pulumi+8"
    assert kwargs["timeout"] == 5.0


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client, http = _make_client()
    await client.aclose()
    http.aclose.assert_not_called()


# ─────────────────────── stacks ───────────────────────


@pytest.mark.asyncio
async def test_create_stack_posts_stack_name():
    client, http = _make_client(_response(200, {}))
    stack = await client.create_stack("acme", "aws-static-site", "my-cool-app")

    method, url, kwargs = _call(http)
    assert method == "POST"
    assert url.endswith("/stacks/acme/aws-static-site")
    assert kwargs["json"] == {"stackName": "my-cool-app"}
    assert str(stack.ref) == "acme/aws-static-site/my-cool-app"


@pytest.mark.asyncio
async def test_create_stack_conflict_is_upstream_error():
    client, _ = _make_client(_response(409, {"message": "stack already exists"}))
    with pytest.raises(UpstreamError) as exc_info:
        await client.create_stack("acme", "p", "s")
    assert exc_info.value.status_code == 409
    assert "stack already exists" in str(exc_info.value)


@pytest.mark.asyncio
async def test_delete_stack_expects_204():
    client, http = _make_client(_response(204))
    await client.delete_stack("acme", "p", "s")
    method, url, _ = _call(http)
    assert method == "DELETE"
    assert url.endswith("/stacks/acme/p/s")


@pytest.mark.asyncio
async def test_delete_stack_404_is_not_found():
    client, _ = _make_client(_response(404, {"message": "no such stack"}))
    with pytest.raises(UpstreamNotFoundError):
        await client.delete_stack("acme", "p", "s")


@pytest.mark.asyncio
async def test_delete_stack_validates_before_calling():
    client, http = _make_client()
    with pytest.raises(ValidationError):
        await client.delete_stack("acme", "", "s")
    http.request.assert_not_called()


@pytest.mark.asyncio
async def test_list_stacks_sends_filter_params():
    client, http = _make_client(
        _response(200, {"stacks": [{"orgName": "acme", "projectName": "p", "stackName": "a"}]}),
    )
    page = await client.list_stacks(
        StackFilter(organization="acme", tag_name="idp:auto-delete", tag_value="true"),
    )

    _, url, kwargs = _call(http)
    assert url.endswith("/user/stacks")
    assert kwargs["params"] == {
        "organization": "acme",
        "tagName": "idp:auto-delete",
        "tagValue": "true",
    }
    assert [s.stack_name for s in page.stacks] == ["a"]
    assert page.continuation_token == ""


@pytest.mark.asyncio
async def test_list_all_stacks_follows_continuation_token():
    client, http = _make_client(
        _response(200, {
            "stacks": [{"orgName": "acme", "projectName": "p", "stackName": "a"}],
            "continuationToken": "next-1",
        }),
        _response(200, {"stacks": [{"orgName": "acme", "projectName": "p", "stackName": "b"}]}),
    )
    stacks = await client.list_all_stacks(StackFilter(organization="acme"))

    assert [s.stack_name for s in stacks] == ["a", "b"]
    _, _, second = _call(http, 1)
    assert second["params"]["continuationToken"] == "next-1"


@pytest.mark.asyncio
async def test_list_stacks_rejects_non_object_payload():
    client, _ = _make_client(_response(200, ["not", "an", "object"]))
    with pytest.raises(UpstreamError):
        await client.list_stacks()


@pytest.mark.asyncio
async def test_set_stack_tag_requires_204():
    client, http = _make_client(_response(200, {}))
    with pytest.raises(UpstreamError):
        await client.set_stack_tag("acme", "p", "s", Tag("idp:stage", "prod"))
    _, url, kwargs = _call(http)
    assert url.endswith("/stacks/acme/p/s/tags")
    assert kwargs["json"] == {"name": "idp:stage", "value": "prod"}


# ─────────────────────── deployments ───────────────────────


@pytest.mark.asyncio
async def test_deployment_settings_body():
    client, http = _make_client(_response(200, {}))
    await client.create_deployment_settings(
        "acme",
        "aws-static-site",
        "my-cool-app",
        GitSource(repo_url="https://github.com/acme/blueprints.git", repo_dir="aws-static-site"),
    )

    _, url, kwargs = _call(http)
    assert url.endswith("/stacks/acme/aws-static-site/my-cool-app/deployments/settings")
    body = kwargs["json"]
    assert body["sourceContext"]["git"] == {
        "repoURL": "https://github.com/acme/blueprints.git",
        "branch": "refs/heads/main",
        "repoDir": "aws-static-site",
    }
    assert body["operationContext"]["preRunCommands"] == [
        "pulumi stack select acme/my-cool-app",
        "pulumi config env add aws-static-site/my-cool-app -y",
    ]


@pytest.mark.asyncio
async def test_create_deployment_inherits_settings():
    client, http = _make_client(_response(202, {"id": "dep-7", "version": 3}))
    handle = await client.create_deployment("acme", "p", "s", operation="destroy")

    _, url, kwargs = _call(http)
    assert url.endswith("/stacks/acme/p/s/deployments")
    assert kwargs["json"] == {"operation": "destroy", "inheritSettings": True}
    assert handle.id == "dep-7"
    assert handle.version == 3


@pytest.mark.asyncio
async def test_create_deployment_rejects_unknown_operation():
    client, http = _make_client()
    with pytest.raises(ValidationError):
        await client.create_deployment("acme", "p", "s", operation="refresh")
    http.request.assert_not_called()


@pytest.mark.asyncio
async def test_latest_deployment_none_when_history_empty():
    client, http = _make_client(_response(200, {"deployments": []}))
    assert await client.get_latest_deployment("acme", "p", "s") is None
    _, _, kwargs = _call(http)
    assert kwargs["params"] == {"page": "1", "pageSize": "1"}


@pytest.mark.asyncio
async def test_latest_deployment_parsed():
    client, _ = _make_client(
        _response(200, {"deployments": [{"id": "dep-2", "status": "succeeded", "version": 2}]}),
    )
    deployment = await client.get_latest_deployment("acme", "p", "s")
    assert deployment.id == "dep-2"
    assert deployment.status == "succeeded"


@pytest.mark.asyncio
async def test_deployment_logs_page():
    client, http = _make_client(
        _response(200, {
            "lines": [{"line": "Updating", "timestamp": "2024-01-02T03:04:05Z"}],
            "nextToken": "tok-2",
        }),
    )
    page = await client.get_deployment_logs("acme", "p", "s", "dep-1", "tok-1")

    _, url, kwargs = _call(http)
    assert url.endswith("/deployments/dep-1/logs")
    assert kwargs["params"] == {"continuationToken": "tok-1"}
    assert page.next_token == "tok-2"
    assert page.lines[0].line == "Updating"
    assert page.to_dict()["nextToken"] == "tok-2"


# ─────────────────────── teams ───────────────────────


@pytest.mark.asyncio
async def test_grant_stack_access_patches_team():
    client, http = _make_client(_response(204))
    await client.grant_stack_access_to_team("acme", "platform", "p", "s")

    method, url, kwargs = _call(http)
    assert method == "PATCH"
    assert url.endswith("/orgs/acme/teams/platform")
    assert kwargs["json"] == {
        "addStackPermission": {"projectName": "p", "stackName": "s", "permission": 103},
    }


@pytest.mark.asyncio
async def test_list_teams():
    client, _ = _make_client(_response(200, {"teams": [{"name": "platform", "displayName": "Platform"}]}))
    teams = await client.list_teams("acme")
    assert [t.name for t in teams] == ["platform"]


# ─────────────────────── transport errors ───────────────────────


@pytest.mark.asyncio
async def test_timeout_maps_to_upstream_timeout():
    http = AsyncMock(spec=httpx.AsyncClient)
    http.request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
    client = StackClient(api_token="t", http_client=http)
    with pytest.raises(UpstreamTimeoutError):
        await client.get_stack("acme", "p", "s")


@pytest.mark.asyncio
async def test_connection_error_maps_to_upstream_error():
    http = AsyncMock(spec=httpx.AsyncClient)
    http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
    client = StackClient(api_token="t", http_client=http)
    with pytest.raises(UpstreamError) as exc_info:
        await client.get_stack("acme", "p", "s")
    assert exc_info.value.status_code == 0


@pytest.mark.asyncio
async def test_error_message_never_contains_token():
    client, _ = _make_client(_response(500, text="internal"))
    with pytest.raises(UpstreamError) as exc_info:
        await client.get_stack("acme", "p", "s")
    assert "pul-secret" not in str(exc_info.value)
