"""Tests for EnvironmentClient: create/update/open/read against the ESC paths."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from idp_control_plane.app.errors import UpstreamError
from idp_control_plane.app.providers.environment_client import (
    EnvironmentClient,
    EnvironmentDefinition,
)


def _response(status_code: int = 200, json_data=None) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.test")
    if json_data is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=json_data, request=request)


def _make_client(*responses: httpx.Response) -> tuple[EnvironmentClient, AsyncMock]:
    http = AsyncMock(spec=httpx.AsyncClient)
    http.request = AsyncMock(side_effect=list(responses))
    client = EnvironmentClient(
        api_token="pul-secret",
        base_url="https://api.example.test/api",
        http_client=http,
    )
    return client, http


def test_definition_document():
    document = EnvironmentDefinition(
        imports=("prod",), pulumi_config={"region": "eu-west-1"},
    ).to_document()
    assert document == {"values": {"pulumiConfig": {"region": "eu-west-1"}}, "imports": ["prod"]}


def test_definition_document_without_imports():
    document = EnvironmentDefinition(pulumi_config={}).to_document()
    assert "imports" not in document


@pytest.mark.asyncio
async def test_create_environment():
    client, http = _make_client(_response(200, {}))
    assert await client.create_environment("acme", "p", "s") is True

    args, kwargs = http.request.call_args
    assert args == ("POST", "https://api.example.test/api/esc/environments/acme")
    assert kwargs["json"] == {"project": "p", "name": "s"}


@pytest.mark.asyncio
async def test_create_environment_conflict_returns_false():
    client, _ = _make_client(_response(409, {"message": "exists"}))
    assert await client.create_environment("acme", "p", "s") is False


@pytest.mark.asyncio
async def test_create_environment_other_error_raises():
    client, _ = _make_client(_response(500, {"message": "boom"}))
    with pytest.raises(UpstreamError):
        await client.create_environment("acme", "p", "s")


@pytest.mark.asyncio
async def test_update_environment_sends_yaml_content_type():
    client, http = _make_client(_response(200, {}))
    await client.update_environment(
        "acme", "p", "s", EnvironmentDefinition(imports=("dev",), pulumi_config={"size": 2}),
    )

    args, kwargs = http.request.call_args
    assert args == ("PATCH", "https://api.example.test/api/esc/environments/acme/p/s")
    assert kwargs["headers"]["Content-Type"] == "application/x-yaml"
    assert json.loads(kwargs["content"]) == {
        "values": {"pulumiConfig": {"size": 2}},
        "imports": ["dev"],
    }


@pytest.mark.asyncio
async def test_open_and_read_unwraps_values():
    client, http = _make_client(
        _response(200, {"id": "open-1"}),
        _response(200, {
            "properties": {
                "pulumiConfig": {
                    "value": {
                        "region": {"value": "eu-west-1", "trace": {}},
                        "zones": {"value": [{"value": "a"}, {"value": "b"}]},
                    },
                },
            },
        }),
    )
    values = await client.open_and_read_environment("acme", "p", "s")

    assert values == {"pulumiConfig": {"region": "eu-west-1", "zones": ["a", "b"]}}
    args, _ = http.request.call_args_list[1]
    assert args[1].endswith("/esc/environments/acme/p/s/open/open-1")


@pytest.mark.asyncio
async def test_open_without_id_is_upstream_error():
    client, _ = _make_client(_response(200, {}))
    with pytest.raises(UpstreamError):
        await client.open_environment("acme", "p", "s")
