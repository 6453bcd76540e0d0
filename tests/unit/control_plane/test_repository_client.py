"""Tests for RepositoryClient: OAuth exchange, repo creation, commit, protection."""
from __future__ import annotations

import base64
from unittest.mock import AsyncMock

import httpx
import pytest

from idp_control_plane.app.errors import (
    ConfigurationError,
    UpstreamError,
    UpstreamNotFoundError,
    ValidationError,
)
from idp_control_plane.app.providers.repository_client import (
    RepoCreationRequest,
    RepositoryClient,
    collect_files,
)


def _response(status_code: int = 200, json_data=None, text: str = "") -> httpx.Response:
    request = httpx.Request("GET", "https://api.github.test")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def _make_client(*responses: httpx.Response, **overrides) -> tuple[RepositoryClient, AsyncMock]:
    http = AsyncMock(spec=httpx.AsyncClient)
    http.request = AsyncMock(side_effect=list(responses))
    defaults = dict(
        access_token="ghp_secret",
        client_id="cid",
        client_secret="csecret",
        base_url="https://api.github.test",
        http_client=http,
        settle_seconds=0,
    )
    defaults.update(overrides)
    return RepositoryClient(**defaults), http


def _call(http: AsyncMock, index: int = 0):
    args, kwargs = http.request.call_args_list[index]
    return args[0], args[1], kwargs


# ── OAuth ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_exchange_code_parses_form_reply():
    client, http = _make_client(
        _response(200, text="access_token=gho_abc&scope=repo&token_type=bearer"),
        oauth_token_url="https://github.test/login/oauth/access_token",
    )
    token = await client.exchange_code_for_token("code-1")

    assert token.access_token == "gho_abc"
    assert token.scope == "repo"
    assert token.token_type == "bearer"
    method, url, kwargs = _call(http)
    assert method == "POST"
    assert url == "https://github.test/login/oauth/access_token"
    assert kwargs["data"] == {"client_id": "cid", "client_secret": "csecret", "code": "code-1"}
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["headers"]["Accept"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_exchange_code_error_reply():
    client, _ = _make_client(_response(200, text="error=bad_verification_code"))
    with pytest.raises(UpstreamError, match="bad_verification_code"):
        await client.exchange_code_for_token("stale")


@pytest.mark.asyncio
async def test_exchange_code_requires_code():
    client, http = _make_client()
    with pytest.raises(ValidationError):
        await client.exchange_code_for_token("")
    http.request.assert_not_called()


# ── Repositories ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_repository():
    client, http = _make_client(
        _response(201, {
            "name": "my-cool-app",
            "owner": {"login": "idp-bot"},
            "html_url": "https://github.com/idp-bot/my-cool-app",
            "clone_url": "https://github.com/idp-bot/my-cool-app.git",
        }),
    )
    repo = await client.create_repository(
        RepoCreationRequest(repo_name="my-cool-app", description="generated", private=False),
    )

    assert repo.owner == "idp-bot"
    assert repo.clone_url == "https://github.com/idp-bot/my-cool-app.git"
    method, url, kwargs = _call(http)
    assert (method, url) == ("POST", "https://api.github.test/user/repos")
    assert kwargs["json"]["auto_init"] is True
    assert kwargs["json"]["private"] is False
    assert kwargs["headers"]["Authorization"] == "Bearer ghp_secret"
    assert kwargs["headers"]["X-GitHub-Api-Version"] == "2022-11-28"


@pytest.mark.asyncio
async def test_create_repository_requires_token():
    client, http = _make_client(access_token="")
    assert client.is_configured is False
    with pytest.raises(ConfigurationError):
        await client.create_repository(RepoCreationRequest(repo_name="x"))
    http.request.assert_not_called()


@pytest.mark.asyncio
async def test_create_repository_unexpected_status():
    client, _ = _make_client(_response(422, {"message": "name already exists on this account"}))
    with pytest.raises(UpstreamError, match="already exists"):
        await client.create_repository(RepoCreationRequest(repo_name="dup"))


@pytest.mark.asyncio
async def test_branch_protection_with_reviews():
    client, http = _make_client(_response(200, {}))
    await client.set_branch_protection("idp-bot", "app", "main", require_reviews=True)

    method, url, kwargs = _call(http)
    assert method == "PUT"
    assert url.endswith("/repos/idp-bot/app/branches/main/protection")
    body = kwargs["json"]
    assert body["enforce_admins"] is True
    assert body["required_status_checks"] == {"strict": True, "contexts": []}
    assert body["required_pull_request_reviews"]["required_approving_review_count"] == 1
    assert body["restrictions"] is None


@pytest.mark.asyncio
async def test_branch_protection_without_reviews():
    client, http = _make_client(_response(200, {}))
    await client.set_branch_protection("idp-bot", "app", "main")
    _, _, kwargs = _call(http)
    assert kwargs["json"]["required_pull_request_reviews"] is None


# ── Commits ──────────────────────────────────────────────────


def test_collect_files_sorted_posix(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.ts").write_text("x")
    (tmp_path / "Pulumi.yaml").write_text("name: x")
    assert collect_files(tmp_path) == ["Pulumi.yaml", "src/index.ts"]


@pytest.mark.asyncio
async def test_commit_directory_single_commit(tmp_path):
    (tmp_path / "Pulumi.yaml").write_text("name: app\n")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.ts").write_text("export {};\n")

    client, http = _make_client(
        _response(200, {"object": {"sha": "head-sha"}}),       # ref heads/main
        _response(200, {"tree": {"sha": "base-tree"}}),        # head commit
        _response(201, {"sha": "blob-1"}),
        _response(201, {"sha": "blob-2"}),
        _response(201, {"sha": "tree-sha"}),
        _response(201, {"sha": "commit-sha"}),
        _response(200, {}),                                     # ref update
    )
    result = await client.commit_directory("idp-bot", "app", tmp_path, "Add Pulumi project files")

    assert result.sha == "commit-sha"
    assert result.ref == "refs/heads/main"
    _, blob_url, blob_kwargs = _call(http, 2)
    assert blob_url.endswith("/repos/idp-bot/app/git/blobs")
    assert base64.b64decode(blob_kwargs["json"]["content"]) == b"name: app\n"
    _, _, tree_kwargs = _call(http, 4)
    assert tree_kwargs["json"]["base_tree"] == "base-tree"
    assert [e["path"] for e in tree_kwargs["json"]["tree"]] == ["Pulumi.yaml", "src/index.ts"]
    _, _, commit_kwargs = _call(http, 5)
    assert commit_kwargs["json"] == {
        "message": "Add Pulumi project files",
        "tree": "tree-sha",
        "parents": ["head-sha"],
    }
    method, ref_url, ref_kwargs = _call(http, 6)
    assert method == "PATCH"
    assert ref_url.endswith("/git/refs/heads/main")
    assert ref_kwargs["json"] == {"sha": "commit-sha", "force": True}


@pytest.mark.asyncio
async def test_commit_directory_falls_back_to_master(tmp_path):
    client, http = _make_client(
        _response(404, {"message": "Not Found"}),
        _response(200, {"object": {"sha": "head-sha"}}),
        _response(200, {"tree": {"sha": "base-tree"}}),
        _response(201, {"sha": "tree-sha"}),
        _response(201, {"sha": "commit-sha"}),
        _response(200, {}),
    )
    result = await client.commit_directory("idp-bot", "app", tmp_path)
    _, url, _ = _call(http, 5)
    assert url.endswith("/git/refs/heads/master")
    assert result.branch == "master"
    assert result.ref == "refs/heads/master"


@pytest.mark.asyncio
async def test_commit_directory_without_default_branch(tmp_path):
    client, _ = _make_client(
        _response(404, {"message": "Not Found"}),
        _response(404, {"message": "Not Found"}),
    )
    with pytest.raises(UpstreamNotFoundError):
        await client.commit_directory("idp-bot", "app", tmp_path)
