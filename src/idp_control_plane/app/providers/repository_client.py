"""Async HTTP client for the source-control (GitHub) REST API.

Creates repositories, commits a rendered template tree in a single commit,
applies branch protection and exchanges OAuth codes for access tokens.
Repositories are only ever created here, never deleted.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

import httpx

from ..errors import ConfigurationError, UpstreamError, UpstreamNotFoundError, ValidationError
from .base import DEFAULT_TIMEOUT_SECONDS, BaseApiClient

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_VERSION = "2022-11-28"

# Seconds to wait after creation so the auto-initialised branch exists.
DEFAULT_SETTLE_SECONDS = 2.0

_CANDIDATE_BRANCHES = ("main", "master")


@dataclass(frozen=True, slots=True)
class OAuthToken:
    access_token: str = ""
    token_type: str = ""
    scope: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "scope": self.scope,
        }


@dataclass(frozen=True, slots=True)
class Repository:
    owner: str
    name: str
    html_url: str = ""
    clone_url: str = ""
    default_branch: str = "main"

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Repository:
        owner = payload.get("owner") or {}
        return cls(
            owner=owner.get("login", "") if isinstance(owner, dict) else str(owner),
            name=payload.get("name", ""),
            html_url=payload.get("html_url", ""),
            clone_url=payload.get("clone_url", ""),
            default_branch=payload.get("default_branch") or "main",
        )


@dataclass(frozen=True, slots=True)
class CommitResult:
    """Commit written by ``commit_directory`` and the branch it landed on."""

    sha: str
    branch: str = "main"

    @property
    def ref(self) -> str:
        return f"refs/heads/{self.branch}"


@dataclass(frozen=True, slots=True)
class RepoCreationRequest:
    """What to create for a cookiecut workload."""

    repo_name: str
    description: str = ""
    private: bool = True
    enable_branch_protection: bool = True
    protected_branches: tuple[str, ...] = field(default_factory=lambda: ("main",))
    require_reviews: bool = False


def collect_files(root: str | Path) -> list[str]:
    """Return every regular file under ``root`` as sorted POSIX relative paths."""
    base = Path(root)
    return sorted(
        path.relative_to(base).as_posix()
        for path in base.rglob("*")
        if path.is_file()
    )


class RepositoryClient(BaseApiClient):
    """GitHub REST client authenticated with a server-side token.

    Args:
        access_token: Token used for repository operations. May be empty, in
            which case ``is_configured`` is False and repository calls raise
            ConfigurationError.
        client_id / client_secret: OAuth application credentials used by
            ``exchange_code_for_token``.
        settle_seconds: Pause after repository creation.
    """

    service = "github"

    def __init__(
        self,
        *,
        access_token: str = "",
        client_id: str = "",
        client_secret: str = "",
        base_url: str = DEFAULT_GITHUB_API_URL,
        oauth_token_url: str = DEFAULT_OAUTH_TOKEN_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    ) -> None:
        super().__init__(
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self._access_token = access_token
        self._client_id = client_id
        self._client_secret = client_secret
        self._oauth_token_url = oauth_token_url
        self._settle_seconds = settle_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token)

    def _default_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _require_token(self) -> None:
        if not self._access_token:
            raise ConfigurationError("source-control access token is not configured")

    # ── OAuth ────────────────────────────────────────────────────

    async def exchange_code_for_token(self, code: str) -> OAuthToken:
        """Exchange an OAuth authorization code for an access token.

        The token endpoint answers form-encoded unless asked otherwise; the
        reply is parsed as a query string.
        """
        if not code:
            raise ValidationError("missing required field: code", field="code")

        resp = await self._request(
            "POST",
            "",
            url=self._oauth_token_url,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
            },
            headers={"Accept": "application/x-www-form-urlencoded"},
            authenticated=False,
        )
        values = parse_qs(resp.text)
        if "error" in values:
            raise UpstreamError(
                self.service,
                resp.status_code,
                f"token exchange rejected: {values['error'][0]}",
            )
        return OAuthToken(
            access_token=values.get("access_token", [""])[0],
            token_type=values.get("token_type", [""])[0],
            scope=values.get("scope", [""])[0],
        )

    # ── Repositories ─────────────────────────────────────────────

    async def create_repository(self, request: RepoCreationRequest) -> Repository:
        """Create a repository for the authenticated user, initialised with one commit."""
        self._require_token()
        if not request.repo_name:
            raise ValidationError("repo_name is required", field="repo_name")

        resp = await self._request(
            "POST",
            "/user/repos",
            json={
                "name": request.repo_name,
                "description": request.description,
                "private": request.private,
                "auto_init": True,
            },
            expected=(201,),
        )
        repo = Repository.from_api(self._json(resp))
        logger.info(
            "Repository created: %s/%s",
            repo.owner,
            repo.name,
            extra={"repo_owner": repo.owner, "repo_name": repo.name},
        )
        if self._settle_seconds > 0:
            await asyncio.sleep(self._settle_seconds)
        return repo

    async def set_branch_protection(
        self, owner: str, repo: str, branch: str, require_reviews: bool = False,
    ) -> None:
        self._require_token()
        reviews = None
        if require_reviews:
            reviews = {
                "dismiss_stale_reviews": True,
                "require_code_owner_reviews": True,
                "required_approving_review_count": 1,
            }
        await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/branches/{branch}/protection",
            json={
                "required_status_checks": {"strict": True, "contexts": []},
                "enforce_admins": True,
                "required_pull_request_reviews": reviews,
                "restrictions": None,
            },
        )
        logger.info("Branch protection applied: %s/%s@%s", owner, repo, branch)

    # ── Commits ──────────────────────────────────────────────────

    async def resolve_default_branch(self, owner: str, repo: str) -> tuple[str, str]:
        """Return ``(branch, head_sha)`` for ``main``, falling back to ``master``."""
        for branch in _CANDIDATE_BRANCHES:
            try:
                resp = await self._request(
                    "GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}",
                )
            except UpstreamNotFoundError:
                continue
            return branch, self._json(resp)["object"]["sha"]
        raise UpstreamNotFoundError(
            self.service, f"no main or master branch in {owner}/{repo}",
        )

    async def commit_directory(
        self,
        owner: str,
        repo: str,
        root: str | Path,
        message: str = "Add Pulumi project files",
    ) -> CommitResult:
        """Commit every file under ``root`` on top of the default branch.

        One blob per file, one tree on the current base tree, one commit,
        then a forced ref update. The result names the branch that was
        updated, which is ``master`` on repositories without ``main``.
        """
        self._require_token()
        branch, head_sha = await self.resolve_default_branch(owner, repo)

        resp = await self._request("GET", f"/repos/{owner}/{repo}/git/commits/{head_sha}")
        base_tree = self._json(resp)["tree"]["sha"]

        entries: list[dict[str, str]] = []
        for rel_path in collect_files(root):
            raw = (Path(root) / rel_path).read_bytes()
            resp = await self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/blobs",
                json={
                    "content": base64.b64encode(raw).decode("ascii"),
                    "encoding": "base64",
                },
                expected=(201,),
            )
            entries.append(
                {
                    "path": rel_path,
                    "mode": "100644",
                    "type": "blob",
                    "sha": self._json(resp)["sha"],
                }
            )

        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            json={"base_tree": base_tree, "tree": entries},
            expected=(201,),
        )
        tree_sha = self._json(resp)["sha"]

        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [head_sha]},
            expected=(201,),
        )
        commit_sha = self._json(resp)["sha"]

        await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            json={"sha": commit_sha, "force": True},
        )
        logger.info(
            "Committed %d files to %s/%s@%s",
            len(entries),
            owner,
            repo,
            branch,
            extra={"repo_owner": owner, "repo_name": repo, "commit_sha": commit_sha},
        )
        return CommitResult(sha=commit_sha, branch=branch)
