"""Shared plumbing for the outbound API clients.

Each client owns (or is handed) an ``httpx.AsyncClient`` and sends every
request with a fixed per-request timeout. Responses outside the expected
status set are turned into ``UpstreamError`` before the caller sees them.

No retries happen here: the orchestrator surfaces the first failure and the
reclamation loop retries on its next tick.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any

import httpx

from ..errors import UpstreamError, UpstreamNotFoundError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class BaseApiClient:
    """Request/response wrapper shared by the stack, repository and environment clients.

    Subclasses set ``service`` and implement ``_default_headers()``.
    """

    service = "upstream"

    def __init__(
        self,
        *,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def _default_headers(self) -> dict[str, str]:
        raise NotImplementedError

    async def _request(
        self,
        method: str,
        path: str,
        *,
        expected: Collection[int] = (200,),
        json: Any | None = None,
        params: dict[str, str] | None = None,
        content: str | bytes | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        url: str | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        """Send one request and raise unless the status is in ``expected``.

        With ``authenticated=False`` only the explicit ``headers`` are sent.
        """
        target = url or f"{self._base_url}{path}"
        merged = self._default_headers() if authenticated else {}
        if headers:
            merged.update(headers)

        kwargs: dict[str, Any] = {"headers": merged, "timeout": self._timeout}
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = params
        if content is not None:
            kwargs["content"] = content
        if data is not None:
            kwargs["data"] = data

        try:
            resp = await self._client.request(method, target, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s %s timed out", self.service, method, path)
            raise UpstreamTimeoutError(self.service) from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s %s transport error: %s", self.service, method, path, exc)
            raise UpstreamError(
                self.service, 0, f"{self.service} API unreachable: {exc}",
            ) from exc

        if resp.status_code not in expected:
            self._raise_for_status(resp, method, path)
        return resp

    def _raise_for_status(self, resp: httpx.Response, method: str, path: str) -> None:
        body = resp.text
        message = ""
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                detail = payload.get("message") or payload.get("error") or ""
                if detail:
                    message = (
                        f"{self.service} API returned HTTP {resp.status_code}: {detail}"
                    )
        except ValueError:
            pass

        logger.info(
            "%s %s %s returned %d",
            self.service,
            method,
            path,
            resp.status_code,
            extra={"upstream": self.service, "status_code": resp.status_code},
        )
        if resp.status_code == 404:
            raise UpstreamNotFoundError(self.service, message, response_body=body)
        raise UpstreamError(
            self.service,
            resp.status_code,
            message,
            response_body=body,
        )

    def _json(self, resp: httpx.Response) -> Any:
        """Decode a JSON body, mapping decode failures to UpstreamError."""
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(
                self.service,
                resp.status_code,
                f"{self.service} API returned a non-JSON body",
                response_body=resp.text,
            ) from exc
