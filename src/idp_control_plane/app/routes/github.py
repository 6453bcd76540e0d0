"""Source-control OAuth endpoint.

POST /api/github/token exchanges an OAuth ``code`` for an access token. The
body is form-encoded (``code=...``); it is parsed directly so the app does
not need a multipart parser.
"""

from __future__ import annotations

from urllib.parse import parse_qs

from fastapi import APIRouter, Request

from ..errors import ValidationError
from ..protocols import RepositoryApi


def create_github_router(repositories: RepositoryApi) -> APIRouter:
    router = APIRouter(tags=['github'])

    @router.post('/api/github/token')
    async def exchange_token(request: Request):
        form = parse_qs((await request.body()).decode('utf-8', errors='replace'))
        code = (form.get('code') or [''])[0].strip()
        if not code:
            raise ValidationError('code is required', field='code')
        token = await repositories.exchange_code_for_token(code)
        return token.to_dict()

    return router
