"""Workload and workflow endpoints.

One router per ``WorkloadKind``; both kinds share the same handlers and
differ only in the URL prefix and the tag that marks their stacks.

Response contracts (``{kinds}`` is ``workloads`` or ``workflows``):
  POST   /api/{kinds} → 200 { repo_url, clone_url, message, success }
  GET    /api/{kinds} → 200 [ stack, ... ]
  GET    /api/{kinds}/{org}/{project}/{stack} → 200 { name, blueprint, ... }
  PUT    /api/{kinds}/{org}/{project}/{stack} → 202 { deployment_id, status }
  DELETE /api/{kinds}/{org}/{project}/{stack} → 202 { deployment_id, status }
  GET    /api/{kinds}/{org}/{project}/{stack}/deployments/{id}/logs → 200 { lines, nextToken? }
  WS     /api/{kinds}/ws/{org}/{project}/{stack}/deployments/{id}/logs → log pages

A 200 on create means the stack exists and the deployment was launched; it
says nothing about the deployment outcome.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..errors import PlatformError
from ..provisioning import WorkloadOrchestrator, WorkloadRequest
from ..providers.stack_models import DeploymentHandle

logger = logging.getLogger(__name__)

# Close code for an upstream failure while relaying logs.
WS_UPSTREAM_FAILURE = 1011


def _handle_payload(handle: DeploymentHandle) -> dict[str, object]:
    return {
        'deployment_id': handle.id,
        'status': handle.status,
        'version': handle.version,
    }


def create_workloads_router(orchestrator: WorkloadOrchestrator) -> APIRouter:
    """Create the CRUD + logs router for the orchestrator's kind.

    Args:
        orchestrator: Orchestrator bound to one workload kind.

    Returns:
        FastAPI router mounted under ``/api/<kind plural>``.
    """
    kind = orchestrator.kind
    prefix = f'/api/{kind.plural}'
    router = APIRouter(tags=[kind.plural])

    @router.post(prefix)
    async def create_workload(body: WorkloadRequest):
        result = await orchestrator.create_workload(body)
        return result.model_dump()

    @router.get(prefix)
    async def list_workloads(
        workload: str | None = None,
        projectid: str | None = None,
    ):
        stacks = await orchestrator.list_workloads(workload=workload, project_id=projectid)
        return [stack.to_dict() for stack in stacks]

    @router.get(prefix + '/{org}/{project}/{stack}')
    async def get_workload(org: str, project: str, stack: str):
        view = await orchestrator.get_workload_details(org, project, stack)
        return view.model_dump(by_alias=True)

    @router.put(prefix + '/{org}/{project}/{stack}', status_code=202)
    async def update_workload(org: str, project: str, stack: str, body: WorkloadRequest):
        """Re-deploy an existing stack with the new configuration."""
        handle = await orchestrator.update_workload(org, project, stack, body)
        return _handle_payload(handle)

    @router.delete(prefix + '/{org}/{project}/{stack}', status_code=202)
    async def delete_workload(org: str, project: str, stack: str):
        """Request a destroy; the stack record is removed later by reclamation."""
        handle = await orchestrator.delete_workload(org, project, stack)
        return _handle_payload(handle)

    @router.get(prefix + '/{org}/{project}/{stack}/deployments/{deployment_id}/logs')
    async def get_deployment_logs(
        org: str,
        project: str,
        stack: str,
        deployment_id: str,
        continuation_token: str = Query('', alias='continuationToken'),
    ):
        page = await orchestrator.get_deployment_logs(
            org, project, stack, deployment_id, continuation_token,
        )
        return page.to_dict()

    @router.websocket(prefix + '/ws/{org}/{project}/{stack}/deployments/{deployment_id}/logs')
    async def relay_deployment_logs(
        websocket: WebSocket,
        org: str,
        project: str,
        stack: str,
        deployment_id: str,
    ):
        """Push log pages until the deployment has no further output."""
        await websocket.accept()
        try:
            async for page in orchestrator.iter_deployment_logs(
                org, project, stack, deployment_id,
            ):
                await websocket.send_json(page.to_dict())
        except WebSocketDisconnect:
            logger.info('Log relay client disconnected: %s/%s/%s', org, project, stack)
            return
        except PlatformError as exc:
            logger.warning('Log relay stopped for %s/%s/%s: %s', org, project, stack, exc)
            await websocket.send_json({'code': exc.code, 'message': exc.message})
            await websocket.close(code=WS_UPSTREAM_FAILURE)
            return
        await websocket.close()

    return router
