"""Reclamation admin endpoints.

POST /api/admin/reclamation/run → 202, starts a pass concurrently with the timer
GET  /api/admin/reclamation     → 200 { running, last_run_time, criteria }
"""

from __future__ import annotations

from fastapi import APIRouter

from ..reclamation import ReclamationScheduler


def create_admin_router(scheduler: ReclamationScheduler) -> APIRouter:
    router = APIRouter(tags=['admin'])

    @router.post('/api/admin/reclamation/run', status_code=202)
    async def run_reclamation():
        """Trigger a pass now. Its outcome is only visible in logs and metrics."""
        scheduler.trigger()
        return {'status': 'triggered'}

    @router.get('/api/admin/reclamation')
    async def reclamation_status():
        last_run = scheduler.last_run_time
        criteria = scheduler.criteria
        return {
            'running': scheduler.is_running,
            'last_run_time': last_run.isoformat() if last_run else None,
            'criteria': {'key': criteria.tag_key, 'value': criteria.tag_value},
        }

    return router
