from __future__ import annotations
from fastapi import APIRouter, Depends

from deps import get_current_admin, get_retention_sweeper
from schemas import RetentionRunRead
from services.retention import RetentionSweeper, run_retention_cleanup
from services.scope import AdminCaller

router = APIRouter(prefix="/admin/tasks", tags=["admin-tasks"])


@router.post("/retention-cleanup", response_model=RetentionRunRead)
async def retention_cleanup(
    caller: AdminCaller = Depends(get_current_admin),
    sweeper: RetentionSweeper = Depends(get_retention_sweeper),
):
    return await run_retention_cleanup(caller, sweeper)
