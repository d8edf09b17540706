from fastapi import APIRouter, Depends

from ..dependencies import get_backup_scheduler
from ..scheduler import BackupScheduler
from ..schemas import JobList

router = APIRouter()


@router.get("/jobs", response_model=JobList)
def list_jobs(backup_scheduler: BackupScheduler = Depends(get_backup_scheduler)):
    """Schedules that currently have an armed timer."""
    job_ids = backup_scheduler.active_job_ids()
    return JobList(count=len(job_ids), schedule_ids=job_ids)


@router.post("/reload")
def reload_schedules(backup_scheduler: BackupScheduler = Depends(get_backup_scheduler)):
    """Re-arm every active schedule from the database."""
    return {"initialized": backup_scheduler.initialize()}
