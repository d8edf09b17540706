import os

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlmodel import Session, select
from typing import List, Optional

from ..models import BackupRecord, BackupStatus
from ..schemas import BackupList, BackupDetail, BackupStats
from ..dependencies import get_session
from ..utils import delete_backup_file
from ..logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _get_backup(session: Session, backup_id: str) -> BackupRecord:
    backup = session.get(BackupRecord, backup_id)
    if not backup:
        raise HTTPException(status_code=404, detail="Backup not found")
    return backup


@router.get("", response_model=List[BackupList])
def list_backups(schedule_id: Optional[str] = None, session: Session = Depends(get_session)):
    query = select(BackupRecord).order_by(BackupRecord.started_at.desc())
    if schedule_id:
        query = query.where(BackupRecord.schedule_id == schedule_id)
    return session.exec(query).all()


@router.get("/failed", response_model=List[BackupDetail])
def list_failed_backups(session: Session = Depends(get_session)):
    """
    Get a list of all backups that have a 'failed' status.
    """
    return session.exec(select(BackupRecord).where(BackupRecord.status == BackupStatus.FAILED)).all()


@router.get("/stats/summary", response_model=BackupStats)
def backup_stats(session: Session = Depends(get_session)):
    records = session.exec(select(BackupRecord)).all()
    completed = [r for r in records if r.status == BackupStatus.COMPLETED]
    total_storage_bytes = sum(r.file_size_bytes or 0 for r in completed)
    return BackupStats(
        total_backups=len(records),
        completed_backups=len(completed),
        failed_backups=sum(1 for r in records if r.status == BackupStatus.FAILED),
        total_storage_bytes=total_storage_bytes,
        total_storage_mb=round(total_storage_bytes / (1024 * 1024), 2),
    )


@router.get("/{backup_id}", response_model=BackupDetail)
def get_backup_details(backup_id: str, session: Session = Depends(get_session)):
    return _get_backup(session, backup_id)


@router.get("/{backup_id}/download")
def download_backup(backup_id: str, session: Session = Depends(get_session)):
    backup = _get_backup(session, backup_id)
    if backup.status != BackupStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Backup is not completed")
    if not os.path.isfile(backup.file_path):
        logger.warning(f"Backup {backup_id} is missing its file {backup.file_path}.")
        raise HTTPException(status_code=404, detail="Backup file not found on disk")

    return FileResponse(path=backup.file_path, filename=backup.file_name, media_type="application/octet-stream")


@router.delete("/{backup_id}", status_code=204)
def delete_backup(backup_id: str, session: Session = Depends(get_session)):
    backup = _get_backup(session, backup_id)
    if backup.status == BackupStatus.PENDING:
        raise HTTPException(status_code=409, detail="Backup is still running")

    delete_backup_file(backup.file_path)
    session.delete(backup)
    session.commit()
    logger.info(f"Deleted backup {backup_id}.")
    return
