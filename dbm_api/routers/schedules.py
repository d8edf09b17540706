from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from typing import List

from ..cron import CronExpressionError, calculate_next_run
from ..models import BackupRecord, Connection, Schedule, utcnow
from ..schemas import ScheduleCreate, ScheduleDetail
from ..dependencies import get_session, get_backup_scheduler
from ..scheduler import BackupScheduler
from ..utils import delete_backup_file
from ..logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _validate(session: Session, body: ScheduleCreate):
    connection = session.get(Connection, body.connection_id)
    if not connection or not connection.is_active:
        raise HTTPException(status_code=404, detail="Connection not found")
    try:
        calculate_next_run(body.cron_expression, utcnow(), body.timezone or "UTC")
    except CronExpressionError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _get_schedule(session: Session, schedule_id: str) -> Schedule:
    schedule = session.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.post("", response_model=ScheduleDetail)
def create_schedule(
    body: ScheduleCreate,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    _validate(session, body)
    schedule = Schedule(
        name=body.name,
        cron_expression=body.cron_expression,
        timezone=body.timezone or "UTC",
        connection_id=body.connection_id,
    )
    session.add(schedule)
    session.commit()

    backup_scheduler.schedule_backup(schedule.id)

    session.refresh(schedule)
    logger.info(f"Created schedule {schedule.id} ('{schedule.cron_expression}').")
    return schedule


@router.get("", response_model=List[ScheduleDetail])
def list_schedules(session: Session = Depends(get_session)):
    return session.exec(select(Schedule)).all()


@router.get("/{schedule_id}", response_model=ScheduleDetail)
def get_schedule(schedule_id: str, session: Session = Depends(get_session)):
    return _get_schedule(session, schedule_id)


@router.put("/{schedule_id}", response_model=ScheduleDetail)
def update_schedule(
    schedule_id: str,
    body: ScheduleCreate,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    schedule = _get_schedule(session, schedule_id)
    _validate(session, body)

    schedule.name = body.name
    schedule.cron_expression = body.cron_expression
    schedule.timezone = body.timezone or "UTC"
    schedule.connection_id = body.connection_id
    schedule.updated_at = utcnow()
    session.add(schedule)
    session.commit()

    backup_scheduler.schedule_backup(schedule_id)

    session.refresh(schedule)
    return schedule


@router.delete("/{schedule_id}", status_code=204)
def delete_schedule(
    schedule_id: str,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    schedule = _get_schedule(session, schedule_id)
    backup_scheduler.cancel_job(schedule_id)

    records = session.exec(select(BackupRecord).where(BackupRecord.schedule_id == schedule_id)).all()
    for record in records:
        delete_backup_file(record.file_path)
        session.delete(record)
    session.delete(schedule)
    session.commit()
    logger.info(f"Deleted schedule {schedule_id} and {len(records)} backup record(s).")
    return


@router.post("/{schedule_id}/toggle", response_model=ScheduleDetail)
def toggle_schedule(
    schedule_id: str,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    schedule = _get_schedule(session, schedule_id)
    if not schedule.is_active:
        connection = session.get(Connection, schedule.connection_id)
        if not connection or not connection.is_active:
            raise HTTPException(status_code=409, detail="Connection of this schedule has been deleted")
    schedule.is_active = not schedule.is_active
    schedule.updated_at = utcnow()
    session.add(schedule)
    session.commit()

    if schedule.is_active:
        backup_scheduler.schedule_backup(schedule_id)
    else:
        backup_scheduler.cancel_job(schedule_id)

    session.refresh(schedule)
    return schedule


@router.post("/{schedule_id}/run", status_code=status.HTTP_202_ACCEPTED)
def run_schedule(
    schedule_id: str,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    _get_schedule(session, schedule_id)
    backup_scheduler.trigger_backup(schedule_id)
    return {"message": "Backup triggered successfully"}
