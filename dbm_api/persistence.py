from typing import List, Optional, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .models import BackupRecord, BackupStatus, Connection, Schedule, utcnow
from .logger import get_logger

logger = get_logger(__name__)


class RecordAlreadyFinalizedError(RuntimeError):
    """Raised when a terminal backup record would be modified again."""


class Persistence(Protocol):
    """
    Durable state consumed by the scheduler.

    Every call is atomic at row granularity; the scheduler never needs a
    transaction spanning several rows.
    """

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        ...

    def list_active_schedules(self) -> List[Schedule]:
        ...

    def update_schedule(self, schedule_id: str, **fields) -> bool:
        ...

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        ...

    def insert_backup_record(self, record: BackupRecord) -> BackupRecord:
        ...

    def update_backup_record(self, record_id: str, **fields) -> bool:
        ...


class SQLModelPersistence:
    """Persistence backed by SQLModel tables, one session per call."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with Session(self.engine) as session:
            return session.get(Schedule, schedule_id)

    def list_active_schedules(self) -> List[Schedule]:
        with Session(self.engine) as session:
            return list(session.exec(select(Schedule).where(Schedule.is_active == True)).all())  # noqa: E712

    def update_schedule(self, schedule_id: str, **fields) -> bool:
        with Session(self.engine) as session:
            schedule = session.get(Schedule, schedule_id)
            if not schedule:
                logger.warning(f"Cannot update schedule {schedule_id}: not found.")
                return False
            for key, value in fields.items():
                setattr(schedule, key, value)
            schedule.updated_at = utcnow()
            session.add(schedule)
            session.commit()
            return True

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        with Session(self.engine) as session:
            return session.get(Connection, connection_id)

    def insert_backup_record(self, record: BackupRecord) -> BackupRecord:
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def get_backup_record(self, record_id: str) -> Optional[BackupRecord]:
        with Session(self.engine) as session:
            return session.get(BackupRecord, record_id)

    def update_backup_record(self, record_id: str, **fields) -> bool:
        with Session(self.engine) as session:
            record = session.get(BackupRecord, record_id)
            if not record:
                logger.warning(f"Cannot update backup record {record_id}: not found.")
                return False
            if record.status in BackupStatus.TERMINAL:
                raise RecordAlreadyFinalizedError(
                    f"Backup record {record_id} is already {record.status} and cannot be modified."
                )
            for key, value in fields.items():
                setattr(record, key, value)
            session.add(record)
            session.commit()
            return True
