from typing import Optional
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class Connection(SQLModel, table=True):
    __tablename__ = "backup_connection"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    config_id: Optional[str] = Field(default=None, index=True)
    name: str
    type: str
    host: str
    port: int
    database: str
    username: str
    password: str
    postgresql_version: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Schedule(SQLModel, table=True):
    __tablename__ = "backup_schedule"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str
    cron_expression: str
    timezone: str = "UTC"
    is_active: bool = True
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    connection_id: str = Field(foreign_key="backup_connection.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BackupRecord(SQLModel, table=True):
    __tablename__ = "backup_file"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_name: str
    file_path: str
    file_size_bytes: int = 0
    status: str = Field(default=BackupStatus.PENDING, index=True)
    error_message: Optional[str] = None
    error_summary: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    schedule_id: str = Field(foreign_key="backup_schedule.id", index=True)
