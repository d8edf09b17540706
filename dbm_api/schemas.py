from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime


class BackupResult(BaseModel):
    success: bool
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    error: Optional[str] = None
    strategy: Optional[str] = None
    server_version: Optional[str] = None


class ConnectionBase(BaseModel):
    name: str
    type: str = "postgresql"
    host: str
    port: int = 5432
    database: str
    username: str
    postgresql_version: Optional[str] = None

class ConnectionCreate(ConnectionBase):
    password: str

class ConnectionDetail(ConnectionBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    is_active: bool
    created_at: datetime


class ScheduleBase(BaseModel):
    name: str
    cron_expression: str
    timezone: Optional[str] = "UTC"
    connection_id: str

class ScheduleCreate(ScheduleBase):
    pass

class ScheduleDetail(ScheduleBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    is_active: bool
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


class BackupList(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    schedule_id: str
    file_name: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None

class BackupDetail(BackupList):
    file_path: str
    file_size_bytes: int
    error_message: Optional[str] = None
    error_summary: Optional[str] = None


class BackupStats(BaseModel):
    total_backups: int
    completed_backups: int
    failed_backups: int
    total_storage_bytes: int
    total_storage_mb: float


class JobList(BaseModel):
    count: int
    schedule_ids: List[str]
