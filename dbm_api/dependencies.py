from fastapi import Request
from sqlmodel import Session

from .config import Settings
from .executor import BackupExecutor
from .scheduler import BackupScheduler


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session(request: Request):
    with Session(request.app.state.engine) as session:
        yield session


def get_backup_scheduler(request: Request) -> BackupScheduler:
    return request.app.state.backup_scheduler


def get_executor(request: Request) -> BackupExecutor:
    return request.app.state.executor
