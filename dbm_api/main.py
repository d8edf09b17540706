from typing import Callable, Optional
from datetime import datetime

from fastapi import FastAPI
from sqlmodel import Session
from prometheus_fastapi_instrumentator import Instrumentator

from .config import Settings, load_config, get_settings, sync_static_connections
from .database import build_engine, create_db_and_tables
from .executor import BackupExecutor
from .persistence import SQLModelPersistence
from .process import SubprocessRunner
from .scheduler import BackupScheduler
from .routers import connections, schedules, backups, system
from .logger import setup_logging, get_logger

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    config_data: Optional[dict] = None,
    runner: Optional[SubprocessRunner] = None,
    clock: Optional[Callable[[], datetime]] = None,
    start_paused: bool = False,
) -> FastAPI:
    config_data = load_config() if config_data is None else config_data
    settings = settings or get_settings(config_data)

    app = FastAPI(title="dbm-api")
    Instrumentator().instrument(app).expose(app)

    app.state.settings = settings
    app.state.engine = build_engine(settings.database_url)
    app.state.executor = BackupExecutor(
        settings.backup_directory,
        runner=runner,
        timeout=settings.timeout_seconds,
        docker_enabled=settings.docker_enabled,
        default_postgresql_version=settings.default_postgresql_version,
    )
    app.state.backup_scheduler = BackupScheduler(
        SQLModelPersistence(app.state.engine),
        app.state.executor,
        clock=clock,
        max_workers=settings.max_parallel_jobs,
    )

    @app.on_event("startup")
    def startup_event():
        setup_logging(settings.data_directory)
        create_db_and_tables(app.state.engine)

        with Session(app.state.engine) as session:
            sync_static_connections(session, config_data)

        backup_scheduler = app.state.backup_scheduler
        backup_scheduler.start(paused=start_paused)
        count = backup_scheduler.initialize()
        logger.info(f"dbm-api started with {count} active schedule(s).")

    @app.on_event("shutdown")
    def shutdown_event():
        app.state.backup_scheduler.shutdown()

    app.include_router(connections.router, prefix="/connections", tags=["connections"])
    app.include_router(schedules.router, prefix="/schedules", tags=["schedules"])
    app.include_router(backups.router, prefix="/backups", tags=["backups"])
    app.include_router(system.router, prefix="/system", tags=["system"])
    return app
