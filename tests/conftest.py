"""Shared fixtures: in-memory database, fake process runner, fixed clock."""
import os
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pytest
from sqlmodel import Session

from dbm_api.database import build_engine, create_db_and_tables
from dbm_api.executor import BackupExecutor
from dbm_api.models import Connection, Schedule
from dbm_api.persistence import SQLModelPersistence
from dbm_api.process import ProcessResult
from dbm_api.scheduler import BackupScheduler, create_timer_scheduler


class FakeRunner:
    """
    Stands in for SubprocessRunner. Answers the docker probe, and for dump
    commands writes ``dump_bytes`` to the requested file when ``returncode``
    is 0 (or ``partial_bytes`` when it is not).
    """

    def __init__(self, docker_available: bool = True, returncode: int = 0, stderr: str = "",
                 dump_bytes: bytes = b"-- PostgreSQL database dump\n", partial_bytes: Optional[bytes] = None,
                 timed_out: bool = False, missing_binary: bool = False):
        self.docker_available = docker_available
        self.returncode = returncode
        self.stderr = stderr
        self.dump_bytes = dump_bytes
        self.partial_bytes = partial_bytes
        self.timed_out = timed_out
        self.missing_binary = missing_binary
        self.calls: List[Dict] = []
        self.on_dump: Optional[Callable[[], None]] = None

    def run(self, args, env=None, timeout=None) -> ProcessResult:
        args = list(args)
        self.calls.append({"args": args, "env": env, "timeout": timeout})

        if args[:2] == ["docker", "--version"]:
            if self.docker_available:
                return ProcessResult(0, stdout="Docker version 27.0.3")
            return ProcessResult(1, stderr="docker: command not found")
        if args[:3] == ["docker", "rm", "-f"]:
            return ProcessResult(0)
        if args[0] == "pg_dump" and self.missing_binary:
            raise FileNotFoundError(2, "No such file or directory", "pg_dump")

        if self.on_dump:
            self.on_dump()

        target = self._target_path(args)
        content = self.dump_bytes if self.returncode == 0 and not self.timed_out else self.partial_bytes
        if content is not None:
            with open(target, "wb") as f:
                f.write(content)
        return ProcessResult(-9 if self.timed_out else self.returncode, stderr=self.stderr,
                             timed_out=self.timed_out)

    @staticmethod
    def _target_path(args: List[str]) -> str:
        target = next(a for a in args if a.startswith("--file=")).split("=", 1)[1]
        if args[0] == "docker":
            volume = args[args.index("-v") + 1]
            host_dir = volume.rsplit(":/backups", 1)[0]
            return os.path.join(host_dir, os.path.basename(target))
        return target

    @property
    def dump_calls(self) -> List[Dict]:
        return [c for c in self.calls if "pg_dump" in c["args"]]


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="function")
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def persistence(engine) -> SQLModelPersistence:
    return SQLModelPersistence(engine)


@pytest.fixture(scope="function")
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 1, 3, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture(scope="function")
def backup_dir(tmp_path) -> str:
    return str(tmp_path / "backups")


@pytest.fixture(scope="function")
def executor(backup_dir, runner) -> BackupExecutor:
    return BackupExecutor(backup_dir, runner=runner, timeout=60)


@pytest.fixture(scope="function")
def backup_scheduler(persistence, executor, clock):
    # Paused: timers are armed but never fire on their own
    scheduler = BackupScheduler(persistence, executor, clock=clock, scheduler=create_timer_scheduler(2))
    scheduler.start(paused=True)
    yield scheduler
    scheduler.shutdown()


@pytest.fixture(scope="function")
def make_connection(engine):
    def _make(**overrides) -> Connection:
        values = dict(name="main", type="postgresql", host="db.internal", port=5432,
                      database="app", username="backup", password="s3cret")
        values.update(overrides)
        with Session(engine) as session:
            connection = Connection(**values)
            session.add(connection)
            session.commit()
            session.refresh(connection)
            return connection
    return _make


@pytest.fixture(scope="function")
def make_schedule(engine, make_connection):
    def _make(connection_id: Optional[str] = None, **overrides) -> Schedule:
        if connection_id is None:
            connection_id = make_connection().id
        values = dict(name="nightly", cron_expression="0 2 * * *", connection_id=connection_id)
        values.update(overrides)
        with Session(engine) as session:
            schedule = Schedule(**values)
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            return schedule
    return _make
