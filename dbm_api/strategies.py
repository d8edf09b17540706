import abc
import os
import re
import uuid
from typing import List, Optional

from .models import Connection
from .process import ProcessResult, SubprocessRunner
from .schemas import BackupResult
from .logger import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 10_000
DEFAULT_POSTGRESQL_VERSION = "16"


def truncate_error(text: str) -> str:
    text = (text or "").strip()
    if len(text) > MAX_ERROR_LENGTH:
        return "...(truncated)\n" + text[-MAX_ERROR_LENGTH:]
    return text


# "-- Dumped from database version 15.4 (Debian ...)" in a plain-format dump,
# "server version: 17.2; pg_dump version: 16.4" when pg_dump refuses a newer server
_SERVER_VERSION_PATTERNS = (
    re.compile(r"Dumped from database version (\d+)(?:\.(\d+))?"),
    re.compile(r"server version: (\d+)(?:\.(\d+))?"),
)


def detect_server_version(text: Optional[str]) -> Optional[str]:
    """
    Extract the PostgreSQL server's major version from pg_dump output.

    Releases before 10 carry their major version in two parts ("9.6"), later
    ones in one ("16"); the result names a ``postgres:<version>`` image tag.
    """
    for pattern in _SERVER_VERSION_PATTERNS:
        match = pattern.search(text or "")
        if match:
            major, minor = match.group(1), match.group(2)
            if int(major) < 10 and minor is not None:
                return f"{major}.{minor}"
            return major
    return None


def pg_dump_arguments(connection: Connection, target: str) -> List[str]:
    return [
        "pg_dump",
        f"--host={connection.host}",
        f"--port={connection.port}",
        f"--username={connection.username}",
        f"--dbname={connection.database}",
        "--verbose",
        "--clean",
        "--no-owner",
        "--no-privileges",
        f"--file={target}",
    ]


class DumpStrategy(abc.ABC):
    """One way of running a database dump tool."""

    name: str = "base"

    def __init__(self, runner: Optional[SubprocessRunner] = None, timeout: Optional[float] = None):
        self.runner = runner or SubprocessRunner()
        self.timeout = timeout

    @abc.abstractmethod
    def is_available(self) -> bool:
        pass

    @abc.abstractmethod
    def dump(self, connection: Connection, file_path: str) -> BackupResult:
        pass

    def _to_result(self, proc: ProcessResult, file_path: str, label: str) -> BackupResult:
        if proc.timed_out:
            return BackupResult(
                success=False,
                error=f"{label} timed out after {self.timeout} seconds: {truncate_error(proc.stderr)}",
                strategy=self.name,
            )
        if proc.returncode != 0:
            logger.error(f"{label} failed with exit code {proc.returncode}")
            return BackupResult(
                success=False,
                error=f"{label} failed with exit code {proc.returncode}: {truncate_error(proc.stderr)}",
                strategy=self.name,
            )
        if not os.path.exists(file_path):
            return BackupResult(
                success=False,
                error=f"{label} exited successfully but produced no file at {file_path}",
                strategy=self.name,
            )
        file_size = os.path.getsize(file_path)
        logger.info(f"{label} completed: {file_path} ({file_size} bytes)")
        return BackupResult(success=True, file_path=file_path, file_size=file_size, strategy=self.name)


class DockerPgDumpStrategy(DumpStrategy):
    """Runs pg_dump inside a disposable ``postgres:<version>`` container."""

    name = "docker"
    probe_timeout = 10

    def __init__(self, runner: Optional[SubprocessRunner] = None, timeout: Optional[float] = None,
                 default_version: str = DEFAULT_POSTGRESQL_VERSION):
        super().__init__(runner, timeout)
        self.default_version = default_version

    def is_available(self) -> bool:
        try:
            proc = self.runner.run(["docker", "--version"], timeout=self.probe_timeout)
        except OSError:
            return False
        return proc.returncode == 0 and not proc.timed_out

    def image_for(self, connection: Connection) -> str:
        return f"postgres:{connection.postgresql_version or self.default_version}"

    def dump(self, connection: Connection, file_path: str) -> BackupResult:
        absolute_path = os.path.abspath(file_path)
        backup_dir = os.path.dirname(absolute_path)
        container_name = f"dbm-backup-{uuid.uuid4().hex[:12]}"
        image = self.image_for(connection)

        args = [
            "docker", "run", "--rm",
            "--name", container_name,
            "-v", f"{backup_dir}:/backups",
            # Value comes from the docker client's environment, never argv
            "-e", "PGPASSWORD",
            image,
        ] + pg_dump_arguments(connection, f"/backups/{os.path.basename(absolute_path)}")

        logger.info(f"Starting Docker PostgreSQL backup: {connection.name} using {image}")
        logger.debug(f"Docker command: {' '.join(args)}")

        try:
            proc = self.runner.run(args, env={"PGPASSWORD": connection.password}, timeout=self.timeout)
        except OSError as e:
            return BackupResult(success=False, error=f"Docker backup failed: {e}", strategy=self.name)

        if proc.timed_out:
            self._remove_container(container_name)
        return self._to_result(proc, absolute_path, "Docker pg_dump")

    def _remove_container(self, container_name: str):
        try:
            self.runner.run(["docker", "rm", "-f", container_name], timeout=self.probe_timeout * 3)
            logger.warning(f"Force-removed timed out backup container {container_name}")
        except OSError as e:
            logger.error(f"Failed to remove container {container_name}: {e}")


class LocalPgDumpStrategy(DumpStrategy):
    """Runs the pg_dump binary found on the local PATH."""

    name = "local"

    def is_available(self) -> bool:
        return True

    def dump(self, connection: Connection, file_path: str) -> BackupResult:
        args = pg_dump_arguments(connection, file_path)

        logger.info(f"Starting system PostgreSQL backup: {connection.name}")
        logger.debug(f"Command: {' '.join(args)}")

        try:
            proc = self.runner.run(args, env={"PGPASSWORD": connection.password}, timeout=self.timeout)
        except OSError as e:
            return BackupResult(success=False, error=f"System backup failed: {e}", strategy=self.name)

        return self._to_result(proc, file_path, "pg_dump")
