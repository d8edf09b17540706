import os
import time
from typing import Dict, List, Optional

from .models import Connection
from .process import SubprocessRunner
from .schemas import BackupResult
from .strategies import (
    DEFAULT_POSTGRESQL_VERSION, DockerPgDumpStrategy, DumpStrategy, LocalPgDumpStrategy,
    detect_server_version,
)
from .metrics import BACKUP_STRATEGY_TOTAL
from .logger import get_logger

logger = get_logger(__name__)


class BackupExecutor:
    """
    Runs one backup for a connection and reports a structured result.

    Each engine type maps to an ordered chain of strategies; the first one
    whose availability probe passes performs the dump. Failures are always
    returned as ``BackupResult(success=False, ...)``, never raised.
    """

    def __init__(self, backup_directory: str, runner: Optional[SubprocessRunner] = None,
                 timeout: Optional[float] = None, docker_enabled: bool = True,
                 default_postgresql_version: str = DEFAULT_POSTGRESQL_VERSION):
        self.backup_directory = backup_directory
        self.runner = runner or SubprocessRunner()
        self._engines: Dict[str, List[DumpStrategy]] = {}

        postgres_chain: List[DumpStrategy] = []
        if docker_enabled:
            postgres_chain.append(DockerPgDumpStrategy(
                self.runner, timeout=timeout, default_version=default_postgresql_version,
            ))
        postgres_chain.append(LocalPgDumpStrategy(self.runner, timeout=timeout))
        self.register_engine("postgresql", postgres_chain)

    def register_engine(self, engine_type: str, strategies: List[DumpStrategy]):
        if not strategies:
            raise ValueError(f"At least one strategy is required for engine '{engine_type}'")
        self._engines[engine_type] = list(strategies)

    @property
    def supported_engines(self) -> List[str]:
        return sorted(self._engines)

    def select_strategy(self, engine_type: str) -> Optional[DumpStrategy]:
        chain = self._engines.get(engine_type, [])
        for index, strategy in enumerate(chain):
            if strategy.is_available():
                if index > 0:
                    logger.warning(
                        f"{chain[0].name} strategy not available for {engine_type}, "
                        f"falling back to {strategy.name}"
                    )
                return strategy
        return None

    def execute_backup(self, connection: Connection, file_name: str) -> BackupResult:
        if connection.type not in self._engines:
            return BackupResult(success=False, error=f"Database type {connection.type} not supported yet")

        try:
            os.makedirs(self.backup_directory, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create backup directory {self.backup_directory}: {e}")
            return BackupResult(success=False, error=f"Cannot create backup directory: {e}")

        strategy = self.select_strategy(connection.type)
        if strategy is None:
            return BackupResult(success=False, error=f"No backup strategy available for {connection.type}")

        file_path = os.path.join(self.backup_directory, file_name)
        try:
            result = strategy.dump(connection, file_path)
        except Exception as e:
            logger.error(f"{strategy.name} backup of '{connection.name}' raised: {e}", exc_info=True)
            result = BackupResult(success=False, error=str(e) or type(e).__name__, strategy=strategy.name)

        BACKUP_STRATEGY_TOTAL.labels(strategy=strategy.name).inc()
        if not result.success:
            self._discard(file_path)
        return result

    def test_backup(self, connection: Connection) -> BackupResult:
        """
        Run a throwaway backup to verify connectivity; the artifact is always removed.

        The server's major version is read from the dump header, or from
        pg_dump's version-mismatch error, and reported as ``server_version``.
        """
        test_file_path = os.path.join(self.backup_directory, f"test_backup_{int(time.time() * 1000)}.sql")
        try:
            result = self.execute_backup(connection, os.path.basename(test_file_path))
            output = self._read_header(result.file_path or test_file_path) if result.success else result.error
            server_version = detect_server_version(output)
            if server_version:
                logger.info(f"Detected PostgreSQL {server_version} for connection '{connection.name}'")
                result = result.model_copy(update={"server_version": server_version})
            return result
        finally:
            self._discard(test_file_path)

    @staticmethod
    def _read_header(file_path: str, size: int = 4096) -> str:
        try:
            with open(file_path, "rb") as f:
                return f.read(size).decode("utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read dump header from {file_path}: {e}")
            return ""

    def _discard(self, file_path: str):
        if not os.path.exists(file_path):
            return
        try:
            os.remove(file_path)
            logger.debug(f"Removed backup artifact: {file_path}")
        except OSError as e:
            logger.warning(f"Failed to clean up backup file {file_path}: {e}")
