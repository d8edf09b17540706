import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


class SubprocessRunner:
    """Spawns external commands, waiting for exit with an optional timeout."""

    def run(self, args: List[str], env: Optional[Dict[str, str]] = None,
            timeout: Optional[float] = None) -> ProcessResult:
        # Extra variables only reach this one child process
        child_env = {**os.environ, **env} if env else None
        try:
            completed = subprocess.run(
                args,
                env=child_env,
                capture_output=True,
                text=True,
                # pg_dump echoes object names in the database's encoding
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run has already killed the child at this point
            logger.error(f"Command '{args[0]}' timed out after {timeout}s and was killed.")
            return ProcessResult(
                returncode=-9,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) or f"Process timed out after {timeout} seconds",
                timed_out=True,
            )
        return ProcessResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
