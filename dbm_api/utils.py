import os
import re
from datetime import datetime, timezone

from .logger import get_logger

logger = get_logger(__name__)


def sanitize_filename(name: str) -> str:
    """
    Makes a connection name safe to embed in a file name.
    - Replaces whitespace and path separators with hyphens.
    - Drops every character that is not alphanumeric, '-', '_' or '.'.
    - Collapses repeated hyphens and trims them from both ends.
    """
    name = re.sub(r'[\s/\\]+', '-', name)
    name = re.sub(r'[^A-Za-z0-9._-]', '', name)
    name = re.sub(r'--+', '-', name)
    name = name.strip('-.')
    return name or "connection"


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. ``2024-01-01T03:00:00.000Z``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_backup_file_name(connection_name: str, moment: datetime) -> str:
    stamp = re.sub(r'[:.]', '-', iso_timestamp(moment))
    return f"backup_{sanitize_filename(connection_name)}_{stamp}.sql"


def delete_backup_file(file_path: str) -> bool:
    """Remove a backup artifact from disk. A file that is already gone counts as removed."""
    if not file_path or not os.path.exists(file_path):
        return True
    try:
        os.remove(file_path)
        return True
    except OSError as e:
        logger.warning(f"Failed to delete backup file {file_path}: {e}")
        return False
