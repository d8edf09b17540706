import psutil
from prometheus_client import Counter, Histogram, Gauge

from .logger import get_logger

logger = get_logger(__name__)

BACKUPS_TOTAL = Counter(
    "backups_total",
    "Total number of scheduled backup runs.",
    ["connection_name", "status"]
)

BACKUP_DURATION_SECONDS = Histogram(
    "backup_duration_seconds",
    "Duration of backup operations in seconds.",
    ["connection_name"]
)

BACKUP_SIZE_BYTES = Gauge(
    "backup_size_bytes",
    "Size of the last successful backup in bytes.",
    ["connection_name"]
)

BACKUP_LAST_STATUS = Gauge(
    "backup_last_status",
    "Status of the last backup (1 for success, 0 for failure).",
    ["connection_name"]
)

BACKUP_STRATEGY_TOTAL = Counter(
    "backup_strategy_total",
    "Number of dumps run by each execution strategy.",
    ["strategy"]
)

SCHEDULED_JOBS = Gauge(
    "scheduled_jobs",
    "Number of schedules with an armed timer."
)

DISK_SPACE_AVAILABLE_BYTES = Gauge(
    "disk_space_available_bytes",
    "Available disk space for backups in bytes."
)


def update_disk_metrics(backup_directory: str):
    try:
        DISK_SPACE_AVAILABLE_BYTES.set(psutil.disk_usage(backup_directory).free)
    except OSError as e:
        logger.warning(f"Could not read disk usage for {backup_directory}: {e}")
