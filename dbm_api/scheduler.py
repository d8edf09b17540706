import os
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .cron import CronExpressionError, calculate_next_run
from .error_parser import parse_backup_error
from .executor import BackupExecutor
from .metrics import (
    BACKUPS_TOTAL, BACKUP_DURATION_SECONDS, BACKUP_SIZE_BYTES, BACKUP_LAST_STATUS,
    SCHEDULED_JOBS, update_disk_metrics,
)
from .models import BackupRecord, BackupStatus, Connection, utcnow
from .persistence import Persistence
from .schemas import BackupResult
from .utils import build_backup_file_name
from .logger import get_logger

logger = get_logger(__name__)


def create_timer_scheduler(max_workers: int = 10) -> BackgroundScheduler:
    """Timer loop whose worker pool bounds how many backups run at once."""
    return BackgroundScheduler(
        executors={'default': ThreadPoolExecutor(max_workers)},
        job_defaults={'coalesce': True, 'misfire_grace_time': None},
        timezone=timezone.utc,
    )


@dataclass
class ScheduledJob:
    schedule_id: str
    job: Job
    token: str


class BackupScheduler:
    """
    Keeps at most one armed timer per schedule and runs backups when they fire.

    Every run, successful or not, re-arms the schedule for its next cycle.
    """

    def __init__(self, persistence: Persistence, executor: BackupExecutor,
                 clock: Optional[Callable[[], datetime]] = None,
                 scheduler: Optional[BackgroundScheduler] = None,
                 max_workers: int = 10):
        self.persistence = persistence
        self.executor = executor
        self.clock = clock or utcnow
        self.scheduler = scheduler or create_timer_scheduler(max_workers)
        self._jobs: Dict[str, ScheduledJob] = {}
        self._running: Set[str] = set()
        self._lock = threading.RLock()

    def start(self, paused: bool = False):
        if not self.scheduler.running:
            self.scheduler.start(paused=paused)
            logger.info("Backup scheduler started.")

    def shutdown(self, wait: bool = False):
        with self._lock:
            self._jobs.clear()
            SCHEDULED_JOBS.set(0)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Backup scheduler stopped.")

    def initialize(self) -> int:
        logger.info("Initializing backup scheduler...")
        active_schedules = self.persistence.list_active_schedules()

        for schedule in active_schedules:
            try:
                self.schedule_backup(schedule.id)
            except Exception as e:
                logger.error(f"Failed to schedule backup {schedule.id}: {e}", exc_info=True)

        logger.info(f"Initialized {len(active_schedules)} backup schedules")
        return len(active_schedules)

    def schedule_backup(self, schedule_id: str):
        self.cancel_job(schedule_id)

        schedule = self.persistence.get_schedule(schedule_id)
        if not schedule or not schedule.is_active:
            logger.debug(f"Schedule {schedule_id} is missing or inactive, nothing to arm.")
            return

        now = self._now()
        try:
            next_run = calculate_next_run(schedule.cron_expression, now, schedule.timezone)
        except CronExpressionError as e:
            logger.error(f"Cannot schedule backup {schedule_id}: {e}")
            return

        if next_run <= now:
            # Run now; the run re-arms the next cycle when it finishes
            self.execute_scheduled_backup(schedule_id)
            return

        token = uuid.uuid4().hex
        with self._lock:
            job = self.scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=next_run),
                args=[schedule_id, token],
                id=f"backup_{schedule_id}",
                name=f"Backup for schedule {schedule.name}",
                replace_existing=True,
            )
            self._jobs[schedule_id] = ScheduledJob(schedule_id=schedule_id, job=job, token=token)
            SCHEDULED_JOBS.set(len(self._jobs))

        self.persistence.update_schedule(schedule_id, next_run_at=next_run)
        logger.info(f"Scheduled backup {schedule_id} for {next_run.isoformat()}")

    def cancel_job(self, schedule_id: str):
        with self._lock:
            scheduled = self._jobs.pop(schedule_id, None)
            SCHEDULED_JOBS.set(len(self._jobs))
            if not scheduled:
                return
            try:
                self.scheduler.remove_job(scheduled.job.id)
            except JobLookupError:
                # Already fired
                pass
        logger.info(f"Cancelled backup job: {schedule_id}")

    def cancel_schedule(self, schedule_id: str):
        self.cancel_job(schedule_id)
        self.persistence.update_schedule(schedule_id, is_active=False)

    def trigger_backup(self, schedule_id: str):
        """Run a schedule's backup now on the worker pool without waiting for it."""
        self.scheduler.add_job(
            self.execute_scheduled_backup,
            args=[schedule_id],
            id=f"run_{schedule_id}_{uuid.uuid4().hex[:8]}",
            name=f"On-demand backup for schedule {schedule_id}",
        )
        logger.info(f"Triggered on-demand backup for schedule {schedule_id}")

    def active_job_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._jobs)

    def has_job(self, schedule_id: str) -> bool:
        with self._lock:
            return schedule_id in self._jobs

    def is_running(self, schedule_id: str) -> bool:
        with self._lock:
            return schedule_id in self._running

    def _fire(self, schedule_id: str, token: str):
        with self._lock:
            scheduled = self._jobs.get(schedule_id)
            if scheduled and scheduled.token == token:
                del self._jobs[schedule_id]
                SCHEDULED_JOBS.set(len(self._jobs))
        self.execute_scheduled_backup(schedule_id)

    def execute_scheduled_backup(self, schedule_id: str):
        with self._lock:
            if schedule_id in self._running:
                logger.warning(f"Backup {schedule_id} is already running, skipping this trigger.")
                return
            self._running.add(schedule_id)

        record_id = None
        try:
            logger.info(f"Executing scheduled backup: {schedule_id}")

            schedule = self.persistence.get_schedule(schedule_id)
            if not schedule:
                logger.error(f"Schedule not found: {schedule_id}")
                return

            connection = self.persistence.get_connection(schedule.connection_id)
            if not connection:
                logger.error(f"Connection not found for schedule: {schedule_id}")
                return

            started_at = self._now()
            self.persistence.update_schedule(schedule_id, last_run_at=started_at)

            file_name = build_backup_file_name(connection.name, started_at)
            record = self.persistence.insert_backup_record(BackupRecord(
                file_name=file_name,
                file_path=os.path.join(self.executor.backup_directory, file_name),
                file_size_bytes=0,
                status=BackupStatus.PENDING,
                started_at=started_at,
                schedule_id=schedule.id,
            ))
            record_id = record.id

            start = time.monotonic()
            result = self.executor.execute_backup(connection, file_name)
            duration = time.monotonic() - start

            self._record_outcome(record_id, connection, result, duration)
            record_id = None
            logger.info(f"Backup {schedule_id} {'completed' if result.success else 'failed'}")

        except Exception as e:
            logger.error(f"Error executing backup {schedule_id}: {e}", exc_info=True)
            if record_id:
                self._fail_record(record_id, str(e) or type(e).__name__)
        finally:
            with self._lock:
                self._running.discard(schedule_id)
            try:
                self.schedule_backup(schedule_id)
            except Exception as e:
                logger.error(f"Failed to re-arm backup {schedule_id}: {e}", exc_info=True)

    def _record_outcome(self, record_id: str, connection: Connection, result: BackupResult, duration: float):
        status = BackupStatus.COMPLETED if result.success else BackupStatus.FAILED
        fields = {
            "status": status,
            "file_size_bytes": result.file_size or 0,
            "completed_at": self._now(),
        }
        if result.success:
            if result.file_path:
                fields["file_path"] = result.file_path
        else:
            error = result.error or "Unknown error occurred"
            fields["error_message"] = error
            fields["error_summary"] = parse_backup_error(error, connection.type)

        self.persistence.update_backup_record(record_id, **fields)

        BACKUPS_TOTAL.labels(connection_name=connection.name, status=status).inc()
        BACKUP_DURATION_SECONDS.labels(connection_name=connection.name).observe(duration)
        BACKUP_LAST_STATUS.labels(connection_name=connection.name).set(1 if result.success else 0)
        if result.success and result.file_size is not None:
            BACKUP_SIZE_BYTES.labels(connection_name=connection.name).set(result.file_size)
        update_disk_metrics(self.executor.backup_directory)

    def _fail_record(self, record_id: str, error: str):
        try:
            self.persistence.update_backup_record(
                record_id,
                status=BackupStatus.FAILED,
                error_message=error,
                error_summary=parse_backup_error(error, ""),
                completed_at=self._now(),
            )
        except Exception as e:
            logger.error(f"Could not mark backup record {record_id} as failed: {e}")

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now
