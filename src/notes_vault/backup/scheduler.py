# Notes Vault: Automatic Backup Scheduler
#
# Runs BackupManager.create_backup on a schedule (APScheduler), using the
# auto-backup password from the OS credential store. At most one schedule
# is active; scheduling again replaces it.
#
# Frequencies:
#   "30m", "6h", "3d"          every N minutes / hours / days
#   "daily", "weekly", "monthly"
# Day-based schedules fire at 02:00 local time.

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..core.audit_log import EventType, audit
from ..exceptions import CredentialUnavailable, VaultError
from .backup_database import BackupRecord
from .backup_manager import BackupManager

logger = logging.getLogger(__name__)

JOB_ID = "notes_vault_auto_backup"
DAILY_RUN_HOUR = 2

_FREQUENCY_RE = re.compile(r"^(\d+)([mhd])$")
_NAMED_FREQUENCIES = {"daily": 1, "weekly": 7, "monthly": 30}
_UNIT_NAMES = {"m": "minutes", "h": "hours", "d": "days"}


@dataclass(frozen=True)
class BackupFrequency:
    """How often automatic backups run: ``value`` units of m/h/d."""

    value: int
    unit: str

    @classmethod
    def parse(cls, text: str) -> "BackupFrequency":
        """
        Raises:
            ValueError: Unknown format, zero, or a day interval above 31.
        """
        s = text.strip().lower()
        if s in _NAMED_FREQUENCIES:
            return cls(_NAMED_FREQUENCIES[s], "d")
        match = _FREQUENCY_RE.match(s)
        if not match:
            raise ValueError(
                f"Invalid backup frequency {text!r}. Use e.g. '30m', '6h', '3d' or 'daily'."
            )
        value, unit = int(match.group(1)), match.group(2)
        if value == 0:
            raise ValueError("Backup frequency must be greater than 0.")
        if unit == "d" and value > 31:
            raise ValueError("Day-based backup frequency cannot exceed 31 days.")
        return cls(value, unit)

    def __str__(self) -> str:
        return f"{self.value}{self.unit}"

    def trigger(self):
        if self.unit == "d":
            day = "*" if self.value == 1 else f"*/{self.value}"
            return CronTrigger(day=day, hour=DAILY_RUN_HOUR, minute=0)
        return IntervalTrigger(**{_UNIT_NAMES[self.unit]: self.value})


class BackupScheduler:
    """Background scheduler for automatic backups.

    Usage::

        scheduler = BackupScheduler(manager)
        scheduler.schedule_backup(BackupFrequency.parse("daily"))
        scheduler.run_now()          # one backup immediately
        scheduler.cancel_backup()
        scheduler.shutdown()
    """

    def __init__(self, manager: BackupManager):
        self._manager = manager
        self._scheduler: Optional[BackgroundScheduler] = None
        self._frequency: Optional[BackupFrequency] = None
        self._lock = threading.RLock()
        self._last_run: Optional[str] = None
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                return
            self._scheduler = BackgroundScheduler(daemon=True)
            self._scheduler.start()
            logger.info("Backup scheduler started")

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None
                self._frequency = None
                logger.info("Backup scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def frequency(self) -> Optional[BackupFrequency]:
        return self._frequency

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_backup(self, frequency: BackupFrequency, enabled: bool = True) -> None:
        """Replace the current schedule; ``enabled=False`` only cancels.

        Raises:
            CredentialUnavailable: No auto-backup password is stored.
        """
        with self._lock:
            self.cancel_backup()
            if not enabled:
                logger.info("Automatic backups disabled")
                return
            if not self._manager.credentials.has_auto_backup_password():
                raise CredentialUnavailable(
                    "Auto-backup password not set. Set it before enabling automatic backups."
                )

            self.start()
            self._scheduler.add_job(
                self.run_now,
                trigger=frequency.trigger(),
                id=JOB_ID,
                name="Automatic notes backup",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._frequency = frequency

        logger.info("Automatic backup scheduled every %s", frequency)
        audit(EventType.BACKUP_SCHEDULED, f"Automatic backup scheduled: {frequency}",
              {"frequency": str(frequency)})

    def cancel_backup(self) -> bool:
        """Remove the scheduled job; returns False if none was scheduled."""
        with self._lock:
            if self._scheduler is None or self._scheduler.get_job(JOB_ID) is None:
                return False
            self._scheduler.remove_job(JOB_ID)
            previous, self._frequency = self._frequency, None

        logger.info("Automatic backup schedule cancelled")
        audit(EventType.BACKUP_SCHEDULE_CANCELLED, "Automatic backup schedule cancelled",
              {"frequency": str(previous) if previous else None})
        return True

    def next_run_time(self) -> Optional[datetime]:
        with self._lock:
            if self._scheduler is None:
                return None
            job = self._scheduler.get_job(JOB_ID)
            return getattr(job, "next_run_time", None) if job else None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_now(self) -> Optional[BackupRecord]:
        """Create one backup with the stored password.

        Failures are logged and remembered for ``status()``; nothing is
        raised, since scheduled runs have no caller to report to.
        """
        self._last_run = datetime.now(timezone.utc).isoformat()
        try:
            record = self._manager.create_backup()
        except (VaultError, ValueError) as e:
            self._last_error = str(e)
            logger.error("Automatic backup failed: %s", e)
            return None
        self._last_error = None
        logger.info("Automatic backup created: %s", record.filesystem_path)
        return record

    def status(self) -> dict:
        next_run = self.next_run_time()
        return {
            "enabled": self._frequency is not None,
            "frequency": str(self._frequency) if self._frequency else None,
            "next_run": next_run.isoformat() if next_run else None,
            "running": self.is_running,
            "last_run": self._last_run,
            "last_error": self._last_error,
        }
