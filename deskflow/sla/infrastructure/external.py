"""
SLA External Service Integrations
=================================

External services for SLA tracking:
- YAML automation config file watcher
- APScheduler for the periodic SLA sweep
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, NamedTuple, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from deskflow.core import ConfigurationException
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.sla.domain import AutomationConfig, BusinessHours

logger = get_logger(__name__)


class _AutomationSnapshot(NamedTuple):
    config: AutomationConfig
    business_hours: BusinessHours


def _describe_window(hours: BusinessHours) -> str:
    days = ",".join(str(day) for day in hours.weekdays)
    return f"{hours.start:%H:%M}-{hours.end:%H:%M} days={days} tz={hours.timezone_name}"


def read_automation_config(path: Path) -> _AutomationSnapshot:
    """
    Parse the automation YAML and resolve its business window.

    A missing file yields the defaults. The window is resolved here so an
    unknown time zone fails at load time, not in the middle of a sweep.
    """
    if not path.exists():
        logger.warning("Automation config file not found, using defaults", extra={"path": str(path)})
        config = AutomationConfig()
    else:
        try:
            data = yaml.safe_load(path.read_text()) or {}
            config = AutomationConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(f"Invalid automation config {path}: {e}") from e

    return _AutomationSnapshot(config, config.get_business_hours())


class AutomationFileHandler(FileSystemEventHandler):
    """Reloads the automation config when its file is written or replaced."""

    def __init__(self, manager: "AutomationConfigManager", path: Path):
        super().__init__()
        self._manager = manager
        self._target = path.resolve()

    def _is_target(self, raw_path) -> bool:
        return Path(raw_path).resolve() == self._target

    def on_modified(self, event):
        if not event.is_directory and self._is_target(event.src_path):
            self._manager.reload()

    def on_created(self, event):
        if not event.is_directory and self._is_target(event.src_path):
            self._manager.reload()

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the target
        if not event.is_directory and self._is_target(event.dest_path):
            self._manager.reload()


class AutomationConfigManager:
    """
    Holds the current automation config and business window.

    Config and window are swapped together, so the SLA tracker never sees
    a window from one file version and policies from another. Watched with
    watchdog; a reload that fails keeps the previous snapshot.
    """

    def __init__(self):
        self._snapshot: Optional[_AutomationSnapshot] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path) -> AutomationConfig:
        self._path = Path(path)
        snapshot = read_automation_config(self._path)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Automation config loaded",
            extra={
                "path": str(self._path),
                "business_hours": _describe_window(snapshot.business_hours),
                "default_sla_policies": len(snapshot.config.default_sla_policies),
            }
        )
        return snapshot.config

    def reload(self) -> bool:
        if self._path is None:
            return False

        try:
            snapshot = read_automation_config(self._path)
        except ConfigurationException as e:
            logger.error("Automation config reload rejected, keeping previous", extra={"error": e.message})
            return False

        with self._lock:
            previous, self._snapshot = self._snapshot, snapshot

        before = _describe_window(previous.business_hours) if previous else None
        after = _describe_window(snapshot.business_hours)
        if before != after:
            # Only deadlines computed from now on use the new window
            logger.warning(
                "Business hours changed",
                extra={"previous": before, "current": after}
            )
        logger.info("Automation config reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.parent.exists():
            logger.info("Config directory missing, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                AutomationFileHandler(self, self._path), str(self._path.parent), recursive=False
            )
            self._observer.start()
        except OSError as e:
            logger.warning("File watching not available, config is static", extra={"error": str(e)})
            self._observer = None
            return

        logger.info("Watching automation config", extra={"path": str(self._path)})

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def config(self) -> AutomationConfig:
        snapshot = self._snapshot
        if snapshot is None:
            raise RuntimeError("Automation configuration not loaded")
        return snapshot.config

    def business_hours(self) -> BusinessHours:
        """Window used for new deadlines; the default window until loaded."""
        snapshot = self._snapshot
        return snapshot.business_hours if snapshot else BusinessHours()


# Process-wide instance shared by the API and the scheduler
config_manager = AutomationConfigManager()


class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA sweep.

    Manages the lifecycle of the scheduler and jobs. A tick that fires
    while the previous sweep is still running is dropped.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_sweep",
            name="SLA Sweep Job",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
