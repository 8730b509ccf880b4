"""
SLA Policy Source
=================

YAML policy file with watchdog hot reload.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ticket_mirror.shared.infrastructure.logging import get_logger
from ticket_mirror.sla.application.interfaces import ISLAPolicyProvider
from ticket_mirror.sla.domain import SLAPolicy

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, manager: "SLAPolicyManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.manager.reload()


class SLAPolicyManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy holder with hot-reload support.

    The watchdog observer calls ``reload`` from its own thread, so the
    current policy is swapped behind a lock. A missing file yields the
    default policy. ``default_timezone`` applies when the file sets none.
    """

    def __init__(self, default_timezone: str = "UTC"):
        self._default_timezone = default_timezone
        self._policy: Optional[SLAPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicy:
        """Initial policy load. Invalid files raise."""
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicy(timezone=self._default_timezone)

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        data.setdefault("timezone", self._default_timezone)
        return SLAPolicy(**data)

    def reload(self) -> bool:
        """Reload the policy file. A broken file keeps the previous policy."""
        if self._path is None:
            return False

        try:
            policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload SLA policy",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = policy
        logger.info("SLA policy reloaded", extra={"priorities": sorted(policy.priorities)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA policy file missing, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call even if not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> SLAPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded")
            return self._policy
