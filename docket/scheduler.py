from __future__ import annotations

import logging
import threading
from typing import Optional

from docket.config_manager import ConfigManager
from docket.reminders import ReminderDispatcher


logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Background thread that polls persisted reminder jobs and delivers the due ones."""

    def __init__(self, dispatcher: ReminderDispatcher, config_manager: ConfigManager) -> None:
        self.dispatcher = dispatcher
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="docket-reminder-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def _poll_interval(self) -> int:
        try:
            config = self.config_manager.load()
        except Exception:
            logger.exception("Could not load config; using the minimum poll interval")
            return 5
        return max(5, int(config.reminders.poll_interval_seconds))

    def run_once(self) -> int:
        try:
            config = self.config_manager.load()
            if not config.reminders.enabled:
                return 0
            return self.dispatcher.dispatch_due()
        except Exception:
            logger.exception("Reminder dispatch failed")
            return 0

    def _loop(self) -> None:
        # Jobs that fell due while the process was down go out right away.
        self.run_once()

        while not self._stop_event.is_set():
            self._wake_event.wait(timeout=self._poll_interval())
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            self.run_once()
