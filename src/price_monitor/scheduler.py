"""Periodic runner that re-invokes the monitor job as a child process."""

import logging
import signal
import subprocess
import sys
import time
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


def default_command(config_path: Optional[str] = None) -> list[str]:
    command = [sys.executable, "-m", "price_monitor", "run"]
    if config_path:
        command += ["--config", config_path]
    return command


class JobScheduler:
    """Start one job run per interval, never two at once.

    A tick while the previous child is still running is skipped. On
    SIGINT/SIGTERM the running child is terminated and the loop exits.
    """

    def __init__(
        self,
        command: list[str],
        interval_sec: float,
        popen: Callable[..., Any] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        grace_sec: float = 0.5,
    ) -> None:
        self.command = command
        self.interval_sec = max(interval_sec, 3.0)
        self.popen = popen
        self.sleep = sleep
        self.grace_sec = grace_sec
        self.child: Optional[Any] = None
        self.stopping = False

    def is_running(self) -> bool:
        return self.child is not None and self.child.poll() is None

    def tick(self) -> bool:
        """Spawn a run unless one is in progress. Returns True if spawned."""
        if self.is_running():
            logger.info("monitor skipped (previous run still in progress)")
            return False

        if self.child is not None:
            logger.info("previous monitor exit code=%s", self.child.returncode)

        logger.info("monitor tick")
        self.child = self.popen(self.command)
        return True

    def shutdown(self, signum: int = signal.SIGTERM, frame: Any = None) -> None:
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        self.stopping = True
        if self.is_running():
            try:
                self.child.terminate()
            except OSError as e:
                logger.warning("Could not terminate running job: %s", e)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.shutdown)
        signal.signal(signal.SIGTERM, self.shutdown)

    def run_forever(self) -> None:
        """Tick every interval until a stop signal arrives."""
        while not self.stopping:
            self.tick()
            logger.info("next monitor in %.1f min", self.interval_sec / 60)

            deadline = time.monotonic() + self.interval_sec
            while not self.stopping and time.monotonic() < deadline:
                self.sleep(max(0.0, min(1.0, deadline - time.monotonic())))

        self.sleep(self.grace_sec)
