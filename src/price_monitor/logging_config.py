"""Per-run timestamped logging configuration.

Each run writes a dedicated log file inside the logs directory, named with
the launch timestamp (e.g. ``logs/run_20261019_153045.log``). All
``price_monitor.*`` loggers route through it, so a scheduled job leaves one
complete trail per invocation next to the console output.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path


LOGGER_NAME = "price_monitor"

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(funcName)s:%(lineno)d | "
    "%(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(logs_dir: Path = Path("logs"), verbose: bool = False) -> Path:
    """Initialise the ``price_monitor`` logger for the current run.

    Args:
        logs_dir: Directory for per-run log files (created if missing)
        verbose: Also show DEBUG records on the console

    Returns:
        The path of the log file created for this run.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"run_{timestamp}.log"

    root_logger = logging.getLogger(LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers on repeated calls (e.g. tests)
    if root_logger.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.debug("Logging initialised, log file: %s", log_file)
    return log_file
