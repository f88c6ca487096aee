"""
Step reporting

Every check is reported as a timestamped step record before any verdict is
rendered, so a failed run can be explained from its log alone. Records are
written as

    [2024-05-01 12:00:00] HEAD_LAG SUCCESS - Head lag is acceptable: 1 blocks (max: 2)

to a per-day log file under LOG_DIR and, coloured by status, to stderr.
"""

import getpass
import logging
import os
import platform
import sys
import psutil
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence

LOGGER_NAME = "bakerwatch"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

START = "START"
SUCCESS = "SUCCESS"
INFO = "INFO"
WARNING = "WARNING"
ERROR = "ERROR"

LEVELS = {
    START: logging.INFO,
    SUCCESS: logging.INFO,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}

COLORS = {
    START: "\033[0;34m",
    SUCCESS: "\033[0;32m",
    WARNING: "\033[1;33m",
    ERROR: "\033[0;31m",
}
RESET = "\033[0m"


@dataclass(frozen=True)
class StepRecord:
    step: str
    status: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def format(self) -> str:
        return f"[{self.timestamp.strftime(TIME_FORMAT)}] {self.step} {self.status} - {self.message}"


class StepFormatter(logging.Formatter):
    """Formats step records; colours them when `color` is set"""

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        step = getattr(record, "step_record", None)
        if step is None:
            stamp = datetime.fromtimestamp(record.created).strftime(TIME_FORMAT)
            line = f"[{stamp}] {record.name} {record.levelname} - {record.getMessage()}"
            status = record.levelname
        else:
            line = step.format()
            status = step.status
        if self.color and status in COLORS:
            return f"{COLORS[status]}{line}{RESET}"
        return line


def log_file_path(log_dir: str, name: str, day: Optional[date] = None) -> str:
    day = day or date.today()
    return os.path.join(log_dir, f"{name}_{day.isoformat()}.log")


def setup_logging(
    log_dir: Optional[str] = None, name: str = "bakerwatch", level: int = logging.INFO
) -> Optional[str]:
    """
    Configure the bakerwatch logger.

    Installs a coloured stderr handler and, when `log_dir` is given, an
    appending file handler. Returns the log file path, if any.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StepFormatter(color=sys.stderr.isatty()))
    logger.addHandler(console)

    if not log_dir:
        return None
    os.makedirs(log_dir, exist_ok=True)
    path = log_file_path(log_dir, name)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(StepFormatter())
    logger.addHandler(file_handler)
    return path


class ReportSink:
    """Collects step records and forwards them to the bakerwatch logger"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.records: List[StepRecord] = []

    def step(self, step: str, status: str, message: str) -> StepRecord:
        record = StepRecord(step=step, status=status, message=message)
        self.records.append(record)
        self.logger.log(
            LEVELS.get(status, logging.INFO), message, extra={"step_record": record}
        )
        return record

    def by_step(self, step: str) -> List[StepRecord]:
        return [r for r in self.records if r.step == step]

    def session_start(
        self, description: str, argv: Sequence[str] = (), log_file: Optional[str] = None
    ) -> None:
        self.step("SCRIPT_INIT", START, f"Starting bakerwatch - {description}")
        if log_file:
            self.step("SCRIPT_INIT", INFO, f"Log file: {log_file}")
        self.step("SCRIPT_INIT", INFO, f"Working directory: {os.getcwd()}")
        self.step("SCRIPT_INIT", INFO, f"User: {_current_user()}")
        self.step("SCRIPT_INIT", INFO, f"Arguments: {' '.join(argv)}")

    def session_end(self, code: int) -> None:
        if code == 0:
            self.step("SCRIPT_INIT", SUCCESS, "bakerwatch completed successfully")
        else:
            self.step("SCRIPT_INIT", ERROR, f"bakerwatch failed with exit code {code}")

    def system_info(self) -> None:
        self.step("SYSTEM_INFO", INFO, f"OS: {platform.system()} {platform.release()}")
        self.step("SYSTEM_INFO", INFO, f"Python: {platform.python_version()}")
        disk = psutil.disk_usage(os.getcwd())
        self.step("SYSTEM_INFO", INFO, f"Available disk space: {_human(disk.free)}")
        memory = psutil.virtual_memory()
        self.step("SYSTEM_INFO", INFO, f"Memory: {_human(memory.available)} available")


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _human(num_bytes: float) -> str:
    for unit in ("B", "K", "M", "G", "T"):
        if num_bytes < 1024 or unit == "T":
            return f"{num_bytes:.1f}{unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f}T"
