"""
Discctl Activity Logger
Logs service events to the activity log file
"""

import os
from datetime import datetime
from pathlib import Path
from typing import List

LOG_DIR = Path(__file__).parent.parent / "logs"
ACTIVITY_LOG = LOG_DIR / "activity.log"

# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Verbosity ranks; SUCCESS and START are informational events
LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "SUCCESS": 20,
    "START": 20,
    "WARN": 30,
    "ERROR": 40,
}

_threshold = LEVELS["INFO"]


def _rank(level: str) -> int:
    level = level.upper()
    if level == "WARNING":
        level = "WARN"
    return LEVELS.get(level, LEVELS["INFO"])


def set_level(level: str):
    """Set the minimum level written to the log (debug, info, warn, error)"""
    global _threshold
    _threshold = _rank(level or "info")


def get_level() -> int:
    return _threshold


def log(message: str, level: str = "INFO"):
    """Log an activity event"""
    level = level.upper()
    if _rank(level) < _threshold:
        return

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = f"{timestamp} | {level} | {message}\n"

    try:
        with open(ACTIVITY_LOG, "a") as f:
            f.write(line)
    except Exception as e:
        print(f"Failed to write activity log: {e}")


def log_debug(message: str):
    """Log a debug event"""
    log(message, "DEBUG")


def log_info(message: str):
    """Log an info event"""
    log(message, "INFO")


def log_success(message: str):
    """Log a success event"""
    log(message, "SUCCESS")


def log_error(message: str):
    """Log an error event"""
    log(message, "ERROR")


def log_warning(message: str):
    """Log a warning event"""
    log(message, "WARN")


def read_log(lines: int = 100) -> List[str]:
    """Return the last N non-empty log lines, newest first"""
    if not ACTIVITY_LOG.exists():
        return []
    try:
        with open(ACTIVITY_LOG) as f:
            tail = f.readlines()[-lines:]
    except OSError as e:
        print(f"Failed to read activity log: {e}")
        return []
    tail = [line.strip() for line in tail if line.strip()]
    tail.reverse()
    return tail


# Convenience functions for specific events
def drives_refreshed(count: int):
    log_info(f"Drive list refreshed: {count} drive(s)")


def device_excluded(device: str):
    log_info(f"Excluding device {device}")


def rip_started(device: str, target: str, speed: int):
    log(f"Rip started: {target} on {device} (speed {speed})", "START")


def rip_completed(device: str, target: str, elapsed: float = None):
    msg = f"Rip completed: {target} on {device}"
    if elapsed is not None:
        msg += f" ({elapsed:.1f}s)"
    log_success(msg)


def rip_failed(device: str, target: str, error: str):
    log_error(f"Rip failed: {target} on {device} - {error}")


def analysis_completed(device: str, passed: bool, last_line: str = ""):
    if passed:
        log_success(f"Drive analysis passed: {device}")
    else:
        log_error(f"Drive analysis failed: {device} - {last_line or 'no log output'}")


def disc_ejected(device: str):
    log_info(f"Disc ejected from {device}")


def service_started():
    log_info("Discctl service started")


def service_stopped():
    log_info("Discctl service stopped")
