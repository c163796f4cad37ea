"""
Structured logging system for depwatch.

Provides centralized logging with console and file outputs, and counters
tracking what each publish event did to the job table.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks reconciliation metrics for monitoring the listener.
    """

    def __init__(
        self,
        name: str = "depwatch",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = self._empty_metrics()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"depwatch_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "events_received": 0,
            "repositories_affected": 0,
            "jobs_created": 0,
            "jobs_merged": 0,
            "jobs_locked": 0,
            "errors_by_type": {},
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_event(self, affected: int):
        """Record one publish event and how many repositories it affected."""
        self.metrics["events_received"] += 1
        self.metrics["repositories_affected"] += affected

    def record_job_action(self, action: str):
        """Record a job mutation: 'create', 'merge' or 'lock'."""
        key = {"create": "jobs_created", "merge": "jobs_merged", "lock": "jobs_locked"}[action]
        self.metrics[key] += 1

    def record_error(self, error_type: str):
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return a copy of the current metrics."""
        metrics_copy = self.metrics.copy()
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Reconciliation Metrics ===")
        self.info(f"Events: {metrics['events_received']} ({metrics['repositories_affected']} repositories affected)")
        self.info(
            f"Jobs: {metrics['jobs_created']} created, "
            f"{metrics['jobs_merged']} merged, {metrics['jobs_locked']} locked"
        )

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "depwatch",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def configure_logger(level: str = "INFO", log_dir: Optional[Path] = None, **kwargs) -> StructuredLogger:
    """Reconfigure the global logger in place, keeping references held by modules valid."""
    logger = get_logger()
    fresh = StructuredLogger(name=logger.logger.name, level=level, log_dir=log_dir, **kwargs)
    logger.logger = fresh.logger
    return logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
