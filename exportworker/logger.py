"""
Structured logging system for the export worker.

Provides centralized logging with console and file outputs, plus in-process
metrics (remote calls, pages, cache traffic, job outcomes) for monitoring
worker health.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring remote sources and job outcomes.
    """

    def __init__(
        self,
        name: str = "export_worker",
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
        self.logger.handlers.clear()  # Remove existing handlers

        # Jobs run on worker threads; metric updates share one lock
        self._metrics_lock = threading.Lock()
        self.metrics = {
            "remote_calls": 0,
            "pages_fetched": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "jobs_started": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
            "errors_by_type": {},
            "service_success_rate": {},
        }

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"export_worker_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

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

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_remote_call(self, service: str):
        """Record a call to a remote service."""
        with self._metrics_lock:
            self.metrics["remote_calls"] += 1
            stats = self.metrics["service_success_rate"].setdefault(
                service, {"attempts": 0, "successes": 0}
            )
            stats["attempts"] += 1

    def record_remote_success(self, service: str):
        """Record a successful remote call."""
        with self._metrics_lock:
            if service in self.metrics["service_success_rate"]:
                self.metrics["service_success_rate"][service]["successes"] += 1

    def record_error(self, error_type: str):
        """Count an error by its type name."""
        with self._metrics_lock:
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_page_fetched(self):
        with self._metrics_lock:
            self.metrics["pages_fetched"] += 1

    def record_cache_hit(self):
        with self._metrics_lock:
            self.metrics["cache_hits"] += 1

    def record_cache_miss(self):
        with self._metrics_lock:
            self.metrics["cache_misses"] += 1

    def record_job_started(self):
        with self._metrics_lock:
            self.metrics["jobs_started"] += 1

    def record_job_finished(self, succeeded: bool):
        """Record a job reaching a terminal status."""
        with self._metrics_lock:
            if succeeded:
                self.metrics["jobs_completed"] += 1
            else:
                self.metrics["jobs_failed"] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        with self._metrics_lock:
            metrics_copy = json.loads(json.dumps(self.metrics))
        for service, stats in metrics_copy["service_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Export Worker Metrics ===")
        self.info(f"Remote calls: {metrics['remote_calls']} (pages: {metrics['pages_fetched']})")
        self.info(f"Cache: {metrics['cache_hits']} hits / {metrics['cache_misses']} misses")
        self.info(
            f"Jobs: {metrics['jobs_started']} started, "
            f"{metrics['jobs_completed']} completed, {metrics['jobs_failed']} failed"
        )

        if metrics["service_success_rate"]:
            self.info("Service Success Rates:")
            for service, stats in metrics["service_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {service}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "export_worker",
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


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
