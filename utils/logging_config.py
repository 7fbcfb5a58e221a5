# utils/logging_config.py

import logging
import logging.handlers
import sys
import threading
from pathlib import Path
import json
from datetime import datetime

import numpy as np


def setup_logging(level: str = "INFO", log_dir: str = "logs",
                  name: str = "repost_guard", stream=None) -> logging.Logger:
    """
    Configure the root logger with console, rotating text and JSON handlers
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    # Replace handlers from an earlier call, leave foreign ones alone
    for handler in list(root.handlers):
        if getattr(handler, "_repost_guard", False):
            root.removeHandler(handler)
            handler.close()

    # Console handler
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))

    # File handler (rotating)
    file_handler = logging.handlers.RotatingFileHandler(
        log_path / f"{name}.log",
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))

    # JSON handler for structured logs
    json_handler = logging.handlers.RotatingFileHandler(
        log_path / f"{name}_structured.json",
        maxBytes=10*1024*1024,
        backupCount=5
    )
    json_handler.setLevel(logging.INFO)
    json_handler.setFormatter(JSONFormatter())

    for handler in (console_handler, file_handler, json_handler):
        handler._repost_guard = True
        root.addHandler(handler)

    return logging.getLogger(name)


def log_operation(logger: logging.Logger, operation: str, **kwargs):
    """Log structured operation data"""
    data = {
        'operation': operation,
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    logger.info(json.dumps(data, default=str))


class JSONFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


# Performance monitoring
class PerformanceLogger:
    """
    Log performance metrics
    """

    def __init__(self):
        self.metrics = []
        self._lock = threading.Lock()

    def log_metric(self, operation: str, duration: float, **metadata):
        """Log a performance metric"""
        metric = {
            'timestamp': datetime.now().isoformat(),
            'operation': operation,
            'duration_seconds': duration,
            **metadata
        }
        with self._lock:
            self.metrics.append(metric)

    def save_metrics(self, output_path: str):
        """Save metrics to JSON file"""
        with open(output_path, 'w') as f:
            json.dump(self.metrics, f, indent=2)

    def get_statistics(self, operation: str = None) -> dict:
        """Get statistics for operations"""
        with self._lock:
            if operation:
                durations = [m['duration_seconds'] for m in self.metrics
                             if m['operation'] == operation]
            else:
                durations = [m['duration_seconds'] for m in self.metrics]

        if not durations:
            return {}

        return {
            'count': len(durations),
            'mean': float(np.mean(durations)),
            'median': float(np.median(durations)),
            'min': float(np.min(durations)),
            'max': float(np.max(durations)),
            'std': float(np.std(durations)),
            'total': float(np.sum(durations))
        }
