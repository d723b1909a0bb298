"""
Logging utilities for label fusion runs.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

# Loggers configured by setup_logger, keyed by name
_loggers = {}


def setup_logger(
    name: str = "labelfusion",
    log_file: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    console: bool = True,
    file_mode: str = "a",
) -> logging.Logger:
    """
    Setup and configure a logger.

    Args:
        name: Logger name
        log_file: Path to log file (optional)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        console: Whether to output to console
        file_mode: File mode ('a' for append, 'w' for overwrite)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers = []

    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)-5s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode=file_mode, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _loggers[name] = logger

    return logger


def get_logger(name: str = "labelfusion") -> logging.Logger:
    """
    Get an existing logger or create a new one.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if name in _loggers:
        return _loggers[name]
    return setup_logger(name)


class LoggerAdapter:
    """
    Adapter adding fusion-specific logging helpers.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_config(self, config: Dict[str, Any], prefix: str = "") -> None:
        """Log a (nested) configuration dictionary."""
        for key, value in config.items():
            if isinstance(value, dict):
                self.log_config(value, prefix=f"{prefix}{key}.")
            else:
                self.logger.info(f"{prefix}{key}: {value}")

    def log_confusion_matrices(
        self,
        matrices: Sequence[np.ndarray],
        names: Optional[Sequence[str]] = None,
    ) -> None:
        """Log the diagonal (per-class sensitivity) of every confusion matrix."""
        for i, matrix in enumerate(matrices):
            name = names[i] if names is not None else f"source {i}"
            diagonal = " | ".join(f"{v:.4f}" for v in np.diag(matrix))
            self.logger.info(f"{name}: diagonal [{diagonal}]")

    def log_metrics(self, metrics: Dict[str, Any], step: Optional[int] = None) -> None:
        """Log scalar metrics; non-scalar values are skipped."""
        step_str = f"[Step {step}] " if step is not None else ""
        scalars = {k: v for k, v in metrics.items() if isinstance(v, (int, float, np.number))}
        metrics_str = " | ".join([f"{k}: {v:.4f}" for k, v in scalars.items()])
        self.logger.info(f"{step_str}{metrics_str}")

    def __getattr__(self, name):
        """Delegate to underlying logger."""
        return getattr(self.logger, name)
