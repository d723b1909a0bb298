"""
Utility functions for logging, visualization, and I/O operations.
"""

from labelfusion.utils.logger import setup_logger, get_logger
from labelfusion.utils.io import (
    load_config,
    save_config,
    load_label_image,
    save_label_image,
    save_probability_images,
)
from labelfusion.utils.visualization import Visualizer
from labelfusion.utils.seed import set_seed

__all__ = [
    "setup_logger",
    "get_logger",
    "load_config",
    "save_config",
    "load_label_image",
    "save_label_image",
    "save_probability_images",
    "Visualizer",
    "set_seed",
]
