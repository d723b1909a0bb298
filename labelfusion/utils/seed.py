"""
Seed utilities for reproducible synthetic experiments.
"""

import os
import random

import numpy as np


def set_seed(seed: int = 42) -> np.random.Generator:
    """
    Seed the global random generators.

    Args:
        seed: Random seed value

    Returns:
        A numpy Generator seeded with ``seed``
    """
    random.seed(seed)
    np.random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    return np.random.default_rng(seed)

