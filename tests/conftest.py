# ============================================================================
# Label Fusion - Pytest Configuration
# ============================================================================
# Shared fixtures: small hand-made label images and synthetic rater sets
# ============================================================================

import os
import sys
from pathlib import Path

import numpy as np
import pytest


PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Figures are written to files only
os.environ.setdefault("MPLBACKEND", "Agg")


# =============================================================================
# Random Fixtures
# =============================================================================

@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(1234)


# =============================================================================
# Label Image Fixtures
# =============================================================================

@pytest.fixture
def agreeing_sources():
    """Three identical 3-class segmentations."""
    image = np.zeros((12, 10), dtype=np.uint8)
    image[2:6, 2:8] = 1
    image[7:11, 1:5] = 2
    return [image.copy() for _ in range(3)]


@pytest.fixture
def symmetric_sources():
    """Two sources that disagree everywhere in a perfectly symmetric way."""
    a = np.array([[0, 1, 0, 1], [1, 0, 1, 0]], dtype=np.int16)
    return [a, 1 - a]


@pytest.fixture
def one_reliable_source(rng):
    """
    Three sources, two classes: source 0 equals the truth, sources 1 and 2
    report the true label only 60% of the time.
    """
    truth = rng.integers(0, 2, size=(100, 200)).astype(np.int32)
    noisy = []
    for _ in range(2):
        flip = rng.random(truth.shape) >= 0.6
        noisy.append(np.where(flip, 1 - truth, truth).astype(np.int32))
    return truth, [truth.copy()] + noisy


@pytest.fixture
def synthetic_raters():
    """Synthetic 3-class scene with raters of decreasing accuracy."""
    from labelfusion.data import generate_raters

    return generate_raters(
        shape=(48, 48),
        number_of_classes=3,
        accuracies=(0.95, 0.8, 0.6),
        seed=7,
    )
