"""
Block-wise execution over pixels.

Per-pixel stages split the pixels into contiguous blocks. Blocks are processed
in order, or on a thread pool when one is supplied; results are returned in
block order either way.
"""

from concurrent.futures import Executor
from typing import Any, Callable, List, Optional


def pixel_blocks(number_of_pixels: int, chunk_size: int) -> List[slice]:
    """Split ``range(number_of_pixels)`` into slices of at most ``chunk_size``."""
    return [
        slice(start, min(start + chunk_size, number_of_pixels))
        for start in range(0, number_of_pixels, chunk_size)
    ]


def map_blocks(
    function: Callable[[slice], Any],
    blocks: List[slice],
    executor: Optional[Executor] = None,
) -> List[Any]:
    """
    Apply ``function`` to every block.

    Args:
        function: Callable taking one block slice
        blocks: Blocks from ``pixel_blocks``
        executor: Optional executor; a barrier is implied by collecting all results

    Returns:
        Results in block order
    """
    if executor is None or len(blocks) <= 1:
        return [function(block) for block in blocks]
    return list(executor.map(function, blocks))
