"""
Spatial utility functions for the voxel grid.

Helper functions for flooring continuous positions, bounds checks and the
fixed-order 26-neighborhood scan.
"""

import math
import numpy as np
from typing import Iterator, Sequence, Tuple

from .constants import NEIGHBOR_OFFSETS

Voxel = Tuple[int, int, int]


def floor_voxel(p: Sequence[float]) -> Voxel:
    """
    Element-wise floor of a continuous position.

    Args:
        p: Position [x, y, z]

    Returns:
        Integer voxel (x, y, z) as builtin ints (hashable, set-friendly)
    """
    return (math.floor(p[0]), math.floor(p[1]), math.floor(p[2]))


def in_bounds(voxel: Voxel, shape: Tuple[int, int, int]) -> bool:
    """True if voxel lies inside [0, shape) on every axis"""
    return (0 <= voxel[0] < shape[0]
            and 0 <= voxel[1] < shape[1]
            and 0 <= voxel[2] < shape[2])


def neighborhood(voxel: Voxel, shape: Tuple[int, int, int]) -> Iterator[Voxel]:
    """
    Iterate the in-bounds 26-neighborhood of a voxel.

    Order is ascending x, then y, then z; the center is excluded. Callers
    return the first match, so this order must never change.

    Args:
        voxel: Center voxel
        shape: Grid dimensions (x, y, z)

    Yields:
        Neighbor voxels inside the grid
    """
    x, y, z = voxel
    sx, sy, sz = shape
    for dx, dy, dz in NEIGHBOR_OFFSETS:
        nx, ny, nz = x + dx, y + dy, z + dz
        if 0 <= nx < sx and 0 <= ny < sy and 0 <= nz < sz:
            yield (nx, ny, nz)


def voxel_center(voxel: Voxel) -> np.ndarray:
    """Continuous position of a voxel's center"""
    return np.array([voxel[0] + 0.5, voxel[1] + 0.5, voxel[2] + 0.5], dtype=np.float64)


def upper_face(index: int) -> float:
    """
    Largest float whose floor is still `index`.

    Used to clamp a cell against the positive face of its voxel.
    """
    return float(np.nextafter(float(index + 1), float(index)))
