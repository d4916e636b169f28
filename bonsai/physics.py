"""
Physics integrator and exclusion resolver.

Per cell, per tick:
1. Gravity: dp.z -= gravity
2. Soil sticking: inside Soil, pull each axis toward the nearer voxel face
3. Ambient flow: inside Air, weak horizontal push rotating with time
4. Drag: dp *= dissipation
5. Integrate: p += dp
6. Exclusion: per axis (x, y, z), move into the neighboring voxel only if it
   is unclaimed; otherwise clamp to the current voxel face and zero that
   velocity component

Steps 1-5 run batched over stacked (N, 3) arrays. Exclusion resolves cells one
at a time in table order against an occupancy index that is updated as each
cell moves.
"""

import math
from typing import Optional, Tuple

import numpy as np

from .data_types import Block, PhysicsConfig
from .entity import Cell
from .spatial import floor_voxel, upper_face, Voxel
from .spatial_queries import OccupancyIndex


def ambient_flow(config: PhysicsConfig, step: int) -> np.ndarray:
    """
    Horizontal air flow for a given step.

    Spatially constant, direction rotating once per ambient_flow_period steps.

    Returns:
        (3,) velocity increment, zero when flow is disabled
    """
    if config.ambient_flow == 0.0 or config.ambient_flow_period <= 0:
        return np.zeros(3, dtype=np.float64)
    angle = 2.0 * math.pi * (step % config.ambient_flow_period) / config.ambient_flow_period
    return np.array([math.cos(angle), math.sin(angle), 0.0], dtype=np.float64) * config.ambient_flow


def integrate_batch(
    p: np.ndarray,
    dp: np.ndarray,
    blocks: np.ndarray,
    config: PhysicsConfig,
    flow: np.ndarray
):
    """
    Apply forces and advance continuous positions for many cells at once.

    Integration is independent per cell (every VM effect has already been
    applied), so it runs over stacked arrays. Exclusion stays sequential.

    Args:
        p: (N, 3) positions, updated in place
        dp: (N, 3) velocities, updated in place
        blocks: (N,) Block value at each cell's current voxel
        config: Physics constants
        flow: Ambient air flow for this step
    """
    dp[:, 2] -= config.gravity

    soil = blocks == Block.SOIL
    if soil.any():
        # Fractional position inside the voxel; target whichever face is nearer
        frac = p[soil] - np.floor(p[soil])
        target = np.where(frac < 0.5, 0.0, 1.0)
        dp[soil] += config.soil_stickiness * (target - frac)

    if flow.any():
        dp[blocks == Block.AIR] += flow

    dp *= config.dissipation
    p += dp


def integrate(cell: Cell, block: int, config: PhysicsConfig, flow: np.ndarray):
    """Single-cell form of integrate_batch (cell.p and cell.dp updated in place)"""
    integrate_batch(
        cell.p[np.newaxis, :],
        cell.dp[np.newaxis, :],
        np.array([block], dtype=np.uint8),
        config,
        flow
    )


def resolve_exclusion(
    cell: Cell,
    occupancy: OccupancyIndex,
    shape: Tuple[int, int, int],
    pi_next: Optional[Voxel] = None
) -> bool:
    """
    Turn the integrated position into an occupancy-respecting voxel move.

    Each axis is checked against the voxel reached by changing only that axis
    of the progressively committed pi, so a diagonal move is decomposed into
    per-axis steps and the final voxel is always one that was checked.

    Candidates past the upper world bound count as occupied. Candidates below
    zero are accepted; the world step retires such cells.

    Args:
        cell: Cell whose p was just integrated
        occupancy: Occupancy index (updated when the cell changes voxel)
        shape: Grid dimensions
        pi_next: floor(cell.p) when the caller already has it (batch floor)

    Returns:
        True if the cell's voxel changed
    """
    old_pi = cell.pi
    if pi_next is None:
        pi_next = floor_voxel(cell.p)
    if pi_next == old_pi:
        return False

    current = list(old_pi)

    for axis in range(3):
        if pi_next[axis] == current[axis]:
            continue

        candidate = list(current)
        candidate[axis] = pi_next[axis]
        candidate = tuple(candidate)

        if candidate[axis] >= shape[axis] or candidate in occupancy:
            # Blocked: stay on the near face of the current voxel
            if pi_next[axis] < current[axis]:
                cell.p[axis] = float(current[axis])
            else:
                cell.p[axis] = upper_face(current[axis])
            cell.dp[axis] = 0.0
        else:
            current[axis] = pi_next[axis]

    new_pi: Voxel = tuple(current)
    if new_pi == old_pi:
        return False

    if min(new_pi) < 0:
        # Leaving through the floor; no claim outside the grid
        occupancy.release(old_pi)
    else:
        occupancy.move(old_pi, new_pi)
    cell.pi = new_pi
    return True
