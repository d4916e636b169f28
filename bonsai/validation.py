"""
Global invariant checks for a World.

A consistency oracle for tests and debug runs (SIM_DEBUG_INVARIANTS=1), not
part of the steady-state tick. Any violation is an implementation bug and is
raised as InvariantViolation, which is never caught inside the package.
"""

from typing import TYPE_CHECKING

import numpy as np

from .spatial import floor_voxel, in_bounds

if TYPE_CHECKING:
    from .simulation import World


class InvariantViolation(AssertionError):
    """Raised when a world invariant does not hold"""
    pass


def validate_world(world: 'World'):
    """
    Check every global invariant, failing on the first violation.

    Checks:
    - Block grid shape matches the configured world size
    - Cell ids are unique and below next_id
    - p and dp are finite
    - pi == floor(p) and pi lies inside the grid
    - No two cells share a voxel, and no cell sits in Bedrock

    Args:
        world: World to check

    Raises:
        InvariantViolation: On the first violated invariant
    """
    shape = tuple(world.config.size)
    if tuple(world.blocks.shape) != shape:
        raise InvariantViolation(
            f"Grid shape {tuple(world.blocks.shape)} != configured size {shape}")

    seen_ids = set()
    claimed = {}
    next_id = world.next_id

    for cell in world.cells:
        if cell.id in seen_ids:
            raise InvariantViolation(f"Duplicate cell id {cell.id}")
        seen_ids.add(cell.id)

        if not 0 <= cell.id < next_id:
            raise InvariantViolation(f"Cell id {cell.id} not below next_id {next_id}")

        if not (np.all(np.isfinite(cell.p)) and np.all(np.isfinite(cell.dp))):
            raise InvariantViolation(
                f"Cell {cell.id} has non-finite state: p={cell.p.tolist()}, dp={cell.dp.tolist()}")

        floored = floor_voxel(cell.p)
        if cell.pi != floored:
            raise InvariantViolation(
                f"Cell {cell.id} pi={cell.pi} != floor(p)={floored} (p={cell.p.tolist()})")

        if not in_bounds(cell.pi, shape):
            raise InvariantViolation(f"Cell {cell.id} voxel {cell.pi} outside world {shape}")

        if world.occupancy.is_bedrock(cell.pi):
            raise InvariantViolation(f"Cell {cell.id} shares voxel {cell.pi} with Bedrock")

        other = claimed.get(cell.pi)
        if other is not None:
            raise InvariantViolation(f"Cells {other} and {cell.id} share voxel {cell.pi}")
        claimed[cell.pi] = cell.id
