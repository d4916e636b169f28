"""
Per-tick spatial indexes.

OccupancyIndex: set of exclusively-claimed voxels (Bedrock + live cells).
NeighborTagIndex: voxel -> (tag, cell_id), the only path for one cell's
program to observe another cell.

Both are rebuilt at the start of every step and then mutated incrementally
while side effects and motion are applied, so a cell processed later in the
pass sees what earlier cells claimed.
"""

import numpy as np
from typing import Dict, Iterable, Optional, Set, Tuple

from .data_types import Block
from .entity import Cell
from .spatial import Voxel, neighborhood


def bedrock_voxels(blocks: np.ndarray) -> Set[Voxel]:
    """
    Extract the fixed Bedrock set from a block grid.

    Args:
        blocks: (X, Y, Z) uint8 array of Block values

    Returns:
        Set of voxel tuples holding Bedrock
    """
    exclusive = np.array([Block(b).exclusive for b in range(len(Block))])
    coords = np.argwhere(exclusive[blocks])
    return {(int(x), int(y), int(z)) for x, y, z in coords}


def compute_sky_exposure(blocks: np.ndarray) -> np.ndarray:
    """
    Mark voxels that see the sky along +z.

    A voxel is exposed when every block strictly above it in its column is
    non-opaque (Water or Air). Terrain is static, so this is computed once.

    Args:
        blocks: (X, Y, Z) uint8 array of Block values

    Returns:
        (X, Y, Z) bool array
    """
    opaque = np.array([Block(b).opaque for b in range(len(Block))])[blocks]
    # Count opaque blocks at or above each z, then exclude the voxel itself
    above_inclusive = np.flip(np.cumsum(np.flip(opaque, axis=2), axis=2), axis=2)
    above_strict = above_inclusive - opaque
    return above_strict == 0


class OccupancyIndex:
    """
    Set of voxels exclusively claimed this tick.

    Bedrock entries are permanent; cell entries follow cells as they move.
    """

    def __init__(self, bedrock: Set[Voxel]):
        self._bedrock = frozenset(bedrock)
        self._occupied: Set[Voxel] = set(self._bedrock)

    def build(self, cells: Iterable[Cell]):
        """Reset to Bedrock plus the current voxel of every cell"""
        self._occupied = set(self._bedrock)
        self._occupied.update(cell.pi for cell in cells)

    def __contains__(self, voxel: Voxel) -> bool:
        return voxel in self._occupied

    def __len__(self) -> int:
        return len(self._occupied)

    def is_bedrock(self, voxel: Voxel) -> bool:
        return voxel in self._bedrock

    def claim(self, voxel: Voxel):
        self._occupied.add(voxel)

    def release(self, voxel: Voxel):
        # Bedrock is never released
        if voxel not in self._bedrock:
            self._occupied.discard(voxel)

    def move(self, old: Voxel, new: Voxel):
        """Swap a cell's claim from old to new (insert new, then remove old)"""
        self._occupied.add(new)
        self.release(old)


class NeighborTagIndex:
    """
    Map voxel -> (tag, cell_id) built once before the VM pass.

    Tags are register values captured at build time; later register writes in
    the same tick do not change a cell's published tag.
    """

    def __init__(self):
        self._entries: Dict[Voxel, Tuple[int, int]] = {}

    def build(self, cells: Iterable[Cell]):
        self._entries = {cell.pi: (cell.tag, cell.id) for cell in cells}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, voxel: Voxel) -> Optional[Tuple[int, int]]:
        return self._entries.get(voxel)

    def remove(self, voxel: Voxel):
        self._entries.pop(voxel, None)

    def find_tagged_neighbor(
        self,
        voxel: Voxel,
        tag: int,
        shape: Tuple[int, int, int]
    ) -> Optional[Tuple[Voxel, int]]:
        """
        Find the first neighbor cell publishing `tag`.

        Args:
            voxel: Center voxel (the querying cell)
            tag: Tag value to match
            shape: Grid dimensions

        Returns:
            (neighbor_voxel, cell_id) for the first match in scan order, or None
        """
        entries = self._entries
        for nv in neighborhood(voxel, shape):
            entry = entries.get(nv)
            if entry is not None and entry[0] == tag:
                return nv, entry[1]
        return None
