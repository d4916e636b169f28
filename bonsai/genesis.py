"""
World generation.

Produces the initial block grid and cell population that a World is
constructed from. Generation is deterministic for a given seed and lives
outside the simulation core: the World only ever sees the finished grid and
cell list.

Presets:
- cell_load: all Air, random cells anywhere (load testing)
- flat: Bedrock floor at z=0, Air above
- valley: value-noise height field, Soil below ground, Bedrock floor. Ground
  height stays within ground_fraction +/- VALLEY_RELIEF of the world height.
- creek: valley with Water filling Air below the water level
"""

import numpy as np
from typing import List, Tuple

from scipy.ndimage import map_coordinates

from .constants import (
    INITIAL_EPSILON,
    VALLEY_RELIEF,
    VALLEY_OCTAVES,
    VALLEY_BASE_JITTER,
)
from .data_types import Block, WorldConfig, GenerationConfig
from .entity import Cell
from .rng import make_seed, make_rng, random_program
from .simulation import World

PRESETS = ('cell_load', 'flat', 'valley', 'creek')

# Bound on |land_base|: jitter plus every octave at full swing
LAND_BASE_AMPLITUDE = VALLEY_BASE_JITTER + sum(VALLEY_OCTAVES)


def create_world(config: WorldConfig, generation: GenerationConfig) -> World:
    """
    Build a World from configuration.

    Args:
        config: World configuration (size, physics, VM)
        generation: Preset, seed and population size

    Returns:
        World with generated terrain and initial cells (ids 0..N-1)

    Example:
        world = create_world(WorldConfig(size=(32, 32, 16)),
                             GenerationConfig(preset='flat', seed=7, cell_count=100))
    """
    shape = tuple(config.size)
    blocks = generate_blocks(shape, generation)
    cells = spawn_cells(blocks, generation.cell_count, generation.seed, preset=generation.preset)

    print(f"  Terrain preset: {generation.preset} (seed={generation.seed}), "
          f"spawned {len(cells)} cells")

    return World(config, blocks, cells, next_id=len(cells))


def generate_blocks(shape: Tuple[int, int, int], generation: GenerationConfig) -> np.ndarray:
    """
    Generate the block grid for a preset.

    Args:
        shape: Grid dimensions (x, y, z)
        generation: Preset and seed

    Returns:
        (X, Y, Z) uint8 array of Block values
    """
    preset = generation.preset
    if preset not in PRESETS:
        raise ValueError(f"Unknown world preset '{preset}' (expected one of {PRESETS})")

    sx, sy, sz = shape
    blocks = np.full(shape, Block.AIR, dtype=np.uint8)

    if preset == 'cell_load':
        return blocks

    blocks[:, :, 0] = Block.BEDROCK
    if preset == 'flat':
        return blocks

    rng = make_rng(make_seed(generation.seed, preset, "terrain"))
    # Ground stays within (ground_fraction +/- VALLEY_RELIEF) * sz
    relief = land_base((sx, sy), rng) / LAND_BASE_AMPLITUDE
    ground = sz * (generation.ground_fraction + VALLEY_RELIEF * relief)

    z = np.arange(sz)[np.newaxis, np.newaxis, :]
    soil = (z < ground[:, :, np.newaxis]) & (z > 0)
    blocks[soil] = Block.SOIL

    if preset == 'creek':
        water_level = generation.water_level
        if water_level is None:
            water_level = int(sz * generation.ground_fraction) + 2
        water = (blocks == Block.AIR) & (z < water_level)
        blocks[water] = Block.WATER

    return blocks


def land_base(shape_xy: Tuple[int, int], rng: np.random.Generator) -> np.ndarray:
    """
    Multi-octave value noise with zero expected value.

    Small uniform jitter plus, for each octave scale s, a coarse grid of
    uniform(-s, s) samples bilinearly interpolated to full resolution.

    Args:
        shape_xy: (X, Y) output shape
        rng: Generator to draw from

    Returns:
        (X, Y) float64 height offsets
    """
    sx, sy = shape_xy
    heights = rng.uniform(-VALLEY_BASE_JITTER, VALLEY_BASE_JITTER, size=(sx, sy))

    for scale in VALLEY_OCTAVES:
        coarse = rng.uniform(-scale, scale, size=(sx // scale + 2, sy // scale + 2))
        gx, gy = np.meshgrid(np.arange(sx) / scale, np.arange(sy) / scale, indexing='ij')
        heights += map_coordinates(coarse, [gx, gy], order=1, mode='nearest')

    return heights


def spawn_cells(
    blocks: np.ndarray,
    count: int,
    seed: int,
    preset: str = "",
    first_id: int = 0
) -> List[Cell]:
    """
    Spawn cells at distinct non-opaque voxels with random programs.

    Args:
        blocks: Generated block grid
        count: Requested population (capped by free voxels)
        seed: World seed
        preset: Preset name (seed component)
        first_id: Id of the first cell; ids are sequential

    Returns:
        List of Cell instances, one per voxel, ids ascending
    """
    free = np.flatnonzero((blocks == Block.AIR) | (blocks == Block.WATER))
    count = min(count, len(free))
    if count <= 0:
        return []

    rng = make_rng(make_seed(seed, preset, "cells"))
    chosen = np.sort(rng.choice(len(free), size=count, replace=False))
    voxels = np.stack(np.unravel_index(free[chosen], blocks.shape), axis=1).astype(np.float64)

    positions = voxels + rng.random((count, 3))
    # Rounding can push voxel + 0.999... onto the next voxel
    positions = np.minimum(positions, np.nextafter(voxels + 1.0, voxels))

    cells = []
    for i in range(count):
        cells.append(Cell(
            id=first_id + i,
            p=positions[i],
            dp=np.zeros(3, dtype=np.float64),
            program=random_program(rng),
            epsilon=INITIAL_EPSILON
        ))
    return cells
