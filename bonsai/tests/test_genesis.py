"""
Test world generation presets and initial population.
"""

import sys
import numpy as np
import pytest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bonsai.constants import BANK_SIZE, INITIAL_EPSILON, VALLEY_GROUND_FRACTION, VALLEY_RELIEF
from bonsai.data_types import Block, GenerationConfig, WorldConfig
from bonsai.genesis import create_world, generate_blocks, land_base, spawn_cells
from bonsai.rng import make_rng, make_seed


def test_cell_load_is_all_air():
    blocks = generate_blocks((6, 6, 6), GenerationConfig(preset='cell_load'))
    assert np.all(blocks == Block.AIR)


def test_flat_preset():
    blocks = generate_blocks((6, 6, 6), GenerationConfig(preset='flat'))
    assert np.all(blocks[:, :, 0] == Block.BEDROCK)
    assert np.all(blocks[:, :, 1:] == Block.AIR)


def test_valley_preset():
    shape = (32, 32, 16)
    generation = GenerationConfig(preset='valley', seed=11)
    blocks = generate_blocks(shape, generation)

    print(f"  Soil voxels: {int(np.sum(blocks == Block.SOIL))}")
    assert blocks.shape == shape
    assert blocks.dtype == np.uint8
    assert np.all(blocks[:, :, 0] == Block.BEDROCK)
    assert np.any(blocks == Block.SOIL)
    assert np.any(blocks[:, :, 1:] == Block.AIR)
    assert not np.any(blocks == Block.WATER)

    # Soil columns are solid from the floor up (no floating soil)
    soil = blocks[:, :, 1:] == Block.SOIL
    assert not np.any(~soil[:, :, :-1] & soil[:, :, 1:])

    again = generate_blocks(shape, generation)
    assert np.array_equal(blocks, again)


def test_creek_preset():
    shape = (24, 24, 16)
    blocks = generate_blocks(shape, GenerationConfig(preset='creek', seed=5, water_level=6))

    water_z = np.argwhere(blocks == Block.WATER)[:, 2]
    assert len(water_z) > 0
    assert water_z.max() < 6
    assert np.all(blocks[:, :, 6:] != Block.WATER)


def test_small_valley_keeps_open_air():
    """Relief follows world height, so a 10-voxel-tall valley is not buried"""
    shape = (10, 10, 10)
    for seed in range(5):
        blocks = generate_blocks(shape, GenerationConfig(preset='valley', seed=seed))
        top = int(np.ceil(shape[2] * (VALLEY_GROUND_FRACTION + VALLEY_RELIEF)))
        assert not np.any(blocks[:, :, top:] == Block.SOIL)
        assert np.all(blocks[:, :, top:] == Block.AIR)


def test_small_worlds_spawn_cells():
    for preset in ('valley', 'creek'):
        world = create_world(
            WorldConfig(size=(10, 10, 10)),
            GenerationConfig(preset=preset, seed=12345, cell_count=100)
        )
        print(f"  {preset}: {len(world.cells)} cells")
        assert len(world.cells) == 100
        world.validate()


def test_relief_scales_with_height():
    generation = GenerationConfig(preset='valley', seed=3)
    for sz in (12, 48):
        blocks = generate_blocks((40, 40, sz), generation)
        heights = np.sum(blocks == Block.SOIL, axis=2)
        assert heights.max() < sz * (VALLEY_GROUND_FRACTION + VALLEY_RELIEF)
        assert heights.min() >= int(sz * (VALLEY_GROUND_FRACTION - VALLEY_RELIEF)) - 1


def test_unknown_preset():
    with pytest.raises(ValueError):
        generate_blocks((4, 4, 4), GenerationConfig(preset='mountain'))


def test_land_base_shape():
    rng = make_rng(make_seed(1, "test"))
    heights = land_base((40, 20), rng)
    assert heights.shape == (40, 20)
    assert np.all(np.isfinite(heights))
    # Largest octave dominates: values span well beyond the base jitter
    assert heights.max() - heights.min() > 1.0


def test_spawn_cells():
    blocks = generate_blocks((10, 10, 10), GenerationConfig(preset='flat'))
    cells = spawn_cells(blocks, 50, seed=4, first_id=7)

    assert [c.id for c in cells] == list(range(7, 57))
    voxels = [c.pi for c in cells]
    assert len(set(voxels)) == 50
    for cell in cells:
        assert blocks[cell.pi] in (Block.AIR, Block.WATER)
        assert cell.epsilon == INITIAL_EPSILON
        assert cell.bank1 == bytes(BANK_SIZE)
        assert cell.ip == 0


def test_spawn_capped_by_free_voxels():
    blocks = generate_blocks((2, 2, 2), GenerationConfig(preset='cell_load'))
    cells = spawn_cells(blocks, 100, seed=1)
    assert len(cells) == 8


def test_create_world():
    world = create_world(
        WorldConfig(size=(16, 16, 8)),
        GenerationConfig(preset='flat', seed=2, cell_count=40)
    )
    assert len(world.cells) == 40
    assert world.next_id == 40
    assert world.blocks.shape == (16, 16, 8)
    world.validate()
