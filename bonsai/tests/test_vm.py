"""
Test cell VM: decode totality and per-instruction semantics.

Verifies:
- Every byte 0x00-0xff executes without raising (plain and ext mode)
- Register, memory and control-flow instructions
- Energy instructions (drain, get-alpha) and the execution cost
- divide/share/force/fuse/nearby emit the right effect descriptors
"""

import sys
import numpy as np
import pytest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bonsai.constants import BANK_SIZE, PROGRAM_SIZE
from bonsai.data_types import Block, EffectKind, VMConfig, Effect
from bonsai.entity import Cell
from bonsai.spatial_queries import OccupancyIndex, NeighborTagIndex, bedrock_voxels
from bonsai.vm import VMContext, execute, decode, disassemble


def make_blocks(shape=(8, 8, 8), fill=Block.AIR):
    return np.full(shape, fill, dtype=np.uint8)


def make_ctx(blocks, cells, config=None):
    """Build the per-pass views the world step would hand to the VM"""
    occupancy = OccupancyIndex(bedrock_voxels(blocks))
    occupancy.build(cells)
    tags = NeighborTagIndex()
    tags.build(cells)
    return VMContext(
        blocks=blocks,
        shape=tuple(blocks.shape),
        occupancy=occupancy,
        tags=tags,
        config=config or VMConfig()
    )


def make_cell(program, cell_id=0, p=(3.5, 3.5, 3.5), epsilon=100, **kwargs):
    return Cell(id=cell_id, p=np.array(p), program=bytes(program), epsilon=epsilon, **kwargs)


def run_one(cell, blocks=None, others=(), config=None):
    blocks = make_blocks() if blocks is None else blocks
    ctx = make_ctx(blocks, [cell] + list(others), config)
    return execute(cell, ctx)


# ============================================================================
# Totality
# ============================================================================

@pytest.mark.parametrize("inst", range(256))
@pytest.mark.parametrize("ext", [False, True])
def test_every_opcode_executes(inst, ext):
    """Any byte must decode to a defined (possibly no-op) effect"""
    cell = make_cell([inst] * PROGRAM_SIZE, regs=[0x7b, 0xff, 0x80, 0x03], ext=ext, result=True)
    neighbor = Cell(id=1, p=np.array([4.5, 3.5, 3.5]), regs=[0xff, 0, 0, 0], epsilon=50)

    effect = run_one(cell, others=[neighbor])

    assert isinstance(effect, Effect)
    assert 0 <= cell.ip < BANK_SIZE
    assert all(0 <= r <= 0xff for r in cell.regs)
    assert 0 <= cell.epsilon <= 0xff
    assert len(cell.program) == PROGRAM_SIZE
    assert decode(inst)


def test_decode_table():
    """Spot-check range boundaries, including unassigned gaps"""
    assert decode(0x00) == 'divide'
    assert decode(0x07) == 'check'
    assert decode(0x0b) == 'share'
    assert decode(0x0c) == 'force'
    assert decode(0x13) == 'force'
    assert decode(0x14) == 'fuse'
    assert decode(0x1c) == 'reserved'
    assert decode(0x25) == 'get-phi'
    assert decode(0x26) == 'reserved'
    assert decode(0x2f) == 'reserved'
    assert decode(0x3e) == 'jmpa'
    assert decode(0x3f) == 'jmpr'
    assert decode(0x8c) == 'reserved'
    assert decode(0x8f) == 'reserved'
    assert decode(0xf7) == 'nearby'


def test_disassemble():
    program = bytes([0x45, 0x21, 0xb9, 0x3f])
    lines = disassemble(program, count=4)
    print("\n".join(lines))
    assert lines == [
        '00: 45 movi r1, 1',
        '01: 21 clone',
        '02: b9 add r2, r1',
        '03: 3f jmpr r3',
    ]


# ============================================================================
# Energy accounting
# ============================================================================

def test_execution_cost():
    """One unit per instruction, two in ext mode"""
    cell = make_cell([0x23], epsilon=10)
    run_one(cell)
    assert cell.epsilon == 9
    assert cell.ip == 1

    cell = make_cell([0x23], epsilon=10, ext=True)
    run_one(cell)
    assert cell.epsilon == 8

    # Cost never drives epsilon below zero
    cell = make_cell([0x23], epsilon=1, ext=True)
    run_one(cell)
    assert cell.epsilon == 0


def test_starved_cell_decays_without_executing():
    cell = make_cell([0x45], epsilon=0, decay=10)
    effect = run_one(cell)

    assert effect.kind is EffectKind.NONE
    assert cell.decay == 11
    assert cell.ip == 0
    assert cell.regs[1] == 0


def test_decay_saturation_reports_death():
    cell = make_cell([0x45], epsilon=0, decay=254)
    effect = run_one(cell)
    assert effect.kind is EffectKind.DEATH
    assert cell.decay == 255


def test_execution_resets_decay():
    cell = make_cell([0x23], epsilon=5, decay=40)
    run_one(cell)
    assert cell.decay == 0


def test_drain():
    cell = make_cell([0x20], epsilon=200)
    run_one(cell)
    assert cell.epsilon == 0


def test_get_alpha_in_water():
    blocks = make_blocks()
    blocks[3, 3, 3] = Block.WATER
    cell = make_cell([0x24], epsilon=10)

    run_one(cell, blocks=blocks)

    assert cell.result is True
    assert cell.epsilon == 9 + 16


def test_get_alpha_outside_water():
    cell = make_cell([0x24], epsilon=10, result=True)
    run_one(cell)
    assert cell.result is False
    assert cell.epsilon == 9


def test_get_alpha_saturates():
    blocks = make_blocks()
    blocks[3, 3, 3] = Block.WATER
    cell = make_cell([0x24], epsilon=250)
    run_one(cell, blocks=blocks)
    assert cell.epsilon == 255


def test_get_phi_emits_absorb_light():
    cell = make_cell([0x25])
    effect = run_one(cell)
    assert effect.kind is EffectKind.ABSORB_LIGHT


# ============================================================================
# Registers and memory
# ============================================================================

def test_movi():
    # 0x40 | imm << 2 | dst
    cell = make_cell([0x40 | (0xa << 2) | 2])
    run_one(cell)
    assert cell.regs[2] == 10
    assert cell.ip == 1


def test_add_sets_carry():
    cell = make_cell([0xb0 | (2 << 2) | 1], regs=[0, 0xf0, 0x20, 0])
    run_one(cell)
    assert cell.regs[1] == 0x10
    assert cell.result is True

    cell = make_cell([0xb0 | (2 << 2) | 1], regs=[0, 0x10, 0x20, 0], result=True)
    run_one(cell)
    assert cell.regs[1] == 0x30
    assert cell.result is False


def test_bitwise_and_mov():
    cell = make_cell([0x90 | (1 << 2) | 0], regs=[0b1100, 0b1010, 0, 0])
    run_one(cell)
    assert cell.regs[0] == 0b1000

    cell = make_cell([0xa0 | (1 << 2) | 0], regs=[0b1100, 0b1010, 0, 0])
    run_one(cell)
    assert cell.regs[0] == 0b1110

    cell = make_cell([0xc0 | (3 << 2) | 0], regs=[1, 2, 3, 4])
    run_one(cell)
    assert cell.regs == [4, 2, 3, 4]


def test_inspect_not_swap():
    cell = make_cell([0x82], epsilon=50)
    run_one(cell)
    assert cell.regs[2] == 49  # epsilon after paying for this instruction

    cell = make_cell([0x85], regs=[0, 0x0f, 0, 0])
    run_one(cell)
    assert cell.regs[1] == 0xf0

    cell = make_cell([0x8b], regs=[0, 0, 0, 0x12])
    run_one(cell)
    assert cell.regs[3] == 0x21


def test_store_and_load_masked():
    """Without ext, addresses are confined to bank0"""
    cell = make_cell([0xd0 | (1 << 2) | 0], regs=[200, 0x77, 0, 0])
    run_one(cell)
    assert cell.program[200 & 0x7f] == 0x77
    assert cell.program[200] == 0

    program = bytearray(PROGRAM_SIZE)
    program[0] = 0xe0 | (1 << 2) | 2
    program[72] = 0x5a
    cell = make_cell(program, regs=[0, 200, 0, 0])
    run_one(cell)
    assert cell.regs[2] == 0x5a


def test_store_and_load_ext_reach_bank1():
    cell = make_cell([0xd0 | (1 << 2) | 0], regs=[200, 0x77, 0, 0], ext=True)
    run_one(cell)
    assert cell.program[200] == 0x77
    assert cell.program[72] == 0

    program = bytearray(PROGRAM_SIZE)
    program[0] = 0xe0 | (1 << 2) | 2
    program[200] = 0x66
    cell = make_cell(program, regs=[0, 200, 0, 0], ext=True)
    run_one(cell)
    assert cell.regs[2] == 0x66


# ============================================================================
# Control flow
# ============================================================================

def test_jmpa_unconditional():
    # src=0 -> unconditional, dst=1
    cell = make_cell([0x31], regs=[0, 0x85, 0, 0])
    run_one(cell)
    assert cell.ip == 0x05


def test_jmpa_conditional():
    # src=1 -> gated by result
    cell = make_cell([0x35], regs=[0, 0x20, 0, 0], result=False)
    run_one(cell)
    assert cell.ip == 1

    cell = make_cell([0x35], regs=[0, 0x20, 0, 0], result=True)
    run_one(cell)
    assert cell.ip == 0x20


def test_jmpr():
    program = bytearray(PROGRAM_SIZE)
    program[120] = 0x3f
    cell = make_cell(program, regs=[0, 0, 0, 20], result=True)
    cell.ip = 120
    run_one(cell)
    assert cell.ip == (120 + 20) & 0x7f

    cell = make_cell(program, regs=[0, 0, 0, 20], result=False)
    cell.ip = 120
    run_one(cell)
    assert cell.ip == 121


def test_jmpc_finds_next_matching_byte():
    program = bytearray(PROGRAM_SIZE)
    program[0] = 0x3f
    program[10] = 0x99
    program[30] = 0x99
    cell = make_cell(program, regs=[0, 0, 0, 0x99], ext=True, result=True)

    run_one(cell)

    assert cell.ip == 10
    assert cell.result is True


def test_jmpc_without_match():
    program = bytearray(PROGRAM_SIZE)
    program[0] = 0x3f
    program[200] = 0x99  # bank1 is never searched
    cell = make_cell(program, regs=[0, 0, 0, 0x99], ext=True, result=True)

    run_one(cell)

    assert cell.ip == 0
    assert cell.result is False


def test_flip_check():
    cell = make_cell([0x23], result=False)
    run_one(cell)
    assert cell.result is True

    # check dst=3 -> Air
    cell = make_cell([0x07])
    run_one(cell)
    assert cell.result is True

    cell = make_cell([0x06])
    run_one(cell)
    assert cell.result is False


def test_ip_wraps_within_bank0():
    program = bytearray(PROGRAM_SIZE)
    program[127] = 0x23
    cell = make_cell(program)
    cell.ip = 127
    run_one(cell)
    assert cell.ip == 0


# ============================================================================
# Bank manipulation and divide
# ============================================================================

def test_clone_and_reduce():
    program = bytearray(range(BANK_SIZE)) + bytearray(BANK_SIZE)
    program[0] = 0x21
    cell = make_cell(program)
    run_one(cell)
    assert cell.bank1 == cell.bank0
    assert cell.ext is True

    cell.program[1] = 0x22
    run_one(cell)
    assert cell.bank1 == bytes(BANK_SIZE)
    assert cell.ext is False


def test_divide_scenario():
    """ext divide into a free Air neighbor splits energy and hands over bank1"""
    program = bytearray(PROGRAM_SIZE)
    program[0] = 0x03  # divide, dst=3 -> Air
    program[BANK_SIZE:] = bytes([0x45] * BANK_SIZE)
    cell = make_cell(program, epsilon=10, ext=True)

    effect = run_one(cell)

    print(f"  Child epsilon={effect.epsilon}, parent epsilon={cell.epsilon}")
    assert effect.kind is EffectKind.DIVIDE
    assert effect.voxel == (2, 2, 2)  # first in scan order
    assert effect.epsilon == 5
    assert effect.program == bytes([0x45] * BANK_SIZE)
    assert cell.epsilon == 3  # 10 - 2 (ext cost) - 5
    assert cell.epsilon < 10
    assert cell.result is True
    assert cell.ext is False
    assert cell.bank1 == bytes(BANK_SIZE)


def test_divide_requires_ext():
    cell = make_cell([0x03], ext=False, result=True)
    effect = run_one(cell)
    assert effect.kind is EffectKind.NONE
    assert cell.result is False


def test_divide_skips_occupied_and_mismatched_neighbors():
    blocks = make_blocks()
    blocks[2, 2, 2] = Block.SOIL
    occupant = Cell(id=1, p=np.array([2.5, 2.5, 3.5]))
    cell = make_cell([0x03], ext=True)

    effect = run_one(cell, blocks=blocks, others=[occupant])

    # (2,2,2) is Soil, (2,2,3) is taken -> next is (2,2,4)
    assert effect.voxel == (2, 2, 4)


def test_divide_without_target():
    cell = make_cell([0x01], ext=True)  # wants Soil, world is all Air
    effect = run_one(cell)
    assert effect.kind is EffectKind.NONE
    assert cell.result is False
    assert cell.ext is False


# ============================================================================
# Neighbor instructions
# ============================================================================

def make_neighbor(tag, cell_id=1, p=(4.5, 3.5, 3.5)):
    return Cell(id=cell_id, p=np.array(p), regs=[tag, 0, 0, 0], epsilon=50)


def test_share_variants():
    neighbor = make_neighbor(7)

    cell = make_cell([0x09], regs=[0, 7, 0, 0])
    effect = run_one(cell, others=[neighbor])
    assert effect.kind is EffectKind.SHARE
    assert effect.target_id == 1
    assert effect.voxel is None
    assert effect.push is False
    assert cell.result is True

    cell = make_cell([0x09], regs=[0, 7, 0, 0], ext=True)
    effect = run_one(cell, others=[neighbor])
    assert effect.push is True


def test_share_without_matching_tag():
    cell = make_cell([0x09], regs=[0, 8, 0, 0], result=True)
    effect = run_one(cell, others=[make_neighbor(7)])
    assert effect.kind is EffectKind.NONE
    assert cell.result is False


def test_force_variants():
    neighbor = make_neighbor(7)

    cell = make_cell([0x0d], regs=[0, 7, 0, 0])  # src=3
    effect = run_one(cell, others=[neighbor])
    assert effect.kind is EffectKind.FORCE
    assert effect.repel is True
    assert effect.voxel == (4, 3, 3)

    cell = make_cell([0x11], regs=[0, 7, 0, 0])  # src=0
    effect = run_one(cell, others=[neighbor])
    assert effect.repel is False


def test_fuse_sets_ext_on_match():
    cell = make_cell([0x15], regs=[0, 7, 0, 0])
    effect = run_one(cell, others=[make_neighbor(7)])
    assert effect.kind is EffectKind.FUSE
    assert effect.target_id == 1
    assert cell.ext is True

    cell = make_cell([0x15], regs=[0, 9, 0, 0])
    effect = run_one(cell, others=[make_neighbor(7)])
    assert effect.kind is EffectKind.NONE
    assert cell.ext is False


def test_nearby():
    # src=0 ignores Bedrock voxels, so the Air neighbor is reported
    cell = make_cell([0xf1])
    run_one(cell, others=[make_neighbor(42)])
    assert cell.regs[1] == 42
    assert cell.result is True

    # src=3 ignores Air voxels
    cell = make_cell([0xfd])
    run_one(cell, others=[make_neighbor(42)])
    assert cell.regs[1] == 0
    assert cell.result is False
