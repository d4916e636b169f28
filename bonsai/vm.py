"""
Cell virtual machine.

Executes exactly one instruction per cell per tick against the cell's own
state plus read-only views of the occupancy index, the block grid and the
neighbor tag index. Interactions with other cells are never applied here;
the instruction returns an Effect descriptor that the world step applies.

Instruction byte layout: bits 0-1 select dst, bits 2-3 select src.

    0x00-0x03 divide     0x20 drain      0x30-0x3e jmpa   0x80-0x83 inspect
    0x04-0x07 check      0x21 clone      0x3f      jmpr   0x84-0x87 not
    0x08-0x0b share      0x22 reduce               (jmpc when ext)
    0x0c-0x13 force      0x23 flip       0x40-0x7f movi   0x88-0x8b swap
    0x14-0x1b fuse       0x24 get-alpha               0x90 and, 0xa0 or,
    0x1c-0x1f reserved   0x25 get-phi                 0xb0 add, 0xc0 mov,
                         0x26-0x2f reserved           0xd0 st,  0xe0 ld,
                                                      0xf0 nearby

The decoder is total: every byte value has a handler, unassigned ranges are
no-ops. Randomly generated programs must never raise.
"""

from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np

from .constants import (
    BANK_SIZE,
    PROGRAM_SIZE,
    IP_MASK,
    BYTE_MASK,
    EPSILON_MAX,
    DECAY_MAX,
    EXT_EXECUTION_COST,
    BASE_EXECUTION_COST,
)
from .data_types import Block, Effect, EffectKind, VMConfig, NO_EFFECT
from .entity import Cell
from .spatial import neighborhood
from .spatial_queries import OccupancyIndex, NeighborTagIndex


@dataclass
class VMContext:
    """
    Read-only world views for one VM pass.

    Constructed once per step and shared by every cell in the VM pass.
    """
    blocks: np.ndarray
    shape: Tuple[int, int, int]
    occupancy: OccupancyIndex
    tags: NeighborTagIndex
    config: VMConfig


# Handler signature: (cell, inst, dst, src, ctx, pre_epsilon) -> (effect, advance_ip)
Handler = Callable[[Cell, int, int, int, VMContext, int], Tuple[Effect, bool]]


def execute(cell: Cell, ctx: VMContext) -> Effect:
    """
    Run one tick of a cell's program.

    A cell without energy does not execute; it decays instead and reports
    death once decay saturates. Otherwise decay resets, the execution cost is
    paid up front and the instruction at program[ip] is applied.

    Args:
        cell: Cell to step (mutated in place)
        ctx: Read-only views for this pass

    Returns:
        Effect for the world step to apply (NO_EFFECT when nothing pending)
    """
    if cell.epsilon == 0:
        cell.decay = min(cell.decay + 1, DECAY_MAX)
        if cell.decay >= DECAY_MAX:
            return Effect(kind=EffectKind.DEATH)
        return NO_EFFECT

    cell.decay = 0
    pre_epsilon = cell.epsilon
    cost = EXT_EXECUTION_COST if cell.ext else BASE_EXECUTION_COST
    cell.epsilon = max(0, cell.epsilon - cost)

    inst = cell.program[cell.ip]
    dst = inst & 3
    src = (inst >> 2) & 3

    effect, advance = _HANDLERS[inst](cell, inst, dst, src, ctx, pre_epsilon)
    if advance:
        cell.ip = (cell.ip + 1) & IP_MASK
    return effect


def decode(inst: int) -> str:
    """Mnemonic for an instruction byte (total over 0x00-0xff)"""
    return _MNEMONICS[inst & BYTE_MASK]


def disassemble(program: bytes, start: int = 0, count: int = BANK_SIZE) -> List[str]:
    """
    Render a slice of a program tape as text, one instruction per line.

    Example:
        >>> disassemble(bytes([0x45, 0x21]), count=2)
        ['00: 45 movi r1, 1', '01: 21 clone']
    """
    lines = []
    for addr in range(start, min(start + count, len(program))):
        inst = program[addr]
        mnemonic = decode(inst)
        dst = inst & 3
        src = (inst >> 2) & 3
        if mnemonic in ('and', 'or', 'add', 'mov', 'st', 'ld'):
            operands = f" r{src}, r{dst}"
        elif mnemonic in ('reserved', 'drain', 'clone', 'reduce', 'flip', 'get-alpha', 'get-phi'):
            operands = ""
        elif mnemonic == 'movi':
            operands = f" r{dst}, {(inst >> 2) & 0xf}"
        else:
            operands = f" r{dst}"
        lines.append(f"{addr:02x}: {inst:02x} {mnemonic}{operands}")
    return lines


# ============================================================================
# Helpers
# ============================================================================

def _block_at(ctx: VMContext, voxel) -> int:
    return int(ctx.blocks[voxel])


def _jump_taken(cell: Cell, src: int) -> bool:
    """Jumps are unconditional when src's low bit is clear, else gated by result"""
    return (src & 1) == 0 or cell.result


# ============================================================================
# Cell-to-world instructions (0x00-0x1f)
# ============================================================================

def _divide(cell, inst, dst, src, ctx, pre_epsilon):
    if not cell.ext:
        cell.result = False
        return NO_EFFECT, True

    cell.ext = False
    wanted = int(Block(dst))
    target = None
    for nv in neighborhood(cell.pi, ctx.shape):
        if nv not in ctx.occupancy and _block_at(ctx, nv) == wanted:
            target = nv
            break

    if target is None:
        cell.result = False
        return NO_EFFECT, True

    # Child takes the larger half of the energy held before this instruction
    child_epsilon = (pre_epsilon + 1) // 2
    cell.epsilon = max(0, cell.epsilon - child_epsilon)

    child_program = bytes(cell.program[BANK_SIZE:])
    cell.program[BANK_SIZE:] = bytes(PROGRAM_SIZE - BANK_SIZE)
    cell.result = True

    return Effect(
        kind=EffectKind.DIVIDE,
        voxel=target,
        epsilon=child_epsilon,
        program=child_program
    ), True


def _check(cell, inst, dst, src, ctx, pre_epsilon):
    cell.result = _block_at(ctx, cell.pi) == int(Block(dst))
    return NO_EFFECT, True


def _share(cell, inst, dst, src, ctx, pre_epsilon):
    found = ctx.tags.find_tagged_neighbor(cell.pi, cell.regs[dst], ctx.shape)
    cell.result = found is not None
    if found is None:
        return NO_EFFECT, True

    _, target_id = found
    # Within 0x08-0x0b src is fixed, so ext flips the variant
    push = bool((src & 1) ^ int(cell.ext))
    return Effect(kind=EffectKind.SHARE, target_id=target_id, push=push), True


def _force(cell, inst, dst, src, ctx, pre_epsilon):
    found = ctx.tags.find_tagged_neighbor(cell.pi, cell.regs[dst], ctx.shape)
    cell.result = found is not None
    if found is None:
        return NO_EFFECT, True

    voxel, target_id = found
    return Effect(kind=EffectKind.FORCE, target_id=target_id, voxel=voxel, repel=bool(src & 1)), True


def _fuse(cell, inst, dst, src, ctx, pre_epsilon):
    found = ctx.tags.find_tagged_neighbor(cell.pi, cell.regs[dst], ctx.shape)
    cell.result = found is not None
    if found is None:
        return NO_EFFECT, True

    _, target_id = found
    cell.ext = True
    return Effect(kind=EffectKind.FUSE, target_id=target_id), True


def _reserved(cell, inst, dst, src, ctx, pre_epsilon):
    return NO_EFFECT, True


# ============================================================================
# Control and energy instructions (0x20-0x3f)
# ============================================================================

def _drain(cell, inst, dst, src, ctx, pre_epsilon):
    cell.epsilon = 0
    return NO_EFFECT, True


def _clone(cell, inst, dst, src, ctx, pre_epsilon):
    cell.program[BANK_SIZE:] = cell.program[:BANK_SIZE]
    cell.ext = True
    return NO_EFFECT, True


def _reduce(cell, inst, dst, src, ctx, pre_epsilon):
    cell.program[BANK_SIZE:] = bytes(PROGRAM_SIZE - BANK_SIZE)
    cell.ext = False
    return NO_EFFECT, True


def _flip(cell, inst, dst, src, ctx, pre_epsilon):
    cell.result = not cell.result
    return NO_EFFECT, True


def _get_alpha(cell, inst, dst, src, ctx, pre_epsilon):
    if _block_at(ctx, cell.pi) == Block.WATER:
        cell.epsilon = min(EPSILON_MAX, cell.epsilon + ctx.config.alpha_gain)
        cell.result = True
    else:
        cell.result = False
    return NO_EFFECT, True


def _get_phi(cell, inst, dst, src, ctx, pre_epsilon):
    return Effect(kind=EffectKind.ABSORB_LIGHT), True


def _jmpa(cell, inst, dst, src, ctx, pre_epsilon):
    if not _jump_taken(cell, src):
        return NO_EFFECT, True
    cell.ip = cell.regs[dst] & IP_MASK
    return NO_EFFECT, False


def _jmpr(cell, inst, dst, src, ctx, pre_epsilon):
    if not _jump_taken(cell, src):
        return NO_EFFECT, True
    if cell.ext:
        return _jmpc(cell, dst)
    cell.ip = (cell.ip + cell.regs[dst]) & IP_MASK
    return NO_EFFECT, False


def _jmpc(cell, dst):
    """Content-addressed jump: next byte in bank0 equal to regs[dst]"""
    wanted = cell.regs[dst]
    program = cell.program
    for offset in range(1, BANK_SIZE):
        addr = (cell.ip + offset) & IP_MASK
        if program[addr] == wanted:
            cell.ip = addr
            cell.result = True
            return NO_EFFECT, False
    cell.result = False
    return NO_EFFECT, False


def _movi(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] = (inst >> 2) & 0xf
    return NO_EFFECT, True


# ============================================================================
# Register instructions (0x80-0xff)
# ============================================================================

def _inspect(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] = cell.epsilon
    return NO_EFFECT, True


def _not(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] = ~cell.regs[dst] & BYTE_MASK
    return NO_EFFECT, True


def _swap(cell, inst, dst, src, ctx, pre_epsilon):
    v = cell.regs[dst]
    cell.regs[dst] = ((v << 4) | (v >> 4)) & BYTE_MASK
    return NO_EFFECT, True


def _and(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] &= cell.regs[src]
    return NO_EFFECT, True


def _or(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] |= cell.regs[src]
    return NO_EFFECT, True


def _add(cell, inst, dst, src, ctx, pre_epsilon):
    total = cell.regs[dst] + cell.regs[src]
    cell.regs[dst] = total & BYTE_MASK
    cell.result = bool(total & 0x100)
    return NO_EFFECT, True


def _mov(cell, inst, dst, src, ctx, pre_epsilon):
    cell.regs[dst] = cell.regs[src]
    return NO_EFFECT, True


def _st(cell, inst, dst, src, ctx, pre_epsilon):
    addr = cell.regs[dst] if cell.ext else cell.regs[dst] & IP_MASK
    cell.program[addr] = cell.regs[src]
    return NO_EFFECT, True


def _ld(cell, inst, dst, src, ctx, pre_epsilon):
    addr = cell.regs[src] if cell.ext else cell.regs[src] & IP_MASK
    cell.regs[dst] = cell.program[addr]
    return NO_EFFECT, True


def _nearby(cell, inst, dst, src, ctx, pre_epsilon):
    ignored = int(Block(src))
    for nv in neighborhood(cell.pi, ctx.shape):
        if _block_at(ctx, nv) == ignored:
            continue
        entry = ctx.tags.get(nv)
        if entry is not None:
            cell.regs[dst] = entry[0]
            cell.result = True
            return NO_EFFECT, True
    cell.result = False
    return NO_EFFECT, True


# ============================================================================
# Decode table
# ============================================================================

_OPCODE_RANGES = [
    # (first, last, mnemonic, handler)
    (0x00, 0x03, 'divide', _divide),
    (0x04, 0x07, 'check', _check),
    (0x08, 0x0b, 'share', _share),
    (0x0c, 0x13, 'force', _force),
    (0x14, 0x1b, 'fuse', _fuse),
    (0x20, 0x20, 'drain', _drain),
    (0x21, 0x21, 'clone', _clone),
    (0x22, 0x22, 'reduce', _reduce),
    (0x23, 0x23, 'flip', _flip),
    (0x24, 0x24, 'get-alpha', _get_alpha),
    (0x25, 0x25, 'get-phi', _get_phi),
    (0x30, 0x3e, 'jmpa', _jmpa),
    (0x3f, 0x3f, 'jmpr', _jmpr),
    (0x40, 0x7f, 'movi', _movi),
    (0x80, 0x83, 'inspect', _inspect),
    (0x84, 0x87, 'not', _not),
    (0x88, 0x8b, 'swap', _swap),
    (0x90, 0x9f, 'and', _and),
    (0xa0, 0xaf, 'or', _or),
    (0xb0, 0xbf, 'add', _add),
    (0xc0, 0xcf, 'mov', _mov),
    (0xd0, 0xdf, 'st', _st),
    (0xe0, 0xef, 'ld', _ld),
    (0xf0, 0xff, 'nearby', _nearby),
]


def _build_decode_table() -> Tuple[List[Handler], List[str]]:
    """Every byte starts as a reserved no-op, then assigned ranges override"""
    handlers: List[Handler] = [_reserved] * 256
    mnemonics = ['reserved'] * 256
    for first, last, mnemonic, handler in _OPCODE_RANGES:
        for inst in range(first, last + 1):
            handlers[inst] = handler
            mnemonics[inst] = mnemonic
    return handlers, mnemonics


_HANDLERS, _MNEMONICS = _build_decode_table()
