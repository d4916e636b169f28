"""
Cell runtime representation.

Cells are spawned by the world generator or born through the divide
instruction. Each cell owns its position, velocity, program tape, registers
and energy counters; nothing else holds a reference to it.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Tuple

from .constants import PROGRAM_SIZE, BANK_SIZE, NUM_REGISTERS, TAG_REGISTER
from .spatial import floor_voxel


@dataclass
class Cell:
    """
    Runtime cell in simulation.

    Attributes:
        id: Unique identifier, issued monotonically by the World
        p: Continuous position [x, y, z] float64
        dp: Velocity [dx, dy, dz] float64 (voxels per tick)
        pi: Integer voxel (x, y, z); equals floor(p) between steps
        program: 256-byte tape, bank0 = [0, 128), bank1 = [128, 256)
        regs: Four 8-bit registers
        ip: 7-bit instruction pointer into bank0
        epsilon: 8-bit saturating energy counter
        decay: Starvation counter, incremented only while epsilon == 0
        ext: Extended mode flag
        result: Condition flag
    """
    id: int
    p: np.ndarray
    dp: np.ndarray = None
    pi: Tuple[int, int, int] = None
    program: bytearray = None
    regs: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)
    ip: int = 0
    epsilon: int = 0
    decay: int = 0
    ext: bool = False
    result: bool = False

    def __post_init__(self):
        """Ensure position and velocity are float64 arrays, initialize defaults"""
        if not isinstance(self.p, np.ndarray):
            self.p = np.array(self.p, dtype=np.float64)
        else:
            self.p = self.p.astype(np.float64, copy=True)

        if self.dp is None:
            self.dp = np.zeros(3, dtype=np.float64)
        elif not isinstance(self.dp, np.ndarray):
            self.dp = np.array(self.dp, dtype=np.float64)
        else:
            self.dp = self.dp.astype(np.float64, copy=True)

        if self.pi is None:
            self.pi = floor_voxel(self.p)
        else:
            self.pi = tuple(int(v) for v in self.pi)

        if self.program is None:
            self.program = bytearray(PROGRAM_SIZE)
        else:
            program = bytearray(self.program)
            # Short tapes are zero-padded into bank1
            if len(program) < PROGRAM_SIZE:
                program.extend(bytes(PROGRAM_SIZE - len(program)))
            self.program = program[:PROGRAM_SIZE]

        self.regs = [int(r) & 0xff for r in self.regs]

    @property
    def bank0(self) -> bytes:
        return bytes(self.program[:BANK_SIZE])

    @property
    def bank1(self) -> bytes:
        return bytes(self.program[BANK_SIZE:])

    @property
    def tag(self) -> int:
        """Value neighbors use to address this cell (register 0)"""
        return self.regs[TAG_REGISTER]

    def to_dict(self) -> dict:
        """
        Serialize cell to JSON-compatible dict.

        Returns:
            Dict with all cell fields
        """
        return {
            'id': self.id,
            'p': self.p.tolist(),
            'dp': self.dp.tolist(),
            'pi': list(self.pi),
            'program': list(self.program),
            'regs': list(self.regs),
            'ip': self.ip,
            'epsilon': self.epsilon,
            'decay': self.decay,
            'ext': self.ext,
            'result': self.result
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Cell':
        """
        Deserialize cell from dict.

        Args:
            data: Dict with cell fields

        Returns:
            Cell instance
        """
        return cls(
            id=data['id'],
            p=np.array(data['p'], dtype=np.float64),
            dp=np.array(data.get('dp', [0.0, 0.0, 0.0]), dtype=np.float64),
            pi=data.get('pi'),
            program=bytearray(data.get('program', [])),
            regs=list(data.get('regs', [0] * NUM_REGISTERS)),
            ip=data.get('ip', 0),
            epsilon=data.get('epsilon', 0),
            decay=data.get('decay', 0),
            ext=data.get('ext', False),
            result=data.get('result', False)
        )
