"""
Data types mirroring YAML schema structures, plus the per-tick value types
exchanged between the VM, the world step and snapshot consumers.

Config dataclasses are populated by loader.py from YAML files.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Tuple

import numpy as np

from .constants import (
    DEFAULT_WORLD_SIZE,
    GRAVITY_DEFAULT,
    DISSIPATION_DEFAULT,
    SOIL_STICKINESS_DEFAULT,
    AMBIENT_FLOW_DEFAULT,
    AMBIENT_FLOW_PERIOD_DEFAULT,
    ALPHA_GAIN_DEFAULT,
    PHI_GAIN_DEFAULT,
    SHARE_AMOUNT_DEFAULT,
    FORCE_STRENGTH_DEFAULT,
    VALLEY_GROUND_FRACTION,
)


# ============================================================================
# Terrain
# ============================================================================

class Block(IntEnum):
    """
    Terrain block kind.

    Values follow declaration order so a 2-bit register field maps directly
    onto a block (0=Bedrock, 1=Soil, 2=Water, 3=Air).
    """
    BEDROCK = 0
    SOIL = 1
    WATER = 2
    AIR = 3

    @property
    def exclusive(self) -> bool:
        """Bedrock permanently claims its voxel"""
        return self is Block.BEDROCK

    @property
    def opaque(self) -> bool:
        return self in (Block.BEDROCK, Block.SOIL)


# ============================================================================
# World Definition
# ============================================================================

@dataclass
class PhysicsConfig:
    """Per-tick physics constants"""
    gravity: float = GRAVITY_DEFAULT
    dissipation: float = DISSIPATION_DEFAULT
    soil_stickiness: float = SOIL_STICKINESS_DEFAULT
    ambient_flow: float = AMBIENT_FLOW_DEFAULT
    ambient_flow_period: int = AMBIENT_FLOW_PERIOD_DEFAULT


@dataclass
class VMConfig:
    """Energy and interaction amounts used by the cell VM"""
    alpha_gain: int = ALPHA_GAIN_DEFAULT
    phi_gain: int = PHI_GAIN_DEFAULT
    share_amount: int = SHARE_AMOUNT_DEFAULT
    force_strength: float = FORCE_STRENGTH_DEFAULT


@dataclass
class WorldConfig:
    """World configuration (dimensions and simulation constants)"""
    world_id: str = "default"
    name: str = "Default World"
    size: Tuple[int, int, int] = DEFAULT_WORLD_SIZE  # (x, y, z) voxel counts
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    vm: VMConfig = field(default_factory=VMConfig)
    description: Optional[str] = None

    def __post_init__(self):
        self.size = tuple(int(s) for s in self.size)


@dataclass
class GenerationConfig:
    """Initial terrain and population settings for the world generator"""
    preset: str = "flat"  # cell_load, flat, valley, creek
    seed: int = 0
    cell_count: int = 1000
    ground_fraction: float = VALLEY_GROUND_FRACTION
    water_level: Optional[int] = None  # creek only; defaults to ground height


# ============================================================================
# VM Side Effects
# ============================================================================

class EffectKind(Enum):
    """Side-effect descriptor kinds emitted by one VM instruction"""
    NONE = "none"
    DEATH = "death"
    DIVIDE = "divide"
    SHARE = "share"
    FORCE = "force"
    FUSE = "fuse"
    ABSORB_LIGHT = "absorb_light"


@dataclass
class Effect:
    """
    Pending side effect for a single cell for a single tick.

    Attributes:
        kind: What the world step must apply
        target_id: Neighbor cell id (share/force/fuse)
        voxel: Target voxel (divide) or the neighbor voxel a force acts along
        push: share direction (True = give energy, False = take)
        repel: force direction (True = repulsion, False = attraction)
        epsilon: Child energy (divide)
        program: Child bank0 (divide)
    """
    kind: EffectKind = EffectKind.NONE
    target_id: Optional[int] = None
    voxel: Optional[Tuple[int, int, int]] = None
    push: bool = False
    repel: bool = False
    epsilon: int = 0
    program: Optional[bytes] = None


NO_EFFECT = Effect()


# ============================================================================
# Snapshot Export
# ============================================================================

@dataclass(frozen=True)
class WorldSnapshot:
    """
    Immutable view of the world handed to presentation consumers.

    ids and positions are read-only arrays; blocks is only present when the
    terrain changed since the previous export (first export included).
    """
    step: int
    ids: np.ndarray        # (N,) uint64
    positions: np.ndarray  # (N, 3) float64
    blocks: Optional[np.ndarray] = None

    @property
    def cell_count(self) -> int:
        return len(self.ids)
