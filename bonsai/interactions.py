"""
Side-effect application for the cell VM.

Each VM instruction yields at most one Effect. The world step applies it
immediately, before the next cell in table order runs, so the first writer
wins within a tick: an earlier cell can claim a voxel, drain a neighbor or
fuse it away, and every later cell observes the result.

Interaction rules:
- share: moves up to share_amount epsilon (push = give, pull = take), bounded
  by the donor's energy and the receiver's headroom.
- force: equal and opposite impulses of force_strength / d^2 along the
  voxel offset between the two cells (repel pushes apart, attract pulls in).
- fuse: the target dies; the fuser gains its energy and stores its bank0 in
  the fuser's bank1.
- absorb light: sky-exposed cells gain phi_gain epsilon.
"""

import math
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from .constants import BANK_SIZE, EPSILON_MAX
from .data_types import Effect, EffectKind, VMConfig
from .entity import Cell
from .spatial_queries import OccupancyIndex, NeighborTagIndex


@dataclass
class TickState:
    """
    Mutable per-tick bookkeeping shared by all effect applications.

    Attributes:
        cells_by_id: Live cells at the start of the pass
        occupancy: Occupancy index (mutated incrementally)
        tags: Neighbor tag index (mutated incrementally)
        sky: (X, Y, Z) bool sky-exposure map
        config: VM energy/force amounts
        dead: Ids removed this tick (starvation or fusion)
        births: Pending (parent, divide effect) pairs, ids issued after the pass
        telemetry: Per-tick counters
    """
    cells_by_id: Dict[int, Cell]
    occupancy: OccupancyIndex
    tags: NeighborTagIndex
    sky: np.ndarray
    config: VMConfig
    dead: Set[int] = field(default_factory=set)
    births: List[Tuple[Cell, Effect]] = field(default_factory=list)
    telemetry: Dict[str, int] = field(default_factory=lambda: {
        'starvation_deaths': 0,
        'fusions': 0,
        'shares': 0,
        'forces': 0,
        'light_absorbed': 0,
    })

    def is_alive(self, cell_id: int) -> bool:
        return cell_id in self.cells_by_id and cell_id not in self.dead

    def remove(self, cell: Cell):
        """Release a cell's voxel and tag slot and mark it dead"""
        self.occupancy.release(cell.pi)
        entry = self.tags.get(cell.pi)
        if entry is not None and entry[1] == cell.id:
            self.tags.remove(cell.pi)
        self.dead.add(cell.id)


def apply_effect(cell: Cell, effect: Effect, state: TickState):
    """
    Apply one cell's pending effect to the world.

    Args:
        cell: Cell that executed the instruction
        effect: Descriptor returned by vm.execute
        state: Shared per-tick state
    """
    kind = effect.kind
    if kind is EffectKind.NONE:
        return
    if kind is EffectKind.DEATH:
        state.remove(cell)
        state.telemetry['starvation_deaths'] += 1
    elif kind is EffectKind.DIVIDE:
        # Reserve the voxel now so later cells in the pass cannot claim it
        state.occupancy.claim(effect.voxel)
        state.births.append((cell, effect))
    elif kind is EffectKind.ABSORB_LIGHT:
        _absorb_light(cell, state)
    else:
        # Neighbor effects; the target may have been fused away earlier this pass
        if not state.is_alive(effect.target_id):
            cell.result = False
            return
        target = state.cells_by_id[effect.target_id]
        if kind is EffectKind.SHARE:
            _share_energy(cell, target, effect.push, state)
        elif kind is EffectKind.FORCE:
            _apply_force(cell, target, effect.voxel, effect.repel, state)
        elif kind is EffectKind.FUSE:
            _fuse(cell, target, state)


def _share_energy(cell: Cell, target: Cell, push: bool, state: TickState):
    donor, receiver = (cell, target) if push else (target, cell)
    amount = min(state.config.share_amount, donor.epsilon, EPSILON_MAX - receiver.epsilon)
    if amount <= 0:
        return
    donor.epsilon -= amount
    receiver.epsilon += amount
    state.telemetry['shares'] += 1


def _apply_force(cell: Cell, target: Cell, voxel, repel: bool, state: TickState):
    # Offset runs from the actor to the neighbor voxel found during the scan
    offset = np.array([voxel[0] - cell.pi[0],
                       voxel[1] - cell.pi[1],
                       voxel[2] - cell.pi[2]], dtype=np.float64)
    d2 = float(np.dot(offset, offset))
    if d2 == 0.0:
        return
    impulse = offset * (state.config.force_strength / (d2 * math.sqrt(d2)))
    if not repel:
        impulse = -impulse
    target.dp += impulse
    cell.dp -= impulse
    state.telemetry['forces'] += 1


def _fuse(cell: Cell, target: Cell, state: TickState):
    cell.epsilon = min(EPSILON_MAX, cell.epsilon + target.epsilon)
    cell.program[BANK_SIZE:] = target.program[:BANK_SIZE]
    state.remove(target)
    state.telemetry['fusions'] += 1


def _absorb_light(cell: Cell, state: TickState):
    if state.sky[cell.pi]:
        cell.epsilon = min(EPSILON_MAX, cell.epsilon + state.config.phi_gain)
        cell.result = True
        state.telemetry['light_absorbed'] += 1
    else:
        cell.result = False
