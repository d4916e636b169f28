"""
Bonsai simulation kernel.

World owns the block grid and the cell table and advances them one tick per
step(): VM pass with immediate side effects, births, physics with voxel
exclusion, out-of-bounds retirement.
"""

import os
import time
from typing import Dict, List, Optional

import numpy as np

from .constants import TICK_TIME_WINDOW, NUM_REGISTERS
from .data_types import WorldConfig, WorldSnapshot, Effect
from .entity import Cell
from .interactions import TickState, apply_effect
from .physics import ambient_flow, integrate_batch, resolve_exclusion
from .spatial import voxel_center
from .spatial_queries import (
    OccupancyIndex,
    NeighborTagIndex,
    bedrock_voxels,
    compute_sky_exposure,
)
from .validation import validate_world
from .vm import VMContext, execute


class World:
    """
    Voxel world with a population of programmable cells.

    Constructed once by an external generator (block grid + initial cells) and
    mutated only by step(). Single-threaded: one step completes before the
    next begins, and cells are processed strictly in table order.
    """

    def __init__(
        self,
        config: WorldConfig,
        blocks: np.ndarray,
        cells: Optional[List[Cell]] = None,
        next_id: int = 0
    ):
        """
        Initialize world from a generated grid and population.

        Args:
            config: World configuration (size, physics and VM constants)
            blocks: (X, Y, Z) array of Block values matching config.size
            cells: Initial cells with unique ids (optional)
            next_id: Lowest id the world may issue (raised past initial ids)
        """
        shape = tuple(config.size)
        if tuple(blocks.shape) != shape:
            raise ValueError(f"Block grid shape {tuple(blocks.shape)} does not match world size {shape}")

        self.config: WorldConfig = config
        self.blocks: np.ndarray = np.array(blocks, dtype=np.uint8)
        self.cells: List[Cell] = list(cells) if cells else []
        self.steps: int = 0

        ids = [cell.id for cell in self.cells]
        if len(set(ids)) != len(ids):
            raise ValueError("Initial cells contain duplicate ids")
        self._next_id: int = max([next_id] + [i + 1 for i in ids])

        # Static terrain views (computed once)
        self._sky: np.ndarray = compute_sky_exposure(self.blocks)
        self.occupancy = OccupancyIndex(bedrock_voxels(self.blocks))
        self.tags = NeighborTagIndex()
        self.occupancy.build(self.cells)
        self._terrain_dirty: bool = True

        # Performance metrics
        self._tick_times: List[float] = []
        self._tick_time_sum: float = 0.0
        self._tick_time_window: int = TICK_TIME_WINDOW  # Rolling average window

        # Phase timing breakdown
        self._build_times: List[float] = []
        self._vm_times: List[float] = []
        self._physics_times: List[float] = []

        # Lifecycle and interaction telemetry
        self._telemetry: Dict[str, int] = {
            'births_this_tick': 0,
            'starvation_deaths_this_tick': 0,
            'fusions_this_tick': 0,
            'out_of_bounds_this_tick': 0,
            'shares_this_tick': 0,
            'forces_this_tick': 0,
            'light_absorbed_this_tick': 0,
            'total_births': 0,
            'total_starvation_deaths': 0,
            'total_fusions': 0,
            'total_out_of_bounds': 0,
            'total_shares': 0,
            'total_forces': 0,
            'total_light_absorbed': 0,
        }

        print(f"[OK] World initialized: {len(self.cells)} cells, "
              f"size={shape}, bedrock={len(self.occupancy)} voxels")

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def sky_exposure(self) -> np.ndarray:
        return self._sky

    def issue_id(self) -> int:
        """Issue a fresh cell id (monotonic, never reused)"""
        cell_id = self._next_id
        self._next_id += 1
        return cell_id

    def step(self):
        """
        Advance simulation by one tick.

        SEQUENTIAL TICK CONTRACT (Critical Invariant):

        Stage 1-2: Index Build
        ----------------------
        Occupancy = Bedrock + every cell's voxel. Tag index = voxel -> (tag, id).

        Stage 3-4: VM Pass (first writer wins)
        --------------------------------------
        Cells run one instruction each in table order. Each effect is applied
        before the next cell runs, so later cells observe earlier claims,
        transfers and deaths. Births reserve their voxel immediately; ids are
        issued after the pass.

        Stage 5: Physics
        ----------------
        Gravity, soil sticking, drag, integration, then per-axis exclusion
        against the incrementally updated occupancy index.

        Stage 6: Retirement
        -------------------
        Cells that left through the lower world bound are dropped. Newborns
        join the table and run from the next tick.
        """
        start_time = time.perf_counter()
        shape = tuple(self.config.size)

        # ============================================================
        # STAGE 1-2: INDEX BUILD
        # ============================================================
        build_start = time.perf_counter()
        self.occupancy.build(self.cells)
        self.tags.build(self.cells)
        ctx = VMContext(
            blocks=self.blocks,
            shape=shape,
            occupancy=self.occupancy,
            tags=self.tags,
            config=self.config.vm
        )
        state = TickState(
            cells_by_id={cell.id: cell for cell in self.cells},
            occupancy=self.occupancy,
            tags=self.tags,
            sky=self._sky,
            config=self.config.vm
        )
        self._build_times.append(time.perf_counter() - build_start)

        # ============================================================
        # STAGE 3-4: VM PASS + SIDE EFFECTS
        # ============================================================
        vm_start = time.perf_counter()
        dead = state.dead
        for cell in self.cells:
            if cell.id in dead:
                continue
            effect = execute(cell, ctx)
            apply_effect(cell, effect, state)

        newborns = [self._spawn_child(parent, effect) for parent, effect in state.births]
        self._vm_times.append(time.perf_counter() - vm_start)

        # ============================================================
        # STAGE 5: PHYSICS + EXCLUSION
        # ============================================================
        physics_start = time.perf_counter()
        physics = self.config.physics
        flow = ambient_flow(physics, self.steps)
        blocks = self.blocks
        occupancy = self.occupancy

        survivors = [cell for cell in self.cells if cell.id not in dead]
        if survivors:
            p = np.array([cell.p for cell in survivors], dtype=np.float64)
            dp = np.array([cell.dp for cell in survivors], dtype=np.float64)
            pi = np.array([cell.pi for cell in survivors], dtype=np.intp)
            integrate_batch(p, dp, blocks[pi[:, 0], pi[:, 1], pi[:, 2]], physics, flow)

            # Rows become the cells' own arrays; exclusion clamps write through
            pi_next = np.floor(p).astype(np.int64).tolist()
            for i, cell in enumerate(survivors):
                cell.p = p[i]
                cell.dp = dp[i]
                resolve_exclusion(cell, occupancy, shape, tuple(pi_next[i]))

        # ============================================================
        # STAGE 6: RETIREMENT
        # ============================================================
        live = [cell for cell in survivors if min(cell.pi) >= 0]
        self.cells = live + newborns
        self._physics_times.append(time.perf_counter() - physics_start)

        self._update_telemetry(state, len(newborns), len(survivors) - len(live))

        # Increment step count
        self.steps += 1

        # Record timing
        elapsed = time.perf_counter() - start_time
        self._record_tick_time(elapsed)

        # Debug invariant check (zero perf impact when env var not set)
        if os.getenv('SIM_DEBUG_INVARIANTS') == '1':
            self.validate()

    def _spawn_child(self, parent: Cell, effect: Effect) -> Cell:
        """
        Materialize a divide effect as a new cell.

        Child sits at the center of its reserved voxel, inherits the parent's
        velocity and runs the parent's former bank1 as its bank0.
        """
        return Cell(
            id=self.issue_id(),
            p=voxel_center(effect.voxel),
            dp=parent.dp.copy(),
            pi=effect.voxel,
            program=bytearray(effect.program),
            regs=[0] * NUM_REGISTERS,
            ip=0,
            epsilon=effect.epsilon,
            decay=0,
            ext=False,
            result=False
        )

    def _update_telemetry(self, state: TickState, births: int, out_of_bounds: int):
        t = self._telemetry
        t['births_this_tick'] = births
        t['out_of_bounds_this_tick'] = out_of_bounds
        t['total_births'] += births
        t['total_out_of_bounds'] += out_of_bounds
        for key, count in state.telemetry.items():
            t[f'{key}_this_tick'] = count
            t[f'total_{key}'] += count

    def validate(self):
        """
        Check global invariants (raises InvariantViolation).

        Intended for test harnesses, not production ticks.
        """
        validate_world(self)

    def get_telemetry(self) -> dict:
        """Lifecycle and interaction counters for the last tick and since construction"""
        return dict(self._telemetry)

    def get_tick_stats(self) -> dict:
        """
        Get current tick timing statistics.

        Returns:
            Dict with step, avg_tick_time_ms, last_tick_time_ms
        """
        if not self._tick_times:
            return {
                'step': self.steps,
                'avg_tick_time_ms': 0.0,
                'last_tick_time_ms': 0.0
            }

        avg_time = self._tick_time_sum / len(self._tick_times)
        last_time = self._tick_times[-1]

        return {
            'step': self.steps,
            'avg_tick_time_ms': avg_time * 1000.0,
            'last_tick_time_ms': last_time * 1000.0
        }

    def _record_tick_time(self, elapsed: float):
        """
        Record tick timing for rolling average.

        Args:
            elapsed: Tick time in seconds
        """
        self._tick_times.append(elapsed)
        self._tick_time_sum += elapsed

        # Maintain rolling window
        if len(self._tick_times) > self._tick_time_window:
            removed = self._tick_times.pop(0)
            self._tick_time_sum -= removed

    def get_snapshot(self) -> dict:
        """
        Get complete simulation state snapshot.

        Returns:
            Dict with step, cells, timing
        """
        return {
            'step': self.steps,
            'next_id': self._next_id,
            'cell_count': len(self.cells),
            'cells': [c.to_dict() for c in self.cells],
            'timing': self.get_tick_stats()
        }

    def export_snapshot(self) -> WorldSnapshot:
        """
        Read-only view for presentation consumers.

        Positions are copied so the consumer never aliases core state. The
        block grid is only included when terrain changed since the last
        export (the first export always carries it).
        """
        n = len(self.cells)
        ids = np.fromiter((c.id for c in self.cells), dtype=np.uint64, count=n)
        positions = np.empty((n, 3), dtype=np.float64)
        for i, cell in enumerate(self.cells):
            positions[i] = cell.p
        ids.setflags(write=False)
        positions.setflags(write=False)

        blocks = None
        if self._terrain_dirty:
            blocks = self.blocks.copy()
            blocks.setflags(write=False)
            self._terrain_dirty = False

        return WorldSnapshot(step=self.steps, ids=ids, positions=positions, blocks=blocks)

    def print_tick_summary(self):
        """Print tick summary to console (lightweight monitoring)"""
        stats = self.get_tick_stats()
        print(f"Step {stats['step']:5d} | "
              f"Avg: {stats['avg_tick_time_ms']:8.3f} ms | "
              f"Last: {stats['last_tick_time_ms']:8.3f} ms | "
              f"Cells: {len(self.cells)}")

    def print_perf_breakdown(self, every: int = 200):
        """
        Print performance breakdown on interval.

        Logs timing breakdown (index build, VM pass, physics) and lifecycle
        counters. Only prints every N steps to reduce overhead.

        Args:
            every: Print interval in steps (default 200)
        """
        if self.steps % every != 0:
            return

        # Calculate averages over last window
        window = min(every, len(self._build_times), len(self._tick_times))
        if window == 0:
            return

        avg_build = sum(self._build_times[-window:]) / window * 1000.0
        avg_vm = sum(self._vm_times[-window:]) / window * 1000.0
        avg_physics = sum(self._physics_times[-window:]) / window * 1000.0
        avg_total = sum(self._tick_times[-window:]) / window * 1000.0

        t = self._telemetry
        print(f"\n[Perf Breakdown] Step {self.steps} ({len(self.cells)} cells)")
        print(f"  Index build:  {avg_build:8.3f} ms")
        print(f"  VM pass:      {avg_vm:8.3f} ms")
        print(f"  Physics:      {avg_physics:8.3f} ms")
        print(f"  [Lifecycle] births={t['total_births']} starved={t['total_starvation_deaths']} "
              f"fused={t['total_fusions']} fell={t['total_out_of_bounds']}")
        print(f"  [Interactions] shares={t['total_shares']} forces={t['total_forces']} "
              f"light={t['total_light_absorbed']}")
        print(f"  Total:        {avg_total:8.3f} ms")
        print(f"  Overhead:     {(avg_total - avg_build - avg_vm - avg_physics):8.3f} ms")
