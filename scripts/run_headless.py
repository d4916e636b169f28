"""
Headless world runner.

Loads a world from data/, generates terrain and cells, steps the world on a
background thread and prints status lines from the consumer side of the
snapshot channel.

Usage:
    python scripts/run_headless.py --world creek --steps 500
    SIM_DEBUG_INVARIANTS=1 python scripts/run_headless.py --cells 2000
"""

import argparse
import sys
import threading
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from bonsai.channel import SnapshotChannel
from bonsai.constants import TICK_SUMMARY_INTERVAL
from bonsai.genesis import create_world
from bonsai.loader import load_all_data, DataLoadError


def parse_args(argv=None):
    root = Path(__file__).parent.parent
    parser = argparse.ArgumentParser(description="Run the bonsai cell simulation without a renderer")
    parser.add_argument('--world', default='default', help="World file name under data/world/")
    parser.add_argument('--data-root', type=Path, default=root / 'data')
    parser.add_argument('--schema-dir', type=Path, default=root / 'schemas')
    parser.add_argument('--steps', type=int, default=1000, help="Number of ticks to run")
    parser.add_argument('--seed', type=int, default=None, help="Override generation seed")
    parser.add_argument('--cells', type=int, default=None, help="Override initial cell count")
    parser.add_argument('--size', type=int, nargs=3, default=None, metavar=('X', 'Y', 'Z'),
                        help="Override world size")
    parser.add_argument('--perf-every', type=int, default=200, help="Perf breakdown interval")
    return parser.parse_args(argv)


def simulate(world, channel: SnapshotChannel, steps: int, perf_every: int, stop: threading.Event):
    """Producer loop: step, publish, never wait on the consumer"""
    try:
        channel.publish(world.export_snapshot())
        for _ in range(steps):
            if stop.is_set():
                break
            world.step()
            channel.publish(world.export_snapshot())
            world.print_perf_breakdown(every=perf_every)
    finally:
        channel.close()


def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 80)
    print("Bonsai Headless Run")
    print("=" * 80)

    try:
        data = load_all_data(args.data_root, args.schema_dir, world_name=args.world)
    except DataLoadError as e:
        print(f"[WARN] Could not load world '{args.world}': {e}")
        return 1

    config = data['world']
    generation = data['generation']
    if args.seed is not None:
        generation.seed = args.seed
    if args.cells is not None:
        generation.cell_count = args.cells
    if args.size is not None:
        config.size = tuple(args.size)

    print(f"[OK] Loaded world '{config.name}' ({config.world_id}), size={config.size}")

    world = create_world(config, generation)
    channel = SnapshotChannel()
    stop = threading.Event()

    sim_thread = threading.Thread(
        target=simulate,
        args=(world, channel, args.steps, args.perf_every, stop),
        name="bonsai-sim",
        daemon=True
    )

    start = time.perf_counter()
    sim_thread.start()

    last_reported = -1
    try:
        while True:
            snapshot = channel.take(timeout=0.5)
            if snapshot is None:
                if channel.closed:
                    break
                continue
            if snapshot.blocks is not None:
                print(f"[OK] Terrain received: {snapshot.blocks.shape}")
            if snapshot.step // TICK_SUMMARY_INTERVAL != last_reported // TICK_SUMMARY_INTERVAL:
                print(f"Step {snapshot.step:5d} | Cells: {snapshot.cell_count}")
                last_reported = snapshot.step
    except KeyboardInterrupt:
        print("[WARN] Interrupted, stopping simulation thread")
        stop.set()

    sim_thread.join()
    elapsed = time.perf_counter() - start

    world.print_tick_summary()
    t = world.get_telemetry()
    print(f"\n[OK] Ran {world.steps} steps in {elapsed:.2f}s "
          f"({channel.published} snapshots, {channel.dropped} superseded)")
    print(f"  births={t['total_births']} starved={t['total_starvation_deaths']} "
          f"fused={t['total_fusions']} fell={t['total_out_of_bounds']}")
    print(f"  shares={t['total_shares']} forces={t['total_forces']} "
          f"light={t['total_light_absorbed']}")
    print("=" * 80)
    return 0


if __name__ == '__main__':
    sys.exit(main())
