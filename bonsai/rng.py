"""
Deterministic RNG utilities for bonsai simulation.

Uses SHA256 hashing to derive stable seeds from hierarchical components
(world_seed, preset, component_name). All randomness uses
numpy.random.Generator(PCG64) for reproducible cross-session results.
"""

import hashlib
import numpy as np
from typing import Any

from .constants import BANK_SIZE, PROGRAM_SIZE


def make_seed(*components: Any) -> int:
    """
    Generate deterministic 64-bit seed from hierarchical components.

    Uses SHA256 to hash components into stable seed value.

    Args:
        *components: Seed components (world_seed, preset, component name, etc.)

    Returns:
        64-bit integer seed for numpy RNG

    Example:
        terrain_seed = make_seed(world_seed, "valley", "terrain")
        cells_seed = make_seed(world_seed, "valley", "cells")
    """
    # Join all components with colon separator
    hash_input = ":".join(str(c) for c in components)

    # SHA256 hash and extract 64-bit integer
    hash_bytes = hashlib.sha256(hash_input.encode('utf-8')).digest()
    seed = int.from_bytes(hash_bytes[:8], byteorder='big')

    return seed


def make_rng(seed: int) -> np.random.Generator:
    """PCG64 generator for a derived seed"""
    return np.random.Generator(np.random.PCG64(seed))


def random_program(rng: np.random.Generator) -> bytearray:
    """
    Generate a random program tape.

    Bank0 is filled with uniform random bytes; bank1 starts zeroed.

    Args:
        rng: Generator to draw from

    Returns:
        256-byte tape
    """
    program = bytearray(PROGRAM_SIZE)
    program[:BANK_SIZE] = rng.integers(0, 256, size=BANK_SIZE, dtype=np.uint8).tobytes()
    return program
