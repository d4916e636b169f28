"""
Central configuration constants for bonsai simulation.

Defines default values, thresholds, and configuration parameters
used across multiple modules.
"""

# ============================================================================
# World Defaults
# ============================================================================

# Default world dimensions (x, y, z). Overridden per world by WorldConfig.size
DEFAULT_WORLD_SIZE = (200, 200, 100)


# ============================================================================
# Physics Configuration
# ============================================================================

GRAVITY_DEFAULT = 0.01       # Subtracted from dp.z every tick
DISSIPATION_DEFAULT = 0.9    # Isotropic drag multiplier (< 1)

# Acceleration pulling a cell inside Soil toward the nearer voxel face
SOIL_STICKINESS_DEFAULT = 0.005

# Weak horizontal flow inside Air (0.0 = disabled)
AMBIENT_FLOW_DEFAULT = 0.0
AMBIENT_FLOW_PERIOD_DEFAULT = 1000  # Steps per full rotation of the flow direction


# ============================================================================
# Cell VM Configuration
# ============================================================================

PROGRAM_SIZE = 256     # Two 128-byte banks
BANK_SIZE = 128
IP_MASK = 0x7f         # Instruction pointer always indexes bank0
BYTE_MASK = 0xff
NUM_REGISTERS = 4

EPSILON_MAX = 0xff     # Saturating energy counter
DECAY_MAX = 0xff       # Death when decay reaches this value

EXT_EXECUTION_COST = 2  # Epsilon consumed per instruction while ext is set
BASE_EXECUTION_COST = 1

ALPHA_GAIN_DEFAULT = 16   # get-alpha energy while standing in Water
PHI_GAIN_DEFAULT = 2      # get-phi energy while exposed to the sky
SHARE_AMOUNT_DEFAULT = 16  # Max epsilon moved by one share
FORCE_STRENGTH_DEFAULT = 0.02  # Impulse numerator for force (divided by d^2)

# Register holding a cell's tag for neighbor lookups
TAG_REGISTER = 0


# ============================================================================
# Neighborhood Scan Order
# ============================================================================

# 26-neighborhood offsets, ascending x, then y, then z, center excluded.
# Scan order is part of the determinism contract: first match wins.
NEIGHBOR_OFFSETS = tuple(
    (dx, dy, dz)
    for dx in (-1, 0, 1)
    for dy in (-1, 0, 1)
    for dz in (-1, 0, 1)
    if (dx, dy, dz) != (0, 0, 0)
)


# ============================================================================
# World Generation Defaults
# ============================================================================

INITIAL_EPSILON = 0xff
VALLEY_GROUND_FRACTION = 0.3    # Mean ground height as fraction of world height
VALLEY_RELIEF = 0.2             # Largest height-field excursion as fraction of world height
VALLEY_OCTAVES = (2, 4, 8, 16, 32)
VALLEY_BASE_JITTER = 0.1


# ============================================================================
# Performance Configuration
# ============================================================================

# Tick timing window for rolling average
TICK_TIME_WINDOW = 100  # Number of ticks to average

# Default tick summary interval (print every N ticks)
TICK_SUMMARY_INTERVAL = 100  # Print summary every 100 ticks
