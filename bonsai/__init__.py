"""
Bonsai Cell Simulation

A deterministic, headless simulator for programmable cells living in a 3D voxel
world. Each cell runs one bytecode instruction per tick, then falls, sticks and
collides under voxel exclusion.

Architecture: World is the source of truth. Renderers and status displays are
consumers of its snapshots.
"""

__version__ = "0.1.0"
