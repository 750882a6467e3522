"""
Bird Synthesis - Creatures assembled from body-part fragments.

Four stages:
- Placement: bounding-box snap and collision resolution
- Assembly: role assignment and per-role placement
- Contact: post-assembly pass so no fragment floats
- Point skin: surface point-cloud sampling over assembled meshes

Usage:
    python src/run_all.py --catalog models/bird_components --count 10
"""

__version__ = "1.0.0"
