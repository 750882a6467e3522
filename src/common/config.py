"""
Configuration and tuning constants for creature synthesis.

Every number here is an empirically tuned visual constant. None of them is
load-bearing for correctness; they only change how tight or loose an
assembled bird looks. Keep them adjustable rather than inlined.

Angles are radians, distances are scene units (a catalog torso is roughly
one unit across).
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Tuple
import json
import math
from pathlib import Path

import numpy as np


@dataclass
class PlacementParams:
    """Collision-resolution loop for a single fragment."""
    collision_tolerance: float = 0.80  # collision volume = 80% of true extent
    max_rounds: int = 8
    nudge_step: float = 0.03  # applied along the preferred direction when no snap exists
    snap_penetration_gain: float = 1.5


@dataclass
class ContactParams:
    """Post-assembly pass that pulls stray fragments onto a sibling."""
    contact_tolerance: float = 0.90
    max_rounds: int = 15
    penetration: float = -0.2
    nudge_step: float = 0.03  # multiplied by the attempt number

    # Side heuristics on bounding-box centers
    wing_min_abs_x: float = 0.2
    wing_max_abs_y: float = 0.5
    foot_min_abs_y: float = 0.3


@dataclass
class AssemblyParams:
    """Role-specific placement hints."""
    head_penetration: float = -0.3
    belly_penetration: float = -0.3
    wing_penetration: float = -0.25
    tail_penetration: float = -0.25
    foot_penetration: float = -0.25

    # Fraction of a part's half height allowed to sink into its anchor
    initial_embed: float = 0.5

    # Wings start at this fraction of the torso half-width
    wing_offset_factor: float = 0.6
    # Chained wings/feet step outward by this fraction of their own width
    wing_chain_factor: float = 0.15
    foot_chain_factor: float = 0.1

    wing_spread: float = math.pi / 3  # yaw away from the body
    wing_spread_step: float = 0.1  # each extra same-side wing opens a little less
    wing_lift: float = math.pi / 6  # roll upward

    tail_tilt: float = -math.pi / 12
    tail_drop: float = 0.05
    tail_depth_factor: float = 0.4

    foot_offset_x: float = 0.3
    foot_tilt: float = math.pi / 36


@dataclass
class SkinParams:
    """Point-cloud skin sampling."""
    vertex_share: float = 0.30  # rest comes from ray projection
    probe_box_scale: float = 1.10
    fallback_vertex_scan: int = 100
    color_jitter: Tuple[float, float] = (0.8, 1.2)
    size_jitter: Tuple[float, float] = (0.7, 1.3)


@dataclass
class PacingParams:
    """Artificial latency for UI-facing synthesis calls."""
    min_delay_ms: float = 500.0
    max_delay_ms: float = 1500.0


@dataclass
class Config:
    """
    Global configuration for creature synthesis.

    Loaded from / saved to JSON. Missing sections fall back to defaults so
    an empty file is a valid config.
    """

    placement: PlacementParams = field(default_factory=PlacementParams)
    contact: ContactParams = field(default_factory=ContactParams)
    assembly: AssemblyParams = field(default_factory=AssemblyParams)
    skin: SkinParams = field(default_factory=SkinParams)
    pacing: PacingParams = field(default_factory=PacingParams)

    # Seed for the default generator (None = nondeterministic)
    seed: Optional[int] = None

    # Paths (relative to project root)
    catalog_dir: Path = field(default_factory=lambda: Path("models/bird_components"))
    output_dir: Path = field(default_factory=lambda: Path("outputs"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placement": asdict(self.placement),
            "contact": asdict(self.contact),
            "assembly": asdict(self.assembly),
            "skin": {
                **asdict(self.skin),
                "color_jitter": list(self.skin.color_jitter),
                "size_jitter": list(self.skin.size_jitter),
            },
            "pacing": asdict(self.pacing),
            "seed": self.seed,
            "catalog_dir": str(self.catalog_dir),
            "output_dir": str(self.output_dir),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        try:
            skin = dict(data.get("skin", {}))
            for key in ("color_jitter", "size_jitter"):
                if key in skin:
                    skin[key] = tuple(skin[key])
            return cls(
                placement=PlacementParams(**data.get("placement", {})),
                contact=ContactParams(**data.get("contact", {})),
                assembly=AssemblyParams(**data.get("assembly", {})),
                skin=SkinParams(**skin),
                pacing=PacingParams(**data.get("pacing", {})),
                seed=data.get("seed"),
                catalog_dir=Path(data.get("catalog_dir", "models/bird_components")),
                output_dir=Path(data.get("output_dir", "outputs")),
            )
        except TypeError as e:
            raise ValueError(f"Invalid config: {e}") from e

    @classmethod
    def from_json(cls, path: Path) -> "Config":
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        """Save config to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create the random source threaded through every randomized operation."""
    return np.random.default_rng(seed)
