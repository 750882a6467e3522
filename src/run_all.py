#!/usr/bin/env python3
"""
Bird Synthesis - Batch generator

Draw fragments from the catalog, assemble creatures and export them.

Usage:
    python src/run_all.py --catalog models/bird_components --count 10 --fragments 7
    python src/run_all.py --count 3 --seed 42 --skin --output outputs/skinned
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime

import numpy as np
from tqdm import tqdm

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from common.config import Config, make_rng
from common.io import CreatureMetadata, save_creature
from catalog import CATEGORIES, FragmentCatalog, draw_fragments, populate_catalog
from assembly import synthesize_creature, apply_point_skin

logger = logging.getLogger(__name__)


def pick_categories(n_fragments: int, rng: np.random.Generator) -> List[str]:
    """Torso first, the rest drawn uniformly from the other categories."""
    if n_fragments <= 0:
        return []
    others = [c for c in CATEGORIES if c != "torso"]
    return ["torso"] + [str(c) for c in rng.choice(others, size=n_fragments - 1)]


def generate_one(
    index: int,
    catalog: Optional[FragmentCatalog],
    config: Config,
    n_fragments: int,
    skin: bool,
    rng: np.random.Generator,
    output_dir: Path
) -> Dict[str, Any]:
    """Draw, assemble, optionally skin and save one creature."""
    name = f"creature_{index:03d}"
    fragments = draw_fragments(pick_categories(n_fragments, rng), catalog, rng)

    creature = synthesize_creature(fragments, rng=rng, config=config)
    creature.root.name = name

    if skin:
        for placed in creature.placed:
            apply_point_skin(placed.node, rng=rng, params=config.skin)

    metadata = CreatureMetadata(
        name=name,
        seed=config.seed,
        fragment_count=len(fragments),
        roles=creature.role_counts(),
        part_types=creature.root.user_data.get("part_types", []),
        unresolved=creature.contact.unresolved if creature.contact else [],
        generation_params={"skin": skin, "fragments": n_fragments},
    )
    save_creature(creature.root, output_dir / "creatures" / f"{name}.glb", metadata)
    return metadata.to_dict()


def run_all(
    count: int,
    n_fragments: int,
    catalog: Optional[FragmentCatalog],
    config: Config,
    output_dir: Path,
    skin: bool = False
) -> dict:
    """
    Generate ``count`` creatures.

    Returns:
        Summary dictionary
    """
    summary = {
        "timestamp": datetime.now().isoformat(),
        "config": config.to_dict(),
        "catalog": catalog.stats() if catalog is not None else None,
        "creatures": [],
        "errors": []
    }

    rng = make_rng(config.seed)

    for index in tqdm(range(count), desc="Synthesizing", unit="creature"):
        try:
            result = generate_one(index, catalog, config, n_fragments, skin, rng, output_dir)
            summary["creatures"].append({"status": "success", "metadata": result})
        except (ValueError, OSError) as e:
            logger.error(f"Creature {index} failed: {e}")
            summary["errors"].append({"creature": index, "error": str(e)})

    return summary


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Bird Synthesis - Assemble creatures from body-part fragments"
    )
    parser.add_argument(
        "--catalog", "-c",
        type=Path,
        default=None,
        help="Fragment catalog directory (primitives are used when absent)"
    )
    parser.add_argument(
        "--count", "-n",
        type=int,
        default=1,
        help="Number of creatures to generate"
    )
    parser.add_argument(
        "--fragments", "-k",
        type=int,
        default=7,
        help="Fragments per creature (first one is the torso)"
    )
    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=None,
        help="Random seed"
    )
    parser.add_argument(
        "--skin",
        action="store_true",
        help="Replace solid meshes with point-cloud skins"
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Output directory"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    # Build config
    config = Config.from_json(args.config) if args.config else Config()
    if args.seed is not None:
        config.seed = args.seed
    if args.output is not None:
        config.output_dir = args.output
    if args.catalog is not None:
        config.catalog_dir = args.catalog

    if args.count <= 0 or args.fragments <= 0:
        logger.error("--count and --fragments must be positive")
        sys.exit(2)

    catalog = None
    if config.catalog_dir.is_dir():
        catalog = populate_catalog(config.catalog_dir)
    else:
        logger.warning(f"No catalog at {config.catalog_dir}, using primitive fragments")

    logger.info(f"Generating {args.count} creatures from {args.fragments} fragments each")
    logger.info(f"Seed: {config.seed}, skin: {args.skin}")
    logger.info(f"Output: {config.output_dir}")

    summary = run_all(
        count=args.count,
        n_fragments=args.fragments,
        catalog=catalog,
        config=config,
        output_dir=config.output_dir,
        skin=args.skin
    )

    # Save summary
    summary_path = config.output_dir / "run_summary.json"
    summary_path.parent.mkdir(parents=True, exist_ok=True)
    with open(summary_path, 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info(f"\nSummary saved to: {summary_path}")

    n_success = len(summary["creatures"])
    n_errors = len(summary["errors"])

    logger.info(f"\n{'='*60}")
    logger.info(f"COMPLETE: {n_success} successful, {n_errors} errors")
    logger.info(f"{'='*60}")

    if n_errors > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
