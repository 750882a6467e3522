"""
Synthesis entry points used by the CLI and UI-facing callers.

``synthesize_creature`` is the plain synchronous pipeline. The async
variant only adds artificial latency so the result does not appear
instantly in an interactive front end.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Optional, Sequence

import numpy as np

from common.config import Config, make_rng
from point_skin import apply_point_skin
from .build import Creature, Fragment, assemble

logger = logging.getLogger(__name__)

__all__ = ["synthesize_creature", "synthesize_creature_async", "paced", "apply_point_skin"]


def synthesize_creature(
    fragments: Sequence[Any],
    rng: Optional[np.random.Generator] = None,
    config: Optional[Config] = None
) -> Creature:
    """Assemble ``fragments`` and tag the root with synthesis metadata."""
    config = config or Config()
    rng = rng if rng is not None else make_rng(config.seed)
    fragments = [Fragment.coerce(f) for f in fragments]

    creature = assemble(fragments, rng=rng, config=config)
    creature.root.user_data.update({
        "synthesized": True,
        "fragment_count": len(fragments),
        "part_types": [f.category for f in fragments],
    })
    if creature.contact is not None and creature.contact.unresolved:
        logger.debug(f"Creature left with floating parts: {creature.contact.unresolved}")
    return creature


def paced(min_ms: float, max_ms: float, rng: Optional[np.random.Generator] = None) -> Callable:
    """
    Decorator: wrap a synchronous function in a coroutine that sleeps a
    uniformly random ``min_ms``-``max_ms`` before returning its result.
    """
    if min_ms < 0 or max_ms < min_ms:
        raise ValueError(f"Invalid pacing window: {min_ms}-{max_ms} ms")
    delay_rng = rng if rng is not None else make_rng()

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = func(*args, **kwargs)
            delay = delay_rng.uniform(min_ms, max_ms) if max_ms > 0 else 0.0
            await asyncio.sleep(delay / 1000.0)
            return result
        return wrapper

    return decorator


async def synthesize_creature_async(
    fragments: Sequence[Any],
    rng: Optional[np.random.Generator] = None,
    config: Optional[Config] = None
) -> Creature:
    """``synthesize_creature`` with the configured artificial delay."""
    config = config or Config()
    pacing = config.pacing
    run = paced(pacing.min_delay_ms, pacing.max_delay_ms, rng)(synthesize_creature)
    return await run(fragments, rng=rng, config=config)
