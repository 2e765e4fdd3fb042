"""Concurrent execution of independent steps."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence, Tuple

from .context import ExecutionContext
from .execute import StepFn, run_step
from .serialization import Serializer

logger = logging.getLogger(__name__)


async def run_parallel(
    ctx: ExecutionContext,
    steps: Sequence[Tuple[str, StepFn[Any]]],
    serializer: Optional[Serializer[Any]] = None,
) -> list[Any]:
    """Run ``steps`` concurrently and return their results in input order.

    Step keys are allocated for the whole batch, in input order, before any
    step is started, so replay assigns the same keys however the previous
    attempt's steps happened to finish.

    If a step fails, the remaining steps are still awaited until they finish
    or fail; then the first failure in input order is raised.
    """
    if any(not step_id for step_id, _ in steps):
        raise ValueError("step_id must be a non-empty string")
    keyed = [(ctx.next_step_key(step_id), fn) for step_id, fn in steps]
    logger.debug(
        f"Dispatching {len(keyed)} parallel steps for run_id={ctx.run_id}: "
        f"{', '.join(key for key, _ in keyed)}"
    )

    results = await asyncio.gather(
        *(run_step(ctx, key, fn, serializer) for key, fn in keyed),
        return_exceptions=True,
    )

    failures = [
        (key, result)
        for (key, _), result in zip(keyed, results)
        if isinstance(result, BaseException)
    ]
    for key, error in failures:
        logger.warning(f"Parallel step {key} failed for run_id={ctx.run_id}: {error!r}")
    if failures:
        raise failures[0][1]
    return list(results)
