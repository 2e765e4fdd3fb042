"""Checkpointed step execution.

Every step goes through claim -> run -> commit against the checkpoint store:

* a completed checkpoint is decoded and returned without running the body;
* a fresh claim runs the body and commits its encoded result;
* a dangling PENDING checkpoint (the process died between claim and commit)
  runs the body again and commits.

Step bodies must therefore be idempotent: a body may run more than once, but
at most one result is ever recorded for a step. Replay also requires the
workflow driver to issue steps in the same order on every attempt, since
step keys come from a per-run counter that restarts at zero.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

from .context import ExecutionContext
from .persistence import ClaimOutcome
from .serialization import DEFAULT_SERIALIZER, Serializer

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepFn = Callable[[], Union[T, Awaitable[T]]]


async def _invoke(fn: StepFn[T]) -> T:
    """Await coroutine functions; run plain callables in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn()
    result = await asyncio.to_thread(fn)
    if inspect.isawaitable(result):
        result = await result
    return result


async def run_step(
    ctx: ExecutionContext,
    step_key: str,
    fn: StepFn[T],
    serializer: Optional[Serializer[T]] = None,
) -> T:
    """Run one step under an already allocated ``step_key``."""
    serializer = serializer or DEFAULT_SERIALIZER
    claim = await ctx.store.try_claim(ctx.run_id, step_key)

    if claim.outcome == ClaimOutcome.ALREADY_COMPLETED:
        logger.debug(f"Replaying {step_key} for run_id={ctx.run_id}")
        return serializer.decode(claim.output)

    if claim.outcome == ClaimOutcome.ALREADY_PENDING:
        logger.warning(
            f"Step {step_key} for run_id={ctx.run_id} was claimed but never "
            "committed; executing it again"
        )
    else:
        logger.debug(f"Claimed {step_key} for run_id={ctx.run_id}")

    # Body errors propagate untouched and leave the checkpoint PENDING.
    value = await _invoke(fn)
    encoded = serializer.encode(value)

    if await ctx.store.commit(ctx.run_id, step_key, encoded):
        logger.info(f"Completed {step_key} for run_id={ctx.run_id}")
        # Hand back what a replay would see, not the raw value.
        return serializer.decode(encoded)

    # Another attempt committed first; its output is the durable result.
    logger.info(
        f"Step {step_key} for run_id={ctx.run_id} was already committed, "
        "returning the stored result"
    )
    record = await ctx.store.get_step(ctx.run_id, step_key)
    return serializer.decode(record.output)


async def execute(
    ctx: ExecutionContext,
    step_id: str,
    fn: StepFn[T],
    serializer: Optional[Serializer[T]] = None,
) -> T:
    """Execute ``fn`` as the next step of the run, or replay its result.

    Args:
        ctx: Context of the current run.
        step_id: Logical name of the step; the checkpoint key is
            ``<step_id>-<sequence>``.
        fn: Zero-argument callable or coroutine function producing the step
            result. It must tolerate being re-run after a crash.
        serializer: Encoding for the result, JSON when omitted.

    Returns:
        The result of ``fn``, or the stored result on replay.

    Raises:
        StoreUnavailable: The checkpoint store could not be used.
        SerializationFailure: The result could not be encoded or decoded.
        Exception: Whatever ``fn`` raised, unchanged.
    """
    if not step_id:
        raise ValueError("step_id must be a non-empty string")
    step_key = ctx.next_step_key(step_id)
    return await run_step(ctx, step_key, fn, serializer)
