"""
Evaluator gate - decide whether a produced value counts as success.

An evaluator is called as evaluator(value, inputs, results), or with just
the leading arguments it declares, e.g. evaluator(value). The extra
arguments let it cross-check the value against the run's inputs and
earlier results. No evaluator means the gate always passes.

Every evaluator failure is retryable, whatever it raises.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Optional, Union

from routinekit.channel import EventKind, LifecycleChannel
from routinekit.errors import EvaluationRejected
from routinekit.executor import call_maybe_async

logger = logging.getLogger(__name__)


Evaluator = Callable[[Any, Mapping[str, Any], Mapping[str, Any]], Union[bool, Awaitable[bool]]]


async def apply_gate(
    name: str,
    evaluator: Optional[Evaluator],
    value: Any,
    inputs: Mapping[str, Any],
    results: Mapping[str, Any],
    channel: LifecycleChannel,
) -> None:
    """
    Pass `value` through the subroutine's evaluator.

    Publishes `evaluation` when the evaluator returns, `evaluatorError`
    when it raises. Either failure also publishes the step's own
    `subroutineError`.

    Raises:
        EvaluationRejected: If the evaluator returned a falsy verdict
        Exception: Whatever the evaluator raised, unchanged
    """
    if evaluator is None:
        return

    try:
        verdict = await call_maybe_async(evaluator, value, inputs, results)
    except Exception as e:
        logger.warning(f"Evaluator for subroutine {name} raised {type(e).__name__}: {e}")
        channel.publish(EventKind.EVALUATOR_ERROR, name=name, error=e)
        channel.publish(EventKind.SUBROUTINE_ERROR, name=name, error=e)
        raise

    passed = bool(verdict)
    channel.publish(EventKind.EVALUATION, name=name, evaluation=passed)
    if not passed:
        error = EvaluationRejected(name)
        channel.publish(EventKind.SUBROUTINE_ERROR, name=name, error=error)
        raise error
