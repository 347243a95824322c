"""
Retry controller - bounded retries of executor + gate with linear backoff.

For one subroutine:
1. Run the action (executor) and pass its value through the gate
2. On failure, wait retry_delay_ms * attempt_n and try again
3. Give up after max_retries attempts with RetryExhaustedError

There is no delay before the first attempt nor after the final one, and
no jitter. An action raising PermanentError stops the loop immediately;
an evaluator raising it is retried like any other evaluator failure.
TransientError is retried like a plain exception and named as such in
the retry log.

Per-attempt errors (timeouts, action errors, gate rejections) are caught
here and never escape except as the final SubroutineFailedError. The
executor and gate have already published their own events for each one.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, TYPE_CHECKING

from routinekit.channel import LifecycleChannel
from routinekit.config import RoutineConfig
from routinekit.errors import PermanentError, RetryExhaustedError, SubroutineFailedError, TransientError
from routinekit.executor import run_action
from routinekit.gate import apply_gate

if TYPE_CHECKING:
    from routinekit.routine import Subroutine

logger = logging.getLogger(__name__)


async def run_with_retry(
    subroutine: "Subroutine",
    inputs: Mapping[str, Any],
    results: Mapping[str, Any],
    config: RoutineConfig,
    channel: LifecycleChannel,
) -> Any:
    """
    Execute one subroutine within its retry budget.

    Args:
        subroutine: The step to run
        inputs: The routine's initial inputs
        results: Results of earlier subroutines in this run
        config: Retry/timeout policy for this call
        channel: Channel receiving per-attempt events

    Returns:
        The first value that executes without error and passes the gate

    Raises:
        RetryExhaustedError: If all config.max_retries attempts failed
        SubroutineFailedError: If the action raised PermanentError
    """
    name = subroutine.name
    last_error: Exception | None = None

    for attempt_n in range(1, config.max_retries + 1):
        try:
            value = await run_action(
                name, subroutine.action, inputs, results, config.timeout_ms, channel
            )
        except PermanentError as e:
            logger.error(f"Subroutine {name} failed permanently on attempt {attempt_n}: {e}")
            raise SubroutineFailedError(name, attempt_n, e) from e
        except Exception as e:
            last_error = e
        else:
            try:
                await apply_gate(name, subroutine.evaluator, value, inputs, results, channel)
            except Exception as e:
                # Evaluator failures never short-circuit, PermanentError included
                last_error = e
            else:
                if attempt_n > 1:
                    logger.info(f"Subroutine {name} succeeded on attempt {attempt_n}/{config.max_retries}")
                return value

        if attempt_n == config.max_retries:
            break
        delay = config.delay_before_retry(attempt_n)
        kind = "transient error" if isinstance(last_error, TransientError) else "error"
        logger.warning(
            f"Subroutine {name} attempt {attempt_n}/{config.max_retries} failed with {kind}: "
            f"{last_error}. Retrying in {delay:.3f}s..."
        )
        await asyncio.sleep(delay)

    logger.error(f"Subroutine {name}: all {config.max_retries} attempts failed: {last_error}")
    raise RetryExhaustedError(name, config.max_retries, last_error) from last_error
