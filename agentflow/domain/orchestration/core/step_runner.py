from typing import Any, Awaitable, Callable, Optional, Tuple, Type
from dataclasses import dataclass
import asyncio
import structlog

from agentflow.domain.errors import StepExhausted, ValidationError
from agentflow.domain.models.agent_state import ExecutionContext

logger = structlog.get_logger(__name__)

StepHandler = Callable[[ExecutionContext], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Step:
    """A named unit of pipeline work with its own attempt budget"""
    name: str
    handler: StepHandler
    max_attempts: int = 1


class StepRetryRunner:
    """Runs a step with bounded attempts and exponential backoff (2**attempt seconds)"""

    def __init__(
        self,
        sleep: Sleeper = asyncio.sleep,
        non_retryable: Tuple[Type[BaseException], ...] = (ValidationError,)
    ):
        self._sleep = sleep
        self._non_retryable = non_retryable

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        return float(2 ** attempt)

    async def run(self, step: Step, context: ExecutionContext) -> ExecutionContext:
        last_error: Optional[BaseException] = None

        for attempt in range(1, step.max_attempts + 1):
            try:
                await step.handler(context)
                return context
            except self._non_retryable:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Step failed",
                    step=step.name,
                    attempt=attempt,
                    max_attempts=step.max_attempts,
                    error=str(e)
                )

                if attempt < step.max_attempts:
                    await self._sleep(self.backoff_delay(attempt))

        logger.error("Step exhausted", step=step.name, attempts=step.max_attempts, error=str(last_error))
        raise StepExhausted(step.name, last_error, step.max_attempts) from last_error
