"""Background enrichment after leaving a step.

Fire-and-forget: ``trigger`` returns immediately after publishing the
running indicator. Results land in the enrichment context through the
state's guarded merge; failures only change the indicator.
"""

import asyncio
import logging
from typing import Any

from ..config import FlowConfig
from ..core.errors import USER_MESSAGES, ErrorKind
from ..core.models import EnrichmentIndicator, EnrichmentStatus, StepSpec
from ..services.base import EnrichmentRequest, EnrichmentService
from ..utils.values import snapshot
from .state import FlowState
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class EnrichmentRunner:
    def __init__(
        self,
        state: FlowState,
        service: EnrichmentService,
        *,
        config: FlowConfig,
        tasks: BackgroundTasks,
    ):
        self.state = state
        self.service = service
        self.config = config
        self.tasks = tasks
        self._pending = 0
        self._sequence = 0
        self._indicator = EnrichmentIndicator()
        self._reset_handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def indicator(self) -> EnrichmentIndicator:
        return self._indicator

    def trigger(self, step: StepSpec) -> bool:
        """Start enrichment for a departed step. Returns False if it has none."""
        if not step.enrichment_prompt:
            return False

        values = snapshot(self.state.values)
        self._sequence += 1
        sequence = self._sequence
        self._pending += 1
        self._cancel_reset()
        self._indicator = EnrichmentIndicator(
            status=EnrichmentStatus.RUNNING, step_title=step.title
        )

        request = EnrichmentRequest(
            step_id=step.id,
            prompt=step.enrichment_prompt,
            values=values,
            output_schema=step.enrichment_output_schema,
        )
        logger.info(f"Enrichment started for step '{step.id}' (run {sequence})")
        self.tasks.spawn(self._run(request, sequence, step.title), name=f"enrich:{step.id}")
        return True

    async def _run(self, request: EnrichmentRequest, sequence: int, title: str) -> None:
        try:
            result = await asyncio.wait_for(
                self.service.enrich(request), timeout=self.config.enrichment_timeout
            )
            if not isinstance(result, dict):
                raise TypeError(f"expected a JSON object, got {type(result).__name__}")
        except asyncio.CancelledError:
            self._pending = max(0, self._pending - 1)
            raise
        except Exception as e:
            self._on_failure(request.step_id, title, e)
            return
        self._on_success(request.step_id, sequence, result)

    def _on_success(self, step_id: str, sequence: int, result: dict[str, Any]) -> None:
        written = self.state.merge_enrichment(result, sequence)
        logger.info(
            f"Enrichment for step '{step_id}' merged {len(written)} key(s): {written}"
        )
        self._pending = max(0, self._pending - 1)
        if self._pending == 0:
            self._cancel_reset()
            self._indicator = EnrichmentIndicator()

    def _on_failure(self, step_id: str, title: str, error: BaseException) -> None:
        self._pending = max(0, self._pending - 1)
        if isinstance(error, asyncio.TimeoutError):
            detail = f"timed out after {self.config.enrichment_timeout}s"
        else:
            detail = f"{type(error).__name__}: {error}"
        logger.error(f"Enrichment for step '{step_id}' failed: {detail}")
        self._indicator = EnrichmentIndicator(
            status=EnrichmentStatus.ERROR,
            step_title=title,
            message=USER_MESSAGES[ErrorKind.RECOVERABLE_BACKGROUND],
        )
        self._cancel_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(
            self.config.enrichment_error_reset, self._reset_if_idle
        )

    def _reset_if_idle(self) -> None:
        self._reset_handle = None
        if self._pending == 0:
            self._indicator = EnrichmentIndicator()

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def close(self) -> None:
        self._cancel_reset()
