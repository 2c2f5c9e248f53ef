"""Dynamic-step prefetching.

Each dynamic step's fields are fetched once, as soon as every variable its
prompt references is settled, usually while the user is still on an
earlier step. The scheduler is re-evaluated after every state change and
must never issue a second fetch for a step that is in flight or cached.

A failed step is left alone by re-evaluation, which runs on every value
change. It is fetched again when the user arrives on it or asks to retry.
"""

import asyncio
import logging
from collections.abc import Callable

from ..config import FlowConfig
from ..core.errors import USER_MESSAGES, ErrorKind
from ..core.models import DynamicStepState, GeneratedFields, StepSpec
from ..services.base import DynamicFieldRequest, DynamicFieldService
from ..utils.values import snapshot
from .resolution import are_prompt_variables_resolved
from .state import FlowState
from .tasks import BackgroundTasks
from .visibility import is_step_visible

logger = logging.getLogger(__name__)

FailureCallback = Callable[[str], None]


class PrefetchScheduler:
    """Issues and tracks dynamic-field fetches.

    Bookkeeping per step id:
    - claimed: fetched or fetching; the de-duplication guard
    - in flight: a fetch is outstanding
    - failed: last attempt failed, value is the user-facing message; shown
      until the next attempt starts
    - attempt: token of the latest launch; older results are ignored
    """

    def __init__(
        self,
        state: FlowState,
        service: DynamicFieldService,
        *,
        config: FlowConfig,
        tasks: BackgroundTasks,
    ):
        self.state = state
        self.service = service
        self.config = config
        self.tasks = tasks
        self._claimed: set[str] = set()
        self._in_flight: set[str] = set()
        self._failed: dict[str, str] = {}
        self._attempts: dict[str, int] = {}
        self.fetch_count: dict[str, int] = {}
        self.on_failure: list[FailureCallback] = []

    # ── Queries ──

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def failed(self) -> dict[str, str]:
        return dict(self._failed)

    def is_loading(self, step_id: str) -> bool:
        return step_id in self._in_flight

    def status(self, step_id: str) -> DynamicStepState:
        if self.state.generated_fields(step_id) is not None:
            return DynamicStepState.READY
        if step_id in self._in_flight:
            return DynamicStepState.LOADING
        if step_id in self._failed:
            return DynamicStepState.FAILED
        return DynamicStepState.IDLE

    # ── Commands ──

    def evaluate(self, current_index: int) -> list[str]:
        """Start fetches for every dynamic step whose prompt is now settled.

        Args:
            current_index: Position of the user's step in the full step list

        Returns:
            Ids of steps whose fetch was started by this call
        """
        started = []
        for step in self.state.template.steps:
            if self._should_fetch(step, current_index):
                self._start(step)
                started.append(step.id)
        return started

    def ensure(self, step: StepSpec, current_index: int) -> bool:
        """Fallback fetch for the step the user is on.

        Same guard as ``evaluate``, except that a step whose earlier fetch
        failed is fetched again: arriving on it with nothing cached and
        nothing in flight is a fresh attempt. Returns True if a fetch started.
        """
        if not self._should_fetch(step, current_index, refetch_failed=True):
            return False
        logger.info(f"Fallback fetch for dynamic step '{step.id}'")
        self._start(step)
        return True

    def retry(self, step_id: str) -> bool:
        """Manual retry of a failed (or never started) fetch.

        Skips the settlement check; the user is explicitly asking for it.
        """
        step = self.state.template.step_by_id(step_id)
        if step is None or not step.is_dynamic:
            raise KeyError(step_id)
        if step_id in self._in_flight or self.state.generated_fields(step_id) is not None:
            return False
        self._claimed.discard(step_id)
        logger.info(f"Retrying dynamic step '{step_id}'")
        self._start(step)
        return True

    # ── Internals ──

    def _should_fetch(
        self, step: StepSpec, current_index: int, *, refetch_failed: bool = False
    ) -> bool:
        if not step.is_dynamic or not step.dynamic_prompt:
            return False
        if step.id in self._claimed or step.id in self._in_flight:
            return False
        if step.id in self._failed and not refetch_failed:
            return False
        if self.state.generated_fields(step.id) is not None:
            return False
        values = self.state.values
        if not is_step_visible(step, values):
            return False
        return are_prompt_variables_resolved(
            step.dynamic_prompt,
            values,
            self.state.enrichment,
            self.state.template.steps,
            current_index,
            fail_open=self.config.fail_open,
            generated=self.state.generated,
            warned=self.state.warned_variables,
        )

    def _start(self, step: StepSpec) -> None:
        # Claim before anything can yield to the loop
        self._claimed.add(step.id)
        self._in_flight.add(step.id)
        self._failed.pop(step.id, None)
        attempt = self._attempts.get(step.id, 0) + 1
        self._attempts[step.id] = attempt
        self.fetch_count[step.id] = self.fetch_count.get(step.id, 0) + 1

        request = DynamicFieldRequest(
            step_id=step.id,
            prompt=step.dynamic_prompt or "",
            values=snapshot(self.state.values),
            enrichment=snapshot(self.state.enrichment),
            max_fields=step.dynamic_max_fields or self.config.default_max_fields,
            step_title=step.title,
            step_description=step.description,
        )
        logger.info(f"Prefetching dynamic step '{step.id}' (attempt {attempt})")
        self.tasks.spawn(self._run(request, attempt), name=f"prefetch:{step.id}")

    async def _run(self, request: DynamicFieldRequest, attempt: int) -> None:
        try:
            result = await asyncio.wait_for(
                self.service.generate(request), timeout=self.config.prefetch_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(request.step_id, attempt, e)
            return
        self._complete(request.step_id, attempt, result)

    def _complete(self, step_id: str, attempt: int, result: GeneratedFields) -> None:
        if self._attempts.get(step_id) != attempt:
            logger.debug(f"Ignoring superseded result for '{step_id}' (attempt {attempt})")
            return
        self._in_flight.discard(step_id)
        self._failed.pop(step_id, None)
        if self.state.store_generated(step_id, result):
            logger.info(
                f"Dynamic step '{step_id}' ready with {len(result.fields)} field(s)"
            )

    def _fail(self, step_id: str, attempt: int, error: BaseException) -> None:
        if self._attempts.get(step_id) != attempt:
            return
        self._in_flight.discard(step_id)
        self._claimed.discard(step_id)
        self._failed[step_id] = USER_MESSAGES[ErrorKind.RECOVERABLE_DEPENDENCY]
        if isinstance(error, asyncio.TimeoutError):
            detail = f"timed out after {self.config.prefetch_timeout}s"
        else:
            detail = f"{type(error).__name__}: {error}"
        logger.error(f"Dynamic field fetch for '{step_id}' failed: {detail}")
        for callback in list(self.on_failure):
            callback(step_id)
