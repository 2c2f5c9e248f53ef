"""Flow navigation: phases, step position, gating and submission.

Phases run welcome -> in_flow -> submitting -> complete. While in flow
the position is kept as an index into the full step list; the visible
index is derived from it, so a step that disappears under the user
relocates them to the next visible one instead of shifting the index.

Dynamic steps have two timers, both armed on entering the step:
- stuck watchdog: nothing cached, loading or failed after
  ``stuck_step_timeout`` seconds means the prompt can't settle, so the
  step is skipped with a notice
- failure grace: a failed fetch skips the step after
  ``dynamic_failure_grace`` seconds unless the user retries
"""

import asyncio
import logging

from ..config import FlowConfig
from ..core.errors import (
    STUCK_STEP_MESSAGE,
    USER_MESSAGES,
    ErrorKind,
    TemplateError,
    TokenExpiredError,
)
from ..core.models import (
    DynamicStepState,
    FieldSpec,
    FlowPhase,
    StepSpec,
    SubmissionResult,
    VerificationStatus,
)
from ..services.base import SubmissionService
from ..services.verification import VerificationTokenStore
from ..utils.values import snapshot
from .conditions import evaluate_conditions
from .enrichment import EnrichmentRunner
from .prefetch import PrefetchScheduler
from .resolution import unresolved_variables
from .state import FlowState
from .validation import validate_step
from .visibility import VisibilityProjector, is_step_visible

logger = logging.getLogger(__name__)


class FlowNavigator:
    def __init__(
        self,
        state: FlowState,
        projector: VisibilityProjector,
        prefetch: PrefetchScheduler,
        enrichment: EnrichmentRunner,
        submission: SubmissionService,
        token_store: VerificationTokenStore,
        *,
        config: FlowConfig,
    ):
        self.state = state
        self.projector = projector
        self.prefetch = prefetch
        self.enrichment = enrichment
        self.submission = submission
        self.token_store = token_store
        self.config = config

        self.phase = FlowPhase.WELCOME
        self.verification = VerificationStatus.REQUIRED
        self.notice: str | None = None
        self.submission_error: str | None = None
        self.result: SubmissionResult | None = None
        self.stuck_steps: set[str] = set()

        self._current_raw = 0
        self._furthest_raw = 0
        self._stuck_handle: asyncio.TimerHandle | None = None
        self._grace_handle: asyncio.TimerHandle | None = None

        prefetch.on_failure.append(self._on_fetch_failed)

    # =========================================================================
    # Position
    # =========================================================================

    @property
    def steps(self) -> list[StepSpec]:
        return self.projector.steps

    @property
    def visible(self) -> list[StepSpec]:
        return self.projector.project(self.state.values)

    @property
    def current_raw_index(self) -> int:
        step = self.current_step
        return self._current_raw if step is None else self.projector.raw_index(step)

    @property
    def current_step(self) -> StepSpec | None:
        """The step the user is on, relocated forward if it became hidden."""
        values = self.state.values
        steps = self.steps
        for step in steps[self._current_raw :]:
            if is_step_visible(step, values):
                return step
        for step in reversed(steps[: self._current_raw]):
            if is_step_visible(step, values):
                return step
        return None

    @property
    def current_index(self) -> int:
        """Position of the current step in the visible projection."""
        step = self.current_step
        if step is None:
            return 0
        return [s.id for s in self.visible].index(step.id)

    @property
    def furthest_raw_index(self) -> int:
        return self._furthest_raw

    @property
    def is_last_step(self) -> bool:
        visible = self.visible
        step = self.current_step
        return bool(visible) and step is not None and visible[-1].id == step.id

    @property
    def can_go_back(self) -> bool:
        return self.phase == FlowPhase.IN_FLOW and self.current_index > 0

    # =========================================================================
    # Fields and gating
    # =========================================================================

    def fields_for(self, step: StepSpec) -> list[FieldSpec]:
        """Declared fields, or the generated ones for a dynamic step."""
        if step.is_dynamic:
            generated = self.state.generated_fields(step.id) or []
            return [g.as_field_spec() for g in generated]
        return list(step.fields)

    def visible_fields_for(self, step: StepSpec) -> list[FieldSpec]:
        values = self.state.values
        return [
            f for f in self.fields_for(step) if evaluate_conditions(f.conditions, values)
        ]

    def can_proceed(self) -> bool:
        """Validate the current step, storing per-field errors."""
        step = self.current_step
        if step is None:
            return False
        if step.is_dynamic and self.prefetch.status(step.id) != DynamicStepState.READY:
            return False
        errors = validate_step(step, self.visible_fields_for(step), self.state.values)
        self.state.errors.clear()
        self.state.errors.update(errors)
        return not errors

    # =========================================================================
    # Commands
    # =========================================================================

    def begin(self, token: str | None) -> bool:
        """Leave the welcome gate. Requires a verification token."""
        if self.phase != FlowPhase.WELCOME:
            return False
        if not token:
            self.verification = VerificationStatus.ERROR
            return False
        first = self.current_step
        if first is None:
            raise TemplateError(f"Template '{self.state.template.id}' has no visible steps")
        self.token_store.set(token)
        self.verification = VerificationStatus.SUCCESS
        self.phase = FlowPhase.IN_FLOW
        logger.info(f"Flow started at step '{first.id}'")
        self._goto(self.projector.raw_index(first))
        return True

    def advance(self) -> bool:
        """Move to the next visible step if the current one validates."""
        if self.phase != FlowPhase.IN_FLOW:
            return False
        step = self.current_step
        if step is None or not self.can_proceed():
            return False
        nxt = self._next_visible(step)
        if nxt is None:
            return False
        self.enrichment.trigger(step)
        self._goto(self.projector.raw_index(nxt))
        return True

    def skip(self) -> bool:
        """Move past a dynamic step without validation or enrichment."""
        if self.phase != FlowPhase.IN_FLOW:
            return False
        step = self.current_step
        if step is None or not step.is_dynamic:
            return False
        nxt = self._next_visible(step)
        if nxt is None:
            return False
        logger.info(f"Skipping dynamic step '{step.id}'")
        self._goto(self.projector.raw_index(nxt))
        return True

    def retreat(self) -> bool:
        if self.phase != FlowPhase.IN_FLOW:
            return False
        step = self.current_step
        if step is None:
            return False
        raw = self.projector.raw_index(step)
        values = self.state.values
        for i in range(raw - 1, -1, -1):
            if is_step_visible(self.steps[i], values):
                self._goto(i)
                return True
        return False

    def jump_to(self, index: int) -> bool:
        """Go to a visible step the user has already reached."""
        if self.phase != FlowPhase.IN_FLOW:
            return False
        visible = self.visible
        if not 0 <= index < len(visible):
            return False
        raw = self.projector.raw_index(visible[index])
        if raw > self._furthest_raw:
            return False
        self._goto(raw)
        return True

    def retry_step(self, step_id: str) -> bool:
        """Manual retry of a failed dynamic step."""
        self._cancel(grace=True)
        self.stuck_steps.discard(step_id)
        return self.prefetch.retry(step_id)

    async def submit(self) -> SubmissionResult | None:
        """Submit from the last visible step.

        Returns the result on success. On failure the user stays on the last
        step with every value intact and ``submission_error`` set.
        """
        if self.phase != FlowPhase.IN_FLOW or not self.is_last_step:
            return None
        step = self.current_step
        # A dynamic last step that never loaded has nothing to validate
        pending_dynamic = (
            step is not None
            and step.is_dynamic
            and self.prefetch.status(step.id) != DynamicStepState.READY
        )
        if not pending_dynamic and not self.can_proceed():
            return None

        token = self.token_store.get()
        if token is None:
            self._require_reverification()
            return None

        self.phase = FlowPhase.SUBMITTING
        self.submission_error = None
        try:
            result = await self.submission.submit(snapshot(self.state.values), token)
        except TokenExpiredError:
            self.phase = FlowPhase.IN_FLOW
            self.token_store.clear()
            self._require_reverification()
            logger.warning("Submission rejected: verification token expired")
            return None
        except Exception as e:
            self.phase = FlowPhase.IN_FLOW
            self.submission_error = USER_MESSAGES[ErrorKind.FATAL_SUBMISSION]
            logger.error(f"Submission failed: {type(e).__name__}: {e}")
            return None

        self.phase = FlowPhase.COMPLETE
        self.result = result
        self._cancel(stuck=True, grace=True)
        logger.info("Submission complete")
        return result

    def reverify(self, token: str) -> None:
        """Restore a verification token without touching collected values."""
        self.token_store.set(token)
        self.verification = VerificationStatus.SUCCESS
        if self.submission_error == USER_MESSAGES[ErrorKind.FATAL_AUTHORIZATION]:
            self.submission_error = None

    def close(self) -> None:
        self._cancel(stuck=True, grace=True)

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_reverification(self) -> None:
        self.verification = VerificationStatus.EXPIRED
        self.submission_error = USER_MESSAGES[ErrorKind.FATAL_AUTHORIZATION]

    def _next_visible(self, step: StepSpec) -> StepSpec | None:
        raw = self.projector.raw_index(step)
        values = self.state.values
        for candidate in self.steps[raw + 1 :]:
            if is_step_visible(candidate, values):
                return candidate
        return None

    def _goto(self, raw: int) -> None:
        self._current_raw = raw
        self._furthest_raw = max(self._furthest_raw, raw)
        logger.info(f"Entered step '{self.steps[raw].id}'")
        self._enter_current()

    def _enter_current(self) -> None:
        self._cancel(stuck=True, grace=True)
        self.state.errors.clear()
        step = self.current_step
        if step is None:
            return
        raw = self.projector.raw_index(step)
        # Moving forward can settle variables owned by the step just left
        self.prefetch.evaluate(raw)
        if not step.is_dynamic:
            return

        self.prefetch.ensure(step, raw)
        status = self.prefetch.status(step.id)
        if status == DynamicStepState.IDLE:
            self._stuck_handle = asyncio.get_running_loop().call_later(
                self.config.stuck_step_timeout, self._on_stuck, step.id
            )
        elif status == DynamicStepState.FAILED:
            self._arm_grace(step.id)

    def _arm_grace(self, step_id: str) -> None:
        self._cancel(grace=True)
        self._grace_handle = asyncio.get_running_loop().call_later(
            self.config.dynamic_failure_grace, self._on_grace, step_id
        )

    def _on_fetch_failed(self, step_id: str) -> None:
        if self.phase != FlowPhase.IN_FLOW:
            return
        step = self.current_step
        if step is not None and step.id == step_id:
            self._arm_grace(step_id)

    def _on_stuck(self, step_id: str) -> None:
        self._stuck_handle = None
        step = self.current_step
        if self.phase != FlowPhase.IN_FLOW or step is None or step.id != step_id:
            return
        if self.prefetch.status(step_id) != DynamicStepState.IDLE:
            return
        waiting = unresolved_variables(
            step.dynamic_prompt,
            self.state.values,
            self.state.enrichment,
            self.steps,
            self.current_raw_index,
            fail_open=self.config.fail_open,
            generated=self.state.generated,
            warned=self.state.warned_variables,
        )
        logger.warning(
            f"Dynamic step '{step_id}' never became ready after "
            f"{self.config.stuck_step_timeout}s (waiting on: "
            f"{', '.join(waiting) or 'nothing'}); skipping"
        )
        self.stuck_steps.add(step_id)
        self.notice = STUCK_STEP_MESSAGE
        self.skip()

    def _on_grace(self, step_id: str) -> None:
        self._grace_handle = None
        step = self.current_step
        if self.phase != FlowPhase.IN_FLOW or step is None or step.id != step_id:
            return
        if self.prefetch.status(step_id) != DynamicStepState.FAILED:
            return
        logger.info(f"Grace period over for failed step '{step_id}'; skipping")
        self.skip()

    def _cancel(self, *, stuck: bool = False, grace: bool = False) -> None:
        if stuck and self._stuck_handle is not None:
            self._stuck_handle.cancel()
            self._stuck_handle = None
        if grace and self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None
