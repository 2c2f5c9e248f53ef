"""Flow engine: composes the state container and its components.

The engine is the only object a rendering layer talks to. It exposes
explicit commands and a ``snapshot()`` of everything that should be on
screen; it has no knowledge of how that is drawn.

Must be driven from inside a running event loop, since commands start
detached background tasks and timers.
"""

import logging
from typing import Any

from ..config import FlowConfig, get_config
from ..core.models import (
    DynamicStepState,
    FlowPhase,
    StandardsResult,
    SubmissionResult,
    TemplateSpec,
)
from ..services.base import DynamicFieldService, EnrichmentService, SubmissionService
from ..services.verification import VerificationTokenStore
from .enrichment import EnrichmentRunner
from .navigator import FlowNavigator
from .prefetch import PrefetchScheduler
from .standards import StandardsApplicator
from .state import VALUES, ENRICHMENT, FlowState
from .tasks import BackgroundTasks
from .visibility import VisibilityProjector

logger = logging.getLogger(__name__)


class FlowEngine:
    def __init__(
        self,
        template: TemplateSpec,
        *,
        dynamic_service: DynamicFieldService,
        enrichment_service: EnrichmentService,
        submission_service: SubmissionService,
        token_store: VerificationTokenStore | None = None,
        config: FlowConfig | None = None,
    ):
        self.template = template
        self.config = config or get_config().flow
        self.tasks = BackgroundTasks()
        self.state = FlowState(template)
        self.projector = VisibilityProjector(template.steps)
        self.prefetch = PrefetchScheduler(
            self.state, dynamic_service, config=self.config, tasks=self.tasks
        )
        self.enrichment = EnrichmentRunner(
            self.state, enrichment_service, config=self.config, tasks=self.tasks
        )
        self.standards = StandardsApplicator(
            self.state, max_iterations=self.config.standards_max_iterations
        )
        self.navigator = FlowNavigator(
            self.state,
            self.projector,
            self.prefetch,
            self.enrichment,
            submission_service,
            token_store or VerificationTokenStore(),
            config=self.config,
        )
        self._services = (dynamic_service, enrichment_service, submission_service)
        self.applied_standards: set[str] = set()
        self._unsubscribe = self.state.subscribe(self._on_state_change)

    def _on_state_change(self, kind: str) -> None:
        if kind not in (VALUES, ENRICHMENT):
            return
        if self.navigator.phase != FlowPhase.IN_FLOW:
            return
        # Re-read position now; listeners never hold earlier state
        self.prefetch.evaluate(self.navigator.current_raw_index)

    # =========================================================================
    # Commands
    # =========================================================================

    def set_value(self, name: str, value: Any) -> None:
        self.state.set_value(name, value)

    def update_values(self, updates: dict[str, Any]) -> None:
        self.state.update_values(updates)

    def begin(self, token: str | None) -> bool:
        return self.navigator.begin(token)

    def advance(self) -> bool:
        return self.navigator.advance()

    def retreat(self) -> bool:
        return self.navigator.retreat()

    def jump_to(self, index: int) -> bool:
        return self.navigator.jump_to(index)

    def skip(self) -> bool:
        return self.navigator.skip()

    def retry_step(self, step_id: str) -> bool:
        return self.navigator.retry_step(step_id)

    def apply_standards(self) -> StandardsResult | None:
        """Fill the current step's empty visible fields with recommendations."""
        step = self.navigator.current_step
        if step is None:
            return None
        if step.is_dynamic:
            result = self.standards.apply_generated(step)
        else:
            result = self.standards.apply_suggestions(step)
        if result.applied:
            self.applied_standards.add(step.id)
        return result

    async def submit(self) -> SubmissionResult | None:
        return await self.navigator.submit()

    def reverify(self, token: str) -> None:
        self.navigator.reverify(token)

    # =========================================================================
    # Rendering surface
    # =========================================================================

    def step_status(self, step_id: str) -> DynamicStepState:
        status = self.prefetch.status(step_id)
        if status == DynamicStepState.IDLE and step_id in self.navigator.stuck_steps:
            return DynamicStepState.STUCK
        return status

    def snapshot(self) -> dict[str, Any]:
        """Everything a rendering layer needs, as plain data."""
        nav = self.navigator
        values = self.state.values
        visible = nav.visible
        current = nav.current_step if nav.phase != FlowPhase.WELCOME else None

        steps = []
        for step in visible:
            steps.append(
                {
                    "id": step.id,
                    "title": step.title,
                    "kind": step.kind.value,
                    "loading": self.prefetch.is_loading(step.id),
                    "status": self.step_status(step.id).value if step.is_dynamic else None,
                    "standards_available": self.standards.has_standards(step),
                    "standards_applied": step.id in self.applied_standards,
                }
            )

        current_data = None
        if current is not None:
            fields = []
            for field in nav.visible_fields_for(current):
                fields.append(
                    {
                        "name": field.name,
                        "label": field.label,
                        "type": field.type.value,
                        "required": field.required,
                        "options": list(field.options),
                        "value": values.get(field.name),
                        "error": self.state.errors.get(field.name),
                    }
                )
            current_data = {
                "id": current.id,
                "title": current.title,
                "description": current.description,
                "fields": fields,
                "errors": dict(self.state.errors),
                "jurisdiction": self.state.jurisdiction_name(current.id),
                "fetch_error": self.prefetch.failed.get(current.id),
            }

        return {
            "phase": nav.phase.value,
            "verification": nav.verification.value,
            "steps": steps,
            "current_index": nav.current_index,
            "current_step": current_data,
            "enrichment": self.enrichment.indicator.model_dump(mode="json"),
            "notice": nav.notice,
            "submission_error": nav.submission_error,
            "can_go_back": nav.can_go_back,
            "is_last_step": nav.is_last_step,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def drain(self) -> None:
        """Wait for every outstanding prefetch and enrichment task."""
        await self.tasks.drain()

    async def aclose(self) -> None:
        self._unsubscribe()
        self.navigator.close()
        self.enrichment.close()
        self.tasks.cancel_all()
        await self.tasks.drain()
        for service in self._services:
            await service.close()
