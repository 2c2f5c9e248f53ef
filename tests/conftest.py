"""Shared fixtures: in-memory services and a small intake template."""

import asyncio

import pytest

from smartflow.config import FlowConfig
from smartflow.core.models import (
    CollectionSpec,
    ConditionGroup,
    ConditionRule,
    FieldSpec,
    FieldType,
    GeneratedField,
    GeneratedFields,
    StepKind,
    StepSpec,
    SubmissionResult,
    TemplateSpec,
)
from smartflow.flow import FlowEngine
from smartflow.services.base import (
    DynamicFieldRequest,
    DynamicFieldService,
    EnrichmentRequest,
    EnrichmentService,
    SubmissionService,
)
from smartflow.services.verification import VerificationTokenStore

# Outcome that never completes; only a timeout or cancel ends it
HANG = object()


def default_generated() -> GeneratedFields:
    return GeneratedFields(
        fields=[
            GeneratedField(
                id="dynamic_clause_0001",
                name="confidentialityPeriod",
                label="Confidentiality period",
                required=True,
                standard_value="2 years",
            ),
            GeneratedField(
                id="dynamic_notes_0002",
                name="specialTerms",
                label="Special terms",
                type=FieldType.TEXTAREA,
            ),
        ],
        jurisdiction_name="California",
    )


async def _play(outcome, default):
    if outcome is HANG:
        await asyncio.sleep(3600)
    if isinstance(outcome, (int, float)) and not isinstance(outcome, bool):
        await asyncio.sleep(outcome)
        return default
    if isinstance(outcome, tuple):
        delay, value = outcome
        await asyncio.sleep(delay)
        outcome = value
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


class FakeDynamicFieldService(DynamicFieldService):
    """Replays queued outcomes: a result, an exception, HANG, or (delay, result)."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests: list[DynamicFieldRequest] = []
        self.closed = False

    async def generate(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else default_generated()
        return await _play(outcome, default_generated())

    async def close(self):
        self.closed = True


class FakeEnrichmentService(EnrichmentService):
    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests: list[EnrichmentRequest] = []

    async def enrich(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else {}
        return await _play(outcome, {})


class FakeSubmissionService(SubmissionService):
    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[dict, str]] = []

    async def submit(self, values, token):
        self.calls.append((values, token))
        outcome = (
            self.outcomes.pop(0)
            if self.outcomes
            else SubmissionResult(document={"ok": True})
        )
        return await _play(outcome, SubmissionResult())


@pytest.fixture
def flow_config():
    """Timings short enough to exercise timers inside a test."""
    return FlowConfig(
        prefetch_timeout=0.2,
        enrichment_timeout=0.2,
        enrichment_error_reset=0.05,
        stuck_step_timeout=0.05,
        dynamic_failure_grace=0.05,
    )


@pytest.fixture
def nda_template():
    """Four-step NDA intake: parties, staff (conditional), terms (dynamic), review."""
    return TemplateSpec(
        id="mutual-nda",
        title="Mutual NDA",
        steps=[
            StepSpec(
                id="parties",
                title="Parties",
                order=0,
                fields=[
                    FieldSpec(name="partyName", label="Party name", required=True),
                    FieldSpec(name="contactEmail", label="Contact email", type=FieldType.EMAIL),
                    FieldSpec(
                        name="jurisdiction",
                        label="Jurisdiction",
                        type=FieldType.SELECT,
                        options=["CA", "NY"],
                        required=True,
                    ),
                    FieldSpec(
                        name="hasEmployees", label="Has employees", type=FieldType.CHECKBOX
                    ),
                ],
                enrichment_prompt="Summarize the law for {{partyName}} in {{jurisdiction}}",
                enrichment_output_schema={
                    "type": "object",
                    "properties": {"governingLaw": {"type": "string"}},
                },
            ),
            StepSpec(
                id="staff",
                title="Staff",
                order=1,
                conditions=ConditionGroup(
                    rules=[ConditionRule(field="hasEmployees", operator="equals", value=True)]
                ),
                fields=[
                    FieldSpec(
                        name="headcount", label="Headcount", type=FieldType.NUMBER, required=True
                    )
                ],
            ),
            StepSpec(
                id="terms",
                title="Terms",
                order=2,
                kind=StepKind.DYNAMIC,
                dynamic_prompt=(
                    "Draft confidentiality terms for {{partyName}} "
                    "under {{jurisdiction}} law ({{governingLaw}})"
                ),
            ),
            StepSpec(
                id="review",
                title="Review",
                order=3,
                fields=[
                    FieldSpec(
                        name="lawChoice",
                        label="Governing law",
                        suggestion_key="governingLaw",
                    ),
                    FieldSpec(name="notes", label="Notes", type=FieldType.TEXTAREA),
                ],
            ),
        ],
    )


@pytest.fixture
def signatories_step():
    return StepSpec(
        id="signatories",
        title="Signatories",
        kind=StepKind.COLLECTION,
        collection=CollectionSpec(
            field_name="signatories",
            item_label="Signatory",
            min_items=1,
            max_items=2,
            item_fields=[
                FieldSpec(name="name", label="Name", required=True),
                FieldSpec(name="email", label="Email", type=FieldType.EMAIL),
            ],
        ),
    )


@pytest.fixture
def make_engine(nda_template, flow_config):
    """Build a FlowEngine over fake services. Must be called inside a running loop."""

    def _make(
        template=None,
        *,
        dynamic=None,
        enrichment=None,
        submission=None,
        token_store=None,
        config=None,
    ):
        return FlowEngine(
            template or nda_template,
            dynamic_service=dynamic or FakeDynamicFieldService(),
            enrichment_service=enrichment or FakeEnrichmentService(),
            submission_service=submission or FakeSubmissionService(),
            token_store=token_store or VerificationTokenStore(),
            config=config or flow_config,
        )

    return _make
