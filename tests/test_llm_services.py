"""Tests for the LLM-backed services, local submission and the token store."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from smartflow.core.errors import TokenExpiredError
from smartflow.core.models import FieldType
from smartflow.core.providers.base import TokenUsage
from smartflow.services import llm_services
from smartflow.services.base import DynamicFieldRequest, EnrichmentRequest
from smartflow.services.llm_services import (
    GENERATED_FIELDS_SCHEMA,
    LLMDynamicFieldService,
    LLMEnrichmentService,
    build_generation_prompt,
    build_generation_system_prompt,
    sanitize_generated_fields,
)
from smartflow.services.local import LocalSubmissionService
from smartflow.services.verification import VerificationTokenStore


def _raw(name, label="Label", **extra):
    return {"name": name, "label": label, "type": "text", **extra}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# =============================================================================
# Generated field sanitizing
# =============================================================================


class TestSanitizeGeneratedFields:
    def test_not_a_list(self):
        assert sanitize_generated_fields({"name": "x"}, 5) == []

    def test_truncates_to_max_fields(self):
        raw = [_raw(f"field{i}") for i in range(8)]
        assert len(sanitize_generated_fields(raw, 3)) == 3

    def test_drops_entries_without_name_or_label(self):
        raw = [_raw(""), _raw("ok", label=" "), "junk", _raw("kept")]
        assert [f.name for f in sanitize_generated_fields(raw, 5)] == ["kept"]

    def test_name_normalized(self):
        fields = sanitize_generated_fields(
            [_raw("notice period!"), _raw("2ndParty")], 5
        )
        assert [f.name for f in fields] == ["noticeperiod", "field2ndParty"]

    def test_duplicate_names_made_unique(self):
        fields = sanitize_generated_fields([_raw("term"), _raw("term")], 5)
        assert [f.name for f in fields] == ["term", "term_2"]
        assert fields[0].id != fields[1].id
        assert fields[0].id.startswith("dynamic_term_")

    def test_unknown_type_becomes_text(self):
        fields = sanitize_generated_fields([_raw("x", type="slider")], 5)
        assert fields[0].type == FieldType.TEXT

    def test_select_without_options_dropped(self):
        raw = [
            _raw("law", type="select", options=[" ", None]),
            _raw("venue", type="select", options=["Court A", "", "Court B"]),
        ]
        fields = sanitize_generated_fields(raw, 5)
        assert [f.name for f in fields] == ["venue"]
        assert fields[0].options == ["Court A", "Court B"]

    def test_camel_case_keys_mapped(self):
        fields = sanitize_generated_fields(
            [_raw("term", helpText="Why we ask", standardValue="2 years", required=1)], 5
        )
        assert fields[0].help_text == "Why we ask"
        assert fields[0].standard_value == "2 years"
        assert fields[0].required is True


# =============================================================================
# Prompts
# =============================================================================


class TestPrompts:
    def test_generation_prompt_interpolates_values_and_enrichment(self):
        request = DynamicFieldRequest(
            step_id="terms",
            prompt="Terms for {{partyName}} under {{governingLaw}}",
            values={"partyName": "Acme"},
            enrichment={"governingLaw": "California"},
            max_fields=4,
            step_title="Terms",
        )
        prompt = build_generation_prompt(request)
        assert "Terms for Acme under California" in prompt
        assert "Screen Title: Terms" in prompt
        assert "Screen Description" not in prompt
        assert "- Maximum 4 fields" in prompt

    def test_system_prompt_lists_types(self):
        system = build_generation_system_prompt(3)
        assert "between 1 and 3 fields" in system
        assert "**select**" in system

    def test_enrichment_prompt_includes_output_shape(self):
        request = EnrichmentRequest(
            step_id="parties",
            prompt="Governing law for {{jurisdiction}}",
            values={"jurisdiction": "CA"},
            output_schema={"properties": {"governingLaw": {"type": "string"}}},
        )
        prompt = LLMEnrichmentService().build_prompt(request)
        assert "User Prompt: Governing law for CA" in prompt
        assert '"governingLaw"' in prompt
        assert prompt.endswith("Generate a JSON response based on the prompt.")


# =============================================================================
# Services
# =============================================================================


class TestLLMDynamicFieldService:
    def test_generate(self):
        reply = {
            "fields": [_raw("noticePeriod", label="Notice period", standardValue="30 days")],
            "jurisdictionName": "California",
            "reasoning": 42,
        }
        call = AsyncMock(return_value=(reply, TokenUsage(input_tokens=5, output_tokens=3)))
        request = DynamicFieldRequest(step_id="terms", prompt="Terms", max_fields=2)

        with patch.object(llm_services, "generation_call_async", call):
            result = asyncio.run(LLMDynamicFieldService(model="openai/gpt-5").generate(request))

        assert [f.name for f in result.fields] == ["noticePeriod"]
        assert result.jurisdiction_name == "California"
        assert result.reasoning is None
        kwargs = call.await_args.kwargs
        assert kwargs["model"] == "openai/gpt-5"
        assert kwargs["response_schema"] is GENERATED_FIELDS_SCHEMA

    def test_missing_fields_key(self):
        call = AsyncMock(return_value=({}, TokenUsage()))
        request = DynamicFieldRequest(step_id="terms", prompt="Terms")
        with patch.object(llm_services, "generation_call_async", call):
            result = asyncio.run(LLMDynamicFieldService().generate(request))
        assert result.fields == []


class TestLLMEnrichmentService:
    def test_enrich_returns_reply(self):
        call = AsyncMock(return_value=({"governingLaw": "California"}, TokenUsage()))
        request = EnrichmentRequest(step_id="parties", prompt="Law?", values={})
        with patch.object(llm_services, "enrichment_call_async", call):
            result = asyncio.run(LLMEnrichmentService().enrich(request))
        assert result == {"governingLaw": "California"}
        assert call.await_args.kwargs["system"] == llm_services.ENRICHMENT_SYSTEM_PROMPT


class TestLocalSubmissionService:
    def test_writes_answers(self, tmp_path):
        path = tmp_path / "out" / "answers.json"
        store = VerificationTokenStore()
        store.set("tok")
        service = LocalSubmissionService(path, template_id="nda", token_store=store)

        result = asyncio.run(service.submit({"partyName": "Acme"}, "tok"))

        written = json.loads(path.read_text())
        assert written["template_id"] == "nda"
        assert written["answers"] == {"partyName": "Acme"}
        assert result.metadata["path"] == str(path)

    def test_stale_token_rejected(self, tmp_path):
        store = VerificationTokenStore()
        store.set("fresh")
        service = LocalSubmissionService(tmp_path / "a.json", token_store=store)
        with pytest.raises(TokenExpiredError):
            asyncio.run(service.submit({}, "stale"))
        assert not (tmp_path / "a.json").exists()


class TestVerificationTokenStore:
    def test_expiry(self):
        clock = FakeClock()
        store = VerificationTokenStore(max_age=10, clock=clock)
        store.set("tok")
        clock.now = 10
        assert store.get() == "tok"
        clock.now = 10.5
        assert store.get() is None
        assert not store.has_token

    def test_no_max_age(self):
        clock = FakeClock()
        store = VerificationTokenStore(max_age=None, clock=clock)
        store.set("tok")
        clock.now = 1e9
        assert store.has_token

    def test_clear(self):
        store = VerificationTokenStore()
        store.set("tok")
        store.clear()
        assert store.get() is None
