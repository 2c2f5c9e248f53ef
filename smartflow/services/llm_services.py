"""LLM-backed dynamic-field and enrichment services.

Both interpolate the step's prompt template against collected values
before sending it. Generated fields are sanitized here so the engine only
ever sees well-formed, uniquely named fields.
"""

import json
import logging
import re
import secrets
from typing import Any

from ..core.llm import enrichment_call_async, generation_call_async
from ..core.models import FieldType, GeneratedField, GeneratedFields
from ..utils.templates import interpolate_prompt
from .base import DynamicFieldRequest, DynamicFieldService, EnrichmentRequest, EnrichmentService

logger = logging.getLogger(__name__)

_SUPPORTED_TYPES = [t.value for t in FieldType]

_NAME_STRIP_RE = re.compile(r"[^a-zA-Z0-9]")

# Field types worth describing to the model; the rest get a generic line
FIELD_TYPE_DESCRIPTIONS: dict[str, tuple[str, str, str]] = {
    "text": (
        "Single-line text input for short answers",
        "placeholder, helpText",
        "Company name, person's name, short description",
    ),
    "textarea": (
        "Multi-line text input for longer answers",
        "placeholder, helpText",
        "Scope of services, special terms",
    ),
    "email": (
        "Email address input with validation",
        "placeholder, helpText",
        "Contact email, notification email",
    ),
    "date": (
        "Date picker for selecting dates",
        "placeholder, helpText",
        "Agreement date, expiration date, effective date",
    ),
    "number": (
        "Numeric input for quantities or amounts",
        "placeholder, helpText",
        "Duration in months, quantities",
    ),
    "checkbox": (
        "Yes/No toggle for boolean options",
        "helpText",
        "Agree to terms, include optional clause",
    ),
    "select": (
        "Dropdown menu for choosing from predefined options",
        "options, helpText",
        "Jurisdiction selection, contract type, duration options",
    ),
}

GENERATED_FIELDS_SCHEMA = {
    "type": "object",
    "properties": {
        "fields": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Unique camelCase identifier, no spaces or special characters",
                    },
                    "label": {"type": "string", "description": "Human readable label"},
                    "type": {"type": "string", "enum": _SUPPORTED_TYPES},
                    "required": {"type": "boolean"},
                    "placeholder": {"type": ["string", "null"]},
                    "helpText": {
                        "type": ["string", "null"],
                        "description": "Why this information is needed, in legal context",
                    },
                    "options": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Choices for select fields, empty otherwise",
                    },
                    "standardValue": {
                        "type": ["string", "number", "boolean", "null"],
                        "description": "Customary value for this jurisdiction, if one exists",
                    },
                },
                "required": [
                    "name",
                    "label",
                    "type",
                    "required",
                    "placeholder",
                    "helpText",
                    "options",
                    "standardValue",
                ],
                "additionalProperties": False,
            },
        },
        "jurisdictionName": {
            "type": ["string", "null"],
            "description": "Human-readable jurisdiction the fields were tailored to",
        },
        "reasoning": {
            "type": ["string", "null"],
            "description": "Brief explanation of why these fields were chosen",
        },
    },
    "required": ["fields", "jurisdictionName", "reasoning"],
    "additionalProperties": False,
}

ENRICHMENT_SYSTEM_PROMPT = (
    "You are an AI assistant helping to fill out a legal document form. "
    "Your task is to analyze the provided form data and the user's prompt to "
    "generate useful context or suggestions for subsequent form steps. "
    "Return your response in a valid JSON format. Do not include any markdown "
    "formatting or explanations outside the JSON."
)


def field_type_documentation() -> str:
    lines = []
    for type_name in _SUPPORTED_TYPES:
        description, properties, example = FIELD_TYPE_DESCRIPTIONS.get(
            type_name, (f"{type_name} field", "helpText", "General input")
        )
        lines.append(
            f"- **{type_name}**: {description}\n"
            f"    - Properties: {properties}\n"
            f"    - Use for: {example}"
        )
    return "\n".join(lines)


def build_generation_system_prompt(max_fields: int) -> str:
    types = ", ".join(_SUPPORTED_TYPES)
    return f"""You are an AI assistant helping to create dynamic form fields for a legal document generator.
Your task is to generate relevant form questions based on the user's context and requirements.

## AVAILABLE FIELD TYPES
{field_type_documentation()}

## RULES
1. Generate between 1 and {max_fields} fields maximum
2. Each field must have a unique "name" (camelCase, no spaces or special characters)
3. ONLY use these field types: {types}
4. For "select" type fields, you MUST include an "options" array with string values
5. Make fields contextually relevant to the legal document being created
6. Include helpful "helpText" that explains why this information is needed (legal context)
7. Set "required" to true for critical information, false for optional details
8. Generate fields that would gather information not already provided in the context
9. When a field has a customary value in the jurisdiction, give it as "standardValue"
10. Name the jurisdiction you tailored the fields to in "jurisdictionName\""""


def build_generation_prompt(request: DynamicFieldRequest) -> str:
    context = {**request.values, **request.enrichment}
    interpolated = interpolate_prompt(request.prompt, context)
    parts = [
        "Context from previous form steps:",
        json.dumps(context, indent=2, default=str),
        "",
    ]
    if request.step_title:
        parts.append(f"Screen Title: {request.step_title}")
    if request.step_description:
        parts.append(f"Screen Description: {request.step_description}")
    parts.extend(
        [
            "",
            "User's Request:",
            interpolated,
            "",
            "Generate appropriate form fields based on this context. Remember:",
            f"- Maximum {request.max_fields} fields",
            f"- Only use supported field types: {', '.join(_SUPPORTED_TYPES)}",
            "- Make fields relevant to the legal document context",
        ]
    )
    return "\n".join(parts)


def sanitize_generated_fields(raw_fields: Any, max_fields: int) -> list[GeneratedField]:
    """Drop malformed fields and normalize the rest.

    - at most ``max_fields`` entries are considered
    - entries without a name or label are dropped
    - names keep only ASCII letters and digits, must start with a letter
      (otherwise prefixed with "field") and are made unique
    - unknown types become text
    - selects without any non-blank option are dropped
    """
    if not isinstance(raw_fields, list):
        return []

    result: list[GeneratedField] = []
    used: set[str] = set()
    for raw in raw_fields[:max_fields]:
        if not isinstance(raw, dict):
            continue
        name = raw.get("name")
        label = raw.get("label")
        if not isinstance(name, str) or not name.strip():
            continue
        if not isinstance(label, str) or not label.strip():
            continue

        name = _NAME_STRIP_RE.sub("", name)
        if not name or not name[0].isalpha():
            name = "field" + name
        if name in used:
            name = f"{name}_{len(used) + 1}"
        used.add(name)

        field_type = raw.get("type") if raw.get("type") in _SUPPORTED_TYPES else "text"

        options: list[str] = []
        if field_type == FieldType.SELECT.value:
            raw_options = raw.get("options")
            if isinstance(raw_options, list):
                options = [o for o in raw_options if isinstance(o, str) and o.strip()]
            if not options:
                logger.debug(f"Dropping select field '{name}' without options")
                continue

        placeholder = raw.get("placeholder")
        help_text = raw.get("helpText", raw.get("help_text"))
        result.append(
            GeneratedField(
                id=f"dynamic_{name}_{secrets.token_hex(4)}",
                name=name,
                label=label.strip(),
                type=FieldType(field_type),
                required=bool(raw.get("required")),
                placeholder=placeholder if isinstance(placeholder, str) else None,
                help_text=help_text if isinstance(help_text, str) else None,
                options=options,
                standard_value=raw.get("standardValue", raw.get("standard_value")),
            )
        )
    return result


class LLMDynamicFieldService(DynamicFieldService):
    """Generates a dynamic step's fields with the strong model tier."""

    def __init__(self, model: str | None = None):
        self.model = model

    async def generate(self, request: DynamicFieldRequest) -> GeneratedFields:
        data, usage = await generation_call_async(
            build_generation_prompt(request),
            system=build_generation_system_prompt(request.max_fields),
            response_schema=GENERATED_FIELDS_SCHEMA,
            schema_name="generated_fields",
            model=self.model,
        )
        fields = sanitize_generated_fields(data.get("fields", []), request.max_fields)
        logger.info(
            f"Generated {len(fields)} field(s) for step '{request.step_id}' "
            f"({usage.input_tokens} in / {usage.output_tokens} out tokens)"
        )
        jurisdiction = data.get("jurisdictionName")
        reasoning = data.get("reasoning")
        return GeneratedFields(
            fields=fields,
            jurisdiction_name=jurisdiction if isinstance(jurisdiction, str) else None,
            reasoning=reasoning if isinstance(reasoning, str) else None,
        )


class LLMEnrichmentService(EnrichmentService):
    """Background enrichment with the fast model tier."""

    def __init__(self, model: str | None = None):
        self.model = model

    def build_prompt(self, request: EnrichmentRequest) -> str:
        interpolated = interpolate_prompt(request.prompt, request.values)
        prompt = (
            f"Form Data: {json.dumps(request.values, indent=2, default=str)}\n\n"
            f"User Prompt: {interpolated}\n\n"
        )
        if request.output_schema:
            prompt += (
                "Return a JSON object matching this shape:\n"
                f"{json.dumps(request.output_schema, indent=2)}\n\n"
            )
        return prompt + "Generate a JSON response based on the prompt."

    async def enrich(self, request: EnrichmentRequest) -> dict[str, Any]:
        data, usage = await enrichment_call_async(
            self.build_prompt(request), system=ENRICHMENT_SYSTEM_PROMPT, model=self.model
        )
        logger.info(
            f"Enrichment for step '{request.step_id}' returned {len(data)} key(s) "
            f"({usage.input_tokens} in / {usage.output_tokens} out tokens)"
        )
        return data
