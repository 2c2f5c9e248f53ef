"""Flow template models and YAML I/O for SmartFlow.

A TemplateSpec is the complete definition of one guided intake flow: an
ordered list of steps, each holding fixed fields, a prompt for generated
fields, or a repeatable sub-record schema.

This module contains:
- Conditions: ConditionOperator, ConditionRule, ConditionGroup
- Fields: FieldType, FieldSpec
- Steps: StepKind, CollectionSpec, StepSpec
- Template: TemplateSpec with YAML I/O
- Generated content: GeneratedField, GeneratedFields
"""

from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Visibility Conditions
# =============================================================================


class ConditionOperator(str, Enum):
    """Comparison operators available to a condition rule."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    IN = "in"
    NOT_IN = "notIn"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"


class ConditionRule(BaseModel):
    """One comparison of a collected value against a literal."""

    field: str = Field(description="Field name to check (dot notation for nested)")
    # Kept as a plain string so unknown operators load and are reported at
    # evaluation time instead of rejecting the whole template.
    operator: str = Field(description="One of ConditionOperator values")
    value: Any = Field(default=None, description="Literal or list of literals")


class ConditionGroup(BaseModel):
    """Rules combined with AND or OR."""

    operator: Literal["and", "or"] = "and"
    rules: list[ConditionRule] = Field(default_factory=list)


# Predicate as authored: structured group, its JSON encoding, or a boolean
# expression string such as "jurisdiction == 'CA'".
Conditions = ConditionGroup | str | None


# =============================================================================
# Fields
# =============================================================================


class FieldType(str, Enum):
    """Input types a field can declare."""

    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    CHECKBOX = "checkbox"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    PHONE = "phone"
    URL = "url"
    ADDRESS = "address"
    PARTY = "party"


class FieldSpec(BaseModel):
    """A single input on a standard step or inside a collection entry."""

    name: str = Field(description="Unique key into the value map")
    label: str = Field(description="Human-readable label")
    type: FieldType = Field(default=FieldType.TEXT)
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    options: list[str] = Field(
        default_factory=list, description="Choices for select fields"
    )
    conditions: Conditions = Field(
        default=None, description="Visibility predicate; absent means always visible"
    )
    suggestion_key: str | None = Field(
        default=None,
        description="Dotted path into the enrichment context holding a recommended value",
    )
    order: int = 0

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("field name must not be empty")
        return v.strip()


# =============================================================================
# Steps
# =============================================================================


class StepKind(str, Enum):
    """How a step gets its fields."""

    STANDARD = "standard"
    DYNAMIC = "dynamic"
    COLLECTION = "collection"


class CollectionSpec(BaseModel):
    """Schema of a repeatable sub-record list (e.g. additional signatories)."""

    field_name: str = Field(description="Value-map key holding the list of entries")
    item_label: str = Field(default="Entry", description="Singular label used in messages")
    item_fields: list[FieldSpec] = Field(default_factory=list)
    min_items: int = Field(default=0, ge=0)
    max_items: int | None = Field(default=None, ge=1)


class StepSpec(BaseModel):
    """One screen of the flow."""

    id: str
    title: str
    description: str = ""
    order: int = 0
    kind: StepKind = StepKind.STANDARD
    fields: list[FieldSpec] = Field(default_factory=list)
    conditions: Conditions = Field(
        default=None, description="Step-level visibility predicate"
    )
    dynamic_prompt: str | None = Field(
        default=None, description="Prompt template used to generate this step's fields"
    )
    dynamic_max_fields: int | None = Field(
        default=None, ge=1, le=20, description="Cap on generated fields; engine default when unset"
    )
    enrichment_prompt: str | None = Field(
        default=None, description="Prompt run in the background after leaving this step"
    )
    enrichment_output_schema: dict[str, Any] | None = Field(
        default=None, description="Shape hint for the enrichment result"
    )
    collection: CollectionSpec | None = None

    @field_validator("fields")
    @classmethod
    def sort_fields(cls, v: list[FieldSpec]) -> list[FieldSpec]:
        return sorted(v, key=lambda f: f.order)

    @property
    def is_dynamic(self) -> bool:
        return self.kind == StepKind.DYNAMIC

    def declared_outputs(self) -> list[str]:
        """Keys this step's enrichment is declared to produce."""
        schema = self.enrichment_output_schema
        if not schema:
            return []
        props = schema.get("properties")
        if isinstance(props, dict):
            return list(props.keys())
        return [k for k in schema.keys() if k not in ("type", "required")]


# =============================================================================
# Template
# =============================================================================


class TemplateSpec(BaseModel):
    """Complete flow definition."""

    id: str
    slug: str = ""
    title: str
    description: str = ""
    steps: list[StepSpec] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def sort_steps(cls, v: list[StepSpec]) -> list[StepSpec]:
        return sorted(v, key=lambda s: s.order)

    @model_validator(mode="after")
    def unique_step_ids(self) -> "TemplateSpec":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id!r}")
            seen.add(step.id)
        return self

    def step_by_id(self, step_id: str) -> StepSpec | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for i, step in enumerate(self.steps):
            if step.id == step_id:
                return i
        raise KeyError(step_id)

    def field_owner(self, name: str) -> tuple[int, StepSpec, FieldSpec] | None:
        """Locate the standard field named ``name`` and its owning step."""
        for i, step in enumerate(self.steps):
            for field in step.fields:
                if field.name == name:
                    return i, step, field
        return None

    def to_yaml(self, path: Path | str) -> None:
        """Save template to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json", exclude_none=True)
        with open(path, "w") as f:
            yaml.dump(
                data, f, default_flow_style=False, sort_keys=False, allow_unicode=True
            )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "TemplateSpec":
        """Load template from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError("Template YAML must parse to an object")
        return cls.model_validate(data)


# =============================================================================
# Generated content
# =============================================================================


class GeneratedField(BaseModel):
    """A field produced by the dynamic-field service."""

    id: str
    name: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    options: list[str] = Field(default_factory=list)
    standard_value: Any = Field(
        default=None, description="Recommended value offered by 'apply standards'"
    )

    def as_field_spec(self) -> FieldSpec:
        return FieldSpec(
            name=self.name,
            label=self.label,
            type=self.type,
            required=self.required,
            placeholder=self.placeholder,
            help_text=self.help_text,
            options=list(self.options),
        )


class GeneratedFields(BaseModel):
    """Response of one dynamic-field generation call."""

    fields: list[GeneratedField] = Field(default_factory=list)
    jurisdiction_name: str | None = None
    reasoning: str | None = None
