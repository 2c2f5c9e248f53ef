"""Inspect command: visibility and prompt settlement for a template."""

import json
from pathlib import Path
from typing import Any

import typer

from ...config import get_config
from ...flow.resolution import unresolved_variables
from ...flow.visibility import is_step_visible, visible_fields
from ...utils.templates import extract_prompt_variables
from ..app import app, console, get_json_mode
from ..utils import ExitCode, Output, load_template


def parse_assignments(assignments: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs. Values are read as JSON when possible."""
    values: dict[str, Any] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        try:
            values[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            values[key.strip()] = raw
    return values


@app.command("inspect")
def inspect_command(
    template_file: Path = typer.Argument(..., help="Template YAML file"),
    value: list[str] = typer.Option(
        [], "--value", "-v", help="Field value as key=value (repeatable)"
    ),
    at: str | None = typer.Option(
        None, "--at", help="Step id the user is on (default: first step)"
    ),
):
    """Show which steps and fields are visible under given values.

    For each dynamic step, lists the variables its prompt references and
    whether each is settled with the user on the --at step.

    EXAMPLES:
        smartflow inspect nda.yaml
        smartflow inspect nda.yaml -v jurisdiction=CA -v hasEmployees=true
        smartflow inspect nda.yaml -v purpose=hiring --at review
    """
    out = Output(console=console, json_mode=get_json_mode())

    template = load_template(template_file, out)
    if template is None:
        raise typer.Exit(out.finish())

    values = parse_assignments(value)
    current_index = 0
    if at is not None:
        try:
            current_index = template.index_of(at)
        except KeyError:
            out.error(f"Unknown step id: {at}", exit_code=ExitCode.VALIDATION_ERROR)
            raise typer.Exit(out.finish())

    step_rows = []
    for i, step in enumerate(template.steps):
        shown = is_step_visible(step, values)
        n_fields = len(visible_fields(step, values)) if shown else 0
        step_rows.append(
            [
                str(i),
                step.id,
                step.title,
                step.kind.value,
                "yes" if shown else "no",
                f"{n_fields}/{len(step.fields)}",
                "yes" if step.enrichment_prompt else "",
            ]
        )
    out.table(
        "Steps",
        ["#", "Id", "Title", "Kind", "Visible", "Fields", "Enriches"],
        step_rows,
    )

    fail_open = get_config().flow.fail_open
    warned: set[str] = set()
    settlement_rows = []
    for step in template.steps:
        if not step.is_dynamic:
            continue
        waiting = unresolved_variables(
            step.dynamic_prompt,
            values,
            {},
            template.steps,
            current_index,
            fail_open=fail_open,
            warned=warned,
        )
        for name in extract_prompt_variables(step.dynamic_prompt):
            settlement_rows.append(
                [step.id, name, "waiting" if name in waiting else "settled"]
            )
    if settlement_rows:
        out.blank()
        out.table(
            "Dynamic prompt variables",
            ["Step", "Variable", "State"],
            settlement_rows,
            data_key="variables",
        )

    out.success(
        f"Inspected {template.id} at step '{template.steps[current_index].id}'"
        if template.steps
        else f"Inspected {template.id}",
        template=template.id,
        values=values,
    )
    raise typer.Exit(out.finish())
