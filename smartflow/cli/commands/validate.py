"""Validate command for flow templates."""

from pathlib import Path

import typer

from ...flow.template_validator import validate_template
from ..app import app, console, get_json_mode
from ..utils import ExitCode, Output, format_validation_for_json, load_template


@app.command("validate")
def validate_command(
    template_file: Path = typer.Argument(..., help="Template YAML file to validate"),
    strict: bool = typer.Option(
        False, "--strict", help="Treat warnings as errors"
    ),
):
    """Validate a flow template.

    Checks the schema first, then semantic problems: duplicate field names,
    conditions on unknown fields, prompt variables nothing produces, dynamic
    steps without a prompt and collection steps without a definition.

    EXIT CODES:
        0 = Success (valid template)
        1 = Validation error
        3 = File not found

    EXAMPLES:
        smartflow validate nda.yaml
        smartflow validate nda.yaml --strict
        smartflow --json validate nda.yaml
    """
    out = Output(console=console, json_mode=get_json_mode())

    template = load_template(template_file, out)
    if template is None:
        raise typer.Exit(out.finish())

    result = validate_template(template)

    if out.json_mode:
        out.set_data("template", str(template_file))
        out.set_data("validation", format_validation_for_json(result))
    else:
        out.success(
            f"Loaded [bold]{template.title}[/bold] ({len(template.steps)} steps)"
        )
        for issue in result.errors:
            console.print(f"[red]✗[/red] {issue}")
            if issue.suggestion:
                console.print(f"  [dim]→ {issue.suggestion}[/dim]")
        for issue in result.warnings:
            console.print(f"[yellow]⚠[/yellow] {issue}")
            if issue.suggestion:
                console.print(f"  [dim]→ {issue.suggestion}[/dim]")

    failed = not result.valid or (strict and result.warnings)
    if failed:
        out.error(
            f"Template invalid: {len(result.errors)} error(s), "
            f"{len(result.warnings)} warning(s)",
            exit_code=ExitCode.VALIDATION_ERROR,
        )
    elif result.warnings:
        out.text(
            f"[green]✓[/green] Template valid with {len(result.warnings)} warning(s)"
        )
    else:
        out.text("[green]✓[/green] Template valid")

    raise typer.Exit(out.finish())
