"""Run command: interactive terminal rendering of a flow.

A thin adapter over FlowEngine. Prompts run in a worker thread so the
event loop keeps driving prefetches and enrichment while the user types.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer
from rich.logging import RichHandler

from ...core.models import (
    DynamicStepState,
    EnrichmentStatus,
    FieldSpec,
    FieldType,
    FlowPhase,
    StepSpec,
    VerificationStatus,
)
from ...core.providers import close_providers
from ...flow import FlowEngine
from ...services import (
    LLMDynamicFieldService,
    LLMEnrichmentService,
    LocalSubmissionService,
    VerificationTokenStore,
)
from ...utils.values import is_empty_value
from ..app import app, console, get_json_mode
from ..utils import ExitCode, Output, load_template

POLL_INTERVAL = 0.25


def setup_logging(verbose: bool = False, debug: bool = False):
    """Configure logging for an interactive run."""
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
        force=True,
    )

    for name in ["smartflow.flow", "smartflow.services"]:
        logging.getLogger(name).setLevel(level)
    # SDK transports are noisy below WARNING
    for name in ["httpx", "httpcore", "openai", "anthropic"]:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# =============================================================================
# Prompts (run in a worker thread)
# =============================================================================


def _coerce(field: FieldSpec, raw: str) -> Any:
    if raw == "":
        return None
    if field.type in (FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENTAGE):
        try:
            number = float(raw.replace(",", ""))
        except ValueError:
            return raw
        return int(number) if number.is_integer() else number
    return raw


def ask_field(field: FieldSpec, current: Any) -> Any:
    """Prompt for one field's value."""
    label = field.label + (" [red]*[/red]" if field.required else "")
    console.print(f"[bold]{label}[/bold]")
    if field.help_text:
        console.print(f"  [dim]{field.help_text}[/dim]")

    if field.type == FieldType.CHECKBOX:
        return typer.confirm("  Yes?", default=bool(current))

    if field.type == FieldType.SELECT and field.options:
        for i, opt in enumerate(field.options, 1):
            marker = " [dim](current)[/dim]" if opt == current else ""
            console.print(f"  [{i}] {opt}{marker}")
        default_idx = field.options.index(current) + 1 if current in field.options else ""
        choice = typer.prompt(
            f"  Select [1-{len(field.options)}]",
            default=str(default_idx),
            show_default=False,
        )
        try:
            idx = int(choice) - 1
            if 0 <= idx < len(field.options):
                return field.options[idx]
        except ValueError:
            pass
        # Typed text instead of a number, use as-is
        return choice or None

    default = "" if is_empty_value(current) else str(current)
    raw = typer.prompt(
        f"  {field.placeholder or 'Value'}", default=default, show_default=bool(default)
    )
    return _coerce(field, raw.strip())


def ask_collection(step: StepSpec, current: Any) -> list[dict[str, Any]]:
    """Prompt for the entries of a collection step."""
    spec = step.collection
    entries = list(current) if isinstance(current, list) else []
    console.print(f"[bold]{spec.item_label} entries:[/bold] {len(entries)}")
    while spec.max_items is None or len(entries) < spec.max_items:
        if not typer.confirm(f"  Add a {spec.item_label.lower()}?", default=False):
            break
        entry = {item.name: ask_field(item, None) for item in spec.item_fields}
        entries.append(entry)
    return entries


def ask_action(choices: dict[str, str], default: str) -> str:
    hint = "  ".join(f"[{k}] {label}" for k, label in choices.items())
    choice = typer.prompt(hint, default=default, show_default=False).strip().lower()
    return choice if choice in choices else default


# =============================================================================
# Rendering loop
# =============================================================================


async def _wait_for_step(engine: FlowEngine, step: StepSpec) -> None:
    """Block while the current dynamic step is loading or not started."""
    waiting = (DynamicStepState.LOADING, DynamicStepState.IDLE)
    with console.status(f"[cyan]Preparing questions for {step.title}...[/cyan]"):
        while engine.step_status(step.id) in waiting:
            current = engine.navigator.current_step
            if current is None or current.id != step.id:
                return
            await asyncio.sleep(POLL_INTERVAL)


def _render_banners(engine: FlowEngine) -> None:
    snap = engine.snapshot()
    if snap["notice"]:
        console.print(f"[yellow]⚠[/yellow] {snap['notice']}")
        engine.navigator.notice = None
    indicator = engine.enrichment.indicator
    if indicator.status == EnrichmentStatus.RUNNING:
        console.print(f"[dim]Analyzing answers from {indicator.step_title}...[/dim]")
    elif indicator.status == EnrichmentStatus.ERROR:
        console.print(f"[yellow]⚠[/yellow] {indicator.message}")


async def _fill_step(engine: FlowEngine, step: StepSpec) -> None:
    nav = engine.navigator
    if engine.standards.has_standards(step):
        apply = await asyncio.to_thread(
            typer.confirm, "Apply recommended standard values?", default=True
        )
        if apply:
            result = engine.apply_standards()
            if result and result.applied:
                console.print(f"[green]✓[/green] Filled {', '.join(result.applied)}")

    # Visible fields can change as answers come in, so re-derive each time
    asked: set[str] = set()
    while True:
        pending = [f for f in nav.visible_fields_for(step) if f.name not in asked]
        if not pending:
            break
        field = pending[0]
        error = engine.state.errors.get(field.name)
        if error:
            console.print(f"[red]{error}[/red]")
        value = await asyncio.to_thread(
            ask_field, field, engine.state.values.get(field.name)
        )
        engine.set_value(field.name, value)
        asked.add(field.name)

    if step.collection is not None:
        entries = await asyncio.to_thread(
            ask_collection, step, engine.state.values.get(step.collection.field_name)
        )
        engine.set_value(step.collection.field_name, entries)


async def _submit(engine: FlowEngine) -> None:
    nav = engine.navigator
    with console.status("[cyan]Submitting...[/cyan]"):
        await engine.submit()
    if nav.phase == FlowPhase.COMPLETE:
        return
    if nav.submission_error:
        console.print(f"[red]✗[/red] {nav.submission_error}")
    if nav.verification == VerificationStatus.EXPIRED:
        token = await asyncio.to_thread(typer.prompt, "Verification token")
        engine.reverify(token)


async def drive_flow(engine: FlowEngine, token: str) -> bool:
    """Run the flow to completion. Returns False if the user quit."""
    nav = engine.navigator
    engine.begin(token)

    while nav.phase != FlowPhase.COMPLETE:
        step = nav.current_step
        if step is None:
            return False

        visible = nav.visible
        console.print()
        console.rule(f"Step {nav.current_index + 1}/{len(visible)}: {step.title}")
        if step.description:
            console.print(f"[dim]{step.description}[/dim]")
        _render_banners(engine)

        if step.is_dynamic:
            status = engine.step_status(step.id)
            if status in (DynamicStepState.LOADING, DynamicStepState.IDLE):
                await _wait_for_step(engine, step)
                continue
            if status == DynamicStepState.FAILED:
                console.print(f"[red]✗[/red] {engine.prefetch.failed.get(step.id)}")
                choice = await asyncio.to_thread(
                    ask_action, {"r": "Retry", "s": "Skip", "q": "Quit"}, "r"
                )
                # The grace timer may have moved us on while waiting
                if nav.current_step is None or nav.current_step.id != step.id:
                    continue
                if choice == "r":
                    engine.retry_step(step.id)
                elif choice == "s":
                    if not engine.skip():
                        console.print("[yellow]⚠[/yellow] Nothing after this step to skip to")
                else:
                    return False
                continue
            jurisdiction = engine.state.jurisdiction_name(step.id)
            if jurisdiction:
                console.print(f"[dim]Tailored to {jurisdiction}[/dim]")

        await _fill_step(engine, step)

        if nav.is_last_step:
            choices = {"s": "Submit", "b": "Back", "q": "Quit"}
            default = "s"
        else:
            choices = {"n": "Next", "b": "Back", "q": "Quit"}
            default = "n"
        if not nav.can_go_back:
            choices.pop("b")
        choice = await asyncio.to_thread(ask_action, choices, default)

        if choice == "q":
            return False
        if choice == "b":
            nav.retreat()
        elif choice == "s":
            await _submit(engine)
        elif not engine.advance():
            for message in engine.state.errors.values():
                console.print(f"[red]✗[/red] {message}")

    return True


async def _run(template, output: Path, token: str) -> tuple[bool, Any]:
    token_store = VerificationTokenStore()
    engine = FlowEngine(
        template,
        dynamic_service=LLMDynamicFieldService(),
        enrichment_service=LLMEnrichmentService(),
        submission_service=LocalSubmissionService(
            output, template_id=template.id, token_store=token_store
        ),
        token_store=token_store,
    )
    try:
        finished = await drive_flow(engine, token)
        return finished, engine.navigator.result
    finally:
        await engine.aclose()
        await close_providers()


@app.command("run")
def run_command(
    template_file: Path = typer.Argument(..., help="Template YAML file"),
    output: Path = typer.Option(
        Path("answers.json"), "--output", "-o", help="Where to write the answers"
    ),
    token: str = typer.Option(
        "local", "--token", help="Verification token passed to submission"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show lifecycle logs"),
    debug: bool = typer.Option(False, "--debug", help="Show debug logs"),
):
    """Walk through a flow in the terminal.

    Dynamic steps are generated with the strong model and enrichment runs
    with the fast model (see `smartflow config show`). Answers are written
    to --output on submit.

    EXAMPLES:
        smartflow run nda.yaml
        smartflow run nda.yaml -o out/nda-answers.json --verbose
    """
    out = Output(console=console, json_mode=get_json_mode())
    if out.json_mode:
        out.error("run is interactive and has no JSON mode", exit_code=ExitCode.FLOW_ERROR)
        raise typer.Exit(out.finish())

    setup_logging(verbose, debug)

    template = load_template(template_file, out)
    if template is None:
        raise typer.Exit(out.finish())

    try:
        finished, result = asyncio.run(_run(template, output, token))
    except (KeyboardInterrupt, typer.Abort):
        console.print()
        out.error("Cancelled", exit_code=ExitCode.USER_CANCELLED)
        raise typer.Exit(out.finish())

    if not finished:
        out.error("Flow ended before submission", exit_code=ExitCode.USER_CANCELLED)
    else:
        path = result.metadata.get("path") if result else output
        out.success(f"Answers written to {path}")
    raise typer.Exit(out.finish())
