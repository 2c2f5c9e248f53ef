"""Config command for viewing and managing smartflow configuration."""

from dataclasses import fields

import typer

from ..app import app, console, get_json_mode
from ..utils import Output
from ...config import (
    CONFIG_FILE,
    CustomProviderConfig,
    FlowConfig,
    coerce_flow_value,
    get_api_key_for_provider,
    get_config,
    reset_config,
)


VALID_KEYS = {"models.fast", "models.strong"} | {
    f"flow.{f.name}" for f in fields(FlowConfig)
}

KEY_PROVIDERS = ["openai", "anthropic", "openrouter", "deepseek", "together", "groq"]


@app.command("config")
def config_command(
    action: str = typer.Argument(
        ...,
        help="Action: show, set, reset",
    ),
    key: str | None = typer.Argument(
        None,
        help="Config key (e.g. models.fast, flow.prefetch_timeout)",
    ),
    value: str | None = typer.Argument(
        None,
        help="Value to set",
    ),
):
    """View or modify smartflow configuration.

    Examples:
        smartflow config show
        smartflow config set models.fast openai/gpt-5-mini
        smartflow config set models.strong anthropic/claude-sonnet-4.5
        smartflow config set flow.prefetch_timeout 20
        smartflow config set flow.fail_open false
        smartflow config reset
    """
    if action == "show":
        _show_config()
    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage:[/red] smartflow config set <key> <value>")
            console.print()
            console.print("Available keys:")
            for k in sorted(VALID_KEYS):
                console.print(f"  {k}")
            raise typer.Exit(1)
        _set_config(key, value)
    elif action == "reset":
        _reset_config()
    else:
        console.print(f"[red]Unknown action:[/red] {action}")
        console.print("Valid actions: show, set, reset")
        raise typer.Exit(1)


def _show_config():
    """Display current resolved configuration."""
    config = get_config()

    if get_json_mode():
        out = Output(console=console, json_mode=True)
        out.set_data("config", config.to_dict())
        out.set_data(
            "api_keys",
            {p: bool(get_api_key_for_provider(p, config.providers)) for p in KEY_PROVIDERS},
        )
        out.set_data("config_file", str(CONFIG_FILE))
        raise typer.Exit(out.finish())

    console.print()
    console.print("[bold]SmartFlow Configuration[/bold]")
    console.print("─" * 40)

    console.print()
    console.print("[bold cyan]Models[/bold cyan]")
    console.print(f"  fast   = {config.models.fast}  [dim](enrichment)[/dim]")
    console.print(f"  strong = {config.models.strong}  [dim](dynamic fields)[/dim]")

    console.print()
    console.print("[bold cyan]Flow[/bold cyan]")
    for f in fields(FlowConfig):
        console.print(f"  {f.name:<26} = {getattr(config.flow, f.name)}")

    if config.providers:
        console.print()
        console.print("[bold cyan]Custom Providers[/bold cyan]")
        for name, provider_cfg in config.providers.items():
            console.print(f"  {name}:")
            console.print(f"    base_url    = {provider_cfg.base_url}")
            if provider_cfg.api_key_env:
                console.print(f"    api_key_env = {provider_cfg.api_key_env}")

    console.print()
    console.print("[bold cyan]API Keys[/bold cyan] (from env vars)")
    for provider in KEY_PROVIDERS:
        _show_key_status(provider, f"{provider.upper()}_API_KEY")

    console.print()
    if CONFIG_FILE.exists():
        console.print(f"Config file: {CONFIG_FILE}")
    else:
        console.print(f"Config file: [dim]not created yet[/dim] ({CONFIG_FILE})")
    console.print()


def _show_key_status(provider: str, env_var_label: str):
    """Show whether an API key is configured."""
    key = get_api_key_for_provider(provider)
    if key:
        masked = key[:8] + "..." + key[-4:] if len(key) > 16 else "***"
        console.print(f"  {env_var_label}: [green]{masked}[/green]")
    else:
        console.print(f"  {env_var_label}: [dim]not set[/dim]")


def _set_config(key: str, value: str):
    """Set a config value and save."""
    # Allow dynamic provider keys like providers.mycompany.base_url
    is_provider_key = key.startswith("providers.")
    if key not in VALID_KEYS and not is_provider_key:
        console.print(f"[red]Unknown key:[/red] {key}")
        console.print()
        console.print("Available keys:")
        for k in sorted(VALID_KEYS):
            console.print(f"  {k}")
        console.print("  providers.<name>.base_url")
        console.print("  providers.<name>.api_key_env")
        raise typer.Exit(1)

    # Load current config (or defaults if no file)
    config = get_config()

    if is_provider_key:
        parts = key.split(".", 2)
        if len(parts) != 3 or parts[2] not in ("base_url", "api_key_env"):
            console.print(
                f"[red]Invalid provider key:[/red] {key}\n"
                "Expected: providers.<name>.base_url or providers.<name>.api_key_env"
            )
            raise typer.Exit(1)
        provider_name = parts[1]
        if provider_name not in config.providers:
            config.providers[provider_name] = CustomProviderConfig()
        setattr(config.providers[provider_name], parts[2], value)
    else:
        zone, field_name = key.split(".", 1)
        if zone == "models":
            if "/" not in value:
                console.print(
                    f"[red]Invalid model string:[/red] {value} "
                    "(expected provider/model)"
                )
                raise typer.Exit(1)
            setattr(config.models, field_name, value)
        else:
            try:
                coerced = coerce_flow_value(field_name, value)
            except ValueError:
                console.print(f"[red]Invalid value for {key}:[/red] {value}")
                raise typer.Exit(1)
            setattr(config.flow, field_name, coerced)

    config.save()
    reset_config()  # Clear cached singleton so next get_config() reloads

    console.print(f"[green]✓[/green] Set {key} = {value}")
    console.print(f"  Saved to {CONFIG_FILE}")


def _reset_config():
    """Reset config to defaults."""
    if CONFIG_FILE.exists():
        CONFIG_FILE.unlink()
        reset_config()
        console.print("[green]✓[/green] Config reset to defaults")
        console.print(f"  Removed {CONFIG_FILE}")
    else:
        console.print("Config already at defaults (no config file exists)")
