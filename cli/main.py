"""
Operix - Main CLI Application

Command-line interface for running and inspecting the server.
"""
import asyncio
import dataclasses
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from api.middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from api.routes import register_builtin_routes
from config import Config, load_config
from core.application import Application
from core.config_validator import validate_app_config
from observability import setup_observability, shutdown_observability

# Initialize app
app = typer.Typer(
    name="operix",
    help="Operix - HTTP server and lifecycle orchestrator",
    add_completion=False,
)

console = Console()


def build_application(config: Config, configure_logging: bool = True) -> Application:
    """Default composition: built-in middleware, built-in routes and the api module."""
    application = Application(config, configure_logging=configure_logging)
    application.use(SecurityHeadersMiddleware())
    application.use(RateLimitMiddleware(config.rate_limit))
    application.use(RequestLoggingMiddleware())
    register_builtin_routes(application.router, config)
    application.add_api_module()
    return application


def _load(env_file: Optional[Path]) -> Config:
    if env_file is not None and not env_file.exists():
        console.print(f"[red]Error: env file not found: {env_file}[/red]")
        raise typer.Exit(1)
    return load_config(str(env_file) if env_file else None)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Override HOST"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Override PORT"),
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="Load variables from this .env file"),
):
    """Start the HTTP server and run until SIGTERM/SIGINT."""
    config = _load(env_file)
    overrides = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if overrides:
        config.server = dataclasses.replace(config.server, **overrides)

    console.print(Panel.fit(
        f"[bold blue]{config.app_name} {config.app_version}[/bold blue]\n"
        f"{config.env.value} - http://{config.server.host}:{config.server.port}",
        border_style="blue",
    ))

    setup_observability(config.logging, config.tracing)
    try:
        exit_code = asyncio.run(build_application(config).run())
    finally:
        shutdown_observability()
    raise typer.Exit(exit_code)


@app.command()
def routes(
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="Load variables from this .env file"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Only routes with this tag"),
):
    """List the registered routes."""
    application = build_application(_load(env_file), configure_logging=False)
    router = application.router
    selected = router.get_routes_by_tag(tag) if tag else router.get_all_routes()

    table = Table(title="Routes")
    table.add_column("Method", style="cyan")
    table.add_column("Path", style="green")
    table.add_column("Tags", style="yellow")
    table.add_column("Description")

    for route in selected:
        table.add_row(
            route.method.value,
            route.pattern,
            ", ".join(route.options.tags),
            route.options.description,
        )

    console.print(table)
    console.print(f"\n{len(selected)} route(s)")


@app.command()
def modules(
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="Load variables from this .env file"),
):
    """Show modules in initialization order."""
    application = build_application(_load(env_file), configure_logging=False)
    manager = application.modules

    table = Table(title="Module Initialization Order")
    table.add_column("#", style="dim")
    table.add_column("Module", style="cyan")
    table.add_column("Version")
    table.add_column("Depends On", style="yellow")
    table.add_column("Enabled", style="green")

    for position, name in enumerate(manager.initialization_order(), start=1):
        module = manager.get(name)
        table.add_row(
            str(position),
            name,
            module.version,
            ", ".join(module.dependencies) or "-",
            "yes" if module.is_enabled() else "[red]no[/red]",
        )

    console.print(table)


@app.command("check-config")
def check_config(
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="Load variables from this .env file"),
    as_json: bool = typer.Option(False, "--json", help="Print the validation result as JSON"),
):
    """Validate configuration and required environment variables."""
    config = _load(env_file)
    result = validate_app_config(config)

    if as_json:
        console.print_json(json.dumps({"config": config.to_dict(), "validation": result.to_dict()}))
    else:
        table = Table(title="Configuration Check")
        table.add_column("Level", style="cyan")
        table.add_column("Field", style="yellow")
        table.add_column("Message")
        for issue in result.issues:
            table.add_row("[red]error[/red]", issue.field or "-", issue.message)
        for issue in result.warnings:
            table.add_row("[yellow]warning[/yellow]", issue.field or "-", issue.message)
        if result.issues or result.warnings:
            console.print(table)

    if not result.valid:
        console.print(f"[red]Configuration invalid: {len(result.issues)} error(s)[/red]")
        raise typer.Exit(1)
    console.print("[green]Configuration OK[/green]")


@app.command()
def openapi(
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="Load variables from this .env file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the document to this file"),
):
    """Print the OpenAPI document for the registered routes."""
    config = _load(env_file)
    application = build_application(config, configure_logging=False)
    document = application.router.generate_spec(title=config.app_name, version=config.app_version)

    if output:
        output.write_text(json.dumps(document, indent=2))
        console.print(f"[green]OpenAPI document saved to {output}[/green]")
    else:
        console.print_json(json.dumps(document))


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
