"""Command-line interface for the ReAlign intelligence core.

Exit codes:
  0: Success
  1: The command ran but reported a problem (unhealthy provider)
  2: Cannot run (unreadable or invalid configuration or input)
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from realign import __version__
from realign.core.config import RealignConfig
from realign.core.errors import ConfigError, ModelConfigurationError, PatternError
from realign.core.logging import configure_logging
from realign.learning.cases import InMemoryCaseRepository, load_cases_json
from realign.learning.models import Pattern
from realign.services import IntelligenceServices, build_services

console = Console()

app = typer.Typer(
    name="realign",
    help="Model orchestration, pattern discovery and continuous learning",
    add_completion=False,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to YAML configuration (defaults to a fully offline setup)",
        exists=True,
        readable=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ReAlign intelligence v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="REALIGN_LOG_LEVEL",
        ),
    ] = "WARNING",
) -> None:
    """ReAlign intelligence core."""
    level = log_level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        console.print(f"[red]Invalid log level:[/red] {log_level}")
        raise typer.Exit(2)
    configure_logging(level=level, format="console")  # type: ignore[arg-type]


def _load_config(path: Path | None) -> RealignConfig:
    if path is None:
        return RealignConfig()
    try:
        return RealignConfig.from_yaml(path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from None


def _build(
    config: RealignConfig, cases: InMemoryCaseRepository | None = None
) -> IntelligenceServices:
    try:
        return build_services(config, cases=cases)
    except ModelConfigurationError as e:
        console.print(f"[red]Model configuration error:[/red] {e}")
        raise typer.Exit(2) from None


@app.command("validate-config")
def validate_config(
    config_file: Path = typer.Argument(
        ...,
        help="Path to YAML configuration file",
        exists=True,
        readable=True,
    ),
) -> None:
    """Validate a configuration file and summarize the model setup."""
    config = _load_config(config_file)
    services = _build(config)

    console.print("[green]✓[/green] Configuration valid")
    table = Table(title="Configured Models")
    table.add_column("Task", style="cyan")
    table.add_column("Role", style="yellow")
    table.add_column("Model", style="bold")
    table.add_column("Provider")
    for model in services.orchestrator.get_available_models():
        table.add_row(model.kind.value, model.role, model.name, model.provider)
    console.print(table)
    asyncio.run(services.close())


def _pattern_row(pattern: Pattern) -> tuple[str, ...]:
    conf = pattern.confidence
    conf_color = "green" if conf > 0.8 else "yellow" if conf > 0.6 else "red"
    return (
        pattern.id[-12:],
        pattern.type.value,
        str(pattern.occurrences),
        f"[{conf_color}]{conf:.2f}[/{conf_color}]",
        f"{pattern.success_rate:.0%}",
        f"{pattern.predictive_power:.2f}",
        pattern.description,
    )


@app.command()
def discover(
    cases_file: Path = typer.Argument(
        ...,
        help="JSON array of labeled cases",
        exists=True,
        readable=True,
    ),
    category: str = typer.Option(..., "--category", "-k", help="Case category to analyze"),
    min_confidence: float | None = typer.Option(
        None,
        "--min-confidence",
        "-m",
        min=0.0,
        max=1.0,
        help="Confidence floor for returned patterns",
    ),
    config_file: ConfigOption = None,
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Discover validated success patterns in labeled case history.

    Examples:
        realign discover cases.json --category conversation
        realign discover cases.json -k document_processing --min-confidence 0.7 --json
    """
    config = _load_config(config_file)
    try:
        cases = load_cases_json(cases_file)
    except ConfigError as e:
        console.print(f"[red]Cannot load cases:[/red] {e}")
        raise typer.Exit(2) from None

    async def _run() -> list[Pattern]:
        repository = InMemoryCaseRepository()
        await repository.extend(cases)
        services = _build(config, repository)
        try:
            return await services.recognition.identify_success_patterns(category, min_confidence)
        finally:
            await services.close()

    try:
        patterns = asyncio.run(_run())
    except PatternError as e:
        console.print(f"[red]Pattern analysis failed:[/red] {e}")
        raise typer.Exit(1) from None

    if json_output:
        output = [
            {
                "id": p.id,
                "type": p.type.value,
                "description": p.description,
                "occurrences": p.occurrences,
                "confidence": round(p.confidence, 3),
                "success_rate": round(p.success_rate, 3),
                "predictive_power": round(p.predictive_power, 3),
                "tags": p.tags,
            }
            for p in patterns
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    if not patterns:
        console.print(f"[dim]No validated patterns for category '{category}'.[/dim]")
        return

    table = Table(title=f"Success Patterns: {category}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="yellow")
    table.add_column("Cases", justify="right")
    table.add_column("Conf", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Power", justify="right")
    table.add_column("Description")
    for pattern in patterns:
        table.add_row(*_pattern_row(pattern))
    console.print(table)
    console.print(f"\n[dim]Showing {len(patterns)} pattern(s)[/dim]")


@app.command()
def health(config_file: ConfigOption = None) -> None:
    """Probe every configured model provider and report its status."""
    config = _load_config(config_file)
    services = _build(config)

    async def _run():
        try:
            return await services.orchestrator.check_health()
        finally:
            await services.close()

    report = asyncio.run(_run())

    status_colors = {"operational": "green", "degraded": "yellow", "down": "red"}
    table = Table(title="Provider Health")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Error", style="dim")
    for name, service in report.services.items():
        color = status_colors[service.status]
        latency = f"{service.latency_ms:.0f}ms" if service.latency_ms is not None else "-"
        table.add_row(
            name, f"[{color}]{service.status}[/{color}]", latency, service.error or ""
        )
    console.print(table)

    if not report.healthy:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
