"""
Command Line Interface for MDAP.

Usage:
    mdap execute "What is 17 * 23? Reply with the number only." --k 3
    mdap estimate --steps 10000 --success-rate 0.99
    mdap validate "Your LLM response here" --max-tokens 750
    mdap serve --port 8090
"""

import asyncio

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

app = typer.Typer(
    name="mdap",
    help="MDAP - make your AI agents actually reliable",
    add_completion=False,
)

console = Console()


@app.command()
def execute(
    prompt: str = typer.Argument(..., help="Prompt to run reliably"),
    k: int | None = typer.Option(None, "--k", "-k", min=1, help="Vote margin required to win"),
    max_samples: int | None = typer.Option(None, "--max-samples", "-n", min=1, help="Sample budget"),
    provider: str | None = typer.Option(None, "--provider", help="openai or anthropic"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name"),
    system: str | None = typer.Option(None, "--system", help="System prompt"),
    red_flags: list[str] | None = typer.Option(
        None, "--red-flag", "-r", help="Red flag rule, e.g. tooLong:750 (repeatable)"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
    debug: bool = typer.Option(False, "--debug", help="Log every sample"),
):
    """
    Execute a prompt with voting-based error correction.

    Exits with status 1 if the vote does not converge.

    Example:
        mdap execute "Capital of France? One word." --k 5 -r tooLong:50
    """
    from mdap.execute import ExecuteRequest

    try:
        request = ExecuteRequest(
            prompt=prompt,
            system=system,
            k=k,
            max_samples=max_samples,
            red_flags=red_flags or None,
            provider=provider,
            model=model,
            debug=debug,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    asyncio.run(_execute_async(request, output_json))


async def _execute_async(request, output_json: bool):
    """Async execution handler."""
    from mdap import execute as execution

    if output_json:
        try:
            result = await execution.execute_reliable(request)
        except Exception as e:
            console.print_json(data={"error": str(e)})
            raise typer.Exit(1) from None
        console.print_json(data=result.model_dump())
        if not result.converged:
            raise typer.Exit(1)
        return

    console.print()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Voting on samples...", total=None)
        try:
            result = await execution.execute_reliable(request)
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1) from None

    color = "green" if result.converged else "yellow"
    status = "✅ Converged" if result.converged else "⚠️ Did not converge"
    console.print(Panel.fit(f"[bold {color}]{status}[/bold {color}]", title="🗳️ MDAP"))
    console.print()
    console.print("[bold]Winner:[/bold]")
    console.print(result.winner, markup=False)
    console.print()

    table = Table(show_header=False, box=None)
    table.add_column("Label", style="bold")
    table.add_column("Value")
    table.add_row("Confidence", f"{result.confidence:.1%}")
    table.add_row("Samples", f"{result.total_samples} ({result.flagged_samples} flagged)")
    table.add_row("Candidates", str(len(result.votes)))
    table.add_row("Model", result.model or "-")
    table.add_row("Tokens", f"{result.usage.total_tokens:,}")
    table.add_row("Cost", f"${result.usage.estimated_cost:.4f}")
    console.print(table)

    if result.warning:
        console.print()
        console.print(f"[yellow]Warning: {result.warning}[/yellow]")

    if not result.converged:
        raise typer.Exit(1)


@app.command()
def estimate(
    steps: int = typer.Option(1000, "--steps", "-s", help="Number of steps in the workflow"),
    success_rate: float = typer.Option(0.99, "--success-rate", "-p", help="Per-step success rate"),
    target: float = typer.Option(0.95, "--target", "-t", help="Target overall reliability"),
    input_cost: float = typer.Option(0.5, "--input-cost", help="USD per 1M input tokens"),
    output_cost: float = typer.Option(1.5, "--output-cost", help="USD per 1M output tokens"),
    input_tokens: int = typer.Option(300, "--input-tokens", help="Average input tokens per call"),
    output_tokens: int = typer.Option(200, "--output-tokens", help="Average output tokens per call"),
):
    """
    Estimate cost for a multi-step workflow.

    Example:
        mdap estimate --steps 1000000 --success-rate 0.99
    """
    from mdap.cost import calculate_min_k, estimate_cost, format_cost_estimate
    from mdap.models import CostEstimateConfig

    console.print()
    console.print(
        Panel.fit(
            f"[bold blue]Steps:[/bold blue] {steps:,}\n"
            f"[bold blue]Success Rate:[/bold blue] {success_rate * 100:.1f}%\n"
            f"[bold blue]Target Reliability:[/bold blue] {target * 100:.1f}%\n"
            f"[bold blue]Input Cost:[/bold blue] ${input_cost}/1M tokens\n"
            f"[bold blue]Output Cost:[/bold blue] ${output_cost}/1M tokens",
            title="📊 MDAP Cost Estimation",
        )
    )
    console.print()

    try:
        result = estimate_cost(
            CostEstimateConfig(
                steps=steps,
                success_rate=success_rate,
                target_reliability=target,
                input_cost_per_million=input_cost,
                output_cost_per_million=output_cost,
                avg_input_tokens=input_tokens,
                avg_output_tokens=output_tokens,
            )
        )
        k_for_99 = calculate_min_k(steps, success_rate, 0.99)
        k_for_999 = calculate_min_k(steps, success_rate, 0.999)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    console.print("[bold]Results:[/bold]")
    for line in format_cost_estimate(result).splitlines():
        console.print(f"  {line}")
    console.print()

    console.print("[bold]K values for different reliability targets:[/bold]")
    console.print(f"  {target * 100:g}% reliability: k={result.k_required}")
    console.print(f"  99% reliability: k={k_for_99}")
    console.print(f"  99.9% reliability: k={k_for_999}")
    console.print()


@app.command()
def validate(
    response: str = typer.Argument(..., help="Response text to check"),
    max_tokens: int = typer.Option(750, "--max-tokens", help="Token limit for tooLong"),
    rules: str = typer.Option(
        "tooLong,emptyResponse", "--rules", help="Comma-separated rule names"
    ),
):
    """
    Check a response against red-flag rules.

    Exits with status 1 if any rule flags the response.

    Example:
        mdap validate '{"answer": 42}' --rules tooLong,invalidJson
    """
    from mdap.execute import estimate_tokens
    from mdap.red_flags import check_all, parse_rule_names

    parsed, rejected = parse_rule_names(rules.split(","), max_tokens=max_tokens)
    for name in rejected:
        console.print(f"[yellow]Unknown rule: {escape(name)}, skipping[/yellow]")

    console.print()
    console.print("[bold]🔍 MDAP Response Validation[/bold]")
    console.print()

    violations = []
    for name, flagged in check_all(response, parsed):
        status = "❌" if flagged else "✅"
        console.print(f"  {status} {name}", markup=False)
        if flagged:
            violations.append(name)

    console.print()
    console.print(f"Token estimate: ~{estimate_tokens(response)}")
    console.print(f"Response length: {len(response)} chars")
    console.print()

    if violations:
        console.print(f"[red]❌ Response flagged by: {escape(', '.join(violations))}[/red]")
        raise typer.Exit(1)
    console.print("[green]✅ Response passed all checks[/green]")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8090, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """
    Start the MDAP tool server.

    Example:
        mdap serve --port 8090
    """
    import uvicorn

    from mdap.api.server import create_app

    console.print()
    console.print(
        Panel.fit(
            f"[bold blue]Host:[/bold blue] {host}\n"
            f"[bold blue]Port:[/bold blue] {port}\n"
            f"[bold blue]Docs:[/bold blue] http://{host}:{port}/docs",
            title="🚀 Starting MDAP Server",
        )
    )
    console.print()

    if reload:
        uvicorn.run(
            "mdap.api.server:create_app",
            host=host,
            port=port,
            reload=True,
            factory=True,
        )
    else:
        uvicorn.run(create_app(), host=host, port=port)


@app.command()
def config():
    """
    Show the resolved configuration.
    """
    from mdap.config import find_config_file, load_settings

    try:
        settings = load_settings()
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1) from None

    config_path = find_config_file()

    table = Table(title="MDAP Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    rows = [
        ("provider", settings.provider.value),
        ("model", settings.model),
        ("k", str(settings.k)),
        ("max_samples", str(settings.max_samples)),
        ("temperature", str(settings.temperature)),
        ("max_tokens", str(settings.max_tokens)),
        ("red_flags", ", ".join(str(flag) for flag in settings.red_flags)),
    ]
    for name, value in rows:
        table.add_row(name, value)

    key_status = "✓ ***" if settings.api_key else "✗ [dim]not set[/dim]"
    table.add_row("api_key", key_status)

    console.print(table)
    console.print(f"[dim]Config file: {config_path or 'none found'}[/dim]")


@app.command()
def version():
    """
    Show version information.
    """
    from mdap import __version__

    console.print(f"[bold]MDAP[/bold] v{__version__}")
    console.print("[dim]Voting-based error correction for LLM agents[/dim]")


def main():
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
