"""
voice-promptimiser CLI: generate test suites for a voice agent, run them, and optimise its prompt.
"""

import asyncio
import logging
import signal
import traceback
from typing import Any, Awaitable, Callable, Optional, TypeVar

import questionary
import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from voice_promptimiser.config import OptimiserConfig, load_config
from voice_promptimiser.core.base_target_agent import AgentConfig
from voice_promptimiser.core.cancellation import CancellationToken
from voice_promptimiser.core.errors import NotFoundError, OptimisationAborted, ValidationError
from voice_promptimiser.core.eval_entities import BatchResult
from voice_promptimiser.core.optimisation_entities import BestPromptRecord, OptimisationResult
from voice_promptimiser.core.suite_entities import TestSuite
from voice_promptimiser.optimiser.service import OptimiserService

T = TypeVar("T")

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_NOT_FOUND = 2
EXIT_VALIDATION = 3

app = typer.Typer(
    name="voice-promptimiser",
    help="Generate test suites for a voice agent, evaluate it and optimise its prompt",
    add_completion=False,
)
console = Console()

ServiceFactory = Callable[[OptimiserConfig], OptimiserService]


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _truncate(text: str, limit: int = 80) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


# --- rendering -------------------------------------------------------------

def render_suite(suite: TestSuite) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=f"{suite.name} (v{suite.version})")
    table.add_column("#", style="dim")
    table.add_column("Test case", style="cyan")
    table.add_column("Category")
    table.add_column("Priority")
    table.add_column("User turns", justify="right")
    table.add_column("Criteria", justify="right")

    for i, test_case in enumerate(suite.test_cases, start=1):
        table.add_row(
            str(i),
            test_case.name,
            test_case.category.value,
            test_case.priority.value,
            str(len(test_case.user_turns)),
            str(len(test_case.success_criteria)),
        )

    console.print(table)
    console.print(f"Suite id: [yellow]{suite.id}[/yellow]  status: {suite.status.value}")


def render_suite_list(suites: list[TestSuite]) -> None:
    if not suites:
        console.print("[yellow]No test suites found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Suite id", style="yellow")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Cases", justify="right")
    table.add_column("Created")
    for suite in suites:
        table.add_row(
            suite.id, suite.name, suite.status.value, str(suite.version), str(len(suite.test_cases)), suite.created_at,
        )
    console.print(table)


def render_batch(batch: BatchResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Test case", style="cyan")
    table.add_column("Result")
    table.add_column("Score", justify="right")
    table.add_column("Reasoning", no_wrap=False)

    for evaluation in batch.evaluations:
        result = "[bold green]PASS[/bold green]" if evaluation.passed else "[bold red]FAIL[/bold red]"
        table.add_row(
            evaluation.test_case_name, result, _percent(evaluation.overall_score), _truncate(evaluation.reasoning),
        )

    summary = batch.summarise()
    console.print(table)
    console.print(Panel.fit(
        f"Passed: [bold]{summary.num_passed}/{summary.total}[/bold] ({_percent(summary.pass_rate)})\n"
        f"Overall score: [bold]{_percent(batch.overall_score)}[/bold]\n"
        f"{batch.metrics.to_formatted_string()}",
        border_style="green" if not batch.failures else "yellow",
        title="Summary",
    ))


def render_result(result: OptimisationResult) -> None:
    border = "red" if result.aborted_stage else "green"
    lines = [
        f"Status: [bold]{result.status.value}[/bold]",
        f"Iterations: {result.iterations}",
        f"Initial score: {_percent(result.initial_score)}",
        f"Final score: {_percent(result.final_score)}",
        f"Best score: {_percent(result.best_score)} ({result.improvement * 100:+.1f} pts)",
        f"Best prompt persisted: {'yes' if result.persisted else 'no'}",
    ]
    if result.aborted_stage:
        lines.append(f"Aborted during [bold]{result.aborted_stage}[/bold]: {result.error_kind}: {result.error_message}")
    console.print(Panel.fit("\n".join(lines), border_style=border, title=f"Run {result.run_id}"))

    if result.changes:
        table = Table(show_header=True, header_style="bold magenta", title="Prompt changes")
        table.add_column("Type")
        table.add_column("Description", style="cyan", no_wrap=False)
        table.add_column("Targets", no_wrap=False)
        for change in result.changes:
            table.add_row(change.type.value, change.description, change.targeted_failure)
        console.print(table)

    console.print(Panel(result.optimized_prompt, title="Last candidate prompt", border_style="cyan"))


def render_best(record: BestPromptRecord) -> None:
    console.print(Panel.fit(
        f"Agent: [yellow]{record.agent_id}[/yellow]\n"
        f"Score: [bold]{_percent(record.score)}[/bold] after {record.iterations} iteration(s)\n"
        f"Updated: {record.updated_at}",
        border_style="green",
        title="Best prompt",
    ))
    console.print(Panel(record.optimized_prompt, title="Optimised prompt", border_style="cyan"))


def render_agent(config: AgentConfig) -> None:
    console.print(Panel(config.prompt, title=f"Agent {config.agent_id}: prompt", border_style="cyan"))
    if config.metadata:
        console.print(Panel(
            yaml.dump(config.metadata, sort_keys=False, allow_unicode=True).rstrip(),
            title="Metadata",
            border_style="dim",
        ))


# --- service plumbing ------------------------------------------------------

def _service_for(ctx: typer.Context) -> OptimiserService:
    obj = ctx.ensure_object(dict)
    config = load_config(obj.get("config_path"))
    factory: ServiceFactory = obj.get("service_factory") or OptimiserService.from_config
    return factory(config)


def _invoke(ctx: typer.Context, operation: Callable[[OptimiserService], Awaitable[T]]) -> T:
    """Run one service operation and translate failures into exit codes."""
    verbose = ctx.ensure_object(dict).get("verbose", False)

    async def runner() -> T:
        service = _service_for(ctx)
        try:
            return await operation(service)
        finally:
            await service.aclose()

    try:
        return asyncio.run(runner())
    except NotFoundError as e:
        console.print(f"[bold red]Not found:[/bold red] {e}")
        raise typer.Exit(EXIT_NOT_FOUND)
    except ValidationError as e:
        console.print(f"[bold red]Validation failed:[/bold red] {e}")
        raise typer.Exit(EXIT_VALIDATION)
    except OptimisationAborted as e:
        if e.result is not None:
            render_result(e.result)
        console.print(f"[bold red]Optimisation aborted:[/bold red] {e}")
        raise typer.Exit(EXIT_NOT_FOUND if isinstance(e.error, NotFoundError) else EXIT_INTERNAL)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if verbose:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
        raise typer.Exit(EXIT_INTERNAL)


async def _optimise_with_interrupt(
    service: OptimiserService,
    suite_id: str,
    max_iterations: int | None,
) -> OptimisationResult:
    """Ctrl+C stops the run at the next safe point instead of killing it mid-iteration."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted from keyboard")
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        installed = False

    try:
        return await service.run_optimisation(suite_id, max_iterations, token)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


# --- commands --------------------------------------------------------------

@app.command("generate-tests")
def generate_tests(ctx: typer.Context, agent_id: str = typer.Argument(..., help="Agent to generate tests for")):
    """Analyse the agent's prompt and generate (or reuse) its test suite."""
    with console.status("[bold green]Generating test suite...", spinner="dots"):
        suite = _invoke(ctx, lambda service: service.generate_test_suite(agent_id))
    render_suite(suite)


@app.command("list-suites")
def list_suites(
    ctx: typer.Context,
    agent_id: str = typer.Argument(...),
    include_archived: bool = typer.Option(False, "--all", help="Include archived suites"),
):
    """List an agent's test suites."""
    suites = _invoke(ctx, lambda service: service.list_suites(agent_id, include_archived))
    render_suite_list(suites)


@app.command("execute")
def execute(ctx: typer.Context, suite_id: str = typer.Argument(...)):
    """Run every test case of a suite against the agent's current prompt."""
    with console.status("[bold green]Running test suite...", spinner="dots"):
        batch = _invoke(ctx, lambda service: service.execute_suite(suite_id))
    render_batch(batch)


@app.command("optimise")
def optimise(
    ctx: typer.Context,
    suite_id: str = typer.Argument(...),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", "-n", min=0, help="Optimisation iterations"),
):
    """Iteratively rewrite the agent's prompt until the suite passes or progress stops."""
    console.print("[bold yellow]Starting optimisation...[/bold yellow] (Ctrl+C stops after the current step)")
    result = _invoke(ctx, lambda service: _optimise_with_interrupt(service, suite_id, max_iterations))
    render_result(result)


@app.command("best")
def best(ctx: typer.Context, agent_id: str = typer.Argument(...)):
    """Show the best prompt persisted for an agent."""
    record = _invoke(ctx, lambda service: service.get_best_prompt(agent_id))
    render_best(record)


@app.command("delete-best")
def delete_best(ctx: typer.Context, agent_id: str = typer.Argument(...)):
    """Delete the best-prompt record persisted for an agent."""
    _invoke(ctx, lambda service: service.delete_best_prompt(agent_id))
    console.print(f"[bold green]✓[/bold green] Deleted best prompt for [yellow]{agent_id}[/yellow]")


@app.command("reset")
def reset(ctx: typer.Context, agent_id: str = typer.Argument(...)):
    """Archive an agent's suites and forget its best prompt."""
    archived = _invoke(ctx, lambda service: service.reset_agent(agent_id))
    console.print(f"[bold green]✓[/bold green] Reset [yellow]{agent_id}[/yellow]: archived {archived} suite(s)")


@app.command("show-agent")
def show_agent(ctx: typer.Context, agent_id: str = typer.Argument(...)):
    """Show the agent's current prompt and metadata."""
    config = _invoke(ctx, lambda service: service.show_agent(agent_id))
    render_agent(config)


@app.command("check-prompt")
def check_prompt(ctx: typer.Context, agent_id: str = typer.Argument(...)):
    """Run the agent's latest suite against whatever prompt it has right now."""
    with console.status("[bold green]Checking current prompt...", spinner="dots"):
        batch = _invoke(ctx, lambda service: service.check_current_prompt(agent_id))
    render_batch(batch)


# --- interactive mode ------------------------------------------------------

MENU: dict[str, tuple[Callable[..., Any], str]] = {
    "Show agent": (show_agent, "agent_id"),
    "Generate test suite": (generate_tests, "agent_id"),
    "List test suites": (list_suites, "agent_id"),
    "Execute a test suite": (execute, "suite_id"),
    "Run optimisation": (optimise, "suite_id"),
    "Check current prompt": (check_prompt, "agent_id"),
    "Show best prompt": (best, "agent_id"),
    "Reset agent": (reset, "agent_id"),
}


def interactive(ctx: typer.Context):
    console.print(Panel.fit(
        "[bold cyan]Voice Promptimiser Interactive Mode[/bold cyan]",
        border_style="cyan",
    ))

    while True:
        console.print()
        choice = questionary.select(
            "What would you like to do?",
            choices=[*MENU, "Exit"],
            style=questionary.Style([
                ('highlighted', 'fg:cyan bold'),
                ('pointer', 'fg:cyan bold'),
            ])
        ).ask()

        if choice == "Exit" or choice is None:
            console.print("\n[bold green]Goodbye![/bold green]")
            raise typer.Exit(EXIT_OK)

        command, argument = MENU[choice]
        value = questionary.text(f"{argument.replace('_', ' ').capitalize()}:").ask()
        if not value:
            continue

        kwargs: dict[str, Any] = {argument: value.strip()}
        if command is optimise:
            kwargs["max_iterations"] = None
        elif command is list_suites:
            kwargs["include_archived"] = False

        try:
            command(ctx, **kwargs)
        except typer.Exit:
            # already reported; stay in the menu
            pass


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Voice Promptimiser - test and optimise voice agent prompts.
    """
    obj = ctx.ensure_object(dict)
    obj["config_path"] = config_path
    obj["verbose"] = verbose

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    if ctx.invoked_subcommand is None:
        interactive(ctx)


if __name__ == "__main__":
    app()
