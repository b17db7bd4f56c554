"""CLI for chainplan deployments."""

import asyncio
import json
import signal
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import DeploySettings, settings
from ..core.exceptions import ChainplanError
from ..modules.builder import Module
from ..modules.loader import ModuleLoader, load_parameters
from ..modules.models import canonical_json
from ..observability.logging import setup_logging
from .artifacts import ArtifactProvider, FileArtifactProvider, StaticArtifactProvider
from .executor import Executor
from .journal import JournalStore
from .models import NetworkConfig, Plan, ProjectConfig, RunSummary
from .networks import ProjectLoader, network_sender
from .resolver import GraphResolver
from .transport import create_transport

app = typer.Typer(
    name="chainplan",
    help="Declarative, resumable smart-contract deployments",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    "confirmed": "green",
    "submitted": "yellow",
    "pending": "yellow",
    "failed": "red",
    "skipped": "magenta",
    "not_started": "dim",
}


def _short(value: Any, width: int = 48) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else canonical_json(value)
    return text if len(text) <= width else text[: width - 3] + "..."


def _load_plan(module_file: Path, module: Optional[str], parameters: Optional[Path]) -> Plan:
    """Load, resolve and return the plan, exiting with code 2 on errors."""
    try:
        root: Module = ModuleLoader().load(module_file, module)
        params = load_parameters(parameters) if parameters else {}
        return GraphResolver().resolve(root, params)
    except ChainplanError as e:
        console.print(f"[red]✗ Resolution failed:[/red]\n{e}")
        raise typer.Exit(code=2)


def _load_project(config: Optional[Path]) -> ProjectConfig:
    try:
        return ProjectLoader().load(config or Path(settings.config_file))
    except ChainplanError as e:
        console.print(f"[red]✗ Invalid configuration:[/red]\n{e}")
        raise typer.Exit(code=2)


def _get_network(project: ProjectConfig, network: str) -> NetworkConfig:
    try:
        return project.require_network(network)
    except ChainplanError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=2)


def _artifact_provider(project: ProjectConfig, network: NetworkConfig) -> ArtifactProvider:
    root = Path(project.artifacts)
    if network.simulated and not root.exists():
        return StaticArtifactProvider()
    return FileArtifactProvider(root)


def _chain_state_file(store: JournalStore, network: str) -> Optional[Path]:
    """Simulated chain kept beside the journal, so both survive between runs."""
    journal_path = store.path_for(network)
    if journal_path is None:
        return None
    return journal_path.with_name(journal_path.name.removesuffix(".jsonl") + ".chain.json")


# ============================================================================
# Plan Command
# ============================================================================


@app.command()
def plan(
    module_file: Path = typer.Argument(..., help="Module file (.py or .yaml)"),
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Module to plan"),
    parameters: Optional[Path] = typer.Option(
        None, "--parameters", "-p", help="Module parameters file (JSON/YAML)"
    ),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, json"
    ),
):
    """Resolve a module into its execution plan (dry run)."""
    execution_plan = _load_plan(module_file, module, parameters)

    if output_format == "json":
        plan_dict = {
            "modules": execution_plan.modules,
            "actions": execution_plan.action_ids(),
            "dependencies": execution_plan.dependencies,
            "stages": execution_plan.stages,
        }
        console.print_json(json.dumps(plan_dict))
        return

    console.print(
        f"[green]✓ Plan resolved: {len(execution_plan.actions)} actions "
        f"in {len(execution_plan.stages)} stages[/green]"
    )

    table = Table(title="Execution Plan")
    table.add_column("#", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Kind", style="yellow")
    table.add_column("Depends On", style="magenta")

    for idx, action in enumerate(execution_plan.actions):
        deps = execution_plan.dependencies.get(action.id, [])
        table.add_row(
            str(idx + 1),
            action.id,
            action.kind.value,
            "\n".join(deps) if deps else "[dim]none[/dim]",
        )

    console.print(table)


# ============================================================================
# Deploy Command
# ============================================================================


def _print_summary(summary: RunSummary) -> None:
    table = Table(title=f"Deployment on {summary.network_id}")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Result", style="green")
    table.add_column("Transaction", style="dim")
    table.add_column("Error", style="red")

    for outcome in summary.outcomes:
        style = STATUS_STYLES.get(outcome.status, "")
        status = f"[{style}]{outcome.status}[/{style}]"
        if outcome.resumed:
            status += " [dim](journal)[/dim]"
        table.add_row(
            outcome.action_id,
            status,
            _short(outcome.result),
            _short(outcome.tx_reference, 18),
            _short(outcome.error, 60),
        )

    console.print(table)


@app.command()
def deploy(
    module_file: Path = typer.Argument(..., help="Module file (.py or .yaml)"),
    network: str = typer.Option(..., "--network", "-n", help="Target network"),
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Module to deploy"),
    parameters: Optional[Path] = typer.Option(
        None, "--parameters", "-p", help="Module parameters file (JSON/YAML)"
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Project file"),
    journal_dir: Optional[Path] = typer.Option(
        None, "--journal-dir", help="Directory holding journals"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", min=1, help="Independent actions in flight"
    ),
    failure_policy: Optional[str] = typer.Option(
        None, "--failure-policy", help="isolate or abort"
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write JSON logs to this file"
    ),
):
    """Deploy a module, resuming from the network's journal."""
    log_path = log_file or (Path(settings.log_file) if settings.log_file else None)
    setup_logging(level=settings.log_level, json_format=settings.log_json, log_file=log_path)

    overrides: dict[str, Any] = {}
    if concurrency is not None:
        overrides["max_concurrency"] = concurrency
    if failure_policy is not None:
        if failure_policy not in ("isolate", "abort"):
            console.print(f"[red]✗ Unknown failure policy: {failure_policy}[/red]")
            raise typer.Exit(code=2)
        overrides["failure_policy"] = failure_policy
    run_settings = DeploySettings(**{**settings.model_dump(), **overrides})

    # Everything that can fail on declarations happens before any I/O
    execution_plan = _load_plan(module_file, module, parameters)
    project = _load_project(config)
    network_config = _get_network(project, network)

    console.print(
        f"[bold]Deploying[/bold] {', '.join(execution_plan.modules)} "
        f"to [cyan]{network}[/cyan] ({len(execution_plan.actions)} actions)"
    )

    store = JournalStore(journal_dir or Path(run_settings.journal_dir))

    async def _deploy() -> RunSummary:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass

        transport = create_transport(
            network_config,
            poll_interval=run_settings.poll_interval,
            state_file=_chain_state_file(store, network),
        )
        executor = Executor(
            transport,
            store.journal(network),
            _artifact_provider(project, network_config),
            settings=run_settings,
            sender=network_sender(network_config, run_settings.default_sender),
        )
        try:
            return await executor.execute(execution_plan, stop_event)
        finally:
            await transport.aclose()

    try:
        summary = asyncio.run(_deploy())
    except ChainplanError as e:
        console.print(f"[red]✗ Deployment aborted:[/red]\n{e}")
        raise typer.Exit(code=2)

    _print_summary(summary)

    if summary.succeeded:
        console.print(
            Panel(
                f"[green]✓ All {len(summary.outcomes)} actions confirmed[/green]\n\n"
                f"Network: {summary.network_id}\n"
                f"Submissions this run: {summary.submissions}\n"
                f"Run ID: {summary.run_id}",
                title="Deployment Complete",
            )
        )
        return

    incomplete = sum(1 for o in summary.outcomes if o.status != "confirmed")
    if summary.aborted:
        reason = "aborted after a failure"
    elif summary.stopped:
        reason = "stopped"
    else:
        reason = "incomplete"
    console.print(
        f"[red]✗ Deployment {reason}: {incomplete} action(s) not confirmed[/red]\n"
        "[dim]Re-run the same command to resume[/dim]"
    )
    raise typer.Exit(code=1)


# ============================================================================
# Status Command
# ============================================================================


@app.command()
def status(
    module_file: Path = typer.Argument(..., help="Module file (.py or .yaml)"),
    network: str = typer.Option(..., "--network", "-n", help="Network to inspect"),
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Module to inspect"),
    parameters: Optional[Path] = typer.Option(
        None, "--parameters", "-p", help="Module parameters file (JSON/YAML)"
    ),
    journal_dir: Optional[Path] = typer.Option(
        None, "--journal-dir", help="Directory holding journals"
    ),
):
    """Show the journaled state of every action of a module on a network."""
    execution_plan = _load_plan(module_file, module, parameters)
    entries = JournalStore(journal_dir or Path(settings.journal_dir)).load(network)

    table = Table(title=f"Journal for {network}")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Result", style="green")
    table.add_column("Attempts", style="yellow")
    table.add_column("Updated", style="dim")

    confirmed = 0
    for action in execution_plan.actions:
        entry = entries.get(action.id)
        state = entry.status.value if entry else "not_started"
        confirmed += state == "confirmed"
        style = STATUS_STYLES.get(state, "")
        table.add_row(
            action.id,
            f"[{style}]{state}[/{style}]",
            _short(entry.result) if entry else "",
            str(entry.attempts) if entry else "0",
            entry.updated_at if entry else "",
        )

    console.print(table)
    console.print(f"{confirmed}/{len(execution_plan.actions)} actions confirmed")


# ============================================================================
# Networks Command
# ============================================================================


@app.command()
def networks(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Project file"),
):
    """List configured networks."""
    project = _load_project(config)

    table = Table(title="Networks")
    table.add_column("Network", style="cyan")
    table.add_column("Endpoint", style="green")
    table.add_column("Chain ID", style="yellow")
    table.add_column("EVM", style="magenta")

    for network_id, network in sorted(project.networks.items()):
        endpoint = "[dim]simulated[/dim]" if network.simulated else (network.url or "")
        table.add_row(
            network_id,
            endpoint,
            str(network.chain_id or ""),
            network.evm_version or project.compiler.evm_version or "",
        )
    for network_id, reason in sorted(project.unavailable.items()):
        table.add_row(network_id, f"[red]unavailable[/red] [dim]{reason}[/dim]", "", "")

    console.print(table)


# ============================================================================
# Main
# ============================================================================


def main():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
