"""
advisor-council CLI - Run advisory sessions from the terminal.

Commands:
    advisor-council run "idea"     Interactive session, events printed live
    advisor-council health         Probe both text-generation backends
    advisor-council serve          Start the HTTP API
"""

import asyncio
import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .config import load_config
from .harness.session import Phase, SessionOptions
from .orchestration.events import (
    ExpertPlanned,
    ExpertSpoke,
    ExpertThinking,
    OrchestratorSpoke,
    PhaseChanged,
    SessionEvent,
    StreamChunk,
    StreamError,
    SynthesisCompleted,
    UserInputRequested,
    UserSpoke,
)
from .orchestration.state_machine import create_state_machine

app = typer.Typer(help="Multi-phase expert advisory sessions")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _render(event: SessionEvent) -> None:
    """Print one session event."""
    if isinstance(event, PhaseChanged):
        console.rule(f"[bold blue]{event.phase}[/bold blue]")
    elif isinstance(event, OrchestratorSpoke):
        style = "yellow" if event.source_tag == "fallback" else "cyan"
        console.print(f"[bold {style}]Orchestrator:[/bold {style}] {event.text}")
    elif isinstance(event, ExpertSpoke):
        tag = " [dim](fallback)[/dim]" if event.source_tag == "fallback" else ""
        console.print(f"[bold green]{event.speaker}[/bold green]{tag}: {event.text}")
    elif isinstance(event, ExpertThinking):
        console.print(f"[dim]{event.speaker} is thinking (round {event.round})...[/dim]")
    elif isinstance(event, UserInputRequested):
        console.print("[bold magenta]The panel has a question for you.[/bold magenta]")
    elif isinstance(event, ExpertPlanned):
        console.print(Panel(Markdown(event.content), title=event.speaker))
    elif isinstance(event, SynthesisCompleted):
        console.print(Panel(Markdown(event.content), title="Synthesis", border_style="green"))
        console.print(Panel(event.derived_instruction_text, title="Build instructions"))
    elif isinstance(event, StreamError):
        console.print(f"[red]Generation problem ({event.phase}): {event.error}[/red]")
    elif isinstance(event, (StreamChunk, UserSpoke)):
        pass
    else:
        raise TypeError(f"Unknown event type: {type(event).__name__}")


async def _run_session(idea: str, user_id: str, options: SessionOptions) -> None:
    config = load_config()
    machine = create_state_machine(config=config)
    machine.events.add_listener(_render)
    try:
        started = await machine.start(user_id, idea, options)
        session_id = started.session_id

        while True:
            session = machine.get_session(session_id)
            if session is None or session.phase == Phase.COMPLETE or not session.active:
                break
            if session.phase == Phase.DISCOVERY or session.awaiting_user:
                text = await asyncio.to_thread(typer.prompt, "You")
                await machine.submit_user_message(session_id, text)
                continue
            await machine.drain(session_id)
            session = machine.get_session(session_id)
            if session is not None and session.active and not session.awaiting_user:
                break
    finally:
        await machine.aclose()


@app.command()
def run(
    idea: str = typer.Argument(..., help="What you want to build"),
    user_id: str = typer.Option("cli-user", help="User id recorded on the session"),
    max_experts: int = typer.Option(4, min=1, max=4, help="Upper bound on panel size"),
    max_rounds: int = typer.Option(None, min=1, help="Collaboration rounds (default from config)"),
    no_questions: bool = typer.Option(False, help="Experts never pause to ask you questions"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run an interactive advisory session."""
    _configure_logging(verbose)
    console.print(f"\n[bold blue]advisor-council run[/bold blue]\n")
    options = SessionOptions(
        max_experts=max_experts,
        include_user_in_collaboration=not no_questions,
        max_rounds=max_rounds,
    )
    try:
        asyncio.run(_run_session(idea, user_id, options))
    except KeyboardInterrupt:
        console.print("\n[yellow]Session interrupted[/yellow]")
        raise typer.Exit(130)


@app.command()
def health(verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Probe the text-generation backends once and print their status."""
    _configure_logging(verbose)
    from .llm.generator import create_generator

    generator = create_generator(load_config())
    asyncio.run(generator.check_health())
    report = generator.health_report()

    table = Table(title=f"Generation health: {report['overall']}")
    table.add_column("Role")
    table.add_column("Backend")
    table.add_column("Status")
    table.add_column("Failures", justify="right")
    table.add_column("Last error")
    for role, h in report["backends"].items():
        table.add_row(
            role, h["backend"], h["status"], str(h["consecutive_failures"]), h["last_error"] or ""
        )
    console.print(table)
    console.print(f"Recommended backend: [bold]{report['recommended']}[/bold]")
    if report["overall"] == "poor":
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
):
    """Start the HTTP API (FastAPI + uvicorn)."""
    import uvicorn

    uvicorn.run(
        "advisor_council.api.gateway:create_app", factory=True, host=host, port=port
    )


if __name__ == "__main__":
    app()
