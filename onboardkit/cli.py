"""Command line interface for operating onboarding sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from onboardkit.config import load_config
from onboardkit.contracts import SessionStatus
from onboardkit.engine import OnboardingEngine
from onboardkit.errors import OnboardkitError
from onboardkit.persistence import get_repository

T = TypeVar("T")

_state = {"config_path": None}

app = typer.Typer(help="CLI for onboarding session lifecycle and progress")

# Command groups
session_app = typer.Typer(help="Commands for inspecting and driving sessions")
jobs_app = typer.Typer(help="Maintenance jobs")

app.add_typer(session_app, name="session")
app.add_typer(jobs_app, name="jobs")


@app.callback()
def main(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to a YAML config file"
    ),
) -> None:
    """onboardkit CLI entry point."""
    _state["config_path"] = config_path
    config = load_config(config_path)
    logging.basicConfig(level=config.log_level.upper())


def _engine() -> OnboardingEngine:
    config = load_config(_state["config_path"])
    if config.database_url:
        repository = get_repository(database_url=config.database_url)
    else:
        repository = get_repository()
    return OnboardingEngine(repository=repository, config=config)


def _run(action: Callable[[OnboardingEngine], Awaitable[T]]) -> T:
    engine = _engine()

    async def runner() -> T:
        try:
            return await action(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(runner())
    except OnboardkitError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@session_app.command("create")
def session_create() -> None:
    """
    Create a new onboarding session in the ``started`` status.

    Example:
        onboardkit session create
        # Output: Created session 3f2a...  (expires 2026-01-01T11:00:00+00:00)
    """
    session = _run(lambda engine: engine.create_session())
    typer.echo(f"Created session {session.id} (expires {session.expires_at.isoformat()})")


@session_app.command("show")
def session_show(session_id: str) -> None:
    """Show status, version and expiry for a session."""
    session = _run(lambda engine: engine.get_session(session_id))
    if session is None:
        typer.echo("Session not found")
        raise typer.Exit(code=1)
    typer.echo(f"Session {session.id}: {session.status.value}")
    typer.echo(f"Version: {session.version}")
    typer.echo(f"Updated: {session.updated_at.isoformat()}")
    if session.expires_at:
        typer.echo(f"Expires: {session.expires_at.isoformat()}")


@session_app.command("list")
def session_list(
    status: Optional[SessionStatus] = typer.Option(
        None, help="Only list sessions in this status"
    ),
) -> None:
    """
    List sessions with their current status.

    Example:
        onboardkit session list --status in_progress
        # Output: 3f2a...    in_progress
    """
    statuses = [status] if status else None
    sessions = _run(lambda engine: engine.list_sessions(statuses))
    if not sessions:
        typer.echo("No sessions found")
        return
    for session in sessions:
        typer.echo(f"{session.id}\t{session.status.value}")


@session_app.command("progress")
def session_progress(session_id: str) -> None:
    """Show the computed progress snapshot for a session."""
    snapshot = _run(lambda engine: engine.get_progress(session_id))
    typer.echo(f"Progress: {snapshot.percentage}%")
    typer.echo(f"Current phase: {snapshot.current_phase}")
    typer.echo(f"Completed: {', '.join(snapshot.completed_phases) or '(none)'}")
    typer.echo(f"Next phase: {snapshot.next_phase or '(none)'}")
    typer.echo(f"Estimated minutes remaining: {snapshot.estimated_minutes_remaining}")


@session_app.command("update")
def session_update(session_id: str, patch: str) -> None:
    """
    Merge a JSON progress patch into a session's payload.

    Example:
        onboardkit session update 3f2a... '{"currentStep": "child_info"}'
    """
    try:
        data = json.loads(patch)
    except json.JSONDecodeError as e:
        typer.secho(f"Invalid JSON patch: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    session = _run(lambda engine: engine.update_progress(session_id, data))
    typer.echo(f"Session {session.id}: {session.status.value} (version {session.version})")


@session_app.command("transition")
def session_transition(session_id: str, status: SessionStatus) -> None:
    """Move a session to another status."""
    result = _run(lambda engine: engine.apply_transition(session_id, status))
    if result.changed:
        typer.echo(
            f"Session {session_id}: {result.previous_status.value} -> {result.status.value}"
        )
    else:
        typer.echo(f"Session {session_id} already {result.status.value}")


@session_app.command("abandon")
def session_abandon(session_id: str) -> None:
    """Abandon a session. Repeating the command is harmless."""
    result = _run(lambda engine: engine.abandon_session(session_id))
    if result.changed:
        typer.echo(f"Session {session_id} abandoned")
    else:
        typer.echo(f"Session {session_id} already abandoned")


@jobs_app.command("expire")
def jobs_expire() -> None:
    """Expire every active session past its expiry time."""
    count = _run(lambda engine: engine.expire_sessions())
    typer.echo(f"Expired {count} session(s)")


@jobs_app.command("purge")
def jobs_purge() -> None:
    """Delete expired sessions older than the retention window."""
    count = _run(lambda engine: engine.purge_retained_sessions())
    typer.echo(f"Purged {count} session(s)")
