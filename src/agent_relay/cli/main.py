"""Operator CLI for the relay."""

import uuid
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..core.commands import write_reset_flag
from ..core.config import RelayPaths, load_settings
from ..core.message import Message, now_ms
from ..core.processing_status import (
    StatusStore,
    elapsed_seconds,
    format_elapsed,
    format_status_message,
)
from ..queue.file_queue import FileQueue


console = Console()


@click.group()
@click.option("--home", "-H", default=None, help="Relay home directory (default: $AGENT_RELAY_HOME or ~/.agent-relay)")
@click.pass_context
def cli(ctx, home):
    """Agent Relay - route chat messages to AI agents."""
    ctx.ensure_object(dict)
    ctx.obj["paths"] = RelayPaths(Path(home).expanduser()) if home else RelayPaths.from_env()


@cli.command()
@click.option("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def start(ctx, log_level):
    """Run the queue processor in the foreground."""
    from ..run_processor import main as run_main

    paths = ctx.obj["paths"]
    console.print(f"[bold green]Starting queue processor[/] (home: {paths.home})")
    run_main(str(paths.home), log_level=log_level)


@cli.command()
@click.argument("text")
@click.option("--channel", "-c", default="cli", help="Channel name stamped on the message")
@click.option("--sender", "-s", default="operator", help="Sender display name")
@click.option("--agent", "-a", default=None, help="Pre-route to this agent id")
@click.pass_context
def send(ctx, text, channel, sender, agent):
    """Write one message into queue/incoming."""
    queue = FileQueue(ctx.obj["paths"])
    message = Message(
        channel=channel,
        sender=sender,
        sender_id=sender,
        content=text,
        timestamp=now_ms(),
        message_id=str(uuid.uuid4()),
        agent=agent,
    )
    path = queue.push(message)
    console.print(f"[green]✓[/] Queued {path.name}")


@cli.command()
@click.option(
    "--messages", is_flag=True,
    help="Also print the progress line each waiting user would be sent.",
)
@click.pass_context
def status(ctx, messages):
    """Show queue depth and in-flight agent invocations."""
    paths = ctx.obj["paths"]
    queue = FileQueue(paths)
    settings = load_settings(paths.settings_file)

    stats = queue.get_queue_stats()
    table = Table(title="Queue")
    table.add_column("Directory", style="cyan")
    table.add_column("Files", justify="right")
    for name in ("incoming", "processing", "outgoing"):
        table.add_row(name, str(stats[name]))
    console.print(table)

    statuses = StatusStore(paths.status, settings.queue.status_max_age_seconds).read_all()
    if not statuses:
        console.print("[dim]No agent invocations in flight[/]")
        return

    now = now_ms()
    in_flight = Table(title="In flight")
    in_flight.add_column("Agent", style="cyan")
    in_flight.add_column("Channel")
    in_flight.add_column("Sender")
    in_flight.add_column("Message")
    in_flight.add_column("Elapsed", justify="right")
    for entry in statuses:
        in_flight.add_row(
            f"@{entry.agent_id} ({entry.agent_name})",
            entry.channel,
            entry.sender,
            entry.message_id,
            format_elapsed(elapsed_seconds(entry, now)),
        )
    console.print(in_flight)

    if messages:
        for entry in statuses:
            console.print(
                f"{entry.channel}/{entry.chat_id}: {format_status_message(entry, now)}",
                markup=False,
                soft_wrap=True,
            )


@cli.command()
@click.pass_context
def agents(ctx):
    """List configured agents and teams."""
    settings = load_settings(ctx.obj["paths"].settings_file)

    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Max depth", justify="right")
    for agent_id, agent in settings.get_agents().items():
        table.add_row(agent_id, agent.name, agent.provider, agent.model, str(agent.max_delegation_depth))
    console.print(table)

    teams = settings.get_teams()
    if not teams:
        return

    team_table = Table(title="Teams")
    team_table.add_column("ID", style="cyan")
    team_table.add_column("Name")
    team_table.add_column("Leader")
    team_table.add_column("Members")
    for team_id, team in teams.items():
        team_table.add_row(team_id, team.name, f"@{team.leader_agent}", ", ".join(team.agents))
    console.print(team_table)


@cli.command()
@click.pass_context
def recover(ctx):
    """Move orphaned files from processing/ back to incoming/.

    Only run this while the processor is stopped.
    """
    recovered = FileQueue(ctx.obj["paths"]).recover_orphans()
    if not recovered:
        console.print("[dim]Nothing to recover[/]")
        return
    for name in recovered:
        console.print(f"  {name}")
    console.print(f"[green]✓ Recovered {len(recovered)} file(s)[/]")


@cli.command()
@click.argument("agent_ids", nargs=-1, required=True)
@click.pass_context
def reset(ctx, agent_ids):
    """Start a fresh conversation for the given agents on their next message."""
    settings = load_settings(ctx.obj["paths"].settings_file)
    known = settings.get_agents()

    failed = False
    for raw in agent_ids:
        agent_id = raw.lstrip("@").lower()
        if agent_id not in known:
            console.print(f"[red]Agent '{agent_id}' not found[/]")
            failed = True
            continue
        write_reset_flag(agent_id, settings.workspace_path)
        console.print(f"[green]✓[/] Reset @{agent_id} ({known[agent_id].name})")

    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
