"""CLI entry point for editor-bridge."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console

from editor_bridge import __version__
from editor_bridge.config import BridgeConfig
from editor_bridge.ipc.errors import BridgeError
from editor_bridge.paths import get_config_path, get_log_export_path

if TYPE_CHECKING:
    from editor_bridge.ipc.contracts import ResponseMessage

console = Console(stderr=True)


def _load_config(config_path: Path | None) -> BridgeConfig:
    try:
        return BridgeConfig.load(config_path)
    except Exception as exc:
        raise click.ClickException(f"Invalid config: {exc}") from exc


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml (defaults to the user config dir)",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool, config_path: Path | None) -> None:
    """Bridge between an editor host and an external controller."""
    if version:
        click.echo(f"editor-bridge {__version__}")
        ctx.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config_path

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--project",
    "project_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Write an instance descriptor into this project directory",
)
@click.pass_obj
def serve(config_path: Path | None, project_dir: Path | None) -> None:
    """Run a simulated editor host until interrupted."""
    from editor_bridge.host import SimulatedHost
    from editor_bridge.integration import BridgeIntegration
    from editor_bridge.ipc.discovery import InstanceDescriptor, write_instance_descriptor
    from editor_bridge.log_history import remove_log_history, setup_log_history

    config = _load_config(config_path)
    history = setup_log_history(config.host.log_history_size)
    logging.getLogger().setLevel(min(logging.getLogger().level, logging.INFO))
    host = SimulatedHost(history)
    integration = BridgeIntegration(host, config=config.host)

    descriptor_path: Path | None = None
    try:
        handle = integration.start()
        if project_dir is not None:
            descriptor_path = write_instance_descriptor(
                project_dir.resolve(),
                InstanceDescriptor(
                    process_id=os.getpid(),
                    version=integration.dispatcher.version,
                    app_path=sys.executable,
                    app_contents_path=str(Path(sys.executable).parent),
                ),
                descriptor_relpath=config.client.descriptor_relpath,
            )
        console.print(
            f"[green]Serving[/] on {handle.transport_type}://{handle.address}"
            + (f":{handle.port}" if handle.port is not None else "")
            + f" (pid {os.getpid()}). Press Ctrl+C to stop.",
            highlight=False,
        )
        while True:
            if not integration.update():
                time.sleep(config.host.tick_interval_seconds)
    except KeyboardInterrupt:
        console.print("Stopping...", highlight=False)
    finally:
        integration.dispose()
        if descriptor_path is not None:
            descriptor_path.unlink(missing_ok=True)
        count = history.export_to_file(get_log_export_path())
        remove_log_history(history)
        console.print(f"[dim]Exported {count} log entries to {get_log_export_path()}[/]")


@cli.command()
@click.argument("method")
@click.option("--params", "params_json", default=None, help="JSON-encoded method parameters")
@click.option(
    "--project",
    "project_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd,
    show_default="current directory",
    help="Project directory the editor has open",
)
@click.pass_obj
def request(
    config_path: Path | None,
    method: str,
    params_json: str | None,
    project_dir: Path,
) -> None:
    """Send METHOD to the editor that has the project open.

    \b
    Examples:
        editor-bridge request refresh
        editor-bridge request playmode_toggle --project ~/games/demo
        editor-bridge request logs | jq '.items[].message'
    """
    from editor_bridge.ipc.client import IPCClient

    parameters = None
    if params_json is not None:
        try:
            parameters = json.loads(params_json)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--params") from exc

    config = _load_config(config_path)

    async def _send() -> ResponseMessage:
        async with IPCClient.for_project(project_dir, config=config.client) as client:
            return await client.call(method, parameters)

    try:
        response = asyncio.run(_send())
    except BridgeError as exc:
        console.print(f"[red]{exc.code}[/]: {exc}", highlight=False, soft_wrap=True)
        sys.exit(2)

    click.echo(response.result)
    if not response.ok:
        sys.exit(1)


@cli.command()
@click.option(
    "--project",
    "project_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd,
    show_default="current directory",
    help="Project directory the editor has open",
)
@click.pass_obj
def discover(config_path: Path | None, project_dir: Path) -> None:
    """Show the endpoint of the editor that has the project open."""
    from editor_bridge.ipc.discovery import discover_endpoint
    from editor_bridge.process_liveness import process_name

    config = _load_config(config_path)
    try:
        endpoint = discover_endpoint(
            project_dir,
            descriptor_relpath=config.client.descriptor_relpath,
        )
    except BridgeError as exc:
        console.print(f"[red]{exc.code}[/]: {exc}", highlight=False, soft_wrap=True)
        sys.exit(2)

    click.echo(
        json.dumps(
            {
                "transport": endpoint.transport,
                "address": endpoint.address,
                "port": endpoint.port,
                "pid": endpoint.pid,
                "process": process_name(endpoint.pid) if endpoint.pid else None,
            },
            indent=2,
        )
    )


@cli.command(name="config")
@click.pass_obj
def config_cmd(config_path: Path | None) -> None:
    """Print the config file location and effective settings."""
    config = _load_config(config_path)
    path = config_path or get_config_path()
    status = "exists" if path.exists() else "not found, using defaults"
    console.print(f"[bold]Config:[/] {path} [dim]({status})[/]", highlight=False, soft_wrap=True)
    click.echo(config.model_dump_json(indent=2))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
