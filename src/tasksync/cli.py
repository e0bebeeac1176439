"""CLI entry point for tasksync.

Usage:
    tasksync serve                         # Start the HTTP/WebSocket server
    tasksync init-config                   # Create config file
    tasksync check-db                      # Verify document store connectivity
    tasksync create-user --role admin ...  # Bootstrap a user profile
    tasksync --version                     # Show version
"""

import asyncio
import contextlib
import json
import sys
import tomllib
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from tasksync import __version__
from tasksync.config import Settings, get_config_path, load_settings_with_toml
from tasksync.utils.logging import setup_logging


class ErrorCategory:
    """Labels printed in front of command failures."""

    CONFIGURATION = "configuration"
    DATABASE = "database"
    VALIDATION = "validation"


def format_error(category: str, message: str, remediation: str) -> str:
    """Render a failure as a labelled message followed by a hint."""
    lines = [f"Error [{category.upper()}]: {message}", f"Hint: {remediation}"]
    return "\n" + "\n\n".join(lines) + "\n"


def get_default_config() -> dict[str, Any]:
    """Get default configuration for init-config."""
    return {
        "server": {
            "host": "127.0.0.1",
            "port": 5000,
            "cors_origins": ["*"],
        },
        "storage": {
            "backend": "sqlite",
            "sqlite_path": "~/.local/share/tasksync/tasksync.db",
            "timeout_seconds": 5.0,
        },
        "realtime": {
            "session_queue_size": 256,
            "message_max_length": 4000,
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
    }


def load_cli_settings(ctx: click.Context, **overrides: Any) -> Settings:
    """Build settings from the config file, environment and CLI flags.

    Exits with a CONFIGURATION error when the file cannot be parsed or a
    value is rejected.
    """
    config_path = ctx.obj.get("config_path")
    try:
        return load_settings_with_toml(
            Path(config_path) if config_path else None,
            log_level=ctx.obj.get("log_level"),
            **overrides,
        )
    except (tomllib.TOMLDecodeError, ValidationError) as e:
        click.echo(
            format_error(ErrorCategory.CONFIGURATION, str(e), "Fix the config file or run 'tasksync init-config --force'."),
            err=True,
        )
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False),
    help="Override global config file path",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Override log level",
)
@click.version_option(version=__version__, prog_name="tasksync")
@click.pass_context
def main(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """tasksync - project tasks and chat with realtime synchronization.

    Configuration is loaded from (in priority order):
    1. CLI arguments
    2. Environment variables (TASKSYNC_*)
    3. Global config file (~/.config/tasksync/config.toml)
    4. Built-in defaults
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log_level"] = log_level


@main.command()
@click.option("--host", type=str, help="Bind address")
@click.option("--port", type=int, help="Bind port")
@click.option("--store", "store_backend", type=click.Choice(["memory", "sqlite"]), help="Document store backend")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, store_backend: str | None) -> None:
    """Start the HTTP and WebSocket server."""
    from tasksync.__main__ import run_server

    settings = load_cli_settings(ctx, host=host, port=port, store_backend=store_backend)
    setup_logging(settings)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_server(settings))


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing file without asking")
@click.pass_context
def init_config(ctx: click.Context, force: bool) -> None:
    """Create the global configuration file with defaults."""
    import tomli_w

    target = Path(ctx.obj.get("config_path") or get_config_path())
    replace = force or not target.exists() or click.confirm(f"{target} exists. Replace it with the defaults?")
    if not replace:
        click.echo("Left the existing config untouched.")
        return

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(tomli_w.dumps(get_default_config()).encode())
    with contextlib.suppress(OSError):
        target.chmod(0o600)

    click.echo(f"Wrote default config to {target}")


@main.command()
@click.pass_context
def check_db(ctx: click.Context) -> None:
    """Verify the document store is reachable.

    Returns exit code 0 if the check passes, 1 otherwise.
    """
    settings = load_cli_settings(ctx)
    setup_logging(settings, use_stderr=True)
    ok, detail = asyncio.run(check_store(settings))
    click.echo(json.dumps({"store": settings.store_backend, "healthy": ok, "detail": detail}, indent=2))
    if not ok:
        click.echo(
            format_error(
                ErrorCategory.DATABASE,
                f"Cannot use the {settings.store_backend} store",
                "Check storage.sqlite_path in the config file and that its directory is writable.",
            ),
            err=True,
        )
        sys.exit(1)


async def check_store(settings: Settings) -> tuple[bool, str]:
    """Open the configured store and run its health check."""
    from tasksync.storage import create_store

    store = create_store(settings.store_backend, settings.sqlite_path)
    try:
        await store.initialize()
        healthy = await store.health_check()
        return healthy, "ok" if healthy else "health check failed"
    except Exception as e:
        return False, str(e)
    finally:
        await store.close()


@main.command()
@click.option("--name", required=True, help="Display name")
@click.option("--email", required=True, help="Email address")
@click.option("--role", type=click.Choice(["admin", "employee"]), default="employee", show_default=True)
@click.pass_context
def create_user(ctx: click.Context, name: str, email: str, role: str) -> None:
    """Create a user profile directly in the store.

    Used to bootstrap the first admin; afterwards admins manage users
    through the API.
    """
    settings = load_cli_settings(ctx)
    setup_logging(settings, use_stderr=True)

    async def _create() -> dict[str, Any]:
        from tasksync.service import SyncService

        service = SyncService.build(settings)
        await service.start()
        try:
            user = await service.users.create(None, {"name": name, "email": email, "role": role})
            return user.model_dump(mode="json")
        finally:
            await service.stop()

    from tasksync.core.errors import SyncError

    try:
        click.echo(json.dumps(asyncio.run(_create()), indent=2))
    except SyncError as e:
        click.echo(format_error(ErrorCategory.VALIDATION, e.message, "Check the --name and --email values."), err=True)
        sys.exit(1)
