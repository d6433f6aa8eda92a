import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .constants import DEFAULT_DRIVER, DRIVERS, PROXY_PORT
from .core import ContainerLifecycleManager
from .errors import ProxyError
from .models import ProxySettings, connection_string
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".neonlocal.yml"

_SETTINGS_KEYS = {
    "image": str,
    "container_name": str,
    "client_tag": str,
    "data_dir": str,
    "readiness_timeout": float,
    "handoff_timeout": float,
    "poll_interval": float,
    "status_interval": float,
    "stop_timeout": int,
    "start_lock_timeout": float,
    "cleanup_on_branch_limit": bool,
    "oauth_host": str,
    "oauth_client_id": str,
    "command_timeout": float,
}

console = Console()


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def build_settings(config_values) -> ProxySettings:
    kwargs = {}
    for key, cast in _SETTINGS_KEYS.items():
        if key in config_values and config_values[key] is not None:
            try:
                kwargs[key] = cast(config_values[key])
            except (TypeError, ValueError) as exc:
                raise click.ClickException(f"Invalid value for '{key}': {exc}") from exc
    return ProxySettings(**kwargs)


def _reconcile(manager: ContainerLifecycleManager):
    # State left behind by a container that died while no process watched it.
    try:
        manager.restore(monitor=False)
    except ProxyError as exc:
        logging.getLogger("neonlocal").debug("Could not reconcile proxy state: %s", exc)


def _manager(ctx) -> ContainerLifecycleManager:
    if ctx.obj.get("manager") is None:
        try:
            ctx.obj["manager"] = ContainerLifecycleManager(settings=ctx.obj["settings"])
        except ProxyError as exc:
            raise click.ClickException(str(exc)) from exc
    return ctx.obj["manager"]


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Manage the Neon Local proxy container for a Neon branch."""
    logger = logging.getLogger("neonlocal")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config_values
    ctx.obj["settings"] = build_settings(config_values)
    ctx.obj["manager"] = None


@main.command()
@click.option("--branch-id", required=True, help="Branch to connect to, or parent of a new branch")
@click.option("--project-id", required=True, help="Neon project owning the branch")
@click.option(
    "--driver",
    required=False,
    type=click.Choice(DRIVERS),
    help=f"Wire protocol the proxy speaks (default: {DEFAULT_DRIVER})",
)
@click.option("--port", required=False, type=int, help=f"Host port (default: {PROXY_PORT})")
@click.option(
    "--ephemeral",
    is_flag=True,
    default=False,
    help="Create a fresh branch from --branch-id instead of connecting to it.",
)
@click.option(
    "--watch",
    is_flag=True,
    default=False,
    help="Stay in the foreground until the container exits; Ctrl+C stops it.",
)
@click.pass_context
def start(ctx, branch_id, project_id, driver, port, ephemeral, watch):
    """Start the proxy container."""
    config_values = ctx.obj["config"]
    driver = _resolve_option(driver, config_values, "driver", default=DEFAULT_DRIVER)
    port = int(_resolve_option(port, config_values, "port", default=PROXY_PORT))

    manager = _manager(ctx)
    try:
        manager.runtime.validate_environment()
        result = manager.start(
            branch_id=branch_id,
            driver=driver,
            is_existing_branch=not ephemeral,
            project_id=project_id,
            port=port,
        )
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"Branch: [bold]{result.branch_id}[/bold]")
    console.print(f"Connection string: [bold]{result.connection_string}[/bold]")
    if result.image_updated:
        console.print("[green]Proxy image was updated to the latest version.[/green]")

    if not watch:
        return

    console.print("[blue]Watching proxy container. Press Ctrl+C to stop it.[/blue]")
    try:
        while not manager.status_monitor.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        console.print("[yellow]Stopping proxy container...[/yellow]")
        try:
            manager.stop()
        except ProxyError as exc:
            raise click.ClickException(str(exc)) from exc
        return

    raise click.ClickException("Proxy container exited unexpectedly.")


@main.command()
@click.pass_context
def stop(ctx):
    """Stop and remove the proxy container."""
    try:
        _manager(ctx).stop()
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.pass_context
def status(ctx):
    """Show whether the proxy container is running and ready."""
    manager = _manager(ctx)
    _reconcile(manager)
    try:
        proxy_status = manager.status()
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title="Neon Local proxy")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("State", proxy_status.state.value)
    table.add_row("Ready", "yes" if proxy_status.ready else "no")
    if proxy_status.info is not None:
        table.add_row("Branch", proxy_status.info.branch_id)
        table.add_row("Project", proxy_status.info.project_id)
        table.add_row("Driver", proxy_status.info.driver)
        table.add_row("Ephemeral", "yes" if proxy_status.info.is_parent_branch else "no")
    console.print(table)


@main.command()
@click.option("--database", required=False, help="Database name for the connection string")
@click.pass_context
def info(ctx, database):
    """Print the parameters of the running proxy container."""
    manager = _manager(ctx)
    _reconcile(manager)
    try:
        container_info = manager.get_container_info()
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc

    selection = manager.state_service.get("selection") or {}
    port = int(selection.get("port") or PROXY_PORT)
    branch = manager.state_service.get("currently_connected_branch") or container_info.branch_id

    console.print(f"Branch: [bold]{branch}[/bold]")
    console.print(f"Project: [bold]{container_info.project_id}[/bold]")
    console.print(f"Driver: [bold]{container_info.driver}[/bold]")
    dsn = connection_string(port, database) if database else connection_string(port)
    console.print(f"Connection string: [bold]{dsn}[/bold]")


@main.command("set-api-key")
@click.option(
    "--api-key",
    prompt="Neon API key",
    hide_input=True,
    help="Persistent API key; required to create ephemeral branches.",
)
@click.pass_context
def set_api_key(ctx, api_key):
    """Store a persistent Neon API key."""
    try:
        _manager(ctx).credentials.set_persistent_token(api_key)
    except ProxyError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print("[green]API key saved.[/green]")


@main.command("sign-out")
@click.pass_context
def sign_out(ctx):
    """Forget the stored OAuth session tokens."""
    _manager(ctx).credentials.sign_out()
    console.print("[green]Signed out.[/green]")


if __name__ == "__main__":
    main()
