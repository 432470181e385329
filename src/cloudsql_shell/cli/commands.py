"""CLI commands for cloudsql-shell."""

import logging
import sys
from typing import Annotated, Optional

import click
import typer
from rich.console import Console
from typer.core import TyperCommand

from cloudsql_shell import __version__
from cloudsql_shell.auth.identity import IdentityResolver, parse_impersonation_chain
from cloudsql_shell.core.config import AuthMode, get_settings
from cloudsql_shell.core.connection import GcloudConfigDefaults, resolve_connection
from cloudsql_shell.core.engines import ENGINES, get_engine
from cloudsql_shell.core.environment import build_environment
from cloudsql_shell.core.runner import SubcommandRunner, build_default_command
from cloudsql_shell.exceptions import ArgumentError, ShellError
from cloudsql_shell.proxy.cleanup import CleanupSequencer
from cloudsql_shell.proxy.supervisor import ProxySupervisor

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="cloudsql-shell",
    help="Run a database client (or any command) through a private Cloud SQL Auth Proxy",
    add_completion=False,
)

console = Console(stderr=True)

SEPARATOR_SEEN = "cloudsql_shell.separator_seen"


class SeparatedCommand(TyperCommand):
    """Records whether the raw arguments contained the '--' separator."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        ctx.meta[SEPARATOR_SEEN] = "--" in args
        return super().parse_args(ctx, args)


def setup_logging(verbose: bool, level_name: str = "WARNING") -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cloudsql-shell v{__version__}")
        raise typer.Exit()


@app.command(cls=SeparatedCommand)
def main(
    ctx: typer.Context,
    instance: Annotated[
        str,
        typer.Argument(
            help="Instance name, or a full project:region:instance connection name",
            show_default=False,
        ),
    ],
    command: Annotated[
        Optional[list[str]],
        typer.Argument(
            help="Command to run after '--' instead of the database client",
            show_default=False,
        ),
    ] = None,
    proxy: Annotated[
        Optional[str],
        typer.Option("--proxy", help="Path to the cloud-sql-proxy binary"),
    ] = None,
    proxy_socket_dir: Annotated[
        Optional[str],
        typer.Option("--proxy-socket-dir", help="Base directory for the private socket directory"),
    ] = None,
    proxy_timeout: Annotated[
        Optional[float],
        typer.Option("--proxy-timeout", help="Seconds to wait for the proxy socket", min=0.0),
    ] = None,
    project: Annotated[
        Optional[str],
        typer.Option("--project", help="Project override (default: gcloud config)"),
    ] = None,
    region: Annotated[
        Optional[str],
        typer.Option("--region", help="Region override (default: gcloud config)"),
    ] = None,
    iam: Annotated[
        Optional[bool],
        typer.Option("--iam/--password", help="Use IAM database authentication or a password"),
    ] = None,
    impersonate_service_account: Annotated[
        Optional[str],
        typer.Option(
            "--impersonate-service-account",
            help="Comma-separated impersonation chain; the last entry is the target",
        ),
    ] = None,
    engine: Annotated[
        Optional[str],
        typer.Option("--engine", help=f"Database engine ({', '.join(ENGINES)})"),
    ] = None,
    user: Annotated[
        Optional[str],
        typer.Option("--user", help="Database user for the default client (skips inference)"),
    ] = None,
    proxy_args: Annotated[
        Optional[list[str]],
        typer.Option("--proxy-arg", help="Extra flag passed to the proxy (can specify multiple)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version information",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Start a private proxy for INSTANCE and run a command against it.

    Example:
        cloudsql-shell my-instance

        # Run something else with the proxy environment exported:
        cloudsql-shell my-project:us-central1:my-instance -- \\
            mysqldump --user=app appdb
    """
    settings = get_settings()
    setup_logging(verbose, settings.log_level)

    if iam is None:
        auth_mode = settings.auth_mode
    else:
        auth_mode = AuthMode.IAM if iam else AuthMode.PASSWORD

    try:
        try:
            profile = get_engine(engine or settings.engine)
        except KeyError:
            raise ArgumentError(f"Unknown engine {engine or settings.engine!r}") from None
        logger.debug(f"Auth mode {auth_mode.value}, engine {profile.name}")

        if command and not ctx.meta.get(SEPARATOR_SEEN):
            raise ArgumentError(
                f"Unexpected argument {command[0]!r}; put the command to run after '--'"
            )

        chain = parse_impersonation_chain(impersonate_service_account)
        extra_args = list(proxy_args or [])
        if chain:
            extra_args.append(f"--impersonate-service-account={','.join(chain)}")

        identity = resolve_connection(
            instance,
            project=project,
            region=region,
            defaults=GcloudConfigDefaults(
                gcloud_binary=settings.gcloud_binary,
                project_key=settings.project_config_key,
                region_key=settings.region_config_key,
                timeout=settings.gcloud_timeout_seconds,
            ),
        )

        with CleanupSequencer() as cleanup:
            supervisor = ProxySupervisor(
                proxy or settings.proxy_binary,
                proxy_socket_dir or settings.socket_base_dir,
                cleanup,
                poll_interval=settings.poll_interval_seconds,
                shutdown_grace=settings.shutdown_grace_seconds,
            )
            started = supervisor.start(identity, auth_mode, profile, extra_args)
            supervisor.wait_until_ready(
                proxy_timeout if proxy_timeout is not None else settings.start_timeout_seconds
            )

            if command:
                argv = list(command)
            else:
                if not user:
                    resolver = IdentityResolver(
                        settings.userinfo_url, timeout=settings.userinfo_timeout_seconds
                    )
                    user = profile.iam_username(resolver.resolve_principal(chain))
                argv = build_default_command(user, auth_mode, profile)

            env = build_environment(identity, auth_mode, started.socket_dir, profile, chain)
            exit_code = SubcommandRunner().run(argv, env)

    except ArgumentError as e:
        raise typer.BadParameter(e.message, ctx=ctx)
    except ShellError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(code=e.exit_code)

    raise typer.Exit(code=exit_code)


if __name__ == "__main__":
    app()
