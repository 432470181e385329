"""Execution of the subcommand inside the prepared environment."""

import logging
import signal
import subprocess
from collections.abc import Mapping, Sequence
from contextlib import contextmanager
from typing import Iterator

from cloudsql_shell.core.config import AuthMode
from cloudsql_shell.core.engines import MYSQL, EngineProfile
from cloudsql_shell.exceptions import SubcommandError

logger = logging.getLogger(__name__)


def build_default_command(
    user: str,
    auth_mode: AuthMode,
    engine: EngineProfile = MYSQL,
) -> list[str]:
    """Build the database client invocation used when no command is given."""
    cmd = [engine.client_binary, f"{engine.user_flag}={user}"]
    if auth_mode == AuthMode.PASSWORD:
        cmd.append(engine.password_flag)
    return cmd


@contextmanager
def _sigint_ignored() -> Iterator[None]:
    """Leave Ctrl-C to the foreground child while it runs."""
    try:
        previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError:
        # Not the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


class SubcommandRunner:
    """Runs a command and reports its exit status."""

    def __init__(self, terminate_timeout: float = 5.0) -> None:
        self.terminate_timeout = terminate_timeout

    def run(self, argv: Sequence[str], env: Mapping[str, str]) -> int:
        """Run ``argv`` with ``env`` and wait for it to finish.

        Returns:
            The command's exit status; death by signal N maps to 128 + N.

        Raises:
            SubcommandError: If the command cannot be executed.
        """
        if not argv:
            raise SubcommandError("No command to run")

        logger.info(f"Running: {' '.join(argv)}")
        try:
            process = subprocess.Popen(list(argv), env=dict(env))
        except OSError as e:
            raise SubcommandError(f"Cannot run {argv[0]!r}: {e}", {"command": argv[0]}) from e

        try:
            with _sigint_ignored():
                returncode = process.wait()
        except BaseException:
            # Parent is going down (e.g. SIGTERM); do not leave the child behind
            process.terminate()
            try:
                process.wait(timeout=self.terminate_timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            raise

        if returncode < 0:
            return 128 - returncode
        return returncode
