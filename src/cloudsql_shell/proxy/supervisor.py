"""Lifecycle of the background Cloud SQL Auth Proxy."""

import logging
import os
import shutil
import stat
import subprocess
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from cloudsql_shell.core.config import AuthMode
from cloudsql_shell.core.connection import ConnectionIdentity
from cloudsql_shell.core.engines import MYSQL, EngineProfile
from cloudsql_shell.exceptions import ProxyStartError, ProxyStartTimeout
from cloudsql_shell.proxy.cleanup import CleanupSequencer

logger = logging.getLogger(__name__)

SOCKET_DIR_PREFIX = "cloudsql-shell-"


class ProxyState(str, Enum):
    """Proxy process states."""

    STARTING = "starting"
    READY = "ready"
    TIMED_OUT = "timed_out"
    TERMINATED = "terminated"


@dataclass
class ProxyProcess:
    """A spawned proxy and the socket it is expected to create."""

    pid: int
    socket_dir: str
    socket_path: str
    process: subprocess.Popen
    state: ProxyState = ProxyState.STARTING


def build_proxy_command(
    proxy_binary: str,
    socket_dir: str,
    identity: ConnectionIdentity,
    auth_mode: AuthMode,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Build the proxy argument vector."""
    cmd = [
        proxy_binary,
        f"--unix-socket={socket_dir}",
        identity.connection_name,
    ]
    if auth_mode == AuthMode.IAM:
        cmd.append("--auto-iam-authn")
    cmd.append("--quiet")
    cmd.extend(extra_args)
    return cmd


def is_socket(path: str) -> bool:
    """Whether ``path`` exists and is a unix-domain socket."""
    try:
        return stat.S_ISSOCK(os.stat(path).st_mode)
    except OSError:
        return False


class ProxySupervisor:
    """Owns the socket directory and proxy process of one invocation."""

    def __init__(
        self,
        proxy_binary: str,
        socket_base_dir: str,
        cleanup: CleanupSequencer,
        poll_interval: float = 0.1,
        shutdown_grace: float = 5.0,
    ) -> None:
        """Initialize proxy supervisor.

        Args:
            proxy_binary: Proxy executable name or path.
            socket_base_dir: Directory in which the private socket directory is created.
            cleanup: Sequencer that receives the teardown steps.
            poll_interval: Seconds between socket readiness checks.
            shutdown_grace: Seconds to wait after SIGTERM before SIGKILL.
        """
        self.proxy_binary = proxy_binary
        self.socket_base_dir = socket_base_dir
        self.cleanup = cleanup
        self.poll_interval = poll_interval
        self.shutdown_grace = shutdown_grace

        self._socket_dir: str | None = None
        self._proxy: ProxyProcess | None = None

    @property
    def proxy(self) -> ProxyProcess | None:
        return self._proxy

    def _create_socket_dir(self) -> str:
        socket_dir = tempfile.mkdtemp(prefix=SOCKET_DIR_PREFIX, dir=self.socket_base_dir)
        # Owner-only before the proxy writes its socket into it
        os.chmod(socket_dir, stat.S_IRWXU)
        return socket_dir

    def start(
        self,
        identity: ConnectionIdentity,
        auth_mode: AuthMode,
        engine: EngineProfile = MYSQL,
        extra_args: Sequence[str] = (),
    ) -> ProxyProcess:
        """Create the socket directory and spawn the proxy.

        Raises:
            ProxyStartError: If the socket directory cannot be created or
                the proxy binary cannot be executed.
        """
        try:
            self._socket_dir = self._create_socket_dir()
        except OSError as e:
            raise ProxyStartError(
                f"Cannot create socket directory in {self.socket_base_dir}: {e}",
                {"socket_base_dir": self.socket_base_dir},
            ) from e
        self.cleanup.register_directory_removal(self._remove_socket_dir)
        logger.debug(f"Created socket directory {self._socket_dir}")

        cmd = build_proxy_command(
            self.proxy_binary, self._socket_dir, identity, auth_mode, extra_args
        )
        logger.info(f"Starting proxy: {' '.join(cmd)}")

        try:
            # Own session: terminal Ctrl-C belongs to the foreground client
            process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, start_new_session=True)
        except OSError as e:
            raise ProxyStartError(
                f"Cannot run proxy {self.proxy_binary!r}: {e}",
                {"proxy_binary": self.proxy_binary},
            ) from e

        self._proxy = ProxyProcess(
            pid=process.pid,
            socket_dir=self._socket_dir,
            socket_path=engine.socket_path(self._socket_dir, identity.connection_name),
            process=process,
        )
        self.cleanup.register_process_stop(self._stop_process)
        return self._proxy

    def wait_until_ready(self, timeout: float) -> ProxyProcess:
        """Poll until the proxy socket exists.

        Raises:
            ProxyStartError: If the proxy exits before creating its socket.
            ProxyStartTimeout: If the socket does not appear within ``timeout``.
        """
        proxy = self._proxy
        if proxy is None:
            raise ProxyStartError("Proxy has not been started")

        deadline = time.monotonic() + timeout
        while True:
            if is_socket(proxy.socket_path):
                proxy.state = ProxyState.READY
                logger.info(f"Proxy ready on {proxy.socket_path}")
                return proxy

            returncode = proxy.process.poll()
            if returncode is not None:
                proxy.state = ProxyState.TERMINATED
                raise ProxyStartError(
                    f"Proxy exited with status {returncode} before it was ready",
                    {"returncode": returncode},
                )

            if time.monotonic() >= deadline:
                proxy.state = ProxyState.TIMED_OUT
                raise ProxyStartTimeout(proxy.socket_path, timeout)

            time.sleep(self.poll_interval)

    def _stop_process(self) -> None:
        proxy = self._proxy
        if proxy is None:
            return

        process = proxy.process
        if process.poll() is not None:
            proxy.state = ProxyState.TERMINATED
            return

        try:
            process.terminate()
        except ProcessLookupError:
            pass

        try:
            process.wait(timeout=self.shutdown_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"Proxy {proxy.pid} ignored SIGTERM, killing it")
            try:
                process.kill()
                process.wait()
            except (ProcessLookupError, ChildProcessError):
                pass
        except ChildProcessError:
            pass

        proxy.state = ProxyState.TERMINATED
        logger.debug(f"Proxy {proxy.pid} stopped")

    def _remove_socket_dir(self) -> None:
        if self._socket_dir is None:
            return
        shutil.rmtree(self._socket_dir, ignore_errors=True)
        logger.debug(f"Removed socket directory {self._socket_dir}")

    def shutdown(self) -> None:
        """Stop the proxy and remove its directory. Never raises."""
        for step in (self._stop_process, self._remove_socket_dir):
            try:
                step()
            except Exception as e:
                logger.warning(f"Proxy shutdown step failed: {e}")
