"""Pytest configuration and fixtures.

This module provides a fake Cloud SQL Auth Proxy so the supervisor can be
exercised against real processes and real unix sockets.
"""

import os
import shutil
import stat
import sys
import tempfile
import textwrap

import pytest

from cloudsql_shell.core.config import get_settings
from cloudsql_shell.core.connection import ConnectionIdentity


FAKE_PROXY_SOURCE = textwrap.dedent(
    """
    import os
    import signal
    import socket
    import sys
    import time

    MODE = {mode!r}
    RECORD = {record!r}

    with open(RECORD + ".pid.tmp", "w") as f:
        f.write(str(os.getpid()))
    os.replace(RECORD + ".pid.tmp", RECORD + ".pid")

    args = sys.argv[1:]
    with open(RECORD, "w") as f:
        f.write("\\n".join(args))

    if MODE == "exit":
        sys.exit(3)

    if MODE == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    if MODE in ("serve", "stubborn"):
        socket_dir = next(a.split("=", 1)[1] for a in args if a.startswith("--unix-socket="))
        name = next(a for a in args if not a.startswith("--"))
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(os.path.join(socket_dir, name))
        sock.listen(1)

    time.sleep(60)
    """
)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached per process; start every test fresh."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def socket_base_dir():
    """Short base directory; unix socket paths are limited to ~100 bytes."""
    path = tempfile.mkdtemp(prefix="css-", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_proxy(tmp_path):
    """Factory writing an executable fake proxy.

    Modes:
        serve: binds the unix socket and waits.
        silent: never creates a socket.
        exit: exits with status 3 immediately.
        stubborn: binds the socket and ignores SIGTERM.

    Returns a ``(binary_path, record_path)`` tuple; the record file holds
    the arguments the proxy was started with, one per line, and a sibling
    ``.pid`` file holds its process id.
    """

    def _make(mode: str = "serve"):
        record = tmp_path / f"proxy-{mode}.args"
        script = tmp_path / f"fake_proxy_{mode}.py"
        script.write_text(FAKE_PROXY_SOURCE.format(mode=mode, record=str(record)))

        binary = tmp_path / f"fake-proxy-{mode}"
        binary.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
        return str(binary), record

    return _make


@pytest.fixture
def identity():
    """A short connection identity."""
    return ConnectionIdentity(project="p", region="r", instance="i")


def read_args(record) -> list[str]:
    """Arguments recorded by the fake proxy."""
    return record.read_text().splitlines()


def read_pid(record) -> int | None:
    """Process id written by the fake proxy, or None before it has started."""
    try:
        with open(f"{record}.pid") as f:
            return int(f.read())
    except (FileNotFoundError, ValueError):
        return None


def process_gone(pid: int) -> bool:
    """Whether ``pid`` is no longer running."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False
