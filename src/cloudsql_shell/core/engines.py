"""Per-engine details of how a database client reaches the proxy socket."""

import os
from dataclasses import dataclass, field
from typing import Callable

SERVICE_ACCOUNT_SUFFIX = ".gserviceaccount.com"


def local_part(principal: str) -> str:
    """Return the text before ``@`` in a principal identifier."""
    return principal.split("@", 1)[0]


def _postgres_iam_user(principal: str) -> str:
    # Cloud SQL for PostgreSQL names service-account users without the domain suffix
    if principal.endswith(SERVICE_ACCOUNT_SUFFIX):
        return principal[: -len(SERVICE_ACCOUNT_SUFFIX)]
    return principal


@dataclass(frozen=True)
class EngineProfile:
    """Client binary, flags and socket layout for one database engine."""

    name: str
    client_binary: str
    socket_env_var: str
    user_flag: str
    password_flag: str
    cleartext_opt_in: bool = False
    socket_file: str | None = None
    iam_user: Callable[[str], str] = field(default=local_part)

    def socket_path(self, socket_dir: str, connection_name: str) -> str:
        """Path of the socket file the proxy creates for a connection."""
        path = os.path.join(socket_dir, connection_name)
        if self.socket_file:
            path = os.path.join(path, self.socket_file)
        return path

    def socket_env_value(self, socket_dir: str, connection_name: str) -> str:
        """Value the client expects in its socket environment variable."""
        if self.socket_file:
            # libpq takes the directory holding the socket
            return os.path.join(socket_dir, connection_name)
        return self.socket_path(socket_dir, connection_name)

    def iam_username(self, principal: str) -> str:
        """Database user name for an IAM principal."""
        return self.iam_user(principal)


MYSQL = EngineProfile(
    name="mysql",
    client_binary="mysql",
    socket_env_var="MYSQL_UNIX_PORT",
    user_flag="--user",
    password_flag="--password",
    cleartext_opt_in=True,
)

POSTGRES = EngineProfile(
    name="postgres",
    client_binary="psql",
    socket_env_var="PGHOST",
    user_flag="--username",
    password_flag="--password",
    socket_file=".s.PGSQL.5432",
    iam_user=_postgres_iam_user,
)

ENGINES = {profile.name: profile for profile in (MYSQL, POSTGRES)}


def get_engine(name: str) -> EngineProfile:
    """Look up an engine profile by name.

    Raises:
        KeyError: If the engine is unknown.
    """
    return ENGINES[name.lower()]
