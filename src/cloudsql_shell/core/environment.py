"""Environment exported to the proxied subcommand."""

import os
from collections.abc import Mapping, Sequence

from cloudsql_shell.core.config import AuthMode
from cloudsql_shell.core.connection import ConnectionIdentity
from cloudsql_shell.core.engines import MYSQL, EngineProfile

CLEARTEXT_PLUGIN_VAR = "LIBMYSQL_ENABLE_CLEARTEXT_PLUGIN"


def build_environment(
    identity: ConnectionIdentity,
    auth_mode: AuthMode,
    socket_dir: str,
    engine: EngineProfile = MYSQL,
    chain: Sequence[str] = (),
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the subcommand environment.

    Args:
        identity: Resolved connection target.
        auth_mode: IAM or password authentication.
        socket_dir: Private directory the proxy listens in.
        engine: Engine profile deciding the client-specific variables.
        chain: Impersonation chain, exported only when non-empty.
        base: Environment to extend; defaults to a copy of ``os.environ``.

    Returns:
        A new mapping. ``base`` is left untouched.
    """
    env = dict(os.environ if base is None else base)
    connection_name = identity.connection_name

    env.update(
        {
            "CLOUDSQL_CONNECTION_NAME": connection_name,
            "CLOUDSQL_PROJECT": identity.project,
            "CLOUDSQL_REGION": identity.region,
            "CLOUDSQL_INSTANCE": identity.instance,
            "CLOUDSQL_AUTH_MODE": auth_mode.value,
            "CLOUDSQL_SOCKET": engine.socket_path(socket_dir, connection_name),
            engine.socket_env_var: engine.socket_env_value(socket_dir, connection_name),
        }
    )

    if chain:
        env["CLOUDSQL_IMPERSONATE_SERVICE_ACCOUNT"] = ",".join(chain)
    else:
        env.pop("CLOUDSQL_IMPERSONATE_SERVICE_ACCOUNT", None)

    # IAM tokens are sent to the local socket in cleartext
    if auth_mode == AuthMode.IAM and engine.cleartext_opt_in:
        env[CLEARTEXT_PLUGIN_VAR] = "1"
    else:
        env.pop(CLEARTEXT_PLUGIN_VAR, None)

    return env
