"""Resolution of the Cloud SQL instance connection name."""

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

from cloudsql_shell.exceptions import ArgumentError, MissingConfiguration

logger = logging.getLogger(__name__)

UNSET_MARKER = "(unset)"


@dataclass(frozen=True)
class ConnectionIdentity:
    """Fully resolved ``project:region:instance`` target."""

    project: str
    region: str
    instance: str

    @property
    def connection_name(self) -> str:
        return f"{self.project}:{self.region}:{self.instance}"

    @classmethod
    def parse(cls, connection_name: str) -> "ConnectionIdentity":
        """Split a connection name into its parts.

        The name is split from the right so domain-scoped projects
        (``example.com:my-project``) keep their colon.

        Raises:
            ArgumentError: If any of the three parts is empty.
        """
        parts = connection_name.rsplit(":", 2)
        if len(parts) != 3 or not all(parts):
            raise ArgumentError(
                f"Invalid connection name {connection_name!r}; expected project:region:instance"
            )
        project, region, instance = parts
        return cls(project=project, region=region, instance=instance)


class ConfigDefaults(Protocol):
    """Source of default project and region values."""

    def project(self) -> str | None: ...

    def region(self) -> str | None: ...


class GcloudConfigDefaults:
    """Reads defaults from the active gcloud configuration."""

    def __init__(
        self,
        gcloud_binary: str = "gcloud",
        project_key: str = "core/project",
        region_key: str = "compute/region",
        timeout: float = 15.0,
    ) -> None:
        self.gcloud_binary = gcloud_binary
        self.project_key = project_key
        self.region_key = region_key
        self.timeout = timeout

    def get_value(self, key: str) -> str | None:
        """Return a gcloud config value, or None when it is not set."""
        try:
            result = subprocess.run(
                [self.gcloud_binary, "config", "get-value", key],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug(f"gcloud lookup of {key} failed: {e}")
            return None

        if result.returncode != 0:
            logger.debug(f"gcloud config get-value {key} exited {result.returncode}")
            return None

        value = result.stdout.strip()
        if not value or value == UNSET_MARKER:
            return None
        return value

    def project(self) -> str | None:
        return self.get_value(self.project_key)

    def region(self) -> str | None:
        return self.get_value(self.region_key)


def resolve_connection(
    target: str,
    project: str | None = None,
    region: str | None = None,
    defaults: ConfigDefaults | None = None,
) -> ConnectionIdentity:
    """Resolve the instance target into a ConnectionIdentity.

    Args:
        target: Instance short-name, or a full ``project:region:instance``
            connection name which is used as given.
        project: Project override.
        region: Region override.
        defaults: Source consulted for whichever override is missing.

    Returns:
        The resolved identity.

    Raises:
        ArgumentError: If the target is empty or a malformed connection name.
        MissingConfiguration: If project or region cannot be determined.
    """
    target = target.strip()
    if not target:
        raise ArgumentError("An instance name or connection name is required")

    if ":" in target:
        if project or region:
            logger.debug(f"Ignoring project/region overrides for connection name {target}")
        return ConnectionIdentity.parse(target)

    if defaults is None:
        defaults = GcloudConfigDefaults()

    if not project:
        project = defaults.project()
        if not project:
            raise MissingConfiguration("project")

    if not region:
        region = defaults.region()
        if not region:
            raise MissingConfiguration("region")

    identity = ConnectionIdentity(project=project, region=region, instance=target)
    logger.debug(f"Resolved connection name {identity.connection_name}")
    return identity
