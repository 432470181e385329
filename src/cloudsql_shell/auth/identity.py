"""Derivation of the database user from the caller's Google identity."""

import logging
from collections.abc import Sequence

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import httpx

from cloudsql_shell.core.engines import local_part
from cloudsql_shell.exceptions import IdentityResolutionError

logger = logging.getLogger(__name__)

USERINFO_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
]


def parse_impersonation_chain(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated impersonation chain, dropping blank entries."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


class IdentityResolver:
    """Resolves the principal a proxied session acts as.

    With an impersonation chain the target principal is its last entry.
    Without one, the caller's Application Default Credentials are exchanged
    for a bearer token and the user-info endpoint reports the email.
    """

    def __init__(
        self,
        userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo",
        timeout: float = 10.0,
    ) -> None:
        self.userinfo_url = userinfo_url
        self.timeout = timeout

    def _access_token(self) -> str:
        """Obtain a bearer token for the default credentials."""
        try:
            credentials, _ = google.auth.default(scopes=USERINFO_SCOPES)
            credentials.refresh(google.auth.transport.requests.Request())
        except google.auth.exceptions.GoogleAuthError as e:
            raise IdentityResolutionError(f"Cannot obtain default credentials: {e}") from e

        if not credentials.token:
            raise IdentityResolutionError("Default credentials returned no access token")
        return credentials.token

    def _userinfo_email(self, token: str) -> str:
        """Fetch the email of the token's owner from the user-info endpoint."""
        try:
            response = httpx.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise IdentityResolutionError(f"User-info request failed: {e}") from e
        except ValueError as e:
            raise IdentityResolutionError("User-info response is not valid JSON") from e

        email = payload.get("email") if isinstance(payload, dict) else None
        if not email or not isinstance(email, str):
            raise IdentityResolutionError("User-info response has no email field")
        return email

    def resolve_principal(self, chain: Sequence[str] = ()) -> str:
        """Return the full principal identifier the session acts as.

        Raises:
            IdentityResolutionError: If the credential or user-info call fails.
        """
        if chain:
            principal = chain[-1]
            logger.debug(f"Using impersonation target {principal}")
            return principal

        logger.info("Looking up the default credentials' email")
        email = self._userinfo_email(self._access_token())
        logger.debug(f"Default credentials belong to {email}")
        return email

    def resolve(self, chain: Sequence[str] = ()) -> str:
        """Return the database user name (local part of the principal)."""
        return local_part(self.resolve_principal(chain))
