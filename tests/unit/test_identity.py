"""Unit tests for database user inference."""

from unittest.mock import MagicMock, patch

import google.auth.exceptions
import httpx
import pytest

from cloudsql_shell.auth.identity import IdentityResolver, parse_impersonation_chain
from cloudsql_shell.exceptions import IdentityResolutionError


@pytest.fixture
def mock_credentials():
    """Patch google.auth.default with refreshed credentials."""
    credentials = MagicMock()
    credentials.token = "ya29.token"
    with patch("cloudsql_shell.auth.identity.google.auth.default") as mock_default:
        mock_default.return_value = (credentials, "proj")
        yield credentials


@pytest.fixture
def mock_userinfo():
    """Patch the user-info HTTP call."""
    with patch("cloudsql_shell.auth.identity.httpx.get") as mock_get:
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.return_value = {"email": "alice@example.com", "email_verified": True}
        mock_get.return_value = response
        yield mock_get


class TestParseImpersonationChain:
    """Tests for parse_impersonation_chain."""

    def test_empty(self):
        """None and empty strings give an empty chain."""
        assert parse_impersonation_chain(None) == ()
        assert parse_impersonation_chain("") == ()

    def test_splits_and_strips(self):
        """Entries are split on commas and stripped."""
        chain = parse_impersonation_chain(" a@x.com, b@y.com ,")

        assert chain == ("a@x.com", "b@y.com")


class TestIdentityResolverChain:
    """Username from an impersonation chain."""

    def test_last_element_is_target(self, mock_userinfo):
        """Only the last principal determines the user."""
        resolver = IdentityResolver()

        assert resolver.resolve(("a@x.com", "b@y.com")) == "b"
        mock_userinfo.assert_not_called()

    def test_intermediate_entries_ignored(self):
        """Changing intermediate hops does not change the user."""
        resolver = IdentityResolver()

        first = resolver.resolve(parse_impersonation_chain("a@x.com,b@y.com"))
        second = resolver.resolve(parse_impersonation_chain("z@q.com,c@d.com,b@y.com"))

        assert first == second == "b"

    def test_principal_is_full_email(self):
        """resolve_principal returns the whole identifier."""
        principal = IdentityResolver().resolve_principal(("sa@proj.iam.gserviceaccount.com",))

        assert principal == "sa@proj.iam.gserviceaccount.com"


class TestIdentityResolverDefaultCredentials:
    """Username from Application Default Credentials."""

    def test_userinfo_email(self, mock_credentials, mock_userinfo):
        """Email from the user-info endpoint gives the user."""
        resolver = IdentityResolver(userinfo_url="https://userinfo.test/v1", timeout=3)

        assert resolver.resolve() == "alice"

        mock_credentials.refresh.assert_called_once()
        mock_userinfo.assert_called_once_with(
            "https://userinfo.test/v1",
            headers={"Authorization": "Bearer ya29.token"},
            timeout=3,
        )

    def test_missing_email(self, mock_credentials, mock_userinfo):
        """A response without email is an error."""
        mock_userinfo.return_value.json.return_value = {"sub": "1234"}

        with pytest.raises(IdentityResolutionError, match="no email"):
            IdentityResolver().resolve()

    def test_non_object_response(self, mock_credentials, mock_userinfo):
        """A non-object JSON body is an error."""
        mock_userinfo.return_value.json.return_value = ["alice@example.com"]

        with pytest.raises(IdentityResolutionError):
            IdentityResolver().resolve()

    def test_invalid_json(self, mock_credentials, mock_userinfo):
        """An unparsable body is an error."""
        mock_userinfo.return_value.json.side_effect = ValueError("Expecting value")

        with pytest.raises(IdentityResolutionError, match="not valid JSON"):
            IdentityResolver().resolve()

    def test_http_error(self, mock_credentials, mock_userinfo):
        """Transport failures are not retried."""
        mock_userinfo.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(IdentityResolutionError):
            IdentityResolver().resolve()

        assert mock_userinfo.call_count == 1

    def test_invalid_url(self, mock_credentials, mock_userinfo):
        """A malformed user-info URL is an identity error, not a crash."""
        mock_userinfo.side_effect = httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        with pytest.raises(IdentityResolutionError, match="User-info request failed"):
            IdentityResolver(userinfo_url="https://userinfo.test/\x00").resolve()

    def test_http_status_error(self, mock_credentials, mock_userinfo):
        """Non-2xx responses are errors."""
        request = httpx.Request("GET", "https://userinfo.test")
        response = httpx.Response(401, request=request)
        mock_userinfo.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
            "401", request=request, response=response
        )

        with pytest.raises(IdentityResolutionError):
            IdentityResolver().resolve()

    def test_no_default_credentials(self, mock_userinfo):
        """Missing credentials are an error."""
        with patch(
            "cloudsql_shell.auth.identity.google.auth.default",
            side_effect=google.auth.exceptions.DefaultCredentialsError("no ADC"),
        ):
            with pytest.raises(IdentityResolutionError, match="default credentials"):
                IdentityResolver().resolve()

        mock_userinfo.assert_not_called()

    def test_refresh_failure(self, mock_credentials, mock_userinfo):
        """A failed token refresh is an error."""
        mock_credentials.refresh.side_effect = google.auth.exceptions.RefreshError("expired")

        with pytest.raises(IdentityResolutionError):
            IdentityResolver().resolve()

    def test_empty_token(self, mock_credentials, mock_userinfo):
        """Credentials without a token are an error."""
        mock_credentials.token = None

        with pytest.raises(IdentityResolutionError, match="no access token"):
            IdentityResolver().resolve()
