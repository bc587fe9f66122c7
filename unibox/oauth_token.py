"""
URL and token helpers for the loopback implicit-grant flow.

The implicit grant delivers the access token in the fragment of the redirect
URL. Browsers never send fragments to servers, so the flow serves a tiny page
on the first redirect that re-navigates to a second path with the full URL
(fragment included) percent-encoded into the query string. The helpers here
build the URLs involved and parse the token back out of the second request.
"""

import secrets
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constants import (
    AUTHORIZE_PATH_SUFFIX,
    TOKEN_PATH_SUFFIX,
    URL_WITH_FRAGMENT_PARAM,
    OAUTH_AUTHORIZE_URL,
)
from .utils import MalformedRedirect, AuthorizationDenied


_REDIRECT_HTML = (
    "<html><script type='text/javascript'>function redirect() "
    "{document.location.href = '%s?" + URL_WITH_FRAGMENT_PARAM + "=' + "
    "encodeURIComponent(document.location.href);}</script>"
    "<body onload='redirect()'/></html>"
)


def new_state() -> str:
    """Generate a 128-bit anti-forgery state value as hex."""
    return secrets.token_hex(16)


@dataclass(frozen=True)
class RedirectEndpoint:
    """The two loopback URIs derived from a redirect base."""

    base: str
    authorize: str
    token: str
    host: str
    port: int

    @classmethod
    def from_base(cls, redirect_base_uri: str) -> 'RedirectEndpoint':
        """
        Derive the endpoint from a base such as "http://localhost:8085/".

        Raises:
            ValueError: If the base is not a plain http URI.
        """
        parsed = urllib.parse.urlsplit(redirect_base_uri)
        if parsed.scheme != 'http':
            raise ValueError(f"redirect base must be an http URI: {redirect_base_uri!r}")
        if not parsed.hostname:
            raise ValueError(f"redirect base has no host: {redirect_base_uri!r}")
        if parsed.query or parsed.fragment:
            raise ValueError(f"redirect base cannot carry a query or fragment: {redirect_base_uri!r}")

        base = redirect_base_uri if redirect_base_uri.endswith('/') else redirect_base_uri + '/'
        return cls(
            base=base,
            authorize=base + AUTHORIZE_PATH_SUFFIX,
            token=base + TOKEN_PATH_SUFFIX,
            host=parsed.hostname,
            port=parsed.port or 80,
        )

    @property
    def authorize_path(self) -> str:
        return urllib.parse.urlsplit(self.authorize).path

    @property
    def token_path(self) -> str:
        return urllib.parse.urlsplit(self.token).path

    def redirect_document(self) -> bytes:
        """The static page served on the authorize path."""
        return (_REDIRECT_HTML % (self.token_path,)).encode('utf-8')


@dataclass(frozen=True)
class AuthorizationRequest:
    """One login attempt's parameters. Discarded when the attempt ends."""

    app_key: str
    redirect_base_uri: str
    anti_forgery_state: str = field(default_factory=new_state)

    @property
    def endpoint(self) -> RedirectEndpoint:
        return RedirectEndpoint.from_base(self.redirect_base_uri)

    @property
    def authorize_url(self) -> str:
        return build_authorize_url(self.app_key, self.endpoint.authorize, self.anti_forgery_state)


@dataclass(frozen=True)
class OAuthResult:
    access_token: str
    account_uid: str
    state: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    account_id: Optional[str] = None


def build_authorize_url(app_key: str, redirect_uri: str, state: str,
                        authorize_url: str = OAUTH_AUTHORIZE_URL) -> str:
    """
    Build the provider authorization URL for the implicit grant.

    Args:
        app_key: The application key (OAuth client_id).
        redirect_uri: The primary loopback redirect URI.
        state: The anti-forgery state for this attempt.
        authorize_url: The provider authorization endpoint.

    Returns:
        The full authorization URL.
    """
    params = {
        'client_id': app_key,
        'redirect_uri': redirect_uri,
        'response_type': 'token',
        'state': state,
    }
    return f"{authorize_url}?{urllib.parse.urlencode(params)}"


def _first(params: Dict[str, List[str]], name: str) -> Optional[str]:
    values = params.get(name)
    if not values:
        return None
    return values[0]


def extract_url_with_fragment(query: Dict[str, List[str]]) -> str:
    """
    Get the original redirect URL out of the second redirect's query.

    Args:
        query: Parsed query string (as returned by parse_qs).

    Raises:
        MalformedRedirect: If the parameter is missing or not a single value.
    """
    values = query.get(URL_WITH_FRAGMENT_PARAM)
    if not values:
        raise MalformedRedirect(f"missing '{URL_WITH_FRAGMENT_PARAM}' query parameter")
    if len(values) != 1:
        raise MalformedRedirect(f"expected a single '{URL_WITH_FRAGMENT_PARAM}' value, got {len(values)}")
    return values[0]


def parse_token_fragment(url: str) -> Dict[str, List[str]]:
    """
    Parse the fragment of an implicit-grant redirect URL.

    Raises:
        MalformedRedirect: If the URL has no fragment.
        AuthorizationDenied: If the provider returned an error.
    """
    try:
        parsed = urllib.parse.urlsplit(url)
    except ValueError as e:
        raise MalformedRedirect(f"redirect URL cannot be parsed: {e}")

    if not parsed.fragment:
        raise MalformedRedirect("redirect URL has no fragment")

    params = urllib.parse.parse_qs(parsed.fragment, keep_blank_values=True)

    error = _first(params, 'error')
    if error:
        raise AuthorizationDenied(error, _first(params, 'error_description'))

    return params


def result_from_fragment(params: Dict[str, List[str]]) -> OAuthResult:
    """
    Build an OAuthResult from parsed fragment parameters.

    The state is copied as-is; comparing it against the generated value is the
    caller's job.

    Raises:
        MalformedRedirect: If the access token is missing.
    """
    access_token = _first(params, 'access_token')
    if not access_token:
        raise MalformedRedirect("fragment has no access_token")

    expires_in = _first(params, 'expires_in')
    try:
        expires_in = int(expires_in) if expires_in else None
    except ValueError:
        raise MalformedRedirect(f"invalid expires_in: {expires_in!r}")

    account_id = _first(params, 'account_id')
    return OAuthResult(
        access_token=access_token,
        account_uid=_first(params, 'uid') or account_id or '',
        state=_first(params, 'state') or '',
        token_type=_first(params, 'token_type'),
        expires_in=expires_in,
        account_id=account_id,
    )
