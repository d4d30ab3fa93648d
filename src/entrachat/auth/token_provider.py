"""
Bearer tokens for the MCP server.

The MCP server for Enterprise only accepts *delegated* tokens, i.e. tokens issued to a signed-in
user.  Two providers are available:

- :class:`StaticTokenProvider` hands out a token obtained elsewhere (``MCP_ACCESS_TOKEN``).
- :class:`MsalTokenProvider` signs the user in through MSAL.  Public clients use the device code
  flow; confidential clients (a client secret is configured) use the authorization code flow
  with a redirect to ``localhost``.  The MSAL token cache is kept under ``DATA_DIR`` so later
  runs can sign in silently.
"""

import asyncio
import logging
import threading
import webbrowser
from http.server import (
    BaseHTTPRequestHandler,
    HTTPServer,
)
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Protocol,
    TypeVar,
)
from urllib.parse import (
    parse_qsl,
    urlparse,
)

import msal

from entrachat.common import (
    AnsiColors,
    box_lines,
    colored_print,
)
from entrachat.config import Settings

logger = logging.getLogger(__name__)

AUTHORITY = "https://login.microsoftonline.com"
# MSAL adds offline_access (refresh tokens) on its own
MCP_SCOPES = ["https://mcp.svc.cloud.microsoft/MCP.User.Read.All"]
REDIRECT_URI = "http://localhost:8400"

_T = TypeVar("_T")


class AuthenticationError(RuntimeError):
    """Raised when no token could be obtained."""


class TokenProvider(Protocol):
    async def get_token(self) -> str:
        ...


class StaticTokenProvider:
    """Returns the same pre-issued token every time."""

    def __init__(self, token: str) -> None:
        if not token:
            raise AuthenticationError("Access token is empty")
        self._token = token

    async def get_token(self) -> str:
        return self._token


# ---------------------------------------------------------------------------
# Token cache
# ---------------------------------------------------------------------------
class PersistentTokenCache(msal.SerializableTokenCache):
    """MSAL token cache loaded from, and written back to, a file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        if path.is_file():
            try:
                self.deserialize(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable token cache %s: %s", path, exc)

    def persist(self) -> None:
        """Write the cache out if MSAL changed it."""
        if not self.has_state_changed:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.serialize(), encoding="utf-8")
        try:
            self.path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.path)


# ---------------------------------------------------------------------------
# Authorization code redirect
# ---------------------------------------------------------------------------
_SUCCESS_HTML = (
    "<html><body><h1>Authentication Successful!</h1>"
    "<p>You can close this window and return to the application.</p></body></html>"
)
_FAILURE_HTML = (
    "<html><body><h1>Authentication Failed</h1><p>Error: {error}</p><p>{description}</p>"
    "</body></html>"
)


class _RedirectHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        params = dict(parse_qsl(urlparse(self.path).query))
        if "code" in params:
            body = _SUCCESS_HTML
        else:
            body = _FAILURE_HTML.format(
                error=params.get("error", ""), description=params.get("error_description", "")
            )
        payload = body.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)
        self.server.auth_response = params  # type: ignore[attr-defined]

    def log_message(self, format: str, *args: Any) -> None:  # pylint: disable=redefined-builtin
        logger.debug("redirect listener: " + format, *args)


def wait_for_redirect(redirect_uri: str, stop: threading.Event) -> Dict[str, str]:
    """
    Serve *redirect_uri* until the browser lands on it, then return its query parameters.

    Returns an empty dict if *stop* is set first.
    """
    url = urlparse(redirect_uri)
    with HTTPServer((url.hostname or "localhost", url.port or 80), _RedirectHandler) as server:
        server.timeout = 1
        server.auth_response = {}  # type: ignore[attr-defined]
        while not server.auth_response and not stop.is_set():  # type: ignore[attr-defined]
            server.handle_request()
        return server.auth_response  # type: ignore[attr-defined]


async def _blocking(func: Callable[[], _T], abort: Callable[[], None]) -> _T:
    """Run a blocking MSAL step in a worker thread; *abort* unblocks it if we are cancelled."""
    try:
        return await asyncio.to_thread(func)
    except asyncio.CancelledError:
        abort()
        raise


# ---------------------------------------------------------------------------
# MSAL provider
# ---------------------------------------------------------------------------
class MsalTokenProvider:
    """
    Delegated sign-in through an MSAL client application.

    Order of attempts:
    1. silent acquisition for the first cached account (MSAL refreshes expired tokens)
    2. device code prompt for public clients, browser sign-in for confidential clients
    """

    def __init__(
        self,
        app: Any,
        cache: PersistentTokenCache | None = None,
        scopes: List[str] | None = None,
        redirect_uri: str = REDIRECT_URI,
    ) -> None:
        self._app = app
        self._cache = cache
        self.scopes = list(scopes or MCP_SCOPES)
        self.redirect_uri = redirect_uri

    @property
    def is_public_client(self) -> bool:
        # Only public client applications implement the device code flow
        return hasattr(self._app, "initiate_device_flow")

    async def get_token(self) -> str:
        colored_print("[Step 1] Authenticating user...", AnsiColors.CYAN)
        if self.is_public_client:
            colored_print("   No client secret found - using public client flow", AnsiColors.YELLOW)
        else:
            colored_print("   Using confidential client (client secret configured)", AnsiColors.CYAN)

        try:
            result = await asyncio.to_thread(self._acquire_silent)
            if result is None:
                if self.is_public_client:
                    result = await self._device_flow()
                else:
                    result = await self._auth_code_flow()
        finally:
            if self._cache is not None:
                self._cache.persist()

        token = result.get("access_token")
        if not token:
            raise AuthenticationError(
                f"Authentication failed: {result.get('error')} - "
                f"{result.get('error_description', '')}".strip()
            )
        self._print_success(result)
        return str(token)

    def _acquire_silent(self) -> Dict[str, Any] | None:
        accounts = self._app.get_accounts()
        if not accounts:
            colored_print("   No cached credentials found, need interactive login...",
                          AnsiColors.CYAN)
            return None

        account = accounts[0]
        colored_print(f"   Found cached credentials for: {account.get('username')}",
                      AnsiColors.CYAN)
        colored_print("   Attempting silent authentication...", AnsiColors.CYAN)
        result = self._app.acquire_token_silent(self.scopes, account=account)
        if result and "access_token" in result:
            colored_print("   ✓ Used cached token (no login required)", AnsiColors.GREEN)
            return result

        if result:
            logger.info("Silent sign-in rejected: %s", result.get("error"))
        colored_print("   Token expired, need interactive login...", AnsiColors.YELLOW)
        return None

    async def _device_flow(self) -> Dict[str, Any]:
        flow = await asyncio.to_thread(self._app.initiate_device_flow, scopes=self.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code request failed: {flow.get('error')} - "
                f"{flow.get('error_description', '')}".strip()
            )
        colored_print("\n".join(box_lines("Sign in required", [[flow["message"]]], indent="   ")),
                      AnsiColors.YELLOW)

        def abort() -> None:
            # MSAL stops polling once the flow looks expired
            flow["expires_at"] = 0

        return await _blocking(lambda: self._app.acquire_token_by_device_flow(flow), abort)

    async def _auth_code_flow(self) -> Dict[str, Any]:
        flow = self._app.initiate_auth_code_flow(self.scopes, redirect_uri=self.redirect_uri)
        colored_print(
            "\n".join(
                box_lines(
                    "Sign in required",
                    [[
                        "A browser window will open for you to sign in.",
                        "Please complete the authentication in the browser.",
                        f"If it does not open, visit: {flow['auth_uri']}",
                    ]],
                    indent="   ",
                )
            ),
            AnsiColors.YELLOW,
        )
        webbrowser.open(flow["auth_uri"])

        colored_print("   Waiting for browser authentication...", AnsiColors.CYAN)
        stop = threading.Event()
        params = await _blocking(lambda: wait_for_redirect(self.redirect_uri, stop), stop.set)
        if "code" not in params:
            raise AuthenticationError(
                f"Authentication failed: {params.get('error')} - "
                f"{params.get('error_description', '')}".strip()
            )

        colored_print("   ✓ Authorization code received", AnsiColors.GREEN)
        colored_print("   Exchanging authorization code for tokens...", AnsiColors.CYAN)
        return await asyncio.to_thread(self._app.acquire_token_by_auth_code_flow, flow, params)

    @staticmethod
    def _print_success(result: Dict[str, Any]) -> None:
        claims = result.get("id_token_claims") or {}
        colored_print("   ✓ Authentication successful!", AnsiColors.GREEN)
        colored_print(f"   ✓ User: {claims.get('preferred_username', 'Unknown')}",
                      AnsiColors.GREEN)
        if "expires_in" in result:
            colored_print(f"   ✓ Token expires in: {result['expires_in']}s", AnsiColors.GREEN)


def load_token_provider(settings: Settings) -> TokenProvider:
    """Pick the token provider the settings call for."""
    if settings.MCP_ACCESS_TOKEN:
        logger.info("Using pre-issued MCP access token")
        return StaticTokenProvider(settings.MCP_ACCESS_TOKEN)
    if not (settings.AZURE_TENANT_ID and settings.AZURE_CLIENT_ID):
        raise AuthenticationError("Azure Tenant ID and Client ID are required to sign in")

    cache = PersistentTokenCache(
        settings.data_path
        / f"msal_token_cache_{settings.AZURE_TENANT_ID}_{settings.AZURE_CLIENT_ID}.json"
    )
    authority = f"{AUTHORITY}/{settings.AZURE_TENANT_ID}"
    if settings.AZURE_CLIENT_SECRET:
        app: Any = msal.ConfidentialClientApplication(
            settings.AZURE_CLIENT_ID,
            client_credential=settings.AZURE_CLIENT_SECRET,
            authority=authority,
            token_cache=cache,
        )
    else:
        app = msal.PublicClientApplication(
            settings.AZURE_CLIENT_ID, authority=authority, token_cache=cache
        )
    return MsalTokenProvider(app, cache)
