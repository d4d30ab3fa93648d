"""
Operator-facing diagnostics.

Nothing here changes what the model sees.  These helpers classify failures by their text and
print framed hint blocks so whoever runs the console can tell an expired token from a missing
permission or a bad Graph URL.
"""

import logging
import re
import traceback
from enum import Enum
from typing import (
    List,
    Sequence,
)

from entrachat.common import (
    AnsiColors,
    box_lines,
    colored_print,
)

logger = logging.getLogger(__name__)

# Heuristic: the MCP server may report failures only through prose.
_SERVER_ERROR_PATTERNS = (
    re.compile(r"^error", re.IGNORECASE),
    re.compile(r"error:", re.IGNORECASE),
    re.compile(r"failed", re.IGNORECASE),
    re.compile(r"no scopes found", re.IGNORECASE),
    re.compile(r"unauthorized", re.IGNORECASE),
    re.compile(r"forbidden", re.IGNORECASE),
)


class ErrorHint(str, Enum):
    """Failure classes recognised from error text."""

    SCOPE_MISMATCH = "scope_mismatch"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
def is_error_text(text: str) -> bool:
    """True if a tool's text output looks like a server-reported failure."""
    return any(pattern.search(text) for pattern in _SERVER_ERROR_PATTERNS)


def classify_server_error(message: str | None) -> ErrorHint | None:
    """Pick the hint for an error embedded in a successful tool response."""
    if not message:
        return None
    lowered = message.lower()
    if "no scopes found" in lowered:
        return ErrorHint.SCOPE_MISMATCH
    if "401" in lowered or "unauthorized" in lowered:
        return ErrorHint.UNAUTHORIZED
    if "403" in lowered or "forbidden" in lowered:
        return ErrorHint.FORBIDDEN
    return None


def classify_exception_message(message: str) -> ErrorHint | None:
    """Pick the hint for an exception raised while invoking a tool."""
    lowered = message.lower()
    if "401" in lowered or "unauthorized" in lowered:
        return ErrorHint.UNAUTHORIZED
    if "403" in lowered or "forbidden" in lowered:
        return ErrorHint.FORBIDDEN
    if "404" in lowered or "not found" in lowered:
        return ErrorHint.NOT_FOUND
    if "400" in lowered or "bad request" in lowered:
        return ErrorHint.BAD_REQUEST
    return None


def http_status_of(exc: BaseException) -> int | None:
    """HTTP status code carried by *exc*, if any (httpx, openai and friends)."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def inner_exception(exc: BaseException) -> BaseException | None:
    """The chained fault behind *exc*; for exception groups, the first member."""
    nested = getattr(exc, "exceptions", None)
    if nested:
        return nested[0]
    return exc.__cause__ or exc.__context__


def qualified_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


# ---------------------------------------------------------------------------
# Hint text
# ---------------------------------------------------------------------------
_SERVER_HINTS = {
    ErrorHint.SCOPE_MISMATCH: [
        "DIAGNOSIS: Token scope mismatch",
        "",
        "The MCP server expects a DELEGATED (user) token with scopes",
        "like 'User.Read', but you're using a CLIENT CREDENTIALS token",
        "which has APPLICATION permissions (no user scopes).",
        "",
        "POSSIBLE SOLUTIONS:",
        "1. Sign in interactively (device code flow) for a user token",
        "2. Use an on-behalf-of flow if you have a user assertion",
        "3. Check if the MCP server supports app-only authentication",
    ],
    ErrorHint.UNAUTHORIZED: [
        "HINT: 401 Unauthorized - Authentication failed",
        "      The token may be invalid or expired",
    ],
    ErrorHint.FORBIDDEN: [
        "HINT: 403 Forbidden - Insufficient permissions",
        "      Add required Graph API permissions in Entra ID",
    ],
}

_EXCEPTION_HINTS = {
    ErrorHint.UNAUTHORIZED: [
        "HINT: 401 Unauthorized - Check API permissions",
        "      Ensure the app has the required Graph permissions",
    ],
    ErrorHint.FORBIDDEN: [
        "HINT: 403 Forbidden - Insufficient permissions",
        "      The app may need admin consent for this operation",
    ],
    ErrorHint.NOT_FOUND: [
        "HINT: 404 Not Found - Invalid endpoint or resource",
        "      Check the relativeUrl parameter",
    ],
    ErrorHint.BAD_REQUEST: [
        "HINT: 400 Bad Request - Malformed request",
        "      Check the query parameters and syntax",
    ],
}


def _emit(lines: Sequence[str]) -> None:
    block = "\n".join(lines)
    logger.debug("%s", block.strip())
    colored_print(f"\n{block}\n", AnsiColors.RED)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------
def server_error_block(tool_name: str, arguments: str, server_message: str | None) -> List[str]:
    sections: List[List[str]] = [
        [
            f"Tool Name:     {tool_name}",
            f"Arguments:     {arguments}",
            f"Server Error:  {server_message or 'See response below'}",
        ]
    ]
    hint = classify_server_error(server_message)
    if hint is not None:
        sections.append(_SERVER_HINTS[hint])
    return box_lines("MCP SERVER ERROR RESPONSE", sections)


def tool_error_block(tool_name: str, arguments: str, exc: BaseException) -> List[str]:
    details = [
        f"Tool Name:     {tool_name}",
        f"Arguments:     {arguments}",
        f"Error Type:    {qualified_name(exc)}",
        f"Error Message: {exc}",
    ]
    status = http_status_of(exc)
    if status is not None:
        details.append(f"HTTP Status:   {status}")

    sections: List[List[str]] = [details]
    inner = inner_exception(exc)
    if inner is not None:
        sections.append(
            [
                "Inner Exception:",
                f"  Type:    {qualified_name(inner)}",
                f"  Message: {inner}",
            ]
        )
    hint = classify_exception_message(str(exc))
    if hint is not None:
        sections.append(_EXCEPTION_HINTS[hint])

    frames = traceback.format_tb(exc.__traceback__)[:5]
    if frames:
        trace = ["Stack Trace (first 5 frames):"]
        trace += [f"  {frame.strip().splitlines()[0]}" for frame in frames]
        sections.append(trace)
    return box_lines("TOOL ERROR DETAILS", sections)


def report_server_error(tool_name: str, arguments: str, server_message: str | None) -> None:
    """Print the block for a structurally successful response that reports a failure."""
    _emit(server_error_block(tool_name, arguments, server_message))


def report_tool_exception(tool_name: str, arguments: str, exc: BaseException) -> None:
    """Print the block for an exception raised while invoking a tool."""
    _emit(tool_error_block(tool_name, arguments, exc))


def report_fatal_error(exc: BaseException) -> None:
    """
    Explain a startup failure (configuration, sign-in, MCP connection).

    401 and 405 failures get remediation steps; everything else is reported with its type, any
    inner exception and the traceback.
    """
    lines = [f"\n✗ Error: {exc}", f"\nError Type: {type(exc).__name__}"]
    inner = inner_exception(exc)
    if inner is not None:
        lines.append(f"Inner Exception: {inner}")

    message = str(exc)
    if "401" in message or "Unauthorized" in message:
        lines += [
            "\n⚠️  Authentication Error:",
            "The app registration needs Microsoft Graph API permissions.",
            "\nRequired steps in the Entra admin center:",
            "  1. Go to Identity → Applications → App registrations",
            "  2. Select your app registration",
            "  3. Click 'API permissions' → 'Add a permission'",
            "  4. Select 'Microsoft Graph' and add User.Read.All, Directory.Read.All",
            "  5. Click 'Grant admin consent for [tenant]'",
            "\nFor more info: https://learn.microsoft.com/graph/mcp-server/overview",
        ]
    elif "405" in message or "Method Not Allowed" in message:
        lines += [
            "\n⚠️  The MCP endpoint may not support the selected transport.",
            "Try --transport streamable-http (or sse) to switch connection method.",
        ]

    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    lines.append(f"\nStack Trace:\n{trace}")
    logger.debug("Fatal error: %s", exc, exc_info=exc)
    colored_print("\n".join(lines), AnsiColors.RED)
