"""Runs model-requested tool calls against the remote tool source and wraps errors."""

import json
import logging
from typing import (
    Any,
    Dict,
    Iterable,
    Mapping,
)

from entrachat.agent import diagnostics
from entrachat.common import (
    AnsiColors,
    colored_print,
    truncate,
)
from entrachat.core.schema import (
    ToolCall,
    ToolDescriptor,
    ToolResult,
    ToolStatus,
)
from entrachat.remote.tool_source import RemoteToolSource

logger = logging.getLogger(__name__)

RESULT_PREVIEW_CHARS = 2048


class ToolExecutionError(RuntimeError):
    """Raised when a tool call's arguments cannot be turned into keyword arguments."""


def parse_arguments(raw: str | None) -> Dict[str, Any]:
    """
    Decode the model's raw argument payload.

    Parameters
    ----------
    raw:
        JSON text produced by the model.  ``None``, blank and ``"{}"`` all mean "no arguments".

    Returns
    -------
    dict
        Argument name -> value.

    Raises
    ------
    json.JSONDecodeError
        If *raw* is not valid JSON.
    ToolExecutionError
        If *raw* decodes to something other than a JSON object.
    """
    if raw is None or not raw.strip() or raw.strip() == "{}":
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ToolExecutionError(
            f"Tool arguments must be a JSON object, got {type(parsed).__name__}"
        )
    return parsed


def result_to_payload(result: Any) -> Dict[str, Any]:
    """Normalize whatever the transport returned into a JSON-compatible mapping."""
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", exclude_none=True)
    if isinstance(result, Mapping):
        return dict(result)
    return {"content": [{"type": "text", "text": str(result)}], "isError": False}


def find_server_error(payload: Mapping[str, Any]) -> tuple[bool, str | None]:
    """
    Scan a successful payload for a failure reported by the server itself.

    Returns ``(flagged, message)`` where *message* is the last text fragment that matched the
    error patterns, if any.
    """
    flagged = payload.get("isError") is True
    message: str | None = None
    content = payload.get("content")
    if isinstance(content, list):
        for item in content:
            text = item.get("text") if isinstance(item, Mapping) else None
            if isinstance(text, str) and diagnostics.is_error_text(text):
                flagged = True
                message = text
    return flagged, message


class ToolInvoker:
    """Executes one tool call at a time and always answers with a :class:`ToolResult`."""

    def __init__(self, tools: Iterable[ToolDescriptor], source: RemoteToolSource) -> None:
        self._tools: Dict[str, ToolDescriptor] = {tool.name: tool for tool in tools}
        self._source = source

    async def invoke(self, call: ToolCall) -> ToolResult:
        """
        Look up *call* among the discovered tools, run it and classify the outcome.

        Failures never propagate: an unknown tool, malformed arguments or a transport fault all
        come back as an error result so the model can read it and adapt.
        """
        name, raw_args = call.name, call.arguments
        colored_print(f"  → {name}({raw_args})", AnsiColors.GRAY)

        if name not in self._tools:
            logger.warning("Model requested unknown tool '%s'", name)
            return ToolResult(
                call_id=call.id,
                tool_name=name,
                content=json.dumps({"error": f"Tool '{name}' not found"}),
                status=ToolStatus.NOT_FOUND,
                error_detail=f"Tool '{name}' not found",
            )

        try:
            args = parse_arguments(raw_args)
            logger.debug("Calling tool '%s' with args=%s", name, args)
            result = await self._source.call_tool(name, args)
            payload = result_to_payload(result)
            content = json.dumps(payload, ensure_ascii=False)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Tool '%s' raised", name, exc_info=True)
            diagnostics.report_tool_exception(name, raw_args, exc)
            return ToolResult(
                call_id=call.id,
                tool_name=name,
                content=json.dumps(
                    {
                        "error": str(exc),
                        "errorType": diagnostics.qualified_name(exc),
                        "tool": name,
                        "arguments": raw_args,
                    }
                ),
                status=ToolStatus.FAILED,
                error_detail=str(exc),
            )

        status = ToolStatus.OK
        detail = None
        flagged, server_message = find_server_error(payload)
        if flagged:
            status = ToolStatus.SERVER_ERROR
            detail = server_message
            diagnostics.report_server_error(name, raw_args, server_message)

        colored_print(f"    Result: {truncate(content, RESULT_PREVIEW_CHARS)}", AnsiColors.GRAY)
        logger.info("Tool '%s' returned %d chars (status=%s)", name, len(content), status.value)
        return ToolResult(
            call_id=call.id,
            tool_name=name,
            content=content,
            status=status,
            error_detail=detail,
        )
