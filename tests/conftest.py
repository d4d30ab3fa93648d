"""Shared test doubles for the tool invoker and conversation tests."""

import logging
from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Tuple,
)

import pytest

from entrachat.config import Settings
from entrachat.core.schema import ToolDescriptor
from entrachat.main import _init_logging
from entrachat.tools import (
    GRAPH_GET_TOOL,
    LIST_PROPERTIES_TOOL,
    SUGGEST_QUERIES_TOOL,
    describe_tool,
)


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Shape of an MCP ``CallToolResult`` after serialization."""
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class FakeToolSource:
    """Remote tool source that answers from a script and records every call."""

    def __init__(self, responses: Dict[str, Any] | None = None) -> None:
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        response = self.responses.get(name, text_result("ok"))
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(arguments)
        return response


@pytest.fixture
def graph_tools() -> List[ToolDescriptor]:
    return [
        describe_tool(SUGGEST_QUERIES_TOOL, "Suggest Graph queries for an intent"),
        describe_tool(GRAPH_GET_TOOL, "Run a GET against Microsoft Graph"),
        describe_tool(LIST_PROPERTIES_TOOL, "List properties of a Graph entity"),
    ]


@contextmanager
def console_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Configure logging exactly as the entry point does with default settings."""
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = []
    try:
        _init_logging(Settings(_env_file=None).LOG_LEVEL)
        yield
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
