"""
Conversation loop tests: state transitions, iteration cap and history ordering.

Run with:
$ pytest -q
"""

import json
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

import pytest

from conftest import (
    FakeToolSource,
    console_logging,
    text_result,
)
from entrachat.agent.agent_loop import (
    MAX_ITERATIONS,
    SYSTEM_PROMPT,
    Conversation,
)
from entrachat.agent.tool_executor import ToolInvoker
from entrachat.core.schema import (
    ChatResponse,
    Message,
    Role,
    ToolCall,
    ToolDescriptor,
    TurnState,
)
from entrachat.tools import (
    GRAPH_GET_TOOL,
    SUGGEST_QUERIES_TOOL,
)


class ScriptedChatClient:
    """Returns preset responses in order and keeps a copy of every request."""

    def __init__(self, responses: Sequence[ChatResponse | BaseException]) -> None:
        self._responses = list(responses)
        self.requests: List[List[Message]] = []
        self.tools: List[Sequence[Dict[str, Any]]] = []

    async def complete(
        self, messages: Sequence[Message], tools: Sequence[Dict[str, Any]]
    ) -> ChatResponse:
        self.requests.append(list(messages))
        self.tools.append(tools)
        response = self._responses[min(len(self.requests), len(self._responses)) - 1]
        if isinstance(response, BaseException):
            raise response
        return response


def _tool_call(call_id: str, name: str, **args: str) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=json.dumps(args))


def _calls(*calls: ToolCall) -> ChatResponse:
    return ChatResponse(content=None, tool_calls=list(calls))


def _answer(text: str) -> ChatResponse:
    return ChatResponse(content=text)


def _conversation(
    chat: ScriptedChatClient, tools: List[ToolDescriptor], source: FakeToolSource
) -> Conversation:
    return Conversation(chat, ToolInvoker(tools, source), tools)


@pytest.mark.asyncio
async def test_plain_answer(graph_tools: List[ToolDescriptor]) -> None:
    """No tool calls: one round trip, reply appended and returned."""

    chat = ScriptedChatClient([_answer("Hello!")])
    convo = _conversation(chat, graph_tools, FakeToolSource())

    result = await convo.handle_user_turn("hi")

    assert result.state is TurnState.DONE
    assert result.reply == "Hello!"
    assert result.iterations == 1
    assert [m.role for m in convo.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
    assert convo.messages[0].content == SYSTEM_PROMPT
    assert len(chat.tools[0]) == len(graph_tools)


@pytest.mark.asyncio
async def test_count_users_scenario(
    graph_tools: List[ToolDescriptor], capsys: pytest.CaptureFixture[str]
) -> None:
    """Suggest a query, run it, then answer with the count."""

    source = FakeToolSource(
        {
            SUGGEST_QUERIES_TOOL: text_result("/users/$count"),
            GRAPH_GET_TOOL: text_result('{"@odata.count": 42}'),
        }
    )
    chat = ScriptedChatClient(
        [
            _calls(_tool_call("call_1", SUGGEST_QUERIES_TOOL, intentDescription="count users")),
            _calls(_tool_call("call_2", GRAPH_GET_TOOL, relativeUrl="/users/$count")),
            _answer("You have 42 users."),
        ]
    )
    convo = _conversation(chat, graph_tools, source)

    result = await convo.handle_user_turn("How many users do we have?")

    assert result.state is TurnState.DONE
    assert result.iterations == 3
    assert source.calls == [
        (SUGGEST_QUERIES_TOOL, {"intentDescription": "count users"}),
        (GRAPH_GET_TOOL, {"relativeUrl": "/users/$count"}),
    ]
    # The final completion saw both tool results.
    last_request = chat.requests[-1]
    tool_messages = [m for m in last_request if m.role is Role.TOOL]
    assert [m.tool_call_id for m in tool_messages] == ["call_1", "call_2"]
    assert "42" in (tool_messages[-1].content or "")

    assert capsys.readouterr().out.count("You have 42 users.") == 1


@pytest.mark.asyncio
async def test_tool_results_follow_call_order(graph_tools: List[ToolDescriptor]) -> None:
    """Every call id in an assistant message gets one tool message, in the same order."""

    calls = [
        _tool_call("call_a", SUGGEST_QUERIES_TOOL, intentDescription="guests"),
        _tool_call("call_b", GRAPH_GET_TOOL, relativeUrl="/users"),
        _tool_call("call_c", "unknown_tool"),
    ]
    chat = ScriptedChatClient([_calls(*calls), _answer("done")])
    convo = _conversation(chat, graph_tools, FakeToolSource())

    await convo.handle_user_turn("Show me all guest users")

    history = convo.messages
    assistant_index = next(
        i for i, m in enumerate(history) if m.role is Role.ASSISTANT and m.tool_calls
    )
    following = history[assistant_index + 1 : assistant_index + 1 + len(calls)]
    assert [m.role for m in following] == [Role.TOOL] * len(calls)
    assert [m.tool_call_id for m in following] == ["call_a", "call_b", "call_c"]
    assert [c.id for c in history[assistant_index].tool_calls] == ["call_a", "call_b", "call_c"]


@pytest.mark.asyncio
async def test_transport_fault_reaches_the_model(graph_tools: List[ToolDescriptor]) -> None:
    """A failing tool does not end the turn; the model reads the error next round."""

    source = FakeToolSource({GRAPH_GET_TOOL: ConnectionError("connection reset by peer")})
    chat = ScriptedChatClient(
        [
            _calls(_tool_call("call_1", GRAPH_GET_TOOL, relativeUrl="/users/$count")),
            _answer("The directory could not be reached."),
        ]
    )
    convo = _conversation(chat, graph_tools, source)

    result = await convo.handle_user_turn("How many users do we have?")

    assert result.state is TurnState.DONE
    assert len(chat.requests) == 2
    tool_message = chat.requests[1][-1]
    assert tool_message.role is Role.TOOL
    assert tool_message.tool_call_id == "call_1"
    assert GRAPH_GET_TOOL in (tool_message.content or "")
    assert "connection reset by peer" in (tool_message.content or "")


@pytest.mark.asyncio
async def test_iteration_budget_exhausted(
    graph_tools: List[ToolDescriptor], capsys: pytest.CaptureFixture[str]
) -> None:
    """A model that never stops calling tools is cut off after the 10th round trip."""

    chat = ScriptedChatClient(
        [
            _calls(_tool_call(f"call_{i}", GRAPH_GET_TOOL, relativeUrl="/users/$count"))
            for i in range(MAX_ITERATIONS + 5)
        ]
    )
    source = FakeToolSource()
    convo = _conversation(chat, graph_tools, source)

    result = await convo.handle_user_turn("How many users do we have?")

    assert result.state is TurnState.ABORTED
    assert result.iterations == MAX_ITERATIONS
    assert len(chat.requests) == MAX_ITERATIONS
    assert len(source.calls) == MAX_ITERATIONS
    assert "Maximum iterations reached" in capsys.readouterr().out
    # No synthetic message: history ends with the last tool result.
    assert convo.messages[-1].role is Role.TOOL


@pytest.mark.asyncio
async def test_completion_fault_fails_only_the_turn(graph_tools: List[ToolDescriptor]) -> None:
    """An LLM API error ends the turn; the next turn reuses the history."""

    chat = ScriptedChatClient([RuntimeError("502 Bad Gateway"), _answer("Back online.")])
    convo = _conversation(chat, graph_tools, FakeToolSource())

    failed = await convo.handle_user_turn("first question")
    assert failed.state is TurnState.FAILED
    assert failed.error == "502 Bad Gateway"
    assert [m.role for m in convo.messages] == [Role.SYSTEM, Role.USER]

    recovered = await convo.handle_user_turn("second question")
    assert recovered.state is TurnState.DONE
    assert [m.content for m in chat.requests[-1] if m.role is Role.USER] == [
        "first question",
        "second question",
    ]


@pytest.mark.asyncio
async def test_sessions_do_not_share_history(graph_tools: List[ToolDescriptor]) -> None:
    first = _conversation(ScriptedChatClient([_answer("a")]), graph_tools, FakeToolSource())
    second = _conversation(ScriptedChatClient([_answer("b")]), graph_tools, FakeToolSource())

    await first.handle_user_turn("only in the first session")

    assert len(first.messages) == 3
    assert len(second.messages) == 1


def test_message_wire_format() -> None:
    """Assistant tool calls and tool results render in chat-completions shape."""

    call = ToolCall(id="call_1", name=GRAPH_GET_TOOL, arguments='{"relativeUrl": "/users"}')
    assistant = Message.assistant(None, [call]).to_openai()
    tool = Message(role=Role.TOOL, content="{}", tool_call_id="call_1").to_openai()

    assert assistant == {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": GRAPH_GET_TOOL, "arguments": '{"relativeUrl": "/users"}'},
            }
        ],
    }
    assert tool == {"role": "tool", "content": "{}", "tool_call_id": "call_1"}


@pytest.mark.asyncio
async def test_console_output_is_short_with_default_logging(
    graph_tools: List[ToolDescriptor],
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Faults and the iteration cap print one line each, without tracebacks."""

    failing = _conversation(
        ScriptedChatClient([RuntimeError("502 Bad Gateway")]), graph_tools, FakeToolSource()
    )
    looping = Conversation(
        ScriptedChatClient([_calls(_tool_call("call_1", GRAPH_GET_TOOL, relativeUrl="/users"))]),
        ToolInvoker(graph_tools, FakeToolSource()),
        graph_tools,
        max_iterations=2,
    )

    with console_logging(monkeypatch):
        await failing.handle_user_turn("first question")
        await looping.handle_user_turn("loop forever")

    out = capsys.readouterr().out
    assert out.count("502 Bad Gateway") == 1
    assert "Traceback" not in out
    assert out.count("max_iterations") == 0
    assert out.count("Maximum iterations reached") == 1
