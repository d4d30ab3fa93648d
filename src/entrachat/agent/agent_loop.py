"""Conversation orchestration loop for entrachat."""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    Sequence,
    Tuple,
)

from entrachat.agent.tool_executor import ToolInvoker
from entrachat.common import (
    AnsiColors,
    colored_print,
)
from entrachat.core.schema import (
    ChatResponse,
    Message,
    ToolDescriptor,
    TurnResult,
    TurnState,
)
from entrachat.tools import get_tool_schemas

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10

SYSTEM_PROMPT = (
    "You are a helpful assistant that can query Microsoft Entra tenant data using Microsoft "
    "Graph API. You have access to tools that let you discover and execute Graph API calls. "
    "Always use microsoft_graph_suggest_queries first to find the right API endpoint, then use "
    "microsoft_graph_get to execute it."
)


class ChatClient(Protocol):
    """The slice of :class:`~entrachat.agent.planner_interface.BaseChatClient` used here."""

    async def complete(
        self, messages: Sequence[Message], tools: Sequence[Dict[str, Any]]
    ) -> ChatResponse:
        ...


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Conversation:
    """
    Owns the message history of one session and runs user turns against it.

    Each turn alternates between asking the model and executing the tools it picked, until the
    model answers in plain text or ``max_iterations`` completion round trips have been spent.
    """

    def __init__(
        self,
        chat_client: ChatClient,
        invoker: ToolInvoker,
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
        max_iterations: int = MAX_ITERATIONS,
    ) -> None:
        self._chat_client = chat_client
        self._invoker = invoker
        self._tool_schemas = get_tool_schemas(tools)
        self._max_iterations = max_iterations
        self._messages: List[Message] = [Message.system(system_prompt)]

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Read-only view of the history, oldest first."""
        return tuple(self._messages)

    async def handle_user_turn(self, text: str) -> TurnResult:
        """Run one user turn to a final answer, the iteration cap, or a fault."""
        self._messages.append(Message.user(text))
        iterations = 0
        colored_print("\nAssistant: ", AnsiColors.GREEN, end="")

        try:
            while iterations < self._max_iterations:
                iterations += 1
                logger.debug(
                    "turn state=%s iteration=%d messages=%d",
                    TurnState.AWAITING_MODEL.value,
                    iterations,
                    len(self._messages),
                )
                response = await self._chat_client.complete(
                    list(self._messages), self._tool_schemas
                )

                if not response.wants_tools:
                    return self._finish(response, iterations)

                logger.debug(
                    "turn state=%s calls=%s",
                    TurnState.EXECUTING_TOOLS.value,
                    [call.name for call in response.tool_calls],
                )
                await self._execute_tools(response)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Turn failed after %d iteration(s)", iterations, exc_info=True)
            colored_print(f"\n✗ Error during conversation: {exc}\n", AnsiColors.RED)
            return TurnResult(state=TurnState.FAILED, iterations=iterations, error=str(exc))

        logger.debug("Turn hit max_iterations=%d without a final answer", self._max_iterations)
        colored_print(
            "[Maximum iterations reached. The query may be too complex.]", AnsiColors.YELLOW
        )
        return TurnResult(state=TurnState.ABORTED, iterations=iterations)

    # -----------------------------------------------------------------------
    # States
    # -----------------------------------------------------------------------
    async def _execute_tools(self, response: ChatResponse) -> None:
        self._messages.append(Message.assistant(response.content, response.tool_calls))
        colored_print(f"[Calling {len(response.tool_calls)} tool(s)...]", AnsiColors.YELLOW)

        # Sequential on purpose: tool messages must follow the order of the calls.
        for call in response.tool_calls:
            result = await self._invoker.invoke(call)
            self._messages.append(Message.tool_result(result))

    def _finish(self, response: ChatResponse, iterations: int) -> TurnResult:
        reply = response.content or ""
        self._messages.append(Message.assistant(reply))
        print(reply)
        print()
        logger.debug("turn state=%s iterations=%d", TurnState.DONE.value, iterations)
        return TurnResult(state=TurnState.DONE, reply=reply, iterations=iterations)
