"""
Schema definitions for model <-> orchestrator <-> tool messages.

These data models serve as the contract between the chat completion client, the conversation
loop, and the tool invoker.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class Role(str, Enum):
    """Who authored a message in the conversation history."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolStatus(str, Enum):
    """Outcome tag carried by every :class:`ToolResult`."""

    OK = "ok"
    SERVER_ERROR = "server_error"  # transport succeeded, payload reports a failure
    NOT_FOUND = "not_found"
    FAILED = "failed"


class TurnState(str, Enum):
    """States of a single user turn."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


class ToolDescriptor(BaseModel):
    """A remote tool offered to the model."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique tool name on the remote server")
    description: str = Field("No description available", description="Human-readable summary")
    parameters: Dict[str, Any] = Field(
        default_factory=dict, description="JSON Schema for the tool arguments"
    )


class ToolCall(BaseModel):
    """A call that the model wants the client to execute."""

    id: str = Field(..., description="Opaque call identifier used to correlate the result")
    name: str = Field(..., description="Remote tool name")
    arguments: str = Field("", description="Raw JSON argument payload as emitted by the model")

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolResult(BaseModel):
    """Normalized output of one tool invocation."""

    call_id: str
    tool_name: str
    content: str = Field(..., description="Serialized payload handed back to the model")
    status: ToolStatus = ToolStatus.OK
    error_detail: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """True when the invocation itself failed (server-reported errors are not included)."""
        return self.status in (ToolStatus.NOT_FOUND, ToolStatus.FAILED)


class Message(BaseModel):
    """One entry of the conversation history."""

    role: Role
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: List[ToolCall] | None = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool_result(cls, result: ToolResult) -> "Message":
        return cls(role=Role.TOOL, content=result.content, tool_call_id=result.call_id)

    def to_openai(self) -> Dict[str, Any]:
        """Render the message in chat-completions wire format."""
        payload: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role is Role.ASSISTANT and self.tool_calls:
            payload["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        if self.role is Role.TOOL:
            payload["tool_call_id"] = self.tool_call_id
        return payload


class ChatResponse(BaseModel):
    """What the chat completion API answered: tool calls, or a final text."""

    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class TurnResult(BaseModel):
    """Outcome of one user turn, as seen by the session loop."""

    state: TurnState
    reply: Optional[str] = None
    iterations: int = 0
    error: Optional[str] = None
