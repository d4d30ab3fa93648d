"""
Chat completion interface for entrachat.

This module is the only place that *directly* calls an LLM.  Everything else (conversation loop,
tool invoker, MCP transport) stays model-agnostic.

We support two back-ends out of the box:

1. **Azure OpenAI** deployments (default).
2. **OpenAI** via its public REST API.

Both speak the chat-completions function-calling protocol.  Additional providers can be added by
subclassing :class:`BaseChatClient` and registering via :func:`register_chat_client`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

from entrachat.config import (
    Settings,
    settings as default_settings,
)
from entrachat.core.schema import (
    ChatResponse,
    Message,
    ToolCall,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CHAT_CLIENT_REGISTRY: dict[str, Type["BaseChatClient"]] = {}


def register_chat_client(name: str) -> Callable:
    """Decorator to register a chat client class under *name*."""

    def wrapper(cls: Type["BaseChatClient"]) -> Type["BaseChatClient"]:
        _CHAT_CLIENT_REGISTRY[name] = cls
        return cls

    return wrapper


def load_chat_client(name: str | None = None, settings: Settings | None = None) -> "BaseChatClient":
    """
    Factory that returns an instantiated chat client.

    Fallback order:
    1. *name* arg
    2. ``settings.LLM_PROVIDER`` env option
    3. default: ``"azure"``
    """
    settings = settings or default_settings
    target = name or getattr(settings, "LLM_PROVIDER", "azure")
    cls = _CHAT_CLIENT_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Chat client '{target}' is not registered.")
    return cls(settings)


def parse_completion(completion: Any) -> ChatResponse:
    """Turn an SDK ``ChatCompletion`` into a :class:`ChatResponse`."""
    message = completion.choices[0].message
    calls: List[ToolCall] = []
    for call in message.tool_calls or []:
        if getattr(call, "type", "function") != "function":
            logger.debug("Skipping non-function tool call %s", call)
            continue
        calls.append(
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "",
            )
        )
    return ChatResponse(content=message.content, tool_calls=calls)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseChatClient(ABC):
    """Abstract chat completion client: history + tools -> tool calls or final text."""

    temperature: float = 0.2

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    @abstractmethod
    def model(self) -> str:
        """Model (or deployment) name sent with each request."""

    @abstractmethod
    def _client(self) -> Any:
        """The async SDK client."""

    async def complete(
        self, messages: Sequence[Message], tools: Sequence[Dict[str, Any]]
    ) -> ChatResponse:
        """Run one chat completion round trip."""
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_openai() for message in messages],
            "temperature": self.temperature,
        }
        if tools:
            kwargs["tools"] = list(tools)

        completion = await self._client().chat.completions.create(**kwargs)
        response = parse_completion(completion)
        logger.debug(
            "%s response: %d tool call(s), content=%r",
            type(self).__name__,
            len(response.tool_calls),
            response.content,
        )
        return response


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
@register_chat_client("azure")
class AzureOpenAIChatClient(BaseChatClient):
    """Azure OpenAI deployment via ``openai.AsyncAzureOpenAI``."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._sdk: Any = None

    @property
    def model(self) -> str:
        return self.settings.AZURE_OPENAI_DEPLOYMENT_NAME

    def _client(self) -> Any:
        if self._sdk is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._sdk = openai.AsyncAzureOpenAI(
                azure_endpoint=self.settings.AZURE_OPENAI_ENDPOINT,
                api_key=self.settings.AZURE_OPENAI_API_KEY,
                api_version=self.settings.AZURE_OPENAI_API_VERSION,
            )
        return self._sdk


@register_chat_client("openai")
class OpenAIChatClient(BaseChatClient):
    """OpenAI-hosted model via ``openai.AsyncOpenAI``."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._sdk: Any = None

    @property
    def model(self) -> str:
        return self.settings.OPENAI_MODEL

    def _client(self) -> Any:
        if self._sdk is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._sdk = openai.AsyncOpenAI(api_key=self.settings.OPENAI_API_KEY)
        return self._sdk
